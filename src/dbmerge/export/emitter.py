"""
Merge statement emission.

For every table whose data comes from the target database the artifact
gets an unconditional clear of the destination table followed by
batched upserts restricted to the columns both schemas share. The clear
makes a re-applied artifact converge on the same rows even when an
earlier run stopped halfway; the upsert keyed by primary key makes batch
boundaries and row order irrelevant.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Mapping, Optional, Sequence, Tuple

from ..database.quoting import column_list, quote_ident, quote_table
from ..exceptions import EmissionError
from ..schema.columns import ColumnReconciliation
from .literals import to_sql_literal


logger = logging.getLogger(__name__)


DEFAULT_BATCH_SIZE = 100


class StatementKind(str, Enum):
    """Kinds of statement the emitter produces."""

    CLEAR = "clear"
    UPSERT = "upsert"


@dataclass(frozen=True)
class MergeStatement:
    """One emitted statement in structured form."""

    kind: StatementKind
    table: str
    columns: Tuple[str, ...] = ()
    rows: Tuple[Tuple[Any, ...], ...] = ()
    conflict_columns: Tuple[str, ...] = ()
    schema: Optional[str] = None

    @property
    def update_columns(self) -> Tuple[str, ...]:
        return tuple(col for col in self.columns if col not in self.conflict_columns)

    def render(self) -> str:
        target = quote_table(self.table, self.schema)
        if self.kind == StatementKind.CLEAR:
            return f"DELETE FROM {target};"

        values = ",\n".join(
            "(" + ", ".join(to_sql_literal(value) for value in row) + ")"
            for row in self.rows
        )
        sql = f"INSERT INTO {target} ({column_list(self.columns)}) VALUES\n{values}\n"

        if not self.conflict_columns:
            return sql + "ON CONFLICT DO NOTHING;"
        if not self.update_columns:
            return sql + f"ON CONFLICT ({column_list(self.conflict_columns)}) DO NOTHING;"

        assignments = ", ".join(
            f"{quote_ident(col)} = EXCLUDED.{quote_ident(col)}" for col in self.update_columns
        )
        return (
            sql
            + f"ON CONFLICT ({column_list(self.conflict_columns)}) DO UPDATE SET {assignments};"
        )


def _row_values(row: Any, columns: Sequence[str]) -> Tuple[Any, ...]:
    """Pick ``columns`` out of a mapping-like row or an aligned sequence."""
    if isinstance(row, Mapping) or hasattr(row, "keys"):
        try:
            return tuple(row[col] for col in columns)
        except KeyError as e:
            raise EmissionError(f"Row is missing column {e}") from e
    values = tuple(row)
    if len(values) != len(columns):
        raise EmissionError(
            f"Row has {len(values)} values for {len(columns)} columns"
        )
    return values


def comment_block(table: str, reconciliation: ColumnReconciliation) -> str:
    """Per-table header reporting the column reconciliation."""
    lines = [
        "--",
        f"-- Dumping data for table {quote_ident(table)}",
        "--",
        f"-- {reconciliation.summary()}",
    ]
    if reconciliation.source_only:
        lines.append(
            "-- Source-only columns (will use default/NULL): "
            + ", ".join(reconciliation.source_only)
        )
    if reconciliation.target_only:
        lines.append(
            "-- Target-only columns (ignored): " + ", ".join(reconciliation.target_only)
        )
    lines.append("--")
    return "\n".join(lines) + "\n\n"


class MergeEmitter:
    """Turns a reconciled table and its target rows into SQL text."""

    def __init__(self, batch_size: int = DEFAULT_BATCH_SIZE, schema: Optional[str] = None):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.batch_size = batch_size
        self.schema = schema

    def conflict_columns(
        self, reconciliation: ColumnReconciliation, primary_key: Sequence[str]
    ) -> Tuple[str, ...]:
        """Primary key usable as the upsert key, or () when it is not fully carried."""
        if primary_key and all(col in reconciliation.common for col in primary_key):
            return tuple(primary_key)
        if primary_key:
            logger.warning(
                f"Primary key ({', '.join(primary_key)}) not within common columns; "
                "falling back to ON CONFLICT DO NOTHING"
            )
        return ()

    def plan(
        self,
        table: str,
        reconciliation: ColumnReconciliation,
        rows: Sequence[Any],
        primary_key: Sequence[str] = (),
    ) -> List[MergeStatement]:
        """Clear statement plus one upsert per batch; empty when nothing is shared."""
        if not reconciliation.has_common:
            return []

        columns = tuple(reconciliation.common)
        conflict = self.conflict_columns(reconciliation, primary_key)
        statements = [MergeStatement(StatementKind.CLEAR, table, schema=self.schema)]

        values = [_row_values(row, columns) for row in rows]
        for start in range(0, len(values), self.batch_size):
            statements.append(
                MergeStatement(
                    StatementKind.UPSERT,
                    table,
                    columns=columns,
                    rows=tuple(values[start:start + self.batch_size]),
                    conflict_columns=conflict,
                    schema=self.schema,
                )
            )

        return statements

    def emit(
        self,
        table: str,
        reconciliation: ColumnReconciliation,
        rows: Sequence[Any],
        primary_key: Sequence[str] = (),
    ) -> str:
        """Comment block followed by the rendered statements."""
        if not reconciliation.has_common:
            return f"-- Table {quote_ident(table)} has no common columns\n\n"

        statements = self.plan(table, reconciliation, rows, primary_key)
        body = "\n".join(statement.render() for statement in statements)
        logger.debug(
            f"Emitted {len(statements) - 1} upsert batch(es) for {table} ({len(rows)} rows)"
        )
        return comment_block(table, reconciliation) + body + "\n\n"

    def emit_passthrough(
        self, table: str, reconciliation: ColumnReconciliation, dump_text: str
    ) -> str:
        """Wrap a native data dump of the target table with the clear statement."""
        clear = MergeStatement(StatementKind.CLEAR, table, schema=self.schema).render()
        return comment_block(table, reconciliation) + clear + "\n" + dump_text.rstrip("\n") + "\n\n"

    @staticmethod
    def emit_missing(table: str, side: str) -> str:
        return f"-- Table {quote_ident(table)} not found in {side} database\n\n"

    @staticmethod
    def emit_failure(table: str, error: Exception) -> str:
        """Inline record of a table that could not be exported."""
        message = " ".join(str(error).split())
        return f"-- ERROR: data for table {quote_ident(table)} was not exported: {message}\n\n"
