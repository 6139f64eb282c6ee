"""
Merge-export pipeline for dbmerge.

Runs the full export as a fixed sequence of phases on one event loop:
junction discovery, exclusion set freeze, structural dump, exclusion
validation, merge data emission. Database pools are owned by a single
phase and closed when the phase ends, whether it succeeds or not.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from .config import DatabaseConnection, MergeConfig
from .database.connection import DatabaseManager, PoolFactory
from .database.introspection import SchemaIntrospector
from .exceptions import DatabaseConnectionError, DbMergeError, PipelineAbortedError
from .export.artifact import ArtifactWriter, render_banner, render_header
from .export.dump import PgDump
from .export.emitter import MergeEmitter
from .naming import NamingMode
from .schema.columns import ColumnReconciliation, reconcile
from .schema.junctions import JunctionDiscoverer
from .schema.table_set import TableSetBuilder, TableSetResult


logger = logging.getLogger(__name__)


DumpFactory = Callable[[DatabaseConnection], PgDump]


class PipelineState(str, Enum):
    """Phases of a merge export run."""

    INIT = "init"
    DISCOVER_JUNCTIONS = "discover_junctions"
    BUILD_TABLE_SET = "build_table_set"
    DUMP_STRUCTURE = "dump_structure"
    VALIDATE_EXCLUSIONS = "validate_exclusions"
    EMIT_MERGE_DATA = "emit_merge_data"
    DONE = "done"
    ABORTED = "aborted"


class TableStatus(str, Enum):
    EMITTED = "emitted"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class TableOutcome:
    """What happened to one validated table during emission."""

    table: str
    status: TableStatus
    rows: int = 0
    passthrough: bool = False
    reconciliation: Optional[ColumnReconciliation] = None
    error: Optional[str] = None


@dataclass
class PipelineReport:
    """Summary of a merge export run."""

    state: PipelineState = PipelineState.INIT
    output_file: Optional[str] = None
    table_set: TableSetResult = field(default_factory=TableSetResult)
    outcomes: List[TableOutcome] = field(default_factory=list)
    target_row_counts: Dict[str, int] = field(default_factory=dict)
    artifact_size: int = 0
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None

    @property
    def exclusions(self) -> Tuple[str, ...]:
        return self.table_set.exclusions

    @property
    def discovered(self) -> List[str]:
        return self.table_set.discovered

    @property
    def duplicates_removed(self) -> int:
        return self.table_set.duplicates_removed

    def tables_with_status(self, status: TableStatus) -> List[str]:
        return [outcome.table for outcome in self.outcomes if outcome.status == status]

    @property
    def emitted(self) -> List[str]:
        return self.tables_with_status(TableStatus.EMITTED)

    @property
    def skipped(self) -> List[str]:
        return self.tables_with_status(TableStatus.SKIPPED)

    @property
    def failed(self) -> List[str]:
        return self.tables_with_status(TableStatus.FAILED)

    @property
    def duration(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()


class MergeExportPipeline:
    """
    Produces a merged SQL artifact from a source and a target database.

    Structure and most rows come from the source. Rows of the excluded
    tables come from the target and are written as clear + upsert
    statements restricted to the columns both schemas share.
    """

    def __init__(
        self,
        config: MergeConfig,
        dump: Optional[DumpFactory] = None,
        pool_factory: Optional[PoolFactory] = None,
    ):
        self.config = config
        self._dump_factory = dump or (lambda endpoint: PgDump.from_config(endpoint, config.export))
        self._pool_factory = pool_factory
        self.state = PipelineState.INIT
        self.report = PipelineReport()

    @property
    def mode(self) -> NamingMode:
        return self.config.export.naming_mode

    def _enter(self, state: PipelineState) -> None:
        logger.debug(f"Pipeline state: {self.state.value} -> {state.value}")
        self.state = state
        self.report.state = state

    async def run(self, now: Optional[datetime] = None) -> PipelineReport:
        """Run every phase. Raises PipelineAbortedError on a fatal failure."""
        output_file = self.config.export.resolve_output_file(now)
        self.report.output_file = output_file
        writer = ArtifactWriter(output_file)

        logger.info(
            f"Merge export: source {self.config.source.endpoint}, "
            f"target {self.config.target.endpoint} -> {output_file}"
        )

        try:
            self._enter(PipelineState.DISCOVER_JUNCTIONS)
            table_set = await self._discover_junctions()

            self._enter(PipelineState.BUILD_TABLE_SET)
            self.report.table_set = table_set
            if table_set.exclusions:
                logger.info(f"Tables with data from target: {', '.join(table_set.exclusions)}")
            else:
                logger.info("No tables with data from target; exporting source only")

            self._enter(PipelineState.DUMP_STRUCTURE)
            writer.open()
            await self._dump_structure(writer, table_set.exclusions, now)

            self._enter(PipelineState.VALIDATE_EXCLUSIONS)
            table_set = await self._validate_exclusions(table_set)

            self._enter(PipelineState.EMIT_MERGE_DATA)
            if table_set.validated:
                await self._emit_merge_data(writer, table_set.validated)

            writer.close()
            self.report.artifact_size = writer.size()
        except Exception as e:
            failed_state = self.state
            self._enter(PipelineState.ABORTED)
            self.report.finished_at = datetime.now()
            logger.error(f"Merge export aborted during {failed_state.value}: {e}")
            if writer.is_open:
                writer.close()
                logger.warning(f"Partial output left at {output_file}; discard it")
            if isinstance(e, PipelineAbortedError):
                raise
            raise PipelineAbortedError(failed_state.value, cause=e) from e

        self._enter(PipelineState.DONE)
        self.report.finished_at = datetime.now()
        logger.info(f"Merge export complete: {output_file}")
        return self.report

    async def _discover_junctions(self) -> TableSetResult:
        initial = self.config.resolved_exclusions()
        export = self.config.export

        if not export.discover_junctions or not initial:
            return await TableSetBuilder(mode=self.mode).build_exclusions(initial)

        async with DatabaseManager(self._pool_factory) as manager:
            source = await manager.open("source", self.config.source)
            discoverer = JunctionDiscoverer(
                source,
                mode=self.mode,
                metadata_table=export.metadata_table,
                interface=export.m2m_interface,
                schema=self.config.source.schema_name,
            )

            async def discover(names: List[str]) -> List[str]:
                return await discoverer.discover(names, max_depth=export.junction_depth)

            builder = TableSetBuilder(mode=self.mode, discover=discover)
            return await builder.build_exclusions(initial)

    async def _dump_structure(
        self, writer: ArtifactWriter, exclusions: Tuple[str, ...], now: Optional[datetime]
    ) -> None:
        dump = self._dump_factory(self.config.source)

        writer.write(render_header(self.config.source, self.config.target, exclusions, now))

        structure = await dump.dump_structure()
        writer.write(structure)
        if not structure.endswith("\n"):
            writer.write("\n")

        data = await dump.dump_data(exclusions)
        writer.write(data)
        if not data.endswith("\n"):
            writer.write("\n")

    async def _validate_exclusions(self, table_set: TableSetResult) -> TableSetResult:
        if not table_set.exclusions:
            table_set.validated = ()
            return table_set

        async with DatabaseManager(self._pool_factory) as manager:
            source = SchemaIntrospector(
                await manager.open("source", self.config.source), self.config.source.schema_name
            )
            target = SchemaIntrospector(
                await manager.open("target", self.config.target), self.config.target.schema_name
            )

            builder = TableSetBuilder(
                mode=self.mode,
                exists_in_source=source.table_exists,
                exists_in_target=target.table_exists,
            )
            table_set = await builder.validate(table_set)

            for table in table_set.validated:
                try:
                    count = await target.count_rows(table)
                except DatabaseConnectionError:
                    raise
                except DbMergeError as e:
                    logger.warning(f"Could not count rows of {table} in target: {e}")
                    continue
                self.report.target_row_counts[table] = count
                logger.info(f"  {table}: {count} rows in target")

        return table_set

    async def _emit_merge_data(self, writer: ArtifactWriter, tables: Tuple[str, ...]) -> None:
        emitter = MergeEmitter(
            batch_size=self.config.export.batch_size,
            schema=self.config.source.schema_name,
        )

        async with DatabaseManager(self._pool_factory) as manager:
            source = SchemaIntrospector(
                await manager.open("source", self.config.source), self.config.source.schema_name
            )
            target = SchemaIntrospector(
                await manager.open("target", self.config.target), self.config.target.schema_name
            )

            writer.write(render_banner())

            for table in tables:
                outcome, text = await self._emit_table(emitter, source, target, table)
                writer.write(text)
                self.report.outcomes.append(outcome)

    async def _emit_table(
        self,
        emitter: MergeEmitter,
        source: SchemaIntrospector,
        target: SchemaIntrospector,
        table: str,
    ) -> Tuple[TableOutcome, str]:
        """Emit one table.

        Errors about this table become an inline comment; a lost connection
        aborts the run.
        """
        logger.info(f"Processing table {table}")
        try:
            source_columns = await source.get_column_names(table)
            target_columns = await target.get_column_names(table)
            reconciliation = reconcile(source_columns, target_columns)

            if reconciliation.is_missing_in_source:
                logger.warning(f"Table {table} has no columns in source; skipping")
                return (
                    TableOutcome(table, TableStatus.SKIPPED, reconciliation=reconciliation),
                    emitter.emit_missing(table, "source"),
                )
            if reconciliation.is_missing_in_target:
                logger.warning(f"Table {table} has no columns in target; skipping")
                return (
                    TableOutcome(table, TableStatus.SKIPPED, reconciliation=reconciliation),
                    emitter.emit_missing(table, "target"),
                )

            logger.info(f"  {reconciliation.summary()}")
            if reconciliation.source_only:
                logger.info(f"  Source-only columns: {', '.join(reconciliation.source_only)}")
            if reconciliation.target_only:
                logger.info(f"  Target-only columns: {', '.join(reconciliation.target_only)}")

            if not reconciliation.has_common:
                logger.warning(f"Table {table} has no common columns; skipping")
                return (
                    TableOutcome(table, TableStatus.SKIPPED, reconciliation=reconciliation),
                    emitter.emit(table, reconciliation, []),
                )

            if self._can_passthrough(reconciliation):
                dump = self._dump_factory(self.config.target)
                dump_text = await dump.dump_table_data(table)
                return (
                    TableOutcome(
                        table,
                        TableStatus.EMITTED,
                        rows=self.report.target_row_counts.get(table, 0),
                        passthrough=True,
                        reconciliation=reconciliation,
                    ),
                    emitter.emit_passthrough(table, reconciliation, dump_text),
                )

            primary_key = await target.get_primary_key(table)
            rows = await target.fetch_rows(table, reconciliation.common, order_by=primary_key)
            text = emitter.emit(table, reconciliation, rows, primary_key)
            return (
                TableOutcome(
                    table, TableStatus.EMITTED, rows=len(rows), reconciliation=reconciliation
                ),
                text,
            )

        except DatabaseConnectionError:
            raise
        except Exception as e:
            logger.error(f"Failed to export data of {table}: {e}")
            return (
                TableOutcome(table, TableStatus.FAILED, error=str(e)),
                emitter.emit_failure(table, e),
            )

    def _can_passthrough(self, reconciliation: ColumnReconciliation) -> bool:
        # The target dump is schema-qualified with the target's schema name
        return (
            not reconciliation.needs_projection
            and self.config.source.schema_name == self.config.target.schema_name
        )
