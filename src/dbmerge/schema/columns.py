"""
Column reconciliation between the source and target versions of a table.
"""

from dataclasses import dataclass, field
from typing import List, Sequence


@dataclass(frozen=True)
class ColumnReconciliation:
    """Common and side-only columns of one table.

    ``common`` follows source ordering so that emitted column lists are
    byte-identical across runs for the same schema pair.
    """

    source_columns: List[str] = field(default_factory=list)
    target_columns: List[str] = field(default_factory=list)
    common: List[str] = field(default_factory=list)
    source_only: List[str] = field(default_factory=list)
    target_only: List[str] = field(default_factory=list)

    @property
    def is_missing_in_source(self) -> bool:
        return not self.source_columns

    @property
    def is_missing_in_target(self) -> bool:
        return not self.target_columns

    @property
    def has_common(self) -> bool:
        return bool(self.common)

    @property
    def has_divergence(self) -> bool:
        """True when either side has columns the other lacks."""
        return bool(self.source_only or self.target_only)

    @property
    def needs_projection(self) -> bool:
        """True when target rows must be read column-by-column.

        A native data dump of the target table would carry target-only
        columns the destination cannot receive.
        """
        return bool(self.target_only)

    def summary(self) -> str:
        return (
            f"Common columns: {len(self.common)} "
            f"(Source: {len(self.source_columns)}, Target: {len(self.target_columns)})"
        )


def reconcile(
    source_columns: Sequence[str], target_columns: Sequence[str]
) -> ColumnReconciliation:
    """Intersect two ordered column lists.

    Never raises; an empty input or an empty intersection is a valid
    result and the caller decides whether to skip the table.
    """
    source = list(source_columns)
    target = list(target_columns)
    source_set = set(source)
    target_set = set(target)

    return ColumnReconciliation(
        source_columns=source,
        target_columns=target,
        common=[col for col in source if col in target_set],
        source_only=[col for col in source if col not in target_set],
        target_only=[col for col in target if col not in source_set],
    )
