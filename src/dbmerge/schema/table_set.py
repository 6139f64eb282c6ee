"""
Exclusion set construction.

The exclusion set names every table whose row data comes from the target
database. It starts from the configured list (or preset), grows by the
junction tables of those tables, and is finally narrowed to tables that
exist in both databases.
"""

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable, List, Optional, Sequence, Tuple

from ..exceptions import DatabaseConnectionError
from ..naming import NamingMode, invert, normalize_all


logger = logging.getLogger(__name__)


# Takes metadata-convention names, returns normalized junction table names
DiscoverFn = Callable[[List[str]], Awaitable[List[str]]]
ExistsFn = Callable[[str], Awaitable[bool]]


def deduplicate(names: Iterable[str]) -> List[str]:
    """Drop repeated names, keeping first-seen order."""
    return list(dict.fromkeys(names))


@dataclass
class TableSetResult:
    """Outcome of building and validating the exclusion set."""

    requested: List[str] = field(default_factory=list)
    exclusions: Tuple[str, ...] = ()
    discovered: List[str] = field(default_factory=list)
    duplicates_removed: int = 0
    validated: Tuple[str, ...] = ()
    # Named after the missing side: absent from source / absent from target
    source_only: List[str] = field(default_factory=list)
    target_only: List[str] = field(default_factory=list)
    lookup_failures: List[str] = field(default_factory=list)

    @property
    def dropped(self) -> List[str]:
        """Every excluded table that did not survive validation."""
        return (
            self.source_only
            + self.target_only
            + self.lookup_failures
        )


class TableSetBuilder:
    """Builds the exclusion set and validates it against both catalogs."""

    def __init__(
        self,
        mode: NamingMode = NamingMode.NONE,
        discover: Optional[DiscoverFn] = None,
        exists_in_source: Optional[ExistsFn] = None,
        exists_in_target: Optional[ExistsFn] = None,
    ):
        self.mode = mode
        self.discover = discover
        self.exists_in_source = exists_in_source
        self.exists_in_target = exists_in_target

    async def build_exclusions(self, initial: Sequence[str]) -> TableSetResult:
        """Normalize, deduplicate and expand ``initial`` with junction tables."""
        requested = list(initial)
        normalized = normalize_all(requested, self.mode)

        changed = [(raw, new) for raw, new in zip(requested, normalized) if raw != new]
        for raw, new in changed:
            logger.info(f"Table name converted: {raw} -> {new}")

        working = deduplicate(normalized)
        duplicates_removed = len(normalized) - len(working)
        if duplicates_removed:
            logger.warning(f"Removed {duplicates_removed} duplicate table name(s)")

        discovered: List[str] = []
        if self.discover is not None and working:
            # Relationship metadata stores names in the un-normalized convention
            raw_names = normalize_all(working, invert(self.mode))
            try:
                found = await self.discover(raw_names)
                discovered = deduplicate(found)
            except Exception as e:
                logger.error(f"Junction discovery failed, continuing without it: {e}")
                discovered = []

        added = [name for name in discovered if name not in working]
        if added:
            logger.info(
                f"Added {len(added)} junction table(s) to the exclusion set: "
                f"{len(working)} -> {len(working) + len(added)}"
            )
        working = deduplicate(working + added)

        return TableSetResult(
            requested=requested,
            exclusions=tuple(working),
            discovered=discovered,
            duplicates_removed=duplicates_removed,
        )

    async def validate(self, result: TableSetResult) -> TableSetResult:
        """Keep only excluded tables present in both databases.

        A failed lookup drops that one table; a lost connection propagates.
        """
        if self.exists_in_source is None or self.exists_in_target is None:
            raise ValueError("validate() needs both existence checks")

        validated = []
        for table in result.exclusions:
            try:
                in_target = await self.exists_in_target(table)
                in_source = await self.exists_in_source(table)
            except DatabaseConnectionError:
                raise
            except Exception as e:
                logger.warning(f"Skipping table {table}: existence lookup failed ({e})")
                result.lookup_failures.append(table)
                continue

            if in_target and in_source:
                validated.append(table)
            elif not in_target:
                logger.warning(f"Skipping table {table}: not found in target")
                result.target_only.append(table)
            else:
                logger.warning(f"Skipping table {table}: not found in source (nothing to load into)")
                result.source_only.append(table)

        if not validated:
            logger.warning("No excluded tables need data from target")

        result.validated = tuple(validated)
        return result

    async def build(self, initial: Sequence[str]) -> TableSetResult:
        """Run expansion and validation in one call."""
        result = await self.build_exclusions(initial)
        return await self.validate(result)
