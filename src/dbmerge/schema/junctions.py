"""
Many-to-many junction table discovery.

Applications built on a collections/fields metadata model describe each
relation as a row in a ``fields`` table. A many-to-many field carries the
name of its association table in the ``through`` attribute of its JSON
options. When a table's data is taken from the target database its
junction tables must come along, or the relation rows would point at
foreign rows that no longer match.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, ValidationError

from ..database.connection import ConnectionPool
from ..database.quoting import quote_table
from ..naming import NamingMode, normalize


logger = logging.getLogger(__name__)


class FieldOptions(BaseModel):
    """The part of a field's options payload dbmerge cares about."""

    model_config = ConfigDict(extra="ignore")

    through: Optional[str] = None


@dataclass(frozen=True)
class JunctionLink:
    """A many-to-many field and the association table behind it."""

    owner_table: str
    field_name: str
    linked_table: str


def parse_field_options(payload: Any) -> Optional[str]:
    """Decode an options payload and return its association table, if any.

    Raises ValueError for payloads that cannot be decoded; a well-formed
    payload without ``through`` yields None.
    """
    if payload is None:
        return None
    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8")
    if isinstance(payload, str):
        payload = json.loads(payload)
    if not isinstance(payload, dict):
        raise ValueError(f"options payload is {type(payload).__name__}, not an object")

    try:
        options = FieldOptions.model_validate(payload)
    except ValidationError as e:
        raise ValueError(f"unusable 'through' attribute: {e.errors()[0]['msg']}") from e

    return options.through or None


class JunctionDiscoverer:
    """Finds association tables linked to a set of tables."""

    def __init__(
        self,
        pool: ConnectionPool,
        mode: NamingMode = NamingMode.NONE,
        metadata_table: str = "fields",
        interface: str = "m2m",
        schema: str = "public",
    ):
        self.pool = pool
        self.mode = mode
        self.metadata_table = metadata_table
        self.interface = interface
        self.schema = schema

    async def discover(self, table_names: Iterable[str], max_depth: int = 1) -> List[str]:
        """Return the deduplicated, normalized junction tables of ``table_names``.

        ``table_names`` must be in the convention the metadata table uses.
        With ``max_depth`` above 1 discovery is re-run over the raw names of
        newly found junction tables.
        """
        found: List[str] = []
        seen_raw = set()
        frontier = list(dict.fromkeys(table_names))

        for depth in range(1, max_depth + 1):
            if not frontier:
                break
            if depth > 1:
                logger.warning(
                    f"Junction discovery pass {depth} over {len(frontier)} table(s); "
                    "multi-level discovery is unverified against the application"
                )

            seen_raw.update(frontier)
            links = await self.discover_links(frontier)

            next_frontier = []
            for link in links:
                normalized = normalize(link.linked_table, self.mode)
                if normalized not in found:
                    found.append(normalized)
                if link.linked_table not in seen_raw and link.linked_table not in next_frontier:
                    next_frontier.append(link.linked_table)
            frontier = next_frontier

        if found:
            logger.info(f"Found {len(found)} junction table(s): {', '.join(found)}")
        else:
            logger.info("No junction tables found")

        return found

    async def discover_links(self, table_names: Iterable[str]) -> List[JunctionLink]:
        """One discovery pass. Database errors yield an empty list."""
        names = list(dict.fromkeys(table_names))
        if not names:
            return []

        try:
            if not await self._metadata_table_exists():
                logger.warning(
                    f"Relationship metadata table '{self.metadata_table}' not found; "
                    "skipping junction discovery"
                )
                return []

            rows = await self.pool.fetch(self._fields_query(), names, self.interface)
        except Exception as e:
            logger.error(f"Junction discovery failed: {e}")
            return []

        logger.debug(f"Found {len(rows)} many-to-many field(s)")

        links = []
        for row in rows:
            owner = row["collection_name"]
            field_name = row["field_name"]
            try:
                through = parse_field_options(row["options"])
            except ValueError as e:
                logger.warning(f"Skipping {owner}.{field_name}: malformed options ({e})")
                continue

            if through:
                links.append(JunctionLink(owner, field_name, through))
                logger.info(f"  {owner}.{field_name} -> {through}")

        return links

    async def _metadata_table_exists(self) -> bool:
        query = """
            SELECT EXISTS (
                SELECT 1 FROM information_schema.tables
                WHERE table_schema = $1 AND table_name = $2
            )
        """
        return bool(await self.pool.fetchval(query, self.schema, self.metadata_table))

    def _fields_query(self) -> str:
        return f"""
            SELECT
                f.collection_name,
                f.name AS field_name,
                f.options
            FROM {quote_table(self.metadata_table, self.schema)} f
            WHERE f.collection_name = ANY($1::text[])
            AND f.interface = $2
            AND f.options IS NOT NULL
            ORDER BY f.collection_name, f.name
        """
