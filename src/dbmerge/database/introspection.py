"""
Database catalog introspection for dbmerge.

Answers the questions the merge pipeline asks of each endpoint: does a
table exist, what are its columns in physical order, what is its primary
key, how many rows does it hold, and what rows does it hold for a given
column projection.

A lost or broken connection is reported as DatabaseConnectionError so
callers can tell it apart from an error about one table.
"""

import logging
from typing import List, Sequence

import asyncpg

from .connection import ConnectionPool
from .quoting import column_list, quote_ident, quote_table
from ..exceptions import DatabaseConnectionError, DatabaseError, SchemaError


logger = logging.getLogger(__name__)


# InterfaceError covers ConnectionDoesNotExistError; OSError covers ConnectionError
CONNECTION_ERRORS = (
    asyncpg.exceptions.InterfaceError,
    asyncpg.exceptions.PostgresConnectionError,
    OSError,
)


class SchemaIntrospector:
    """Catalog queries against one endpoint, scoped to one schema."""

    def __init__(self, pool: ConnectionPool, schema: str = "public"):
        self.pool = pool
        self.schema = schema

    def _connection_lost(self, action: str, error: Exception) -> DatabaseConnectionError:
        logger.error(f"Database connection lost while {action}: {error}")
        return DatabaseConnectionError(
            "Database connection lost",
            details={"schema": self.schema},
            cause=error,
        )

    async def table_exists(self, table: str) -> bool:
        """Check if a table exists."""
        query = """
            SELECT EXISTS (
                SELECT 1 FROM information_schema.tables
                WHERE table_schema = $1 AND table_name = $2
            )
        """

        try:
            result = await self.pool.fetchval(query, self.schema, table)
            return bool(result)
        except DatabaseConnectionError:
            raise
        except CONNECTION_ERRORS as e:
            raise self._connection_lost(f"looking up {table}", e) from e
        except Exception as e:
            logger.error(f"Error checking table existence for {self.schema}.{table}: {e}")
            raise DatabaseError(f"Failed to check table existence: {e}") from e

    async def get_column_names(self, table: str) -> List[str]:
        """Column names ordered by ordinal position; empty if the table is absent."""
        query = """
            SELECT column_name
            FROM information_schema.columns
            WHERE table_schema = $1 AND table_name = $2
            ORDER BY ordinal_position
        """

        try:
            rows = await self.pool.fetch(query, self.schema, table)
            return [row["column_name"] for row in rows]
        except DatabaseConnectionError:
            raise
        except CONNECTION_ERRORS as e:
            raise self._connection_lost(f"reading columns of {table}", e) from e
        except Exception as e:
            logger.error(f"Error getting column names for {self.schema}.{table}: {e}")
            raise SchemaError(f"Failed to get columns: {e}") from e

    async def get_primary_key(self, table: str) -> List[str]:
        """Primary key column names in key order; empty when there is none."""
        query = """
            SELECT a.attname
            FROM pg_index ix
            JOIN pg_class c ON c.oid = ix.indrelid
            JOIN pg_namespace n ON n.oid = c.relnamespace
            JOIN pg_attribute a ON a.attrelid = c.oid AND a.attnum = ANY(ix.indkey)
            WHERE n.nspname = $1 AND c.relname = $2 AND ix.indisprimary
            ORDER BY array_position(ix.indkey, a.attnum)
        """

        try:
            rows = await self.pool.fetch(query, self.schema, table)
            return [row["attname"] for row in rows]
        except DatabaseConnectionError:
            raise
        except CONNECTION_ERRORS as e:
            raise self._connection_lost(f"reading the primary key of {table}", e) from e
        except Exception as e:
            logger.warning(f"Could not get primary key for {self.schema}.{table}: {e}")
            return []

    async def count_rows(self, table: str) -> int:
        """Exact row count."""
        query = f"SELECT COUNT(*) FROM {quote_table(table, self.schema)}"

        try:
            return await self.pool.fetchval(query) or 0
        except DatabaseConnectionError:
            raise
        except CONNECTION_ERRORS as e:
            raise self._connection_lost(f"counting rows of {table}", e) from e
        except Exception as e:
            logger.error(f"Error counting rows of {self.schema}.{table}: {e}")
            raise DatabaseError(f"Failed to count rows: {e}") from e

    async def fetch_rows(
        self,
        table: str,
        columns: Sequence[str],
        order_by: Sequence[str] = (),
    ) -> List[asyncpg.Record]:
        """Read exactly ``columns`` from ``table``, ordered by ``order_by`` if given."""
        if not columns:
            raise SchemaError(f"No columns requested from {self.schema}.{table}")

        query = f"SELECT {column_list(columns)} FROM {quote_table(table, self.schema)}"
        if order_by:
            query += f" ORDER BY {column_list(order_by)}"

        try:
            return await self.pool.fetch(query)
        except DatabaseConnectionError:
            raise
        except CONNECTION_ERRORS as e:
            raise self._connection_lost(f"reading rows of {table}", e) from e
        except Exception as e:
            logger.error(f"Error reading rows of {self.schema}.{table}: {e}")
            raise DatabaseError(f"Failed to read rows: {e}") from e

    async def list_tables(self) -> List[str]:
        """List base tables in the schema."""
        query = """
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = $1
            AND table_type = 'BASE TABLE'
            ORDER BY table_name
        """
        rows = await self.pool.fetch(query, self.schema)
        return [row["table_name"] for row in rows]

    async def list_collections(self, collections_table: str = "collections") -> List[str]:
        """Names registered in the application's collections metadata table.

        Returns an empty list when the metadata table does not exist.
        """
        if not await self.table_exists(collections_table):
            logger.warning(
                f"Metadata table {self.schema}.{collections_table} not found; "
                "no collections to list"
            )
            return []

        query = (
            f"SELECT name FROM {quote_table(collections_table, self.schema)} "
            f"WHERE name IS NOT NULL AND name <> '' ORDER BY {quote_ident('name')}"
        )
        rows = await self.pool.fetch(query)
        return [row["name"] for row in rows]
