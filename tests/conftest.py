"""
Pytest configuration and shared fixtures for dbmerge tests.

This module provides shared fixtures and an in-memory stand-in for a
PostgreSQL catalog that answers the queries dbmerge issues.
"""

import re
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import asyncpg
import pytest
import yaml

from dbmerge.config import DatabaseConnection, ExportConfig, MergeConfig
from dbmerge.database.connection import ConnectionPool
from dbmerge.exceptions import DatabaseConnectionError


_QUALIFIED = re.compile(r'FROM "([^"]+)"\."([^"]+)"')


class FakeCatalogPool:
    """
    Answers dbmerge's catalog and data queries from plain dictionaries.

    ``tables`` maps a table name to ``{"columns": [...], "pk": [...],
    "rows": [...]}``. ``fields`` holds relationship metadata rows; the
    ``fields`` table exists whenever it is not None.

    Once a query containing ``disconnect_on`` arrives, that query and every
    later one fail the way a dropped asyncpg connection does.
    """

    def __init__(
        self,
        tables: Dict[str, Dict[str, Any]],
        fields: Optional[List[Dict[str, Any]]] = None,
        collections: Optional[List[str]] = None,
        name: str = "fake",
    ):
        self.tables = tables
        self.fields = fields
        self.collections = collections
        self.name = name
        self.failing_tables = set()
        self.fail_connect = False
        self.disconnect_on: Optional[str] = None
        self.disconnected = False
        self.initialize_calls = 0
        self.close_calls = 0
        self.queries: List[str] = []

    def _has_table(self, table: str) -> bool:
        if table == "fields":
            return self.fields is not None
        if table == "collections":
            return self.collections is not None
        return table in self.tables

    def _table_of(self, query: str) -> str:
        match = _QUALIFIED.search(query)
        assert match, f"unqualified query: {query}"
        table = match.group(2)
        if table in self.failing_tables:
            raise RuntimeError(f"relation \"{table}\" is unreadable")
        return table

    async def initialize(self) -> None:
        self.initialize_calls += 1
        if self.fail_connect:
            raise DatabaseConnectionError(f"Failed to connect to {self.name} database")

    async def close(self) -> None:
        self.close_calls += 1

    def _check_connection(self, query: str) -> None:
        if self.disconnect_on is not None and self.disconnect_on in query:
            self.disconnected = True
        if self.disconnected:
            raise asyncpg.exceptions.ConnectionDoesNotExistError(
                "connection was closed in the middle of operation"
            )

    async def fetchval(self, query: str, *args, column: int = 0) -> Any:
        self.queries.append(query)
        self._check_connection(query)
        if "information_schema.tables" in query:
            return self._has_table(args[1])
        if "COUNT(*)" in query:
            return len(self.tables[self._table_of(query)].get("rows", []))
        raise AssertionError(f"unexpected fetchval: {query}")

    async def fetch(self, query: str, *args) -> List[Dict[str, Any]]:
        self.queries.append(query)
        self._check_connection(query)
        if "information_schema.columns" in query:
            table = self.tables.get(args[1], {})
            return [{"column_name": col} for col in table.get("columns", [])]
        if "pg_index" in query:
            table = self.tables.get(args[1], {})
            return [{"attname": col} for col in table.get("pk", [])]
        if "information_schema.tables" in query:
            return [{"table_name": name} for name in sorted(self.tables)]
        if "f.interface" in query:
            names, interface = args
            rows = [
                row for row in self.fields
                if row["collection_name"] in names and row["interface"] == interface
            ]
            rows.sort(key=lambda row: (row["collection_name"], row["name"]))
            return [
                {
                    "collection_name": row["collection_name"],
                    "field_name": row["name"],
                    "options": row["options"],
                }
                for row in rows
            ]
        if '"collections"' in query:
            return [{"name": name} for name in self.collections]

        table = self._table_of(query)
        selected = re.findall(r'"([^"]+)"', query.split(" FROM ")[0])
        return [
            {col: row[col] for col in selected}
            for row in self.tables[table].get("rows", [])
        ]


@pytest.fixture
def source_endpoint() -> DatabaseConnection:
    return DatabaseConnection(
        host="source.local", port=5432, database="app", user="postgres", password="s3cret"
    )


@pytest.fixture
def target_endpoint() -> DatabaseConnection:
    return DatabaseConnection(
        host="target.local", port=5433, database="app", user="reader", password="hunter2"
    )


@pytest.fixture
def merge_config(source_endpoint, target_endpoint, tmp_path) -> MergeConfig:
    """Configuration writing an un-stamped artifact into tmp_path."""
    return MergeConfig(
        source=source_endpoint,
        target=target_endpoint,
        export=ExportConfig(
            exclude_tables=["users"],
            output_file=str(tmp_path / "merged.sql"),
            timestamp_output=False,
        ),
    )


@pytest.fixture
def config_data() -> Dict[str, Any]:
    return {
        "source": {
            "host": "source.local",
            "port": 5432,
            "database": "app",
            "user": "postgres",
            "password": "${DBMERGE_TEST_SOURCE_PASSWORD}",
        },
        "target": {
            "host": "target.local",
            "port": 5433,
            "database": "app",
            "user": "reader",
            "password": "hunter2",
        },
        "export": {
            "exclude_tables": ["users", "roles"],
            "output_file": "./out/merged.sql",
            "batch_size": 50,
        },
    }


@pytest.fixture
def temp_config_file(tmp_path, config_data) -> str:
    """YAML configuration file on disk."""
    path = tmp_path / "dbmerge-config.yaml"
    path.write_text(yaml.safe_dump(config_data), encoding="utf-8")
    return str(path)


@pytest.fixture
def mock_pool():
    """Mock connection pool; async methods become AsyncMocks through the spec."""
    return MagicMock(spec=ConnectionPool)


@pytest.fixture
def mock_dump():
    """Dump utility stand-in returning canned SQL text."""
    dump = MagicMock()
    dump.dump_structure = AsyncMock(return_value="CREATE TABLE public.users (id integer);\n")
    dump.dump_data = AsyncMock(return_value="COPY public.posts (id) FROM stdin;\n1\n\\.\n")
    dump.dump_table_data = AsyncMock(
        return_value="COPY public.users_roles (user_id, role_id) FROM stdin;\n1\t1\n\\.\n"
    )
    return dump
