"""
pg_dump wrapper.

The dump utility is treated as a black box that turns table filters into
SQL text. Passwords go through ``PGPASSWORD`` rather than the command line.
"""

import asyncio
import logging
import os
from typing import Dict, Iterable, List, Sequence

from ..config import DatabaseConnection, ExportConfig
from ..database.quoting import quote_table
from ..exceptions import DumpError


logger = logging.getLogger(__name__)


class PgDump:
    """Runs pg_dump against one endpoint and returns its output as text."""

    def __init__(
        self,
        endpoint: DatabaseConnection,
        executable: str = "pg_dump",
        extra_args: Sequence[str] = (),
        column_inserts: bool = False,
    ):
        self.endpoint = endpoint
        self.executable = executable
        self.extra_args = list(extra_args)
        self.column_inserts = column_inserts

    @classmethod
    def from_config(cls, endpoint: DatabaseConnection, export: ExportConfig) -> "PgDump":
        return cls(
            endpoint,
            executable=export.pg_dump_path,
            extra_args=export.extra_dump_args,
            column_inserts=export.column_inserts,
        )

    def base_args(self) -> List[str]:
        return [
            "--host", self.endpoint.host,
            "--port", str(self.endpoint.port),
            "--username", self.endpoint.user,
            "--dbname", self.endpoint.database,
            "--schema", self.endpoint.schema_name,
            "--no-owner",
            "--no-privileges",
            "--encoding", "UTF8",
            *self.extra_args,
        ]

    def structure_args(self) -> List[str]:
        return self.base_args() + ["--schema-only"]

    def data_args(self, exclude_tables: Iterable[str] = ()) -> List[str]:
        args = self.base_args() + ["--data-only"]
        if self.column_inserts:
            args.append("--column-inserts")
        for table in exclude_tables:
            args.append(f"--exclude-table-data={self._pattern(table)}")
        return args

    def table_data_args(self, table: str) -> List[str]:
        args = self.base_args() + ["--data-only", f"--table={self._pattern(table)}"]
        if self.column_inserts:
            args.append("--column-inserts")
        return args

    async def dump_structure(self) -> str:
        """Schema definitions for every table, no rows."""
        logger.info(f"Dumping structure of {self.endpoint.endpoint}")
        return await self._run(self.structure_args())

    async def dump_data(self, exclude_tables: Iterable[str] = ()) -> str:
        """Row data for every table except ``exclude_tables``."""
        exclude = list(exclude_tables)
        if exclude:
            logger.info(f"Dumping data of {self.endpoint.endpoint} excluding: {', '.join(exclude)}")
        else:
            logger.info(f"Dumping data of {self.endpoint.endpoint}")
        return await self._run(self.data_args(exclude))

    async def dump_table_data(self, table: str) -> str:
        """Row data of a single table."""
        logger.debug(f"Dumping data of {self.endpoint.endpoint} table {table}")
        return await self._run(self.table_data_args(table))

    def _pattern(self, table: str) -> str:
        # pg_dump patterns fold unquoted names to lower case
        return quote_table(table, self.endpoint.schema_name)

    def _env(self) -> Dict[str, str]:
        env = dict(os.environ)
        if self.endpoint.password:
            env["PGPASSWORD"] = self.endpoint.password
        if self.endpoint.ssl_mode:
            env["PGSSLMODE"] = self.endpoint.ssl_mode
        env["PGCONNECT_TIMEOUT"] = str(self.endpoint.connect_timeout)
        return env

    async def _run(self, args: List[str]) -> str:
        try:
            process = await asyncio.create_subprocess_exec(
                self.executable,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._env(),
            )
        except OSError as e:
            raise DumpError(f"Failed to execute {self.executable}", cause=e) from e

        stdout, stderr = await process.communicate()
        errors = stderr.decode("utf-8", errors="replace")

        if process.returncode != 0:
            raise DumpError(
                f"{self.executable} failed for {self.endpoint.endpoint}",
                returncode=process.returncode,
                stderr=errors,
            )
        if errors.strip():
            logger.warning(f"{self.executable}: {errors.strip()}")

        return stdout.decode("utf-8")
