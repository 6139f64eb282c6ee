"""
Database connection management for dbmerge.

Provides a small async PostgreSQL connection pool per endpoint and a
manager that owns the source and target pools for one pipeline phase.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Dict, Optional, Any, AsyncIterator, Callable, List

import asyncpg
from pydantic import BaseModel, Field, field_validator

from ..config import DatabaseConnection
from ..exceptions import DatabaseConnectionError, DatabaseConfigurationError


logger = logging.getLogger(__name__)


class ConnectionConfig(BaseModel):
    """Pool configuration for one endpoint."""

    host: str = Field(..., description="Database host")
    port: int = Field(5432, description="Database port")
    database: str = Field(..., description="Database name")
    user: str = Field(..., description="Database user")
    password: str = Field("", description="Database password")

    # The pipeline is strictly sequential; one connection is enough
    min_size: int = Field(1, description="Minimum connections in pool")
    max_size: int = Field(2, description="Maximum connections in pool")

    connect_timeout: float = Field(30.0, description="Connection timeout in seconds")
    command_timeout: float = Field(300.0, description="Command timeout in seconds")
    server_settings: Dict[str, str] = Field(
        default_factory=lambda: {"application_name": "dbmerge"},
        description="PostgreSQL server settings"
    )

    ssl_mode: Optional[str] = Field(None, description="SSL mode")

    @field_validator('database')
    @classmethod
    def validate_database(cls, v):
        if not v or not v.strip():
            raise ValueError("Database name is required")
        return v

    @classmethod
    def from_endpoint(cls, endpoint: DatabaseConnection) -> "ConnectionConfig":
        """Build pool configuration from a configured source/target endpoint."""
        return cls(
            host=endpoint.host,
            port=endpoint.port,
            database=endpoint.database,
            user=endpoint.user,
            password=endpoint.password,
            ssl_mode=endpoint.ssl_mode,
            connect_timeout=float(endpoint.connect_timeout),
            command_timeout=float(endpoint.command_timeout),
        )

    def to_connection_kwargs(self) -> Dict[str, Any]:
        """Convert to asyncpg connection kwargs."""
        kwargs = {
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "user": self.user,
            "password": self.password,
            "timeout": self.connect_timeout,
            "command_timeout": self.command_timeout,
            "server_settings": self.server_settings,
        }
        if self.ssl_mode:
            kwargs["ssl"] = self.ssl_mode
        return kwargs


class ConnectionPool:
    """Async PostgreSQL connection pool wrapper."""

    def __init__(self, config: ConnectionConfig, name: str = "default"):
        self.config = config
        self.name = name
        self._pool: Optional[asyncpg.Pool] = None
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Initialize the connection pool."""
        async with self._lock:
            if self.is_initialized:
                return

            try:
                logger.info(
                    f"Connecting to {self.name} database "
                    f"{self.config.host}:{self.config.port}/{self.config.database}"
                )

                self._pool = await asyncpg.create_pool(
                    **self.config.to_connection_kwargs(),
                    min_size=self.config.min_size,
                    max_size=self.config.max_size,
                )

            except Exception as e:
                logger.error(f"Failed to connect to {self.name} database: {e}")
                raise DatabaseConnectionError(
                    f"Failed to connect to {self.name} database",
                    details={"database": self.config.database},
                    cause=e,
                ) from e

    async def close(self) -> None:
        """Close the connection pool."""
        async with self._lock:
            if self.is_initialized:
                logger.debug(f"Closing {self.name} connection pool")
                await self._pool.close()
                self._pool = None

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[asyncpg.Connection]:
        """Acquire a connection from the pool."""
        if not self.is_initialized:
            raise DatabaseConnectionError(f"Pool '{self.name}' is not connected")

        async with self._pool.acquire() as connection:
            yield connection

    async def fetch(self, query: str, *args) -> List[asyncpg.Record]:
        """Fetch all results from a query."""
        async with self.acquire() as conn:
            return await conn.fetch(query, *args)

    async def fetchval(self, query: str, *args, column: int = 0) -> Any:
        """Fetch a single value from a query."""
        async with self.acquire() as conn:
            return await conn.fetchval(query, *args, column=column)

    @property
    def is_initialized(self) -> bool:
        """Check if pool is initialized."""
        return self._pool is not None


PoolFactory = Callable[[str, DatabaseConnection], ConnectionPool]


def default_pool_factory(name: str, endpoint: DatabaseConnection) -> ConnectionPool:
    return ConnectionPool(ConnectionConfig.from_endpoint(endpoint), name=name)


class DatabaseManager:
    """Owns the named pools opened for one pipeline phase."""

    def __init__(self, pool_factory: Optional[PoolFactory] = None):
        self._pools: Dict[str, ConnectionPool] = {}
        self._lock = asyncio.Lock()
        self._pool_factory = pool_factory or default_pool_factory

    async def open(self, name: str, endpoint: DatabaseConnection) -> ConnectionPool:
        """Create and initialize a pool for ``endpoint`` under ``name``."""
        async with self._lock:
            if name in self._pools:
                raise DatabaseConfigurationError(f"Database '{name}' already open")

            pool = self._pool_factory(name, endpoint)
            await pool.initialize()
            self._pools[name] = pool
            return pool

    async def close_all(self) -> None:
        """Close all database connections."""
        async with self._lock:
            for name, pool in self._pools.items():
                try:
                    await pool.close()
                except Exception as e:
                    logger.error(f"Error closing pool '{name}': {e}")

            self._pools.clear()

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close_all()
