"""
Database integration package for dbmerge.

This package provides:
- Async PostgreSQL connection pools for the source and target endpoints
- Catalog introspection (existence, ordered columns, primary keys, rows)
- Identifier quoting
"""

from .connection import DatabaseManager, ConnectionPool, ConnectionConfig
from .introspection import SchemaIntrospector
from .quoting import quote_ident, quote_table

__all__ = [
    "DatabaseManager",
    "ConnectionPool",
    "ConnectionConfig",
    "SchemaIntrospector",
    "quote_ident",
    "quote_table",
]
