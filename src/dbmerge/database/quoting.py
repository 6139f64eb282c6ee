"""
PostgreSQL identifier quoting.

Identifiers come from the catalog and keep their case (collection names
are often camelCase), so every identifier is double-quoted rather than
validated against a strict pattern.
"""

from typing import Iterable, Optional


def quote_ident(identifier: str) -> str:
    """Quote a single identifier, doubling embedded quotes."""
    if not identifier:
        raise ValueError("SQL identifier cannot be empty")
    if "\x00" in identifier:
        raise ValueError(f"Invalid SQL identifier: {identifier!r}")
    return '"' + identifier.replace('"', '""') + '"'


def quote_table(table: str, schema: Optional[str] = None) -> str:
    """Quote ``table``, qualified with ``schema`` when one is given."""
    if schema:
        return f"{quote_ident(schema)}.{quote_ident(table)}"
    return quote_ident(table)


def column_list(columns: Iterable[str]) -> str:
    """Comma-separated quoted column list."""
    return ", ".join(quote_ident(column) for column in columns)
