"""
Export package for dbmerge.

This package provides:
- SQL literal rendering for emitted rows
- Merge statement planning and rendering (clear + upsert)
- The pg_dump wrapper
- The output artifact writer
"""

from .artifact import ArtifactWriter, render_banner, render_header
from .dump import PgDump
from .emitter import MergeEmitter, MergeStatement, StatementKind, comment_block
from .literals import to_sql_literal

__all__ = [
    "ArtifactWriter",
    "render_banner",
    "render_header",
    "PgDump",
    "MergeEmitter",
    "MergeStatement",
    "StatementKind",
    "comment_block",
    "to_sql_literal",
]
