"""
dbmerge: schema reconciliation and merge export for PostgreSQL.

dbmerge combines two structurally similar databases into one SQL file:
structure and most data from a source database, and the rows of a chosen
set of tables from a target database, written as idempotent upserts over
the columns both schemas share.
"""

__version__ = "0.1.0"
__author__ = "dbmerge Contributors"

from .config import MergeConfig
from .exceptions import DbMergeError, ConfigurationError, DatabaseError, DumpError

__all__ = [
    "__version__",
    "MergeConfig",
    "DbMergeError",
    "ConfigurationError",
    "DatabaseError",
    "DumpError",
]
