"""
Schema reconciliation package for dbmerge.

This package provides:
- Column set reconciliation between source and target tables
- Many-to-many junction table discovery from relationship metadata
- Exclusion set construction and validation
"""

from .columns import ColumnReconciliation, reconcile
from .junctions import FieldOptions, JunctionDiscoverer, JunctionLink, parse_field_options
from .table_set import TableSetBuilder, TableSetResult, deduplicate

__all__ = [
    "ColumnReconciliation",
    "reconcile",
    "FieldOptions",
    "JunctionDiscoverer",
    "JunctionLink",
    "parse_field_options",
    "TableSetBuilder",
    "TableSetResult",
    "deduplicate",
]
