"""
Test suite for dbmerge.

This package contains tests for all dbmerge components:
- Unit tests for naming, reconciliation, discovery and emission
- Pipeline tests against an in-memory catalog
- CLI tests through click's test runner
"""
