"""
Exception classes for dbmerge.
"""

from typing import Any, Dict, Optional


class DbMergeError(Exception):
    """Base exception for all dbmerge errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    def __str__(self) -> str:
        result = self.message
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            result += f" [{details_str}]"
        if self.cause:
            result += f" (caused by: {self.cause})"
        return result


class ConfigurationError(DbMergeError):
    """Raised when there's an error in configuration."""

    pass


class DatabaseError(DbMergeError):
    """Raised when there's an error with database operations."""

    pass


class DatabaseConnectionError(DatabaseError):
    """Raised when a connection to the source or target database cannot be made."""

    pass


class DatabaseConfigurationError(DatabaseError):
    """Raised when there's an error in database configuration."""

    pass


class SchemaError(DatabaseError):
    """Raised when catalog introspection fails."""

    pass


class DumpError(DbMergeError):
    """Raised when the external dump utility cannot be run or exits non-zero."""

    def __init__(
        self,
        message: str,
        returncode: Optional[int] = None,
        stderr: Optional[str] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        details = {}
        if returncode is not None:
            details["returncode"] = returncode
        if stderr:
            details["stderr"] = stderr.strip()
        super().__init__(message, details, cause)
        self.returncode = returncode
        self.stderr = stderr


class ArtifactWriteError(DbMergeError):
    """Raised when the output artifact cannot be written."""

    def __init__(self, path: str, cause: Optional[Exception] = None) -> None:
        super().__init__(f"Failed to write output artifact: {path}", cause=cause)
        self.path = path


class EmissionError(DbMergeError):
    """Raised when merge statements cannot be produced for a table."""

    pass


class PipelineAbortedError(DbMergeError):
    """Raised when the merge-export pipeline reaches its aborted state."""

    def __init__(self, state: str, cause: Optional[Exception] = None) -> None:
        super().__init__(f"Merge export aborted during {state}", cause=cause)
        self.state = state
