"""
Output artifact for dbmerge.

The artifact is a single SQL file written front to back: header, source
structure, source data, then one section per table taken from the target.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import IO, Optional, Sequence, Union

from .. import __version__
from ..config import DatabaseConnection
from ..exceptions import ArtifactWriteError


logger = logging.getLogger(__name__)


TOOL_NAME = "dbmerge"
TARGET_DATA_BANNER = "Data from target database for excluded tables"


def _describe(endpoint: DatabaseConnection) -> str:
    return f"{endpoint.host}:{endpoint.port}/{endpoint.database} (user: {endpoint.user})"


def render_header(
    source: DatabaseConnection,
    target: DatabaseConnection,
    exclusions: Sequence[str],
    now: Optional[datetime] = None,
) -> str:
    """Provenance header placed at the top of the artifact."""
    stamp = (now or datetime.now()).strftime("%Y-%m-%d %H:%M:%S")
    excluded = ", ".join(exclusions) if exclusions else "None"
    lines = [
        "--",
        f"-- {TOOL_NAME} {__version__} merge export",
        f"-- Generated: {stamp}",
        "--",
        f"-- Source: {_describe(source)}",
        f"-- Target: {_describe(target)}",
        f"-- Tables with data from target: {excluded}",
        "--",
        "-- Load into an empty database, e.g.:",
        "--   psql -v ON_ERROR_STOP=1 -d <database> -f <this file>",
        "--",
        "",
        "SET client_encoding = 'UTF8';",
        "",
    ]
    return "\n".join(lines) + "\n"


def render_banner(title: str = TARGET_DATA_BANNER) -> str:
    rule = "-- " + "=" * 60
    return f"\n{rule}\n-- {title}\n{rule}\n\n"


class ArtifactWriter:
    """Append-only writer. Any I/O failure is fatal for the run."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._file: Optional[IO[str]] = None
        self.bytes_written = 0

    @property
    def is_open(self) -> bool:
        return self._file is not None

    def open(self) -> "ArtifactWriter":
        """Create (or truncate) the artifact file."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._file = open(self.path, "w", encoding="utf-8", newline="\n")
        except OSError as e:
            raise ArtifactWriteError(str(self.path), cause=e) from e
        self.bytes_written = 0
        logger.debug(f"Opened artifact {self.path}")
        return self

    def write(self, text: str) -> None:
        if self._file is None:
            raise ArtifactWriteError(str(self.path), cause=RuntimeError("artifact is not open"))
        try:
            self._file.write(text)
        except OSError as e:
            raise ArtifactWriteError(str(self.path), cause=e) from e
        self.bytes_written += len(text.encode("utf-8"))

    def close(self) -> None:
        if self._file is None:
            return
        try:
            self._file.close()
        except OSError as e:
            raise ArtifactWriteError(str(self.path), cause=e) from e
        finally:
            self._file = None

    def size(self) -> int:
        """Size of the file on disk in bytes."""
        try:
            return self.path.stat().st_size
        except OSError as e:
            raise ArtifactWriteError(str(self.path), cause=e) from e


def format_size(size: int) -> str:
    """Human readable byte count."""
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.2f} {unit}"
        value /= 1024
    return f"{value:.2f} GB"
