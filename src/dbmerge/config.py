"""
Configuration system for dbmerge using Pydantic.
"""

import os
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic_settings import BaseSettings

from .exceptions import ConfigurationError
from .naming import NamingMode


PRESET_TABLES: Dict[str, List[str]] = {
    "approval": [
        "workflow_cc_tasks",
        "user_workflow_tasks",
        "approval_records",
        "approval_executions",
        "jobs",
        "executions",
        "approvals",
        "workflow_stats",
    ],
}

_TIMESTAMP_PATTERN = re.compile(r"\d{8}_\d{6}")


class DatabaseConnection(BaseModel):
    """Database connection configuration."""

    model_config = ConfigDict(frozen=True)

    host: str = Field("127.0.0.1", description="Database host")
    port: int = Field(5432, description="Database port")
    database: str = Field(..., description="Database name")
    user: str = Field("postgres", description="Database user")
    password: str = Field("", description="Database password")
    schema_name: str = Field("public", description="Schema holding the tables")
    ssl_mode: Optional[str] = Field(None, description="SSL mode")
    connect_timeout: int = Field(30, description="Connection timeout in seconds")
    command_timeout: int = Field(300, description="Command timeout in seconds")

    @property
    def endpoint(self) -> str:
        """host:port/database identity used in logs and the artifact header."""
        return f"{self.host}:{self.port}/{self.database}"


class ExportConfig(BaseModel):
    """What to export and how the exclusion set is built."""

    model_config = ConfigDict(frozen=True)

    exclude_tables: List[str] = Field(
        default_factory=list, description="Tables whose data comes from target"
    )
    preset: Optional[str] = Field(None, description="Preset table group name")
    output_file: str = Field("./merged_export.sql", description="Output SQL file")
    timestamp_output: bool = Field(
        True, description="Insert a timestamp into the output file name"
    )
    naming_mode: NamingMode = Field(
        NamingMode.NONE, description="Table name conversion for the working set"
    )
    db_underscored: Optional[Union[bool, str]] = Field(
        None, description="Legacy switch; overrides naming_mode when set"
    )
    batch_size: int = Field(100, ge=1, description="Rows per upsert statement")
    discover_junctions: bool = Field(
        True, description="Add many-to-many junction tables to the exclusion set"
    )
    junction_depth: int = Field(1, ge=1, description="Junction discovery passes")
    metadata_table: str = Field("fields", description="Relationship metadata table")
    m2m_interface: str = Field("m2m", description="Interface tag of m2m fields")
    collections_table: str = Field(
        "collections", description="Table listing business collections"
    )
    pg_dump_path: str = Field("pg_dump", description="pg_dump executable")
    column_inserts: bool = Field(
        False, description="Dump data as INSERT statements with column names"
    )
    extra_dump_args: List[str] = Field(
        default_factory=list, description="Extra arguments passed to pg_dump"
    )

    @model_validator(mode="before")
    @classmethod
    def apply_db_underscored(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("db_underscored") is not None:
            data = dict(data)
            data["naming_mode"] = NamingMode.from_underscored(data["db_underscored"])
        return data

    def resolve_output_file(self, now: Optional[datetime] = None) -> str:
        """Return the output path, stamped with ``_YYYYMMDD_HHMMSS`` if needed."""
        if not self.timestamp_output or _TIMESTAMP_PATTERN.search(self.output_file):
            return self.output_file

        stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
        path = Path(self.output_file)
        if path.suffix == ".sql":
            return str(path.with_name(f"{path.stem}_{stamp}.sql"))
        return f"{self.output_file}_{stamp}"


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        "INFO", description="Log level"
    )
    format: str = Field(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format",
    )
    file: Optional[str] = Field(None, description="Log file path")
    max_size: int = Field(10485760, description="Max log file size in bytes")  # 10MB
    backup_count: int = Field(5, description="Number of backup log files")


class MergeConfig(BaseSettings):
    """Main dbmerge configuration."""

    source: DatabaseConnection = Field(
        ..., description="Structure and most data come from here"
    )
    target: DatabaseConnection = Field(
        ..., description="Data for excluded tables comes from here"
    )
    export: ExportConfig = Field(
        default_factory=ExportConfig, description="Export configuration"
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )

    model_config = ConfigDict(
        env_file=".env",
        env_prefix="DBMERGE_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "MergeConfig":
        """Load configuration from a YAML (or JSON) file."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)

            if not isinstance(data, dict):
                raise ConfigurationError(f"Configuration file is empty or not a mapping: {path}")

            data = cls._expand_env_vars(data)

            return cls(**data)
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in configuration file: {e}")
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}")

    @classmethod
    def _expand_env_vars(cls, data: Any) -> Any:
        """Recursively expand environment variables in configuration data."""
        if isinstance(data, dict):
            return {k: cls._expand_env_vars(v) for k, v in data.items()}
        elif isinstance(data, list):
            return [cls._expand_env_vars(item) for item in data]
        elif isinstance(data, str):
            return os.path.expandvars(data)
        else:
            return data

    def resolved_exclusions(self) -> List[str]:
        """Preset tables followed by the explicit list, duplicates kept."""
        tables: List[str] = []
        if self.export.preset:
            if self.export.preset not in PRESET_TABLES:
                raise ConfigurationError(
                    f"Unknown preset '{self.export.preset}'",
                    details={"available": ", ".join(sorted(PRESET_TABLES))},
                )
            tables.extend(PRESET_TABLES[self.export.preset])
        tables.extend(self.export.exclude_tables)
        return tables

    def validate_config(self) -> List[str]:
        """Validate the configuration for consistency; return warnings."""
        warnings = []

        if self.source.endpoint == self.target.endpoint:
            raise ConfigurationError(
                "Source and target point at the same database",
                details={"endpoint": self.source.endpoint},
            )

        if not self.resolved_exclusions():
            warnings.append(
                "No excluded tables configured; the export will be a plain source dump"
            )

        return warnings

    def to_yaml(self, path: Union[str, Path]) -> None:
        """Save configuration to a YAML file."""
        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(
                self.model_dump(mode="json", exclude_none=True),
                f,
                default_flow_style=False,
                indent=2,
                sort_keys=False,
            )
