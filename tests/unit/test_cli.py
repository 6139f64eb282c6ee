"""
Unit tests for the dbmerge CLI interface.
"""

from unittest.mock import AsyncMock, patch

import pytest
import yaml
from click.testing import CliRunner

from dbmerge import __version__
from dbmerge.cli import handle_errors, main
from dbmerge.config import MergeConfig
from dbmerge.exceptions import ConfigurationError, PipelineAbortedError
from dbmerge.naming import NamingMode
from dbmerge.pipeline import PipelineReport, PipelineState, TableOutcome, TableStatus
from dbmerge.schema.columns import reconcile
from dbmerge.schema.table_set import TableSetResult

from tests.conftest import FakeCatalogPool


@pytest.fixture
def runner():
    """Click test runner."""
    return CliRunner()


@pytest.fixture
def finished_report(tmp_path):
    return PipelineReport(
        state=PipelineState.DONE,
        output_file=str(tmp_path / "merged.sql"),
        table_set=TableSetResult(
            exclusions=("users", "users_roles"),
            discovered=["users_roles"],
            validated=("users", "users_roles"),
        ),
        outcomes=[
            TableOutcome(
                "users",
                TableStatus.EMITTED,
                rows=2,
                reconciliation=reconcile(["id", "name"], ["id", "name", "nickname"]),
            ),
            TableOutcome("users_roles", TableStatus.FAILED, error="permission denied"),
        ],
        artifact_size=4096,
    )


class TestMain:
    def test_version(self, runner):
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_help_lists_commands(self, runner):
        result = runner.invoke(main, ["--help"])

        assert result.exit_code == 0
        for command in ("export", "init", "validate-config", "presets", "tables", "normalize"):
            assert command in result.output


class TestExport:
    """Test the export command."""

    def test_success(self, runner, temp_config_file, finished_report):
        with patch("dbmerge.pipeline.MergeExportPipeline") as pipeline_cls:
            pipeline_cls.return_value.run = AsyncMock(return_value=finished_report)

            result = runner.invoke(main, ["export", "-c", temp_config_file])

        assert result.exit_code == 0, result.output
        assert "Merge Export Summary" in result.output
        assert "users_roles" in result.output
        assert "Export complete" in result.output

    def test_overrides(self, runner, temp_config_file, finished_report, tmp_path):
        output = str(tmp_path / "custom.sql")

        with patch("dbmerge.pipeline.MergeExportPipeline") as pipeline_cls:
            pipeline_cls.return_value.run = AsyncMock(return_value=finished_report)

            result = runner.invoke(
                main,
                [
                    "export", "-c", temp_config_file,
                    "--output", output,
                    "-e", "jobs", "-e", "approvals",
                    "--preset", "approval",
                    "--naming-mode", "to_separated",
                ],
            )

        assert result.exit_code == 0, result.output
        config = pipeline_cls.call_args[0][0]
        assert isinstance(config, MergeConfig)
        assert config.export.output_file == output
        assert config.export.exclude_tables == ["jobs", "approvals"]
        assert config.export.preset == "approval"
        assert config.export.naming_mode == NamingMode.TO_SEPARATED

    def test_abort_exits_non_zero(self, runner, temp_config_file):
        with patch("dbmerge.pipeline.MergeExportPipeline") as pipeline_cls:
            pipeline_cls.return_value.run = AsyncMock(
                side_effect=PipelineAbortedError("dump_structure")
            )

            result = runner.invoke(main, ["export", "-c", temp_config_file])

        assert result.exit_code == 1
        assert "aborted during dump_structure" in result.output

    def test_same_database_rejected(self, runner, tmp_path, config_data):
        config_data["target"] = dict(config_data["source"])
        path = tmp_path / "same.yaml"
        path.write_text(yaml.safe_dump(config_data), encoding="utf-8")

        result = runner.invoke(main, ["export", "-c", str(path)])

        assert result.exit_code == 1
        assert "same database" in result.output

    def test_missing_config_file(self, runner):
        result = runner.invoke(main, ["export", "-c", "does-not-exist.yaml"])
        assert result.exit_code != 0


class TestInit:
    def test_creates_config(self, runner, tmp_path):
        output = tmp_path / "dbmerge.yaml"

        result = runner.invoke(main, ["init", "-o", str(output)])

        assert result.exit_code == 0
        data = yaml.safe_load(output.read_text(encoding="utf-8"))
        assert data["source"]["database"] == "app_source"
        assert data["target"]["password"] == "${TARGET_DB_PASSWORD}"
        assert data["export"]["exclude_tables"] == ["users", "roles"]

    def test_declined_overwrite(self, runner, tmp_path):
        output = tmp_path / "dbmerge.yaml"
        output.write_text("keep: me\n", encoding="utf-8")

        result = runner.invoke(main, ["init", "-o", str(output)], input="n\n")

        assert result.exit_code == 0
        assert output.read_text(encoding="utf-8") == "keep: me\n"


class TestValidateConfig:
    def test_valid(self, runner, temp_config_file):
        result = runner.invoke(main, ["validate-config", "-c", temp_config_file])

        assert result.exit_code == 0
        assert "Configuration is valid" in result.output
        assert "Configuration Summary" in result.output

    def test_invalid(self, runner, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("source: {}\n", encoding="utf-8")

        result = runner.invoke(main, ["validate-config", "-c", str(path)])

        assert result.exit_code == 1
        assert "Configuration error" in result.output


class TestPresets:
    def test_lists_approval(self, runner):
        result = runner.invoke(main, ["presets"])

        assert result.exit_code == 0
        assert "approval" in result.output
        assert "workflow_cc_tasks" in result.output


class TestNormalize:
    def test_to_separated(self, runner):
        result = runner.invoke(main, ["normalize", "userRoles", "jobs"])

        assert result.exit_code == 0
        assert result.output.splitlines() == ["user_roles", "jobs"]

    def test_to_compact(self, runner):
        result = runner.invoke(main, ["normalize", "user_roles", "--mode", "to_compact"])
        assert result.output.strip() == "userRoles"

    def test_requires_a_name(self, runner):
        result = runner.invoke(main, ["normalize"])
        assert result.exit_code != 0


class TestTables:
    """Test the business table listing."""

    @pytest.fixture
    def catalog(self):
        return FakeCatalogPool(
            tables={"users": {}, "roles": {}, "users_roles": {}, "posts": {}},
            collections=["users", "roles", "ghosts"],
            fields=[
                {
                    "collection_name": "users",
                    "name": "roles",
                    "interface": "m2m",
                    "options": {"through": "users_roles"},
                }
            ],
        )

    def test_lists_collections_and_junctions(self, runner, temp_config_file, catalog):
        with patch("dbmerge.database.connection.default_pool_factory", lambda name, ep: catalog):
            result = runner.invoke(main, ["tables", "-c", temp_config_file])

        assert result.exit_code == 0, result.output
        assert "users_roles" in result.output
        assert "junction" in result.output
        assert "ghosts" not in result.output
        assert "posts" not in result.output
        assert catalog.close_calls == 1

    def test_without_junctions(self, runner, temp_config_file, catalog):
        with patch("dbmerge.database.connection.default_pool_factory", lambda name, ep: catalog):
            result = runner.invoke(main, ["tables", "-c", temp_config_file, "--no-junctions"])

        assert result.exit_code == 0, result.output
        assert "users_roles" not in result.output


class TestHandleErrors:
    def test_dbmerge_error_exits_1(self):
        @handle_errors
        def failing():
            raise ConfigurationError("broken")

        with pytest.raises(SystemExit) as exc_info:
            failing()

        assert exc_info.value.code == 1

    def test_unexpected_error_exits_1(self):
        @handle_errors
        def failing():
            raise RuntimeError("surprise")

        with pytest.raises(SystemExit) as exc_info:
            failing()

        assert exc_info.value.code == 1
