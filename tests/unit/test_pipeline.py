"""
Tests for dbmerge.pipeline.

The pipeline runs against in-memory catalogs and a canned dump utility,
so every phase executes without a database server or pg_dump binary.
"""

from unittest.mock import patch

import pytest

from dbmerge.exceptions import (
    ArtifactWriteError,
    DatabaseConnectionError,
    DumpError,
    PipelineAbortedError,
)
from dbmerge.export.artifact import TARGET_DATA_BANNER, ArtifactWriter
from dbmerge.naming import NamingMode
from dbmerge.pipeline import MergeExportPipeline, PipelineState, TableStatus

from tests.conftest import FakeCatalogPool


@pytest.fixture
def source_pool():
    return FakeCatalogPool(
        name="source",
        tables={
            "users": {"columns": ["id", "name", "email", "legacy"], "pk": ["id"]},
            "users_roles": {"columns": ["user_id", "role_id"], "pk": ["user_id", "role_id"]},
            "jobs": {"columns": ["id", "state"], "pk": ["id"]},
            "posts": {"columns": ["id", "body"], "pk": ["id"]},
        },
        fields=[
            {
                "collection_name": "users",
                "name": "roles",
                "interface": "m2m",
                "options": '{"through": "users_roles", "target": "roles"}',
            },
        ],
    )


@pytest.fixture
def target_pool():
    return FakeCatalogPool(
        name="target",
        tables={
            "users": {
                "columns": ["id", "name", "email", "nickname"],
                "pk": ["id"],
                "rows": [
                    {"id": 1, "name": "alice", "email": "a@x", "nickname": "al"},
                    {"id": 2, "name": "O'Brien", "email": None, "nickname": None},
                ],
            },
            "users_roles": {
                "columns": ["user_id", "role_id"],
                "pk": ["user_id", "role_id"],
                "rows": [{"user_id": 1, "role_id": 1}],
            },
            "jobs": {
                "columns": ["id", "state"],
                "pk": ["id"],
                "rows": [{"id": 10, "state": "done"}],
            },
        },
    )


@pytest.fixture
def dump_calls():
    return []


@pytest.fixture
def pipeline_factory(merge_config, source_pool, target_pool, mock_dump, dump_calls):
    def build(**export_updates):
        if export_updates:
            merge_config.export = merge_config.export.model_copy(update=export_updates)

        def dump_factory(endpoint):
            dump_calls.append(endpoint)
            return mock_dump

        def pool_factory(name, endpoint):
            return source_pool if name == "source" else target_pool

        return MergeExportPipeline(merge_config, dump=dump_factory, pool_factory=pool_factory)

    return build


def read_output(report):
    with open(report.output_file, encoding="utf-8") as f:
        return f.read()


class TestMergeExportPipeline:
    """End-to-end runs of the pipeline."""

    @pytest.mark.asyncio
    async def test_full_run(self, pipeline_factory, mock_dump, merge_config, dump_calls):
        report = await pipeline_factory().run()

        assert report.state == PipelineState.DONE
        assert report.exclusions == ("users", "users_roles")
        assert report.discovered == ["users_roles"]
        assert report.table_set.validated == ("users", "users_roles")
        assert report.emitted == ["users", "users_roles"]
        assert report.target_row_counts == {"users": 2, "users_roles": 1}
        assert report.artifact_size > 0

        mock_dump.dump_structure.assert_awaited_once()
        mock_dump.dump_data.assert_awaited_once_with(("users", "users_roles"))
        mock_dump.dump_table_data.assert_awaited_once_with("users_roles")
        assert dump_calls == [merge_config.source, merge_config.target]

    @pytest.mark.asyncio
    async def test_artifact_layout(self, pipeline_factory):
        report = await pipeline_factory().run()
        text = read_output(report)

        header = text.index("SET client_encoding = 'UTF8';")
        structure = text.index("CREATE TABLE public.users")
        data = text.index("COPY public.posts")
        banner = text.index(TARGET_DATA_BANNER)
        users = text.index('-- Dumping data for table "users"')
        junction = text.index('-- Dumping data for table "users_roles"')
        assert header < structure < data < banner < users < junction

    @pytest.mark.asyncio
    async def test_projected_table(self, pipeline_factory):
        report = await pipeline_factory().run()
        text = read_output(report)

        assert 'DELETE FROM "public"."users";' in text
        assert 'INSERT INTO "public"."users" ("id", "name", "email") VALUES' in text
        assert "(1, 'alice', 'a@x')" in text
        assert "(2, 'O''Brien', NULL)" in text
        assert 'ON CONFLICT ("id") DO UPDATE SET' in text
        assert "'al'" not in text

        outcome = report.outcomes[0]
        assert outcome.rows == 2
        assert not outcome.passthrough

    @pytest.mark.asyncio
    async def test_passthrough_table(self, pipeline_factory):
        report = await pipeline_factory().run()
        text = read_output(report)

        assert 'DELETE FROM "public"."users_roles";\nCOPY public.users_roles' in text
        assert report.outcomes[1].passthrough

    @pytest.mark.asyncio
    async def test_no_passthrough_across_schema_names(self, pipeline_factory, merge_config, mock_dump):
        merge_config.target = merge_config.target.model_copy(update={"schema_name": "tenant"})

        report = await pipeline_factory().run()

        mock_dump.dump_table_data.assert_not_awaited()
        assert not any(outcome.passthrough for outcome in report.outcomes)

    @pytest.mark.asyncio
    async def test_table_missing_in_target_is_dropped(self, pipeline_factory):
        report = await pipeline_factory(exclude_tables=["users", "posts"]).run()

        assert report.table_set.target_only == ["posts"]
        assert "posts" not in report.table_set.validated
        assert '"posts"' not in read_output(report).split(TARGET_DATA_BANNER)[1]

    @pytest.mark.asyncio
    async def test_naming_mode_and_duplicates(self, pipeline_factory, source_pool):
        source_pool.fields = []

        report = await pipeline_factory(
            exclude_tables=["usersRoles", "users_roles"], naming_mode=NamingMode.TO_SEPARATED
        ).run()

        assert report.duplicates_removed == 1
        assert report.table_set.validated == ("users_roles",)

    @pytest.mark.asyncio
    async def test_preset(self, pipeline_factory, source_pool):
        report = await pipeline_factory(exclude_tables=[], preset="approval").run()

        assert report.exclusions[0] == "workflow_cc_tasks"
        assert report.table_set.validated == ("jobs",)

    @pytest.mark.asyncio
    async def test_junction_discovery_disabled(self, pipeline_factory, source_pool):
        report = await pipeline_factory(discover_junctions=False).run()

        assert report.exclusions == ("users",)
        assert source_pool.initialize_calls == 2

    @pytest.mark.asyncio
    async def test_per_table_failure_is_inline(self, pipeline_factory, target_pool):
        target_pool.failing_tables.add("users")

        report = await pipeline_factory(exclude_tables=["users", "jobs"]).run()
        text = read_output(report)

        assert report.state == PipelineState.DONE
        assert report.failed == ["users"]
        assert "jobs" in report.emitted
        assert '-- ERROR: data for table "users" was not exported' in text
        assert 'DELETE FROM "public"."jobs";' in text

    @pytest.mark.asyncio
    async def test_no_common_columns_skipped(self, pipeline_factory, source_pool, target_pool):
        source_pool.tables["jobs"]["columns"] = ["job_id"]

        report = await pipeline_factory(exclude_tables=["jobs"]).run()

        assert report.skipped == ["jobs"]
        assert report.outcomes[0].status == TableStatus.SKIPPED
        assert '-- Table "jobs" has no common columns' in read_output(report)

    @pytest.mark.asyncio
    async def test_no_exclusions(self, pipeline_factory, source_pool, target_pool):
        report = await pipeline_factory(exclude_tables=[]).run()

        assert report.state == PipelineState.DONE
        assert report.outcomes == []
        assert source_pool.initialize_calls == 0
        assert target_pool.initialize_calls == 0
        assert TARGET_DATA_BANNER not in read_output(report)


class TestAbort:
    """Fatal failures stop the run in the failing phase."""

    @pytest.mark.asyncio
    async def test_dump_failure(self, pipeline_factory, mock_dump, source_pool):
        mock_dump.dump_structure.side_effect = DumpError("pg_dump failed", returncode=1)
        pipeline = pipeline_factory()

        with pytest.raises(PipelineAbortedError) as exc_info:
            await pipeline.run()

        assert exc_info.value.state == PipelineState.DUMP_STRUCTURE.value
        assert isinstance(exc_info.value.cause, DumpError)
        assert pipeline.state == PipelineState.ABORTED
        assert source_pool.initialize_calls == source_pool.close_calls

    @pytest.mark.asyncio
    async def test_source_connection_failure(self, pipeline_factory, source_pool):
        source_pool.fail_connect = True
        pipeline = pipeline_factory()

        with pytest.raises(PipelineAbortedError) as exc_info:
            await pipeline.run()

        assert exc_info.value.state == PipelineState.DISCOVER_JUNCTIONS.value
        assert pipeline.report.state == PipelineState.ABORTED

    @pytest.mark.asyncio
    async def test_target_connection_failure_closes_source(
        self, pipeline_factory, source_pool, target_pool
    ):
        target_pool.fail_connect = True

        with pytest.raises(PipelineAbortedError) as exc_info:
            await pipeline_factory().run()

        assert exc_info.value.state == PipelineState.VALIDATE_EXCLUSIONS.value
        assert source_pool.initialize_calls == source_pool.close_calls

    @pytest.mark.asyncio
    async def test_unknown_preset(self, pipeline_factory):
        with pytest.raises(PipelineAbortedError):
            await pipeline_factory(preset="nope").run()

    @pytest.mark.asyncio
    async def test_target_connection_lost_during_validation(self, pipeline_factory, target_pool):
        target_pool.disconnect_on = "information_schema.tables"
        pipeline = pipeline_factory()

        with pytest.raises(PipelineAbortedError) as exc_info:
            await pipeline.run()

        assert exc_info.value.state == PipelineState.VALIDATE_EXCLUSIONS.value
        assert isinstance(exc_info.value.cause, DatabaseConnectionError)
        assert pipeline.report.state == PipelineState.ABORTED
        assert pipeline.report.table_set.lookup_failures == []
        assert target_pool.initialize_calls == target_pool.close_calls

    @pytest.mark.asyncio
    async def test_target_connection_lost_during_emission(self, pipeline_factory, target_pool):
        target_pool.disconnect_on = "information_schema.columns"
        pipeline = pipeline_factory()

        with pytest.raises(PipelineAbortedError) as exc_info:
            await pipeline.run()

        assert exc_info.value.state == PipelineState.EMIT_MERGE_DATA.value
        assert isinstance(exc_info.value.cause, DatabaseConnectionError)
        assert pipeline.report.outcomes == []
        with open(pipeline.report.output_file, encoding="utf-8") as f:
            assert "-- ERROR" not in f.read()

    @pytest.mark.asyncio
    async def test_write_failure_during_emission(self, pipeline_factory, source_pool, target_pool):
        write = ArtifactWriter.write

        def write_until_disk_full(writer, text):
            if TARGET_DATA_BANNER in text:
                raise ArtifactWriteError(
                    str(writer.path), cause=OSError(28, "No space left on device")
                )
            write(writer, text)

        pipeline = pipeline_factory()
        with patch.object(ArtifactWriter, "write", write_until_disk_full):
            with pytest.raises(PipelineAbortedError) as exc_info:
                await pipeline.run()

        assert exc_info.value.state == PipelineState.EMIT_MERGE_DATA.value
        assert isinstance(exc_info.value.cause, ArtifactWriteError)
        assert pipeline.state == PipelineState.ABORTED
        assert target_pool.initialize_calls == target_pool.close_calls
        assert source_pool.initialize_calls == source_pool.close_calls
