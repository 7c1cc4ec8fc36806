"""Tests for observability module (RunStore, RunRecord, StoreProgressSink, run log context)."""

import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import structlog

from mcp_server_kokkai_research.observability import RunRecord, RunStage, RunStatus, bind_run_context, clear_run_context
from mcp_server_kokkai_research.observability.store import RunStore, StoreProgressSink
from mcp_server_kokkai_research.research.events import Complete, ProgressUpdate, SectionProgress
from mcp_server_kokkai_research.research.pipeline import Step


@pytest.fixture
def temp_db():
    """Create a temporary database file for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir) / "test_runs.db"


@pytest.fixture
async def run_store(temp_db):
    """Create and initialize a RunStore with temporary database."""
    store = RunStore(db_path=temp_db)
    await store.initialize()
    return store


class TestRunRecord:
    """Tests for RunRecord model."""

    def test_default_values(self):
        record = RunRecord(run_id="run-123", tool_name="run_deep_research")
        assert record.status == RunStatus.PENDING
        assert record.stage is None
        assert record.progress_current == 0
        assert record.progress_total == 0
        assert record.result is None
        assert record.error is None

    def test_duration_calculation(self):
        """Test duration calculation for a completed run."""
        start = datetime.now(timezone.utc) - timedelta(seconds=30)
        end = datetime.now(timezone.utc)
        record = RunRecord(run_id="run-123", tool_name="run_deep_research", started_at=start, completed_at=end)
        assert record.duration_seconds is not None
        assert 29 <= record.duration_seconds <= 31

    def test_duration_none_when_not_started(self):
        record = RunRecord(run_id="run-123", tool_name="run_deep_research")
        assert record.duration_seconds is None

    def test_progress_percent(self):
        record = RunRecord(run_id="run-123", tool_name="run_deep_research", progress_current=2, progress_total=4)
        assert record.progress_percent == 50.0

    def test_progress_percent_zero_total(self):
        record = RunRecord(run_id="run-123", tool_name="run_deep_research")
        assert record.progress_percent == 0.0

    def test_is_terminal(self):
        assert RunRecord(run_id="r1", tool_name="t", status=RunStatus.COMPLETED).is_terminal is True
        assert RunRecord(run_id="r2", tool_name="t", status=RunStatus.FAILED).is_terminal is True
        assert RunRecord(run_id="r3", tool_name="t", status=RunStatus.CANCELLED).is_terminal is True
        assert RunRecord(run_id="r4", tool_name="t", status=RunStatus.RUNNING).is_terminal is False


class TestRunStore:
    """Tests for RunStore."""

    async def test_create_and_get_run(self, run_store):
        record = RunRecord(run_id="run-abc", tool_name="run_deep_research", input_params={"query": "防衛費の財源"})
        await run_store.create_run(record)

        retrieved = await run_store.get_run("run-abc")
        assert retrieved is not None
        assert retrieved.run_id == "run-abc"
        assert retrieved.input_params["query"] == "防衛費の財源"

    async def test_get_missing_run(self, run_store):
        assert await run_store.get_run("nope") is None

    async def test_update_status_to_running(self, run_store):
        await run_store.create_run(RunRecord(run_id="run-1", tool_name="run_deep_research"))
        await run_store.update_status("run-1", RunStatus.RUNNING)

        retrieved = await run_store.get_run("run-1")
        assert retrieved.status == RunStatus.RUNNING
        assert retrieved.started_at is not None

    async def test_update_status_to_completed(self, run_store):
        await run_store.create_run(RunRecord(run_id="run-2", tool_name="run_deep_research"))
        await run_store.update_status("run-2", RunStatus.RUNNING)
        await run_store.update_status("run-2", RunStatus.COMPLETED, result="# report")

        retrieved = await run_store.get_run("run-2")
        assert retrieved.status == RunStatus.COMPLETED
        assert retrieved.completed_at is not None
        assert retrieved.result == "# report"

    async def test_update_status_to_failed(self, run_store):
        await run_store.create_run(RunRecord(run_id="run-3", tool_name="run_deep_research"))
        await run_store.update_status("run-3", RunStatus.FAILED, error="planner down")

        retrieved = await run_store.get_run("run-3")
        assert retrieved.status == RunStatus.FAILED
        assert retrieved.error == "planner down"

    async def test_update_progress_keeps_stage_when_missing(self, run_store):
        await run_store.create_run(RunRecord(run_id="run-4", tool_name="run_deep_research"))
        await run_store.update_progress("run-4", 2, 4, "searching", RunStage.SEARCHING)
        await run_store.update_progress("run-4", 2, 4, "still searching")

        retrieved = await run_store.get_run("run-4")
        assert retrieved.progress_current == 2
        assert retrieved.progress_total == 4
        assert retrieved.progress_message == "still searching"
        assert retrieved.stage == RunStage.SEARCHING

    async def test_get_running_runs(self, run_store):
        for i, status in enumerate([RunStatus.RUNNING, RunStatus.RUNNING, RunStatus.COMPLETED, RunStatus.PENDING]):
            await run_store.create_run(RunRecord(run_id=f"run-{i}", tool_name="t", status=status))

        running = await run_store.get_running_runs()
        assert len(running) == 2
        assert all(r.status == RunStatus.RUNNING for r in running)

    async def test_get_run_history(self, run_store):
        for i in range(5):
            await run_store.create_run(RunRecord(run_id=f"done-{i}", tool_name="t", status=RunStatus.COMPLETED))
        for i in range(2):
            await run_store.create_run(RunRecord(run_id=f"bad-{i}", tool_name="t", status=RunStatus.FAILED))

        assert len(await run_store.get_run_history(limit=100)) == 7
        assert len(await run_store.get_run_history(limit=3)) == 3
        assert len(await run_store.get_run_history(status=RunStatus.FAILED)) == 2

    async def test_get_stats(self, run_store):
        for i, status in enumerate([RunStatus.COMPLETED, RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.RUNNING]):
            await run_store.create_run(RunRecord(run_id=f"stat-{i}", tool_name="t", status=status))

        stats = await run_store.get_stats()
        assert stats["total_runs"] == 4
        assert stats["running_count"] == 1
        assert stats["by_status"]["completed"] == 2
        assert stats["by_status"]["failed"] == 1

    async def test_cleanup_old_runs(self, run_store):
        old = datetime.now(timezone.utc) - timedelta(days=10)
        await run_store.create_run(RunRecord(run_id="old-done", tool_name="t", status=RunStatus.COMPLETED, created_at=old))
        await run_store.create_run(RunRecord(run_id="recent-done", tool_name="t", status=RunStatus.COMPLETED))
        await run_store.create_run(RunRecord(run_id="old-running", tool_name="t", status=RunStatus.RUNNING, created_at=old))

        deleted = await run_store.cleanup_old_runs(days=7)
        assert deleted == 1

        ids = [r.run_id for r in await run_store.get_run_history(limit=100)]
        assert "old-done" not in ids
        assert "recent-done" in ids
        assert "old-running" in ids

    async def test_result_truncation(self, run_store):
        await run_store.create_run(RunRecord(run_id="long", tool_name="t"))
        await run_store.update_status("long", RunStatus.COMPLETED, result="x" * 30000)

        retrieved = await run_store.get_run("long")
        assert len(retrieved.result) == 20000


class TestStoreProgressSink:
    """Progress events are mirrored into the run record."""

    async def test_stage_boundary_updates_stage(self, run_store):
        await run_store.create_run(RunRecord(run_id="sink-1", tool_name="t"))
        sink = StoreProgressSink(run_store, "sink-1")

        await sink(ProgressUpdate(step=1, total_steps=4, step_name=Step.QUERY_PLANNING.value, message="クエリを分析しています..."))

        retrieved = await run_store.get_run("sink-1")
        assert retrieved.stage == RunStage.PLANNING
        assert retrieved.progress_current == 1
        assert retrieved.progress_total == 4
        assert retrieved.progress_message == "クエリを分析しています..."

    async def test_section_progress_message(self, run_store):
        await run_store.create_run(RunRecord(run_id="sink-2", tool_name="t"))
        sink = StoreProgressSink(run_store, "sink-2")

        await sink(
            ProgressUpdate(
                step=2,
                total_steps=5,
                step_name=Step.SECTION_SEARCH.value,
                section_progress=SectionProgress(completed=3, total=9),
            )
        )

        retrieved = await run_store.get_run("sink-2")
        assert retrieved.stage == RunStage.SEARCHING
        assert retrieved.progress_message == f"{Step.SECTION_SEARCH.value}: 3/9"

    async def test_non_progress_events_ignored(self, run_store):
        await run_store.create_run(RunRecord(run_id="sink-3", tool_name="t"))
        sink = StoreProgressSink(run_store, "sink-3")

        await sink(Complete(data="# done"))

        retrieved = await run_store.get_run("sink-3")
        assert retrieved.progress_current == 0
        assert retrieved.stage is None


class TestRunLogContext:
    """Run context carried by structlog contextvars."""

    def test_bind_and_clear(self):
        bind_run_context("run-1", "run_deep_research", transport="stdio")
        try:
            assert structlog.contextvars.get_contextvars() == {"run_id": "run-1", "tool_name": "run_deep_research", "transport": "stdio"}
        finally:
            clear_run_context()
        assert structlog.contextvars.get_contextvars() == {}
