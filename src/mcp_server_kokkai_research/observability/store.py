"""SQLite-based run store for research history and live progress."""

import asyncio
import json
import logging
from datetime import UTC, datetime, timedelta
from pathlib import Path

import aiosqlite

from ..research.events import ProgressEvent, ProgressUpdate
from ..research.pipeline import Step
from .models import RunRecord, RunStage, RunStatus

logger = logging.getLogger(__name__)

STEP_STAGES: dict[str, RunStage] = {
    Step.QUERY_PLANNING.value: RunStage.PLANNING,
    Step.SECTION_SEARCH.value: RunStage.SEARCHING,
    Step.ATTACHMENT_EXTRACTION.value: RunStage.EXTRACTING,
    Step.EVIDENCE_BUILD.value: RunStage.BUILDING_EVIDENCE,
    Step.SECTION_SYNTHESIS.value: RunStage.SYNTHESIZING,
}


class RunStore:
    """Async SQLite store for research runs.

    Keeps every run so the server can answer status queries while a run is
    in flight and list past runs after a restart.
    """

    def __init__(self, db_path: Path | None = None):
        """Initialize RunStore.

        Args:
            db_path: Path to SQLite database. Defaults to ~/.config/mcp-server-kokkai-research/runs.db
        """
        if db_path is None:
            from ..config import get_config_dir

            db_path = get_config_dir() / "runs.db"
        self.db_path = db_path
        self._initialized = False
        self._init_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Create schema if not exists."""
        if self._initialized:
            return

        async with self._init_lock:
            if self._initialized:
                return

            async with aiosqlite.connect(self.db_path) as db:
                await db.execute("PRAGMA journal_mode = WAL")
                await db.execute("PRAGMA busy_timeout = 5000")

                await db.execute("""
                    CREATE TABLE IF NOT EXISTS runs (
                        run_id TEXT PRIMARY KEY,
                        tool_name TEXT NOT NULL,
                        status TEXT NOT NULL,
                        stage TEXT,
                        created_at TEXT NOT NULL,
                        started_at TEXT,
                        completed_at TEXT,
                        progress_current INTEGER DEFAULT 0,
                        progress_total INTEGER DEFAULT 0,
                        progress_message TEXT,
                        input_params TEXT NOT NULL,
                        result TEXT,
                        error TEXT
                    )
                """)
                await db.execute("CREATE INDEX IF NOT EXISTS idx_runs_status ON runs(status)")
                await db.execute("CREATE INDEX IF NOT EXISTS idx_runs_created_at ON runs(created_at)")
                await db.commit()

            self._initialized = True

    async def create_run(self, run: RunRecord) -> None:
        """Insert new run record."""
        await self.initialize()

        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO runs (
                    run_id, tool_name, status, stage, created_at, started_at, completed_at,
                    progress_current, progress_total, progress_message, input_params, result, error
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    run.run_id,
                    run.tool_name,
                    run.status.value,
                    run.stage.value if run.stage else None,
                    run.created_at.isoformat(),
                    run.started_at.isoformat() if run.started_at else None,
                    run.completed_at.isoformat() if run.completed_at else None,
                    run.progress_current,
                    run.progress_total,
                    run.progress_message,
                    json.dumps(run.input_params, ensure_ascii=False),
                    run.result,
                    run.error,
                ),
            )
            await db.commit()

    async def update_progress(
        self,
        run_id: str,
        current: int,
        total: int,
        message: str | None = None,
        stage: RunStage | None = None,
    ) -> None:
        """Update run progress. A missing stage keeps the stored one."""
        await self.initialize()

        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                UPDATE runs
                SET progress_current = ?, progress_total = ?,
                    progress_message = ?, stage = COALESCE(?, stage)
                WHERE run_id = ?
            """,
                (current, total, message, stage.value if stage else None, run_id),
            )
            await db.commit()

    async def update_status(
        self,
        run_id: str,
        status: RunStatus,
        result: str | None = None,
        error: str | None = None,
    ) -> None:
        """Update run status and optionally result/error."""
        await self.initialize()

        started_at: str | None = None
        completed_at: str | None = None
        if status == RunStatus.RUNNING:
            started_at = datetime.now(UTC).isoformat()
        elif status in (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED):
            completed_at = datetime.now(UTC).isoformat()

        truncated_result = result[:20000] if result else None
        truncated_error = error[:2000] if error else None

        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                UPDATE runs
                SET status = ?,
                    started_at = COALESCE(started_at, ?),
                    completed_at = COALESCE(completed_at, ?),
                    result = COALESCE(?, result),
                    error = COALESCE(?, error)
                WHERE run_id = ?
            """,
                (status.value, started_at, completed_at, truncated_result, truncated_error, run_id),
            )
            await db.commit()

    async def get_run(self, run_id: str) -> RunRecord | None:
        """Get a single run by ID."""
        await self.initialize()

        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute("SELECT * FROM runs WHERE run_id = ?", (run_id,)) as cursor:
                row = await cursor.fetchone()
                if row:
                    return self._row_to_run(row)
        return None

    async def get_running_runs(self) -> list[RunRecord]:
        """Get all currently running runs."""
        await self.initialize()

        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                "SELECT * FROM runs WHERE status = ? ORDER BY created_at DESC",
                (RunStatus.RUNNING.value,),
            ) as cursor:
                rows = await cursor.fetchall()
                return [self._row_to_run(row) for row in rows]

    async def get_run_history(self, limit: int = 100, status: RunStatus | None = None) -> list[RunRecord]:
        """Get run history, newest first, optionally filtered by status."""
        await self.initialize()

        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row

            query = "SELECT * FROM runs"
            params: list = []
            if status:
                query += " WHERE status = ?"
                params.append(status.value)
            query += " ORDER BY created_at DESC LIMIT ?"
            params.append(limit)

            async with db.execute(query, params) as cursor:
                rows = await cursor.fetchall()
                return [self._row_to_run(row) for row in rows]

    async def get_stats(self) -> dict:
        """Get aggregate statistics."""
        await self.initialize()

        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute("SELECT status, COUNT(*) FROM runs GROUP BY status") as cursor:
                status_counts = {row[0]: row[1] for row in await cursor.fetchall()}

            yesterday = (datetime.now(UTC) - timedelta(days=1)).isoformat()
            async with db.execute(
                """
                SELECT
                    COUNT(*) as total,
                    SUM(CASE WHEN status = ? THEN 1 ELSE 0 END) as success
                FROM runs WHERE completed_at > ? AND completed_at IS NOT NULL
            """,
                (RunStatus.COMPLETED.value, yesterday),
            ) as cursor:
                row = await cursor.fetchone()
                total, success = (row[0] or 0, row[1] or 0) if row else (0, 0)
                success_rate = (success / total * 100) if total > 0 else 0

            return {
                "by_status": status_counts,
                "total_runs": sum(status_counts.values()),
                "running_count": status_counts.get(RunStatus.RUNNING.value, 0),
                "success_rate_24h": round(success_rate, 1),
            }

    async def cleanup_old_runs(self, days: int = 7) -> int:
        """Delete finished runs older than N days. Returns count deleted."""
        await self.initialize()

        cutoff = (datetime.now(UTC) - timedelta(days=days)).isoformat()

        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "DELETE FROM runs WHERE created_at < ? AND status IN (?, ?, ?)",
                (cutoff, RunStatus.COMPLETED.value, RunStatus.FAILED.value, RunStatus.CANCELLED.value),
            )
            await db.commit()
            return cursor.rowcount

    @staticmethod
    def _row_to_run(row: aiosqlite.Row) -> RunRecord:
        try:
            loaded = json.loads(row["input_params"])
        except json.JSONDecodeError:
            loaded = {}
        input_params = loaded if isinstance(loaded, dict) else {}

        return RunRecord(
            run_id=row["run_id"],
            tool_name=row["tool_name"],
            status=RunStatus(row["status"]),
            stage=RunStage(row["stage"]) if row["stage"] else None,
            created_at=datetime.fromisoformat(row["created_at"]),
            started_at=datetime.fromisoformat(row["started_at"]) if row["started_at"] else None,
            completed_at=datetime.fromisoformat(row["completed_at"]) if row["completed_at"] else None,
            progress_current=row["progress_current"],
            progress_total=row["progress_total"],
            progress_message=row["progress_message"],
            input_params=input_params,
            result=row["result"],
            error=row["error"],
        )


class StoreProgressSink:
    """Progress sink that mirrors ``progress`` events into a run record."""

    def __init__(self, store: RunStore, run_id: str):
        self.store = store
        self.run_id = run_id

    async def __call__(self, event: ProgressEvent) -> None:
        if not isinstance(event, ProgressUpdate):
            return
        message = event.message
        if event.section_progress is not None:
            message = f"{event.step_name}: {event.section_progress.completed}/{event.section_progress.total}"
        await self.store.update_progress(
            self.run_id,
            current=event.step,
            total=event.total_steps,
            message=message or event.step_name,
            stage=STEP_STAGES.get(event.step_name),
        )


# Singleton instance for server use
_run_store: RunStore | None = None


def get_run_store() -> RunStore:
    """Get the singleton RunStore instance."""
    global _run_store
    if _run_store is None:
        _run_store = RunStore()
    return _run_store
