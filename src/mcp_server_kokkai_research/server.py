"""MCP server exposing legislative deep research as tools with background task support."""

import asyncio
import json
import logging
import os
import sys
import time
import uuid


def _configure_stdio_logging() -> None:
    """Send all logging to stderr; stdout carries JSON-RPC in stdio mode."""
    os.environ.setdefault("BROWSER_USE_LOGGING_LEVEL", "warning")

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))

    root = logging.getLogger()
    root.handlers = [stderr_handler]
    root.setLevel(logging.WARNING)

    for logger_name in ["httpx", "httpcore", "asyncio", "browser_use", "openai", "anthropic", "pypdf"]:
        dep_logger = logging.getLogger(logger_name)
        dep_logger.setLevel(logging.WARNING)
        dep_logger.handlers = [stderr_handler]
        dep_logger.propagate = False


# Configure logging BEFORE importing browser_use and other noisy dependencies
_configure_stdio_logging()

# ruff: noqa: E402 - Intentional late imports after logging configuration
from fastmcp import FastMCP
from fastmcp.dependencies import CurrentContext, Progress
from fastmcp.server.context import Context
from fastmcp.server.tasks.config import TaskConfig
from pydantic import ValidationError

from .config import settings
from .exceptions import LLMProviderError
from .observability import RunRecord, RunStatus, StoreProgressSink, bind_run_context, clear_run_context, get_run_logger, get_run_store, setup_structured_logging
from .research.events import Complete, ErrorEvent, ProgressEvent, ProgressUpdate, SynthesisChunk, fan_out
from .research.models import Attachment, ResearchRequest
from .research.pipeline import ResearchPipeline
from .utils import save_research_result

logger = logging.getLogger("mcp_server_kokkai_research")
logger.setLevel(getattr(logging, settings.server.logging_level.upper()))

# Running research tasks by run id, for cancellation
_running_tasks: dict[str, asyncio.Task] = {}


class MCPProgressSink:
    """Forwards pipeline events to MCP progress notifications and client log messages."""

    def __init__(self, ctx: Context, progress: Progress):
        self.ctx = ctx
        self.progress = progress
        self.total: int | None = None
        self.step = 0
        self.chunks = 0

    async def __call__(self, event: ProgressEvent) -> None:
        match event:
            case ProgressUpdate():
                if self.total != event.total_steps:
                    self.total = event.total_steps
                    await self.progress.set_total(event.total_steps)
                while self.step < event.step:
                    self.step += 1
                    await self.progress.increment()
                if event.section_progress is not None:
                    sp = event.section_progress
                    await self.progress.set_message(f"{event.step_name} ({sp.completed}/{sp.total})")
                else:
                    await self.progress.set_message(event.message or event.step_name)
                    await self.ctx.info(f"[{event.step}/{event.total_steps}] {event.step_name}")
            case SynthesisChunk():
                self.chunks += 1
            case Complete():
                await self.ctx.info(f"Completed ({self.chunks} synthesis chunks)")
            case ErrorEvent():
                await self.ctx.info(f"Failed at step {event.step} ({event.step_name}): {event.message}")


def serve() -> FastMCP:
    """Create and configure MCP server with background task support."""
    setup_structured_logging(settings.server.logging_level)

    server = FastMCP("mcp_server_kokkai_research")

    @server.tool(task=TaskConfig(mode="optional"))
    async def run_deep_research(
        query: str,
        providers: list[str] | None = None,
        limit: int | None = None,
        as_of_date: str | None = None,
        attachments: list[Attachment] | None = None,
        ctx: Context = CurrentContext(),
        progress: Progress = Progress(),
    ) -> str:
        """
        Research a question about Diet (Kokkai) proceedings and legislation.

        Searches the configured minutes providers per report section, optionally
        extracts relevant passages from attached PDFs, and synthesizes a
        sectioned report with footnoted sources. Runs as a background task if
        the client requests it; progress is streamed via the MCP task protocol.

        Args:
            query: The research question
            providers: Provider ids to search (default: all configured)
            limit: Maximum results per provider search, 1-100 (default from settings)
            as_of_date: Optional reference date stated in the report
            attachments: Optional files as {name, content (base64), mimeType}

        Returns:
            The research report as markdown
        """
        run_id = str(uuid.uuid4())
        run_store = get_run_store()
        input_params = {
            "query": query,
            "providers": providers,
            "limit": limit,
            "as_of_date": as_of_date,
            "attachments": [a.name for a in attachments or []],
        }
        await run_store.create_run(RunRecord(run_id=run_id, tool_name="run_deep_research", input_params=input_params))
        bind_run_context(run_id, "run_deep_research")
        run_logger = get_run_logger()

        logger.info(f"Starting deep research: {query[:100]}")
        run_logger.info("run_created", query=query[:100], attachments=len(attachments or []))

        try:
            request = ResearchRequest(
                query=query,
                providers=providers,
                limit=limit,
                as_of_date=as_of_date,
                attachments=attachments or [],
            )
            pipeline = ResearchPipeline.from_settings(settings)
        except (ValidationError, LLMProviderError) as e:
            logger.error(f"Research setup failed: {e}")
            await run_store.update_status(run_id, RunStatus.FAILED, error=str(e))
            clear_run_context()
            return f"Error: {e}"

        await run_store.update_status(run_id, RunStatus.RUNNING)
        run_logger.info("run_running")

        sink = fan_out(MCPProgressSink(ctx, progress), StoreProgressSink(run_store, run_id))
        try:
            research_task = asyncio.create_task(pipeline.run(request, sink))
            _running_tasks[run_id] = research_task
            try:
                outcome = await research_task
            finally:
                _running_tasks.pop(run_id, None)

            results_dir = settings.get_results_dir()
            if results_dir is not None:
                saved_path = save_research_result(
                    outcome.markdown,
                    results_dir,
                    prefix=f"research_{query[:20]}",
                    metadata={"query": query, "run_id": run_id, "metadata": outcome.response.metadata.model_dump(mode="json")},
                )
                await ctx.info(f"Saved to: {saved_path.name}")

            await run_store.update_status(run_id, RunStatus.COMPLETED, result=outcome.markdown)
            run_logger.info(
                "run_completed",
                evidences=len(outcome.response.evidences),
                total_results=outcome.response.metadata.total_results,
            )
            clear_run_context()
            return outcome.markdown

        except asyncio.CancelledError:
            await run_store.update_status(run_id, RunStatus.CANCELLED, error="Cancelled by user")
            run_logger.info("run_cancelled")
            clear_run_context()
            raise

        except Exception as e:
            await run_store.update_status(run_id, RunStatus.FAILED, error=str(e))
            run_logger.error("run_failed", error=str(e), error_type=type(e).__name__)
            clear_run_context()
            raise

    @server.tool()
    async def health_check() -> str:
        """
        Health check with process stats and running research runs.

        Returns:
            JSON object with server health status, running runs, and statistics
        """
        import psutil

        run_store = get_run_store()
        running = await run_store.get_running_runs()
        stats = await run_store.get_stats()
        memory_info = psutil.Process().memory_info()

        return json.dumps(
            {
                "status": "healthy",
                "uptime_seconds": round(time.time() - _server_start_time, 1),
                "memory_mb": round(memory_info.rss / 1024 / 1024, 1),
                "running_runs": len(running),
                "runs": [
                    {
                        "run_id": r.run_id[:8],
                        "stage": r.stage.value if r.stage else None,
                        "progress": f"{r.progress_current}/{r.progress_total}",
                        "message": r.progress_message,
                    }
                    for r in running
                ],
                "stats": stats,
            },
            indent=2,
            ensure_ascii=False,
        )

    @server.tool()
    async def run_list(limit: int = 20, status_filter: str | None = None) -> str:
        """
        List recent research runs.

        Args:
            limit: Maximum number of runs to return (default 20)
            status_filter: Optional status filter (pending, running, completed, failed, cancelled)

        Returns:
            JSON list of recent runs
        """
        status = None
        if status_filter:
            try:
                status = RunStatus(status_filter)
            except ValueError:
                return f"Error: Invalid status '{status_filter}'. Use: {', '.join(s.value for s in RunStatus)}"

        runs = await get_run_store().get_run_history(limit=limit, status=status)
        return json.dumps(
            {
                "runs": [
                    {
                        "run_id": r.run_id[:8],
                        "query": str(r.input_params.get("query", ""))[:80],
                        "status": r.status.value,
                        "progress": f"{r.progress_current}/{r.progress_total}",
                        "created": r.created_at.isoformat(),
                        "duration_sec": round(r.duration_seconds, 1) if r.duration_seconds else None,
                    }
                    for r in runs
                ],
                "count": len(runs),
            },
            indent=2,
            ensure_ascii=False,
        )

    @server.tool()
    async def run_get(run_id: str) -> str:
        """
        Get full details of a research run.

        Args:
            run_id: Run ID (full or prefix)

        Returns:
            JSON object with run details, input, and result/error
        """
        run_store = get_run_store()
        run = await run_store.get_run(run_id)
        if not run:
            for r in await run_store.get_run_history(limit=100):
                if r.run_id.startswith(run_id):
                    run = r
                    break

        if not run:
            return f"Error: Run '{run_id}' not found"

        return json.dumps(
            {
                "run_id": run.run_id,
                "status": run.status.value,
                "stage": run.stage.value if run.stage else None,
                "progress": {
                    "current": run.progress_current,
                    "total": run.progress_total,
                    "message": run.progress_message,
                    "percent": run.progress_percent,
                },
                "timestamps": {
                    "created": run.created_at.isoformat(),
                    "started": run.started_at.isoformat() if run.started_at else None,
                    "completed": run.completed_at.isoformat() if run.completed_at else None,
                    "duration_sec": round(run.duration_seconds, 1) if run.duration_seconds else None,
                },
                "input": run.input_params,
                "result": run.result[:2000] if run.result else None,
                "error": run.error,
            },
            indent=2,
            ensure_ascii=False,
        )

    @server.tool()
    async def run_cancel(run_id: str) -> str:
        """
        Cancel a running research run.

        Args:
            run_id: Run ID (full or prefix)

        Returns:
            JSON with success status and message
        """
        matched_id = next((rid for rid in _running_tasks if rid.startswith(run_id)), None)
        if not matched_id:
            return json.dumps({"success": False, "error": f"Run '{run_id}' not found or not running"})

        _running_tasks[matched_id].cancel()
        await get_run_store().update_status(matched_id, RunStatus.CANCELLED, error="Cancelled by user")
        return json.dumps({"success": True, "run_id": matched_id[:8], "message": "Run cancelled"})

    return server


# Track server start time for uptime calculation
_server_start_time = time.time()


server_instance = serve()


def main() -> None:
    """Entry point for MCP server."""
    transport = settings.server.transport
    logger.info(f"Starting Kokkai research server (provider: {settings.llm.provider}, transport: {transport})")

    if transport == "stdio":
        server_instance.run(transport="stdio")
    elif transport in ("streamable-http", "sse"):
        logger.info(f"HTTP server at http://{settings.server.host}:{settings.server.port}/mcp")
        server_instance.run(transport=transport, host=settings.server.host, port=settings.server.port)
    else:
        raise ValueError(f"Unknown transport: {transport}")


if __name__ == "__main__":
    main()
