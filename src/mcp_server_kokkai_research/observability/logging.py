"""Structured logging for research runs using structlog."""

import logging

import structlog

_configured = False


def setup_structured_logging(level: str = "INFO", json_output: bool = True) -> None:
    """Configure structlog once per process.

    Run context bound with :func:`bind_run_context` is merged into every
    event. The MCP server logs JSON; the CLI uses the console renderer.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_output: Render events as JSON lines instead of human-readable text
    """
    global _configured
    if _configured:
        return

    renderer = structlog.processors.JSONRenderer(ensure_ascii=False) if json_output else structlog.dev.ConsoleRenderer(colors=False)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", level=getattr(logging, level.upper()))
    _configured = True


def bind_run_context(run_id: str, tool_name: str, **extra: str) -> None:
    """Attach the run id and entry point to all later log events in this async context."""
    structlog.contextvars.bind_contextvars(run_id=run_id, tool_name=tool_name, **extra)


def clear_run_context() -> None:
    structlog.contextvars.clear_contextvars()


def get_run_logger(name: str = "mcp_server_kokkai_research") -> structlog.stdlib.BoundLogger:
    """Get a structlog logger carrying the bound run context."""
    return structlog.get_logger(name)
