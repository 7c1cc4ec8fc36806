"""CLI interface for the Kokkai deep research server."""

import asyncio
import base64
import mimetypes
import uuid
from pathlib import Path

import typer
from pydantic import ValidationError

from .config import settings
from .exceptions import KokkaiResearchError
from .observability.logging import bind_run_context, clear_run_context, get_run_logger, setup_structured_logging
from .research.events import ProgressEvent, to_json
from .research.models import Attachment, ResearchRequest
from .utils import save_research_result

app = typer.Typer(help="Deep research over Diet (Kokkai) proceedings")


def load_attachment(path: Path) -> Attachment:
    """Read a local file into a base64 attachment."""
    mime_type = mimetypes.guess_type(path.name)[0] or "application/pdf"
    content = base64.b64encode(path.read_bytes()).decode("ascii")
    return Attachment(name=path.name, content=content, mime_type=mime_type)


async def print_event(event: ProgressEvent) -> None:
    """Write one event as a JSON line."""
    print(to_json(event), flush=True)


@app.command()
def research(
    query: str = typer.Argument(..., help="Research question"),
    provider: list[str] = typer.Option(None, "--provider", "-p", help="Provider id to search (repeatable)"),
    limit: int = typer.Option(None, "--limit", "-n", min=1, max=100, help="Maximum results per provider search"),
    as_of: str = typer.Option(None, "--as-of", help="Reference date stated in the report"),
    attach: list[Path] = typer.Option(None, "--attach", "-a", exists=True, dir_okay=False, help="File to extract from (repeatable)"),
    events: bool = typer.Option(False, "--events", help="Stream progress events as JSON lines instead of printing markdown"),
    save_to: Path = typer.Option(None, "--save", "-s", file_okay=False, help="Directory to save the report into"),
) -> None:
    """Run a deep research query."""
    from .research.pipeline import ResearchPipeline

    try:
        request = ResearchRequest(
            query=query,
            providers=provider or None,
            limit=limit,
            as_of_date=as_of,
            attachments=[load_attachment(p) for p in attach or []],
        )
    except ValidationError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=2) from e

    setup_structured_logging(settings.server.logging_level, json_output=False)
    run_logger = get_run_logger()

    async def _research() -> str:
        bind_run_context(str(uuid.uuid4()), "cli.research")
        try:
            pipeline = ResearchPipeline.from_settings(settings)
            outcome = await pipeline.run(request, print_event if events else None)
            run_logger.info("run_completed", evidences=len(outcome.response.evidences), total_results=outcome.response.metadata.total_results)
            return outcome.markdown
        finally:
            clear_run_context()

    try:
        markdown = asyncio.run(_research())
    except KokkaiResearchError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e

    if save_to is not None:
        save_to.mkdir(parents=True, exist_ok=True)
        saved = save_research_result(markdown, save_to, prefix=request.query)
        typer.echo(f"Saved report to {saved}", err=True)

    if not events:
        print(markdown)


@app.command()
def config(
    save: bool = typer.Option(False, "--save", help="Write the current settings (without secrets) to the config file"),
) -> None:
    """Show current configuration."""
    print(f"LLM Provider: {settings.llm.provider}")
    print(f"LLM Model: {settings.llm.model_name}")
    print(f"LLM Base URL: {settings.llm.base_url or '(default)'}")
    print(f"Synthesis Model: {settings.synthesis.model_name}")
    print(f"Synthesis Base URL: {settings.synthesis.base_url or '(default)'}")
    print(f"Kokkai RAG URL: {settings.providers.kokkai_rag_url}")
    print(f"Gov Meeting RAG URL: {settings.providers.gov_meeting_rag_url or '(none)'}")
    print(f"Default Limit: {settings.research.default_limit}")
    print(f"Transport: {settings.server.transport}")
    print(f"Results Dir: {settings.server.results_dir or '(none)'}")

    if save:
        print(f"Saved to {settings.save()}")


@app.command()
def server() -> None:
    """Start the MCP server."""
    from .server import main

    main()


if __name__ == "__main__":
    app()
