"""Tests for the typer CLI."""

import base64
import json
from unittest.mock import MagicMock, patch

from typer.testing import CliRunner

from mcp_server_kokkai_research.cli import app, load_attachment
from mcp_server_kokkai_research.exceptions import PlanningError
from mcp_server_kokkai_research.research.events import Complete, ProgressUpdate
from mcp_server_kokkai_research.research.models import DeepResearchResponse, DeepResearchSections
from mcp_server_kokkai_research.research.pipeline import ResearchOutcome

runner = CliRunner()


def fake_pipeline(error: Exception | None = None) -> MagicMock:
    seen = {}

    async def run(request, sink=None):
        seen["request"] = request
        if error is not None:
            raise error
        if sink is not None:
            await sink(ProgressUpdate(step=1, total_steps=4, step_name="plan"))
            await sink(Complete(data="# report"))
        return ResearchOutcome(markdown="# report", response=DeepResearchResponse(query=request.query, sections=DeepResearchSections()))

    pipeline = MagicMock()
    pipeline.run = run
    pipeline.seen = seen
    return pipeline


class TestResearchCommand:
    def test_prints_markdown(self):
        pipeline = fake_pipeline()
        with patch("mcp_server_kokkai_research.research.pipeline.ResearchPipeline.from_settings", return_value=pipeline):
            result = runner.invoke(app, ["research", "防衛費の財源", "--limit", "30", "-p", "kokkai-db"])

        assert result.exit_code == 0
        assert "# report" in result.stdout
        assert pipeline.seen["request"].limit == 30
        assert pipeline.seen["request"].providers == ["kokkai-db"]

    def test_events_as_json_lines(self):
        with patch("mcp_server_kokkai_research.research.pipeline.ResearchPipeline.from_settings", return_value=fake_pipeline()):
            result = runner.invoke(app, ["research", "q", "--events"])

        assert result.exit_code == 0
        lines = [json.loads(line) for line in result.stdout.splitlines() if line.startswith("{")]
        assert [line["type"] for line in lines] == ["progress", "complete"]
        assert lines[0]["totalSteps"] == 4

    def test_attachment_loaded(self, tmp_path):
        pdf = tmp_path / "bill.pdf"
        pdf.write_bytes(b"%PDF-1.4")
        pipeline = fake_pipeline()
        with patch("mcp_server_kokkai_research.research.pipeline.ResearchPipeline.from_settings", return_value=pipeline):
            result = runner.invoke(app, ["research", "q", "--attach", str(pdf)])

        assert result.exit_code == 0
        [attachment] = pipeline.seen["request"].attachments
        assert attachment.name == "bill.pdf"

    def test_save_writes_report(self, tmp_path):
        out_dir = tmp_path / "reports"
        with patch("mcp_server_kokkai_research.research.pipeline.ResearchPipeline.from_settings", return_value=fake_pipeline()):
            result = runner.invoke(app, ["research", "防衛費", "--save", str(out_dir)])

        assert result.exit_code == 0
        [saved] = list(out_dir.glob("*.md"))
        assert saved.read_text(encoding="utf-8") == "# report"

    def test_failure_exit_code(self):
        with patch("mcp_server_kokkai_research.research.pipeline.ResearchPipeline.from_settings", return_value=fake_pipeline(PlanningError("planner down"))):
            result = runner.invoke(app, ["research", "q"])

        assert result.exit_code == 1

    def test_blank_query_rejected(self):
        result = runner.invoke(app, ["research", "   "])
        assert result.exit_code == 2


def test_load_attachment(tmp_path):
    path = tmp_path / "notes.txt"
    path.write_text("議事録メモ", encoding="utf-8")

    attachment = load_attachment(path)

    assert attachment.mime_type == "text/plain"
    assert base64.b64decode(attachment.content).decode("utf-8") == "議事録メモ"


def test_config_command():
    result = runner.invoke(app, ["config"])
    assert result.exit_code == 0
    assert "LLM Provider" in result.stdout
