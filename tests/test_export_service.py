"""
Tests for the exporters, driven from a real graph snapshot.
"""

import csv
import io
import json

import pytest

from reveries.models.research import Citation, ResearchStep, StepKind
from reveries.services.export_service import ExportFormat, ExportOptions, ExportService
from reveries.services.research_graph import ResearchGraphManager
from conftest import FakeClock

QUERY = "What is the capital of France?"


@pytest.fixture
def snapshot():
    graph = ResearchGraphManager(clock=FakeClock())
    meta = {"model": "gemini", "effort": "medium"}
    graph.add_node(ResearchStep(id="q", kind=StepKind.USER_QUERY, title=QUERY, content=QUERY), metadata=meta)
    graph.add_node(
        ResearchStep(
            id="r",
            kind=StepKind.WEB_RESEARCH,
            title="Researching the web",
            content="Paris is the capital.",
            sources=[Citation(url="https://en.wikipedia.org/wiki/Paris", title="Paris - Wikipedia")],
        ),
        parent_id="node-q",
        metadata=meta,
    )
    graph.add_node(
        ResearchStep(id="s", kind=StepKind.SYNTHESIS, title="Synthesizing answer", content="Paris."),
        parent_id="node-r",
        metadata={**meta, "query_type": "factual", "confidence_score": 0.62},
    )
    graph.add_node(ResearchStep(id="e", kind=StepKind.ERROR, title="Error", content="boom"),
                   parent_id="node-s", metadata=meta)
    graph.mark_node_error("node-e", "provider exploded")
    return graph.get_export_data(QUERY, session_id="sess-1")


@pytest.fixture
def service() -> ExportService:
    return ExportService()


def test_supported_formats(service):
    assert service.get_supported_formats() == ["json", "markdown", "csv", "mermaid"]


@pytest.mark.asyncio
async def test_json_export_is_the_snapshot(service, snapshot):
    result = await service.export_research(snapshot, ExportOptions(format=ExportFormat.JSON))

    data = json.loads(result.data)
    assert result.content_type == "application/json"
    assert result.filename.startswith("research_session_sess-1_")
    assert result.filename.endswith(".json")
    assert result.size_bytes == len(result.data)
    assert data["query"] == QUERY
    assert len(data["steps"]) == 4
    assert data["sources"]["by_domain"]["en.wikipedia.org"][0]["title"] == "Paris - Wikipedia"


@pytest.mark.asyncio
async def test_json_export_can_drop_sections(service, snapshot):
    options = ExportOptions(format=ExportFormat.JSON, include_sources=False, include_graph=False)
    data = json.loads((await service.export_research(snapshot, options)).data)
    assert "sources" not in data
    assert "graph" not in data
    assert "metadata" in data


@pytest.mark.asyncio
async def test_markdown_report(service, snapshot):
    result = await service.export_research(snapshot, ExportOptions(format=ExportFormat.MARKDOWN))
    text = result.data.decode("utf-8")

    assert text.startswith(f"# Research Report: {QUERY}")
    assert "- **Session ID**: sess-1" in text
    assert "- **Confidence Score**: 62.0%" in text
    assert "### 2. Researching the web (web_research)" in text
    assert "> **Error**: provider exploded" in text
    assert "1. [Paris - Wikipedia](https://en.wikipedia.org/wiki/Paris)" in text
    assert text.rstrip().endswith("*Generated by Reveries Research Engine*")


@pytest.mark.asyncio
async def test_markdown_custom_title_and_footer(service, snapshot):
    options = ExportOptions(format=ExportFormat.MARKDOWN, custom_title="Paris", custom_footer="fin",
                            include_metadata=False, include_sources=False)
    text = (await service.export_research(snapshot, options)).data.decode("utf-8")
    assert text.startswith("# Paris")
    assert "## Metadata" not in text
    assert "## Sources" not in text
    assert text.endswith("fin")


@pytest.mark.asyncio
async def test_csv_export(service, snapshot):
    result = await service.export_research(snapshot, ExportOptions(format=ExportFormat.CSV))
    rows = list(csv.reader(io.StringIO(result.data.decode("utf-8"))))

    assert rows[0] == ["Step", "Kind", "Title", "Timestamp", "Duration", "Sources", "Model", "Error"]
    assert [row[1] for row in rows[1:5]] == ["user_query", "web_research", "synthesis", "error"]
    assert rows[2][5] == "1"
    assert rows[4][7] == "provider exploded"
    assert rows[5] == []
    assert rows[6] == ["Index", "Title", "URL"]
    assert rows[7] == ["1", "Paris - Wikipedia", "https://en.wikipedia.org/wiki/Paris"]


@pytest.mark.asyncio
async def test_mermaid_export(service, snapshot):
    result = await service.export_research(snapshot, ExportOptions(format=ExportFormat.MERMAID))
    text = result.data.decode("utf-8")

    assert text.startswith("graph TD")
    assert "node_q --> node_r" in text
    assert 'node_s[["Synthesizing answer"]]' in text
    assert "node_s -..-> node_e" in text
    assert result.metadata["nodes"] == 4


@pytest.mark.asyncio
async def test_export_multiple(service, snapshot):
    results = await service.export_multiple(snapshot, [ExportFormat.JSON, ExportFormat.CSV])
    assert set(results) == {ExportFormat.JSON, ExportFormat.CSV}
    assert results[ExportFormat.CSV].content_type == "text/csv"
