"""
Export Functionality for Research Sessions (JSON, Markdown, CSV, Mermaid)
Every exporter is a pure projection of the graph export snapshot
"""

import csv
import io
import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

import structlog
from pydantic import BaseModel, Field

from reveries.services.research_graph import render_mermaid

logger = structlog.get_logger(__name__)

# --- Export Models ---


class ExportFormat(str, Enum):
    """Supported export formats"""

    JSON = "json"
    MARKDOWN = "markdown"
    CSV = "csv"
    MERMAID = "mermaid"


class ExportOptions(BaseModel):
    """Export configuration options"""

    format: ExportFormat
    include_sources: bool = True
    include_metadata: bool = True
    include_graph: bool = True
    custom_title: Optional[str] = None
    custom_footer: Optional[str] = None


class ExportResult(BaseModel):
    """Export operation result"""

    format: ExportFormat
    filename: str
    size_bytes: int
    content_type: str
    data: bytes
    metadata: Dict[str, Any] = Field(default_factory=dict)


def _filename(prefix: str, research_data: Dict[str, Any], extension: str) -> str:
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    session_id = (research_data.get("metadata") or {}).get("session_id") or "session"
    return f"{prefix}_{session_id}_{timestamp}.{extension}"


# --- Base Exporter ---


class BaseExporter:
    """Base class for all exporters"""

    def __init__(self, options: ExportOptions):
        self.options = options

    async def export(self, research_data: Dict[str, Any]) -> ExportResult:
        """Export research data to specified format"""
        raise NotImplementedError


# --- JSON Exporter ---


class JSONExporter(BaseExporter):
    """Export the research snapshot to JSON"""

    async def export(self, research_data: Dict[str, Any]) -> ExportResult:
        export_data = dict(research_data)
        if not self.options.include_sources:
            export_data.pop("sources", None)
        if not self.options.include_metadata:
            export_data.pop("metadata", None)
        if not self.options.include_graph:
            export_data.pop("graph", None)

        json_data = json.dumps(export_data, indent=2, ensure_ascii=False, default=str).encode("utf-8")

        return ExportResult(
            format=ExportFormat.JSON,
            filename=_filename("research_session", research_data, "json"),
            size_bytes=len(json_data),
            content_type="application/json",
            data=json_data,
            metadata={"pretty_printed": True, "encoding": "utf-8", "version": research_data.get("version")},
        )


# --- Markdown Exporter ---


class MarkdownExporter(BaseExporter):
    """Export the research snapshot to a Markdown report"""

    async def export(self, research_data: Dict[str, Any]) -> ExportResult:
        lines: List[str] = []
        summary = research_data.get("summary", {})
        metadata = research_data.get("metadata", {})

        title = self.options.custom_title or f"Research Report: {research_data.get('query', 'Unknown Query')}"
        lines.append(f"# {title}")
        lines.append("")

        if self.options.include_metadata:
            lines.append("## Metadata")
            lines.append("")
            lines.append(f"- **Session ID**: {metadata.get('session_id') or 'N/A'}")
            lines.append(f"- **Query Type**: {metadata.get('query_type') or 'N/A'}")
            lines.append(f"- **Paradigm**: {(metadata.get('paradigm') or 'N/A').title()}")
            lines.append(f"- **Model**: {metadata.get('primary_model') or 'N/A'}")
            lines.append(f"- **Effort**: {metadata.get('primary_effort') or 'N/A'}")
            confidence = metadata.get("confidence_score")
            if confidence is not None:
                lines.append(f"- **Confidence Score**: {confidence * 100:.1f}%")
            lines.append(f"- **Steps**: {summary.get('total_steps', 0)}")
            lines.append(f"- **Sources**: {summary.get('total_sources', 0)}")
            lines.append(f"- **Duration**: {summary.get('total_duration', 0):.1f}s")
            lines.append(f"- **Success Rate**: {summary.get('success_rate', 0) * 100:.0f}%")
            lines.append("")

        lines.append("## Research Steps")
        lines.append("")
        for index, step in enumerate(research_data.get("steps", []), 1):
            lines.append(f"### {index}. {step.get('title', 'Step')} ({step.get('kind')})")
            lines.append("")
            content = step.get("content") or ""
            if content:
                lines.append(content)
                lines.append("")
            error_message = (step.get("metadata") or {}).get("error_message")
            if error_message:
                lines.append(f"> **Error**: {error_message}")
                lines.append("")

        sources = (research_data.get("sources") or {}).get("all", [])
        if self.options.include_sources and sources:
            lines.append("## Sources")
            lines.append("")
            for i, source in enumerate(sources, 1):
                lines.append(f"{i}. [{source.get('title') or 'Untitled'}]({source.get('url') or ''})")
            lines.append("")

        lines.append("---")
        lines.append("")
        lines.append(self.options.custom_footer or "*Generated by Reveries Research Engine*")

        markdown_data = "\n".join(lines).encode("utf-8")
        return ExportResult(
            format=ExportFormat.MARKDOWN,
            filename=_filename("research_report", research_data, "md"),
            size_bytes=len(markdown_data),
            content_type="text/markdown",
            data=markdown_data,
            metadata={"encoding": "utf-8", "line_count": len(lines)},
        )


# --- CSV Exporter ---


class CSVExporter(BaseExporter):
    """Export research steps (and optionally sources) to CSV"""

    async def export(self, research_data: Dict[str, Any]) -> ExportResult:
        output = io.StringIO()
        writer = csv.writer(output)

        writer.writerow(["Step", "Kind", "Title", "Timestamp", "Duration", "Sources", "Model", "Error"])
        for index, step in enumerate(research_data.get("steps", []), 1):
            step_metadata = step.get("metadata") or {}
            duration = step.get("duration")
            writer.writerow([
                index,
                step.get("kind", ""),
                step.get("title", ""),
                step.get("timestamp", ""),
                f"{duration:.3f}" if isinstance(duration, (int, float)) else "",
                len(step.get("sources", [])),
                step_metadata.get("model", ""),
                step_metadata.get("error_message", ""),
            ])

        sources = (research_data.get("sources") or {}).get("all", [])
        if self.options.include_sources and sources:
            writer.writerow([])
            writer.writerow(["Index", "Title", "URL"])
            for i, source in enumerate(sources, 1):
                writer.writerow([i, source.get("title", ""), source.get("url", "")])

        csv_data = output.getvalue().encode("utf-8")
        output.close()

        return ExportResult(
            format=ExportFormat.CSV,
            filename=_filename("research_steps", research_data, "csv"),
            size_bytes=len(csv_data),
            content_type="text/csv",
            data=csv_data,
            metadata={"encoding": "utf-8", "delimiter": ","},
        )


# --- Mermaid Exporter ---


class MermaidExporter(BaseExporter):
    """Export the provenance graph as Mermaid flow-diagram text"""

    async def export(self, research_data: Dict[str, Any]) -> ExportResult:
        graph = research_data.get("graph") or {}
        nodes = [
            {
                "id": node["id"],
                "label": node["step"].get("title", ""),
                "kind": node["step"].get("kind"),
                "pending": node["step"].get("is_pending", False),
            }
            for node in graph.get("nodes", [])
        ]
        diagram = render_mermaid(nodes, graph.get("edges", [])).encode("utf-8")

        return ExportResult(
            format=ExportFormat.MERMAID,
            filename=_filename("research_graph", research_data, "mmd"),
            size_bytes=len(diagram),
            content_type="text/vnd.mermaid",
            data=diagram,
            metadata={"encoding": "utf-8", "nodes": len(nodes)},
        )


# --- Export Service ---


class ExportService:
    """Main export service"""

    def __init__(self):
        self.exporters = {
            ExportFormat.JSON: JSONExporter,
            ExportFormat.MARKDOWN: MarkdownExporter,
            ExportFormat.CSV: CSVExporter,
            ExportFormat.MERMAID: MermaidExporter,
        }

    async def export_research(self, research_data: Dict[str, Any], options: ExportOptions) -> ExportResult:
        """Export research data in specified format"""
        exporter_class = self.exporters.get(options.format)
        if not exporter_class:
            raise ValueError(f"Unsupported export format: {options.format}")

        result = await exporter_class(options).export(research_data)
        logger.info(
            "Exported research session",
            format=options.format.value,
            size_bytes=result.size_bytes,
            filename=result.filename,
        )
        return result

    def get_supported_formats(self) -> List[str]:
        """Get list of supported export formats"""
        return [format.value for format in ExportFormat]

    async def export_multiple(
        self,
        research_data: Dict[str, Any],
        formats: List[ExportFormat],
        base_options: Optional[ExportOptions] = None,
    ) -> Dict[ExportFormat, ExportResult]:
        """Export research data in multiple formats"""
        results = {}
        for format in formats:
            if base_options is not None:
                options = base_options.model_copy(update={"format": format})
            else:
                options = ExportOptions(format=format)
            results[format] = await self.export_research(research_data, options)
        return results
