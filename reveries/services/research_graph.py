"""
Provenance graph
----------------
Records every research step of a session as a node in a DAG, with
``sequential`` edges along the execution order and ``error`` edges from the
last good node to any failing step. Derives statistics and a flat,
versioned export snapshot, and round-trips to JSON for persistence.
"""

from __future__ import annotations

import json
import re
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import structlog

from reveries.models.research import Citation, ResearchStep, StepKind
from reveries.utils.url_utils import extract_domain, normalize_source_key

logger = structlog.get_logger(__name__)

EXPORT_VERSION = "1.0"


class EdgeType(str, Enum):
    SEQUENTIAL = "sequential"
    DEPENDENCY = "dependency"
    ERROR = "error"


@dataclass
class GraphNode:
    id: str
    step: ResearchStep
    parents: List[str] = field(default_factory=list)
    children: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    duration: Optional[float] = None  # seconds

    @property
    def kind(self) -> StepKind:
        return self.step.kind

    @property
    def is_error(self) -> bool:
        return self.step.kind == StepKind.ERROR

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "step": self.step.model_dump(mode="json"),
            "parents": list(self.parents),
            "children": list(self.children),
            "metadata": dict(self.metadata),
            "duration": self.duration,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GraphNode":
        return cls(
            id=data["id"],
            step=ResearchStep.model_validate(data["step"]),
            parents=list(data.get("parents", [])),
            children=list(data.get("children", [])),
            metadata=dict(data.get("metadata", {})),
            duration=data.get("duration"),
        )


@dataclass
class GraphEdge:
    id: str
    source: str
    target: str
    type: EdgeType = EdgeType.SEQUENTIAL
    label: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source": self.source,
            "target": self.target,
            "type": self.type.value,
            "label": self.label,
        }


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


class ResearchGraphManager:
    """Builds and queries the provenance DAG of one research session."""

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or time.time
        self.nodes: Dict[str, GraphNode] = {}
        self.edges: List[GraphEdge] = []
        self.root_node: Optional[str] = None
        self.current_path: List[str] = []
        self.start_time: float = self._clock()
        self._node_timestamps: Dict[str, float] = {}
        self._last_node_timestamp: Optional[float] = None

    # ──────────────────────────────────────────────
    #  Mutation
    # ──────────────────────────────────────────────

    def add_node(
        self,
        step: ResearchStep,
        parent_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> GraphNode:
        node_id = f"node-{step.id}"
        if node_id in self.nodes:
            raise ValueError(f"Node {node_id} already exists")
        if parent_id is not None and parent_id not in self.nodes:
            raise ValueError(f"Parent node {parent_id} does not exist")

        now = self._clock()
        enriched = {
            **(metadata or {}),
            "sources_count": len(step.sources),
            "processing_time": (now - self._last_node_timestamp) if self._last_node_timestamp else 0.0,
        }
        node = GraphNode(id=node_id, step=step, metadata=enriched)
        self.nodes[node_id] = node
        self._node_timestamps[node_id] = now
        self._last_node_timestamp = now

        if self.root_node is None:
            self.root_node = node_id

        if parent_id is not None:
            edge_type = EdgeType.ERROR if node.is_error else EdgeType.SEQUENTIAL
            self.add_edge(parent_id, node_id, edge_type)

        # Error steps branch off the path; they never extend it
        if not node.is_error:
            self.current_path.append(node_id)
        return node

    def add_edge(
        self,
        source_id: str,
        target_id: str,
        edge_type: EdgeType = EdgeType.SEQUENTIAL,
        label: Optional[str] = None,
    ) -> GraphEdge:
        if source_id not in self.nodes or target_id not in self.nodes:
            raise ValueError(f"Cannot link unknown nodes {source_id} -> {target_id}")
        edge_type = EdgeType(edge_type)
        for edge in self.edges:
            if edge.source == source_id and edge.target == target_id and edge.type == edge_type:
                return edge

        edge = GraphEdge(
            id=f"edge-{source_id}-{target_id}",
            source=source_id,
            target=target_id,
            type=edge_type,
            label=label,
        )
        self.edges.append(edge)
        source, target = self.nodes[source_id], self.nodes[target_id]
        if target_id not in source.children:
            source.children.append(target_id)
        if source_id not in target.parents:
            target.parents.append(source_id)
        return edge

    def update_node_duration(self, node_id: str, started_at: Optional[float] = None) -> Optional[float]:
        """Set a node's duration to now minus its start (node creation by default)."""
        node = self.nodes.get(node_id)
        started = started_at if started_at is not None else self._node_timestamps.get(node_id)
        if node is None or started is None:
            return None
        node.duration = self._clock() - started
        return node.duration

    def update_node_metadata(self, node_id: str, metadata: Dict[str, Any]) -> None:
        node = self.nodes.get(node_id)
        if node is not None:
            node.metadata.update(metadata)

    def mark_node_error(self, node_id: str, error_message: str) -> None:
        node = self.nodes.get(node_id)
        if node is None:
            return
        node.metadata["error_message"] = error_message
        last_good = self.get_last_successful_node()
        if last_good is not None and last_good.id != node_id:
            self.add_edge(last_good.id, node_id, EdgeType.ERROR, "Error occurred")
        logger.info("Research step failed", node_id=node_id, error=error_message)

    def reset(self) -> None:
        self.nodes = {}
        self.edges = []
        self.root_node = None
        self.current_path = []
        self.start_time = self._clock()
        self._node_timestamps = {}
        self._last_node_timestamp = None

    # ──────────────────────────────────────────────
    #  Queries
    # ──────────────────────────────────────────────

    def get_node(self, node_id: str) -> Optional[GraphNode]:
        return self.nodes.get(node_id)

    def get_last_successful_node(self) -> Optional[GraphNode]:
        for node_id in reversed(self.current_path):
            node = self.nodes.get(node_id)
            if node is not None and not node.is_error:
                return node
        return None

    def find_all_paths(self) -> List[List[str]]:
        """Every root-to-leaf path, depth first."""
        paths: List[List[str]] = []
        if self.root_node is None:
            return paths

        def dfs(node_id: str, trail: List[str]) -> None:
            trail.append(node_id)
            node = self.nodes.get(node_id)
            if node is not None:
                if not node.children:
                    paths.append(list(trail))
                for child_id in node.children:
                    if child_id not in trail:
                        dfs(child_id, trail)
            trail.pop()

        dfs(self.root_node, [])
        return paths

    def _distinct_sources(self) -> Tuple[List[Citation], Dict[str, List[Citation]]]:
        all_sources: List[Citation] = []
        by_step: Dict[str, List[Citation]] = {}
        seen = set()
        for node in self.nodes.values():
            by_step[node.id] = list(node.step.sources)
            for source in node.step.sources:
                key = normalize_source_key(source)
                if key and key not in seen:
                    seen.add(key)
                    all_sources.append(source)
        return all_sources, by_step

    def get_statistics(self) -> Dict[str, Any]:
        nodes = list(self.nodes.values())
        durations = [n.duration for n in nodes if n.duration and n.duration > 0]
        error_count = sum(1 for n in nodes if n.is_error)
        all_sources, _ = self._distinct_sources()
        return {
            "total_nodes": len(nodes),
            "total_duration": self._clock() - self.start_time,
            "average_step_duration": (sum(durations) / len(durations)) if durations else 0.0,
            "error_count": error_count,
            "success_rate": ((len(nodes) - error_count) / len(nodes)) if nodes else 0.0,
            "sources_collected": len(all_sources),
            "source_references": sum(len(n.step.sources) for n in nodes),
        }

    def _latest_metadata(self, key: str) -> Any:
        for node in reversed(list(self.nodes.values())):
            value = node.metadata.get(key)
            if value is not None:
                return value
        return None

    def get_export_data(self, query: str, session_id: Optional[str] = None) -> Dict[str, Any]:
        """Flatten the graph into a versioned snapshot (``ExportedResearchData``)."""
        stats = self.get_statistics()
        nodes = list(self.nodes.values())
        all_sources, by_step = self._distinct_sources()

        by_domain: Dict[str, List[Dict[str, Any]]] = {}
        for source in all_sources:
            domain = extract_domain(source.url)
            if not domain:
                continue
            by_domain.setdefault(domain, []).append(source.model_dump(mode="json"))

        model_counts = Counter(n.metadata["model"] for n in nodes if n.metadata.get("model"))
        effort_counts = Counter(n.metadata["effort"] for n in nodes if n.metadata.get("effort"))

        return {
            "version": EXPORT_VERSION,
            "export_date": datetime.now(timezone.utc).isoformat(),
            "query": query,
            "summary": {
                "total_steps": stats["total_nodes"],
                "total_sources": len(all_sources),
                "total_duration": stats["total_duration"],
                "success_rate": stats["success_rate"],
                "models_used": list(model_counts),
                "error_count": stats["error_count"],
            },
            "metadata": {
                "session_id": session_id,
                "start_time": _iso(self.start_time),
                "end_time": _iso(self.start_time + stats["total_duration"]),
                "primary_model": model_counts.most_common(1)[0][0] if model_counts else None,
                "primary_effort": effort_counts.most_common(1)[0][0] if effort_counts else None,
                "query_type": self._latest_metadata("query_type"),
                "paradigm": self._latest_metadata("paradigm"),
                "confidence_score": self._latest_metadata("confidence_score"),
            },
            "steps": [
                {
                    "id": node.id,
                    "kind": node.kind.value,
                    "title": node.step.title,
                    "content": node.step.content if isinstance(node.step.content, str)
                    else json.dumps(node.step.content, default=str),
                    "timestamp": node.step.timestamp.isoformat(),
                    "duration": node.duration if node.duration is not None else node.metadata.get("processing_time"),
                    "sources": [s.model_dump(mode="json") for s in node.step.sources],
                    "metadata": dict(node.metadata),
                }
                for node in nodes
            ],
            "graph": {
                "nodes": [node.to_dict() for node in nodes],
                "edges": [edge.to_dict() for edge in self.edges],
            },
            "sources": {
                "all": [s.model_dump(mode="json") for s in all_sources],
                "by_step": {k: [s.model_dump(mode="json") for s in v] for k, v in by_step.items()},
                "by_domain": by_domain,
            },
        }

    def export_for_visualization(self) -> Dict[str, List[Dict[str, Any]]]:
        return {
            "nodes": [
                {
                    "id": node.id,
                    "label": node.step.title,
                    "kind": node.kind.value,
                    "pending": node.step.is_pending,
                }
                for node in self.nodes.values()
            ],
            "edges": [edge.to_dict() for edge in self.edges],
        }

    # ──────────────────────────────────────────────
    #  Persistence
    # ──────────────────────────────────────────────

    def serialize(self) -> str:
        return json.dumps({
            "nodes": [node.to_dict() for node in self.nodes.values()],
            "edges": [edge.to_dict() for edge in self.edges],
            "root_node": self.root_node,
            "current_path": list(self.current_path),
            "start_time": self.start_time,
            "node_timestamps": dict(self._node_timestamps),
            "last_node_timestamp": self._last_node_timestamp,
        })

    @classmethod
    def deserialize(cls, data: str, clock: Optional[Callable[[], float]] = None) -> "ResearchGraphManager":
        parsed = json.loads(data)
        manager = cls(clock=clock)
        manager.nodes = {n["id"]: GraphNode.from_dict(n) for n in parsed.get("nodes", [])}
        manager.edges = [
            GraphEdge(
                id=e["id"],
                source=e["source"],
                target=e["target"],
                type=EdgeType(e.get("type", "sequential")),
                label=e.get("label"),
            )
            for e in parsed.get("edges", [])
        ]
        manager.root_node = parsed.get("root_node")
        manager.current_path = list(parsed.get("current_path", []))
        manager.start_time = parsed.get("start_time", manager.start_time)
        manager._node_timestamps = dict(parsed.get("node_timestamps", {}))
        manager._last_node_timestamp = parsed.get("last_node_timestamp")
        return manager


# ────────────────────────────────────────────────────────────
#  Flow-diagram text
# ────────────────────────────────────────────────────────────

_MERMAID_ID = re.compile(r"[^A-Za-z0-9_]")


def _mermaid_id(node_id: str) -> str:
    return _MERMAID_ID.sub("_", node_id)


def render_mermaid(nodes: Iterable[Dict[str, Any]], edges: Iterable[Dict[str, Any]]) -> str:
    """Mermaid ``graph TD`` text from visualization node/edge dicts."""
    nodes = list(nodes)
    lines = ["graph TD"]
    for node in nodes:
        label = str(node.get("label", "")).replace('"', "'")
        kind = node.get("kind")
        if kind == StepKind.ERROR.value:
            shape = ("((", "))")
        elif kind == StepKind.SYNTHESIS.value:
            shape = ("[[", "]]")
        else:
            shape = ("[", "]")
        lines.append(f'    {_mermaid_id(node["id"])}{shape[0]}"{label}"{shape[1]}')

    for edge in edges:
        arrow = "-..->" if edge.get("type") == EdgeType.ERROR.value else "-->"
        label = f"|{edge['label']}|" if edge.get("label") else ""
        lines.append(f"    {_mermaid_id(edge['source'])} {arrow}{label} {_mermaid_id(edge['target'])}")

    lines.append("")
    lines.append("    classDef error fill:#fee,stroke:#f66,stroke-width:2px")
    lines.append("    classDef success fill:#efe,stroke:#6f6,stroke-width:2px")
    lines.append("    classDef processing fill:#eef,stroke:#66f,stroke-width:2px")

    groups = (
        ("error", [n for n in nodes if n.get("kind") == StepKind.ERROR.value]),
        ("success", [n for n in nodes if n.get("kind") == StepKind.SYNTHESIS.value]),
        ("processing", [n for n in nodes if n.get("pending")]),
    )
    for class_name, members in groups:
        if members:
            lines.append(f"    class {','.join(_mermaid_id(n['id']) for n in members)} {class_name}")
    return "\n".join(lines) + "\n"


def generate_mermaid_diagram(manager: ResearchGraphManager) -> str:
    data = manager.export_for_visualization()
    return render_mermaid(data["nodes"], data["edges"])
