"""Data models shared by the normalization, resolution, rewrite and report stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

PLAN_ITEM_TYPES = (
    "change_import",
    "delete_import",
    "move_file",
    "create_file",
    "create_module",
    "extract_module",
    "rename_symbol",
    "update_file_goal",
    "add_dependency",
    "remove_dependency",
    "manual_review",
)


class NodeKind(str, Enum):
    ACTUAL = "actual"
    DRAFT = "draft"


class RewriteStatus(str, Enum):
    ACCEPTED = "accepted"
    FALLBACK_APPLIED = "fallback_applied"
    FAILED = "failed"
    SKIPPED = "skipped"


# ---------------------------------------------------------------------------
# Visual graph (request-scoped)
# ---------------------------------------------------------------------------

@dataclass
class GraphNode:
    id: str
    kind: NodeKind
    path: str
    label: str
    instructions: str = ""
    position: Tuple[float, float] = (0.0, 0.0)
    explicit_path: bool = False

    @property
    def is_actual(self) -> bool:
        return self.kind is NodeKind.ACTUAL


@dataclass
class GraphEdge:
    id: str
    source: str
    target: str
    kind: str = "visual"
    label: str = ""


@dataclass
class NormalizedGraph:
    nodes: List[GraphNode] = field(default_factory=list)
    edges: List[GraphEdge] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def node_by_id(self) -> Dict[str, GraphNode]:
        return {node.id: node for node in self.nodes}


# ---------------------------------------------------------------------------
# Source index (long-lived, read-only to the pipeline)
# ---------------------------------------------------------------------------

@dataclass
class CanonicalFile:
    full_path: str
    label: str
    language: str
    imports: List[str] = field(default_factory=list)
    symbols: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class DependencyEdge:
    source: str
    target: str

    @property
    def key(self) -> str:
        return f"{self.source}=>{self.target}"

    def to_dict(self) -> Dict[str, str]:
        return {"source": self.source, "target": self.target}


@dataclass
class DependencyGraph:
    files: List[CanonicalFile] = field(default_factory=list)
    edges: List[DependencyEdge] = field(default_factory=list)

    @property
    def known_paths(self) -> set:
        return {f.full_path for f in self.files}


# ---------------------------------------------------------------------------
# Resolution and comparison
# ---------------------------------------------------------------------------

@dataclass
class Resolution:
    """Outcome of mapping a graph reference to a concrete file path."""

    path: Optional[str]
    reason: str
    candidates: List[str] = field(default_factory=list)

    @property
    def resolved(self) -> bool:
        return self.path is not None

    @property
    def ambiguous(self) -> bool:
        return self.reason.startswith("ambiguous")


@dataclass
class EdgeComparison:
    current_edge_count: int = 0
    desired_edge_count: int = 0
    mapped_desired_edge_count: int = 0
    added_edges: List[DependencyEdge] = field(default_factory=list)
    removed_edges: List[DependencyEdge] = field(default_factory=list)
    mapping_coverage: float = 1.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currentEdgeCount": self.current_edge_count,
            "desiredEdgeCount": self.desired_edge_count,
            "mappedDesiredEdgeCount": self.mapped_desired_edge_count,
            "addedEdges": [e.to_dict() for e in self.added_edges],
            "removedEdges": [e.to_dict() for e in self.removed_edges],
            "mappingCoverage": self.mapping_coverage,
        }


# ---------------------------------------------------------------------------
# Rewrite (per commit)
# ---------------------------------------------------------------------------

@dataclass
class RewriteUpdate:
    """All instructions for one target file, merged across graph nodes."""
    relative_path: str
    absolute_path: str
    node_kind: NodeKind
    node_ids: List[str] = field(default_factory=list)
    instructions: List[str] = field(default_factory=list)
    current_content: str = ""
    language_hint: str = "text"
    exists: bool = False

    @property
    def instruction_text(self) -> str:
        return "\n".join(self.instructions)


@dataclass
class RewriteResult:
    update: RewriteUpdate
    status: RewriteStatus
    rewritten_content: str = ""
    attempts: int = 0
    forced_fallback: bool = False
    change_ratio: float = 0.0
    fallback_reason: str = ""
    error: Optional[str] = None

    @property
    def should_write(self) -> bool:
        return self.status in (RewriteStatus.ACCEPTED, RewriteStatus.FALLBACK_APPLIED)


@dataclass
class PersistOutcome:
    relative_path: str
    written: bool
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------

@dataclass
class PlanItem:
    id: str
    type: str
    file_path: str = ""
    from_path: str = ""
    to_path: str = ""
    import_from: str = ""
    import_to: str = ""
    symbol: str = ""
    reason: str = ""
    confidence: float = 0.5

    def __post_init__(self):
        if self.type not in PLAN_ITEM_TYPES:
            self.type = "manual_review"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "filePath": self.file_path,
            "fromPath": self.from_path,
            "toPath": self.to_path,
            "importFrom": self.import_from,
            "importTo": self.import_to,
            "symbol": self.symbol,
            "reason": self.reason,
            "confidence": self.confidence,
        }


@dataclass
class ChangedFile:
    file_path: str
    action: str  # "updated", "created", "unchanged", "failed"
    changed: bool
    bytes_before: int
    bytes_after: int
    instructions: str
    rewrite_attempts: int = 0
    forced_fallback: bool = False
    change_ratio: float = 0.0
    fallback_reason: str = ""
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "filePath": self.file_path,
            "action": self.action,
            "changed": self.changed,
            "bytesBefore": self.bytes_before,
            "bytesAfter": self.bytes_after,
            "instructions": self.instructions,
            "rewriteAttempts": self.rewrite_attempts,
            "forcedFallback": self.forced_fallback,
            "changeRatio": self.change_ratio,
        }
        if self.fallback_reason:
            payload["fallbackReason"] = self.fallback_reason
        if self.error:
            payload["error"] = self.error
        return payload


@dataclass
class SyncReport:
    summary: str
    applied: bool = False
    plan: List[PlanItem] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    questions: List[str] = field(default_factory=list)
    changed_files: List[ChangedFile] = field(default_factory=list)
    comparison: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary,
            "applied": self.applied,
            "plan": [item.to_dict() for item in self.plan],
            "warnings": list(self.warnings),
            "questions": list(self.questions),
            "changedFiles": [c.to_dict() for c in self.changed_files],
            "comparison": dict(self.comparison),
        }
