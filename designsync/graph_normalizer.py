"""Canonicalize a raw visual-graph payload into typed nodes and edges.

The editor sends loosely shaped JSON.  Everything is validated at this
boundary with pydantic; malformed entries are skipped with a warning so a
bad node never takes the whole commit down.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import PathEscapeError
from .models import GraphEdge, GraphNode, NodeKind, NormalizedGraph

logger = logging.getLogger(__name__)

EDGE_KINDS = {"visual", "derived"}


def normalize_path(value: str) -> str:
    """Normalize a repo-relative path: forward slashes, no leading ``./`` or ``/``."""
    path = str(value or "").strip().replace("\\", "/")
    path = re.sub(r"/{2,}", "/", path)
    while path.startswith("./"):
        path = path[2:]
    return path.lstrip("/")


def build_blueprint_path(label: str, fallback_id: str) -> str:
    """Derive a target path for a Draft node that names no file."""
    base = re.sub(r"[^a-z0-9]+", "-", str(label or fallback_id or "module").lower())
    base = base.strip("-")[:48]
    return f"src/{base or 'new-module'}.js"


def _stripped(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


class RawPosition(BaseModel):
    model_config = ConfigDict(extra="ignore")

    x: float = 0.0
    y: float = 0.0

    @field_validator("x", "y", mode="before")
    @classmethod
    def _coerce_number(cls, value: Any) -> float:
        try:
            return float(value)
        except (TypeError, ValueError):
            return 0.0


class RawNode(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    type: Optional[str] = None
    position: RawPosition = Field(default_factory=RawPosition)
    data: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("id")
    @classmethod
    def _non_empty_id(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("node id is empty")
        return value

    @field_validator("position", mode="before")
    @classmethod
    def _position_mapping(cls, value: Any) -> Any:
        return value if isinstance(value, Mapping) else {}

    @field_validator("data", mode="before")
    @classmethod
    def _data_mapping(cls, value: Any) -> Any:
        return value if isinstance(value, Mapping) else {}


class RawEdge(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Any = None
    source: Any = None
    target: Any = None
    kind: Any = None
    label: Any = None
    data: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("data", mode="before")
    @classmethod
    def _data_mapping(cls, value: Any) -> Any:
        return value if isinstance(value, Mapping) else {}


def _to_node(raw: RawNode) -> GraphNode:
    data = raw.data
    kind = NodeKind.ACTUAL if _stripped(data.get("kind")).lower() == "actual" else NodeKind.DRAFT

    path = normalize_path(_stripped(data.get("path")))
    explicit_path = bool(path)
    if not path and kind is NodeKind.ACTUAL:
        path = normalize_path(raw.id)

    label = (
        _stripped(data.get("label"))
        or _stripped(data.get("name"))
        or (path.split("/")[-1] if path else "")
        or raw.id
    )
    if not path:
        path = build_blueprint_path(label, raw.id)

    instructions = _stripped(data.get("instructions")) or _stripped(data.get("goal"))

    return GraphNode(
        id=raw.id,
        kind=kind,
        path=path,
        label=label,
        instructions=instructions,
        explicit_path=explicit_path,
        position=(raw.position.x, raw.position.y),
    )


def normalize_visual_graph(payload: Optional[Mapping[str, Any]]) -> NormalizedGraph:
    """Turn the editor's ``{nodes, edges}`` payload into a :class:`NormalizedGraph`.

    Never raises on malformed input; problems degrade to fewer usable nodes
    and edges plus warnings.
    """
    graph = NormalizedGraph()
    payload = payload if isinstance(payload, Mapping) else {}
    raw_nodes = payload.get("nodes") if isinstance(payload.get("nodes"), list) else []
    raw_edges = payload.get("edges") if isinstance(payload.get("edges"), list) else []

    nodes: Dict[str, GraphNode] = {}
    for index, item in enumerate(raw_nodes):
        if not isinstance(item, Mapping):
            graph.warnings.append(f"Skipped node #{index + 1} because it is not an object.")
            continue
        try:
            raw = RawNode.model_validate(item)
        except ValidationError as exc:
            logger.debug("Invalid node payload at %d: %s", index, exc)
            graph.warnings.append(f"Skipped node #{index + 1} because it has no usable id.")
            continue
        nodes[raw.id] = _to_node(raw)

    for index, item in enumerate(raw_edges):
        if not isinstance(item, Mapping):
            graph.warnings.append(f"Skipped edge #{index + 1} because it is not an object.")
            continue
        raw_edge = RawEdge.model_validate(item)
        source = _stripped(raw_edge.source)
        target = _stripped(raw_edge.target)

        if source not in nodes or target not in nodes:
            graph.warnings.append(
                f"Skipped edge {source} -> {target} because one endpoint is missing."
            )
            continue

        kind = _stripped(raw_edge.kind) or _stripped(raw_edge.data.get("kind")) or "visual"
        graph.edges.append(GraphEdge(
            id=_stripped(raw_edge.id) or f"{source}->{target}",
            source=source,
            target=target,
            kind=kind if kind in EDGE_KINDS else "visual",
            label=_stripped(raw_edge.label),
        ))

    graph.nodes = list(nodes.values())
    logger.debug(
        "Normalized visual graph: %d nodes, %d edges, %d warnings",
        len(graph.nodes), len(graph.edges), len(graph.warnings),
    )
    return graph


def resolve_inside_root(root: Path, relative_path: str) -> Path:
    """Absolute path for ``relative_path`` under ``root``.

    Raises:
        PathEscapeError: if the path resolves to the root itself or outside it.
    """
    base = Path(root).resolve()
    candidate = (base / normalize_path(relative_path)).resolve()
    if candidate == base or base not in candidate.parents:
        raise PathEscapeError(f"'{relative_path}' resolves outside the workspace root")
    return candidate
