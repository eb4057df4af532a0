"""SyncOrchestrator: the commit pipeline and the read-only preview flows.

Commit::

    normalize -> resolve -> diff -> build work list -> rewrite (worker pool)
              -> persist (single writer) -> assemble report

Preview runs the same normalize/resolve/diff front half and asks the
oracle for a refactor plan instead of rewriting files.  Nothing is written.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import requests

from .alias_resolver import AliasResolver
from .config import SyncSettings
from .diff_engine import DiffEngine
from .errors import OracleError
from .graph_normalizer import normalize_visual_graph
from .mermaid import parse_mermaid_design
from .models import (
    DependencyGraph,
    EdgeComparison,
    NormalizedGraph,
    PlanItem,
    Resolution,
    RewriteResult,
    SyncReport,
)
from .persistence import PersistenceGateway
from .plan import (
    NormalizedPlan,
    PlanAssembler,
    edge_plan_items,
    extract_json_from_response,
    normalize_refactor_plan,
)
from .prompts import build_architect_prompt, build_design_prompt
from .rewrite import RewriteOrchestrator

logger = logging.getLogger(__name__)

MAX_PROMPT_FILES = 600
MAX_PROMPT_EDGES = 1200
MAX_PROMPT_VISUAL_NODES = 600
MAX_PROMPT_VISUAL_EDGES = 1200
MAX_HINT_ITEMS = 80
GRAPH_FALLBACK_LIMIT = 16
MERMAID_FALLBACK_LIMIT = 12

NO_INDEX_SUMMARY = "No project indexed yet."
NO_INDEX_WARNING = "Index a project before running architecture sync."
NO_INDEX_QUESTION = "Should the backend trigger indexing first?"
MERMAID_COVERAGE_WARNING = (
    "Low node-to-file mapping coverage. "
    "Rename Mermaid nodes closer to real file names for higher precision."
)


@dataclass
class ResolvedGraph:
    """Front half of every flow: the graph mapped onto indexed files."""
    graph: NormalizedGraph
    resolutions: Dict[str, Resolution] = field(default_factory=dict)
    desired_pairs: List[Tuple[str, str]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    questions: List[str] = field(default_factory=list)
    unresolved_actual: List[str] = field(default_factory=list)

    def actual_goal_nodes(self):
        return [
            node for node in self.graph.nodes
            if node.is_actual and node.instructions and self.resolutions[node.id].resolved
        ]

    def draft_goal_nodes(self):
        return [node for node in self.graph.nodes if not node.is_actual and node.instructions]


def _ambiguity_question(label: str, resolution: Resolution) -> str:
    candidates = ", ".join(resolution.candidates[:5])
    suffix = f" Candidates: {candidates}." if candidates else ""
    return f"Which file does '{label}' refer to?{suffix}"


class SyncOrchestrator:
    """Wires the pipeline stages together for one indexed workspace."""

    def __init__(self, index, oracle, workspace_root: Path, settings: Optional[SyncSettings] = None):
        """
        Args:
            index: Source index with ``get_dependency_graph()`` and ``update_file()``
            oracle: Content oracle with ``generate(prompt, max_retries=, retry_delay_ms=)``
            workspace_root: Root directory all writes are confined to
            settings: Commit tunables
        """
        self.index = index
        self.oracle = oracle
        self.workspace_root = Path(workspace_root)
        self.settings = settings or SyncSettings()
        self.diff_engine = DiffEngine(self.settings.low_coverage_threshold)
        self.rewriter = RewriteOrchestrator(oracle, self.workspace_root, self.settings)
        self.gateway = PersistenceGateway(self.workspace_root, index)
        self.assembler = PlanAssembler()
        self.last_results: List[RewriteResult] = []

    # ------------------------------------------------------------------
    # Shared stages
    # ------------------------------------------------------------------

    @staticmethod
    def _empty_index_report() -> SyncReport:
        comparison = EdgeComparison(mapping_coverage=0.0).to_dict()
        comparison.update(actualGoalCount=0, blueprintGoalCount=0, appliedCount=0, skippedCount=0)
        return SyncReport(
            summary=NO_INDEX_SUMMARY,
            warnings=[NO_INDEX_WARNING],
            questions=[NO_INDEX_QUESTION],
            comparison=comparison,
        )

    @staticmethod
    def _resolve(graph: NormalizedGraph, resolver: AliasResolver) -> ResolvedGraph:
        resolved = ResolvedGraph(graph=graph, warnings=list(graph.warnings))

        for node in graph.nodes:
            if not node.is_actual:
                resolved.resolutions[node.id] = Resolution(path=None, reason="draft")
                continue
            resolution = resolver.resolve_node(node)
            resolved.resolutions[node.id] = resolution
            if resolution.resolved:
                continue
            resolved.unresolved_actual.append(node.id)
            resolved.warnings.append(
                f"Actual node {node.id} ({node.path}) could not be mapped to an indexed file ({resolution.reason})."
            )
            if resolution.ambiguous:
                resolved.questions.append(_ambiguity_question(node.label, resolution))

        nodes = graph.node_by_id()
        for edge in graph.edges:
            source, target = nodes[edge.source], nodes[edge.target]
            if not (source.is_actual and target.is_actual):
                continue
            src_res, dst_res = resolved.resolutions[source.id], resolved.resolutions[target.id]
            if src_res.resolved and dst_res.resolved:
                resolved.desired_pairs.append((src_res.path, dst_res.path))
        return resolved

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    async def commit(
        self,
        payload: Optional[Mapping[str, Any]],
        dirty_node_ids: Optional[Iterable[str]] = None,
    ) -> SyncReport:
        """Apply node instructions from a visual graph to the workspace."""
        payload = payload if isinstance(payload, Mapping) else {}
        if dirty_node_ids is None and isinstance(payload.get("dirtyNodeIds"), list):
            dirty_node_ids = [str(item) for item in payload["dirtyNodeIds"]]

        dependency_graph: DependencyGraph = self.index.get_dependency_graph()
        if not dependency_graph.files:
            logger.warning("Commit requested but no project is indexed")
            return self._empty_index_report()

        graph = normalize_visual_graph(payload)
        resolved = self._resolve(graph, AliasResolver(dependency_graph.files))

        comparison = self.diff_engine.compare(
            resolved.desired_pairs, dependency_graph.edges, len(graph.edges),
        )
        resolved.warnings.extend(self.diff_engine.coverage_warnings(comparison))

        work = self.rewriter.build_updates(graph.nodes, resolved.resolutions, dirty_node_ids)
        logger.info(
            "Commit: %d instructed node(s), %d target file(s)", work.instructed_count, len(work.updates),
        )
        results = await self.rewriter.run(work.updates)
        self.last_results = results
        outcomes = await self.gateway.persist(results)

        return self.assembler.assemble(
            work=work,
            results=results,
            outcomes=outcomes,
            comparison=comparison,
            warnings=resolved.warnings,
            questions=resolved.questions,
            actual_goal_count=len(resolved.actual_goal_nodes()),
            blueprint_goal_count=len(resolved.draft_goal_nodes()),
        )

    # ------------------------------------------------------------------
    # Preview (no writes)
    # ------------------------------------------------------------------

    def _ask_for_plan(self, prompt: str, known_paths: set) -> NormalizedPlan:
        try:
            answer = self.oracle.generate(
                prompt,
                max_retries=self.settings.oracle_max_retries,
                retry_delay_ms=self.settings.oracle_retry_delay_ms,
            )
        except (OracleError, requests.RequestException) as exc:
            logger.warning("Oracle plan request failed: %s", exc)
            plan = NormalizedPlan()
            plan.warnings.append(f"Oracle request failed: {exc}")
            return plan
        return normalize_refactor_plan(extract_json_from_response(answer), known_paths)

    @staticmethod
    def _truncation_warnings(sizes: Iterable[Tuple[str, int, int]]) -> List[str]:
        return [
            f"Prompt context truncated to {limit} {what} out of {total}."
            for what, total, limit in sizes
            if total > limit
        ]

    def preview(self, payload: Optional[Mapping[str, Any]]) -> SyncReport:
        """Ask the oracle for a refactor plan matching the visual graph."""
        dependency_graph: DependencyGraph = self.index.get_dependency_graph()
        if not dependency_graph.files:
            return self._empty_index_report()

        files = dependency_graph.files
        current_edges = dependency_graph.edges
        graph = normalize_visual_graph(payload)
        resolved = self._resolve(graph, AliasResolver(files))
        comparison = self.diff_engine.compare(resolved.desired_pairs, current_edges, len(graph.edges))

        nodes = graph.node_by_id()
        desired_keys = set(resolved.desired_pairs)
        blueprint_edges = [
            {
                "sourceId": edge.source, "sourceKind": nodes[edge.source].kind.value,
                "targetId": edge.target, "targetKind": nodes[edge.target].kind.value,
                "edgeLabel": edge.label,
            }
            for edge in graph.edges
            if (resolved.resolutions[edge.source].path, resolved.resolutions[edge.target].path) not in desired_keys
        ]
        actual_goals = resolved.actual_goal_nodes()
        draft_goals = resolved.draft_goal_nodes()

        hints = {
            "addedEdges": [e.to_dict() for e in comparison.added_edges],
            "removedEdges": [e.to_dict() for e in comparison.removed_edges],
            "actualGoalNodes": [
                {"path": resolved.resolutions[n.id].path, "goal": n.instructions, "label": n.label}
                for n in actual_goals[:MAX_HINT_ITEMS]
            ],
            "blueprintGoalNodes": [
                {"id": n.id, "label": n.label, "goal": n.instructions} for n in draft_goals[:MAX_HINT_ITEMS]
            ],
            "blueprintEdges": blueprint_edges[:120],
            "unresolvedActualNodes": resolved.unresolved_actual[:MAX_HINT_ITEMS],
            "mappingCoverage": comparison.mapping_coverage,
        }
        prompt = build_architect_prompt(
            [{"fullPath": f.full_path, "label": f.label, "language": f.language} for f in files[:MAX_PROMPT_FILES]],
            [e.to_dict() for e in current_edges[:MAX_PROMPT_EDGES]],
            [
                {"id": n.id, "kind": n.kind.value, "path": n.path, "label": n.label, "goal": n.instructions}
                for n in graph.nodes[:MAX_PROMPT_VISUAL_NODES]
            ],
            [
                {"id": e.id, "source": e.source, "target": e.target, "kind": e.kind, "label": e.label}
                for e in graph.edges[:MAX_PROMPT_VISUAL_EDGES]
            ],
            hints,
        )
        plan = self._ask_for_plan(prompt, dependency_graph.known_paths)

        if not plan.plan:
            plan.plan.extend(edge_plan_items(
                comparison.added_edges, comparison.removed_edges,
                added_type="change_import", added_confidence=0.72, removed_confidence=0.7,
                prefix="edge", limit=GRAPH_FALLBACK_LIMIT,
            ))
            for index, node in enumerate(actual_goals[:GRAPH_FALLBACK_LIMIT], 1):
                path = resolved.resolutions[node.id].path
                plan.plan.append(PlanItem(
                    id=f"goal-actual-{index}", type="update_file_goal", file_path=path,
                    reason=f"Goal for {path}: {node.instructions}", confidence=0.62,
                ))
            for index, node in enumerate(draft_goals[:GRAPH_FALLBACK_LIMIT], 1):
                plan.plan.append(PlanItem(
                    id=f"goal-draft-{index}", type="create_module", to_path=node.path,
                    reason=f'Create draft module "{node.label}" to satisfy goal: {node.instructions}',
                    confidence=0.58,
                ))

        warnings = resolved.warnings + plan.warnings
        warnings.extend(self.diff_engine.coverage_warnings(comparison))
        if resolved.unresolved_actual:
            warnings.append(f"{len(resolved.unresolved_actual)} Actual node(s) referenced unknown file paths.")
        warnings.extend(self._truncation_warnings((
            ("files", len(files), MAX_PROMPT_FILES),
            ("edges", len(current_edges), MAX_PROMPT_EDGES),
            ("visual nodes", len(graph.nodes), MAX_PROMPT_VISUAL_NODES),
            ("visual edges", len(graph.edges), MAX_PROMPT_VISUAL_EDGES),
        )))

        report = SyncReport(
            summary=plan.summary or f"Generated {len(plan.plan)} candidate change(s) from the architecture graph.",
            plan=plan.plan,
            warnings=warnings,
            questions=resolved.questions + plan.questions,
        )
        report.comparison = {
            **comparison.to_dict(),
            "actualGoalCount": len(actual_goals),
            "blueprintGoalCount": len(draft_goals),
        }
        return report

    def preview_mermaid(self, text: str, original: str = "") -> SyncReport:
        """Plan the changes that would make the code match a Mermaid design."""
        dependency_graph: DependencyGraph = self.index.get_dependency_graph()
        if not dependency_graph.files:
            return self._empty_index_report()

        files = dependency_graph.files
        current_edges = dependency_graph.edges
        design = parse_mermaid_design(text)
        resolver = AliasResolver(files)
        nodes = design.node_by_id()

        desired: List[Tuple[str, str]] = []
        unresolved: List[Dict[str, str]] = []
        questions: List[str] = []
        for edge in design.edges:
            source, target = nodes[edge.from_id], nodes[edge.to_id]
            src_res = resolver.resolve(source.id, source.label)
            dst_res = resolver.resolve(target.id, target.label)
            for node, res in ((source, src_res), (target, dst_res)):
                if res.ambiguous:
                    question = _ambiguity_question(node.label or node.id, res)
                    if question not in questions:
                        questions.append(question)
            if src_res.resolved and dst_res.resolved:
                desired.append((src_res.path, dst_res.path))
            else:
                unresolved.append({
                    "from": source.id, "to": target.id,
                    "sourceReason": src_res.reason, "targetReason": dst_res.reason,
                })

        comparison = self.diff_engine.compare(desired, current_edges, len(design.edges))
        hints = {
            "parsedMermaidEdges": len(design.edges),
            "mappedDesiredEdges": len(desired),
            "addedEdges": [e.to_dict() for e in comparison.added_edges],
            "removedEdges": [e.to_dict() for e in comparison.removed_edges],
            "unresolvedNodes": unresolved[:30],
            "mappingCoverage": comparison.mapping_coverage,
        }
        prompt = build_design_prompt(
            [
                {"fullPath": f.full_path, "label": f.label, "language": f.language, "imports": f.imports[:20]}
                for f in files[:MAX_PROMPT_FILES]
            ],
            [e.to_dict() for e in current_edges[:MAX_PROMPT_EDGES]],
            text,
            original,
            hints,
        )
        plan = self._ask_for_plan(prompt, dependency_graph.known_paths)

        if not plan.plan:
            plan.plan.extend(edge_plan_items(
                comparison.added_edges, comparison.removed_edges,
                added_type="manual_review", added_confidence=0.4, removed_confidence=0.55,
                prefix="auto-edge", limit=MERMAID_FALLBACK_LIMIT,
            ))

        warnings = list(plan.warnings)
        if comparison.mapping_coverage < self.settings.low_coverage_threshold:
            warnings.append(MERMAID_COVERAGE_WARNING)
        if unresolved:
            warnings.append(f"{len(unresolved)} Mermaid edge(s) could not be mapped to concrete files.")
        warnings.extend(self._truncation_warnings((
            ("files", len(files), MAX_PROMPT_FILES),
            ("edges", len(current_edges), MAX_PROMPT_EDGES),
        )))

        return SyncReport(
            summary=plan.summary or f"Generated {len(plan.plan)} candidate change(s) from Mermaid-to-code sync.",
            plan=plan.plan,
            warnings=warnings,
            questions=questions + plan.questions,
            comparison=comparison.to_dict(),
        )
