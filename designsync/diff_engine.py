"""DiffEngine for comparing desired and actual dependency structure."""

from __future__ import annotations

import difflib
import logging
from typing import Dict, Iterable, List, Tuple

from .graph_normalizer import normalize_path
from .models import DependencyEdge, EdgeComparison

logger = logging.getLogger(__name__)

LOW_COVERAGE_WARNING = (
    "Low mapping coverage between visual edges and concrete files. "
    "Name graph nodes closer to real file names or keep valid paths on Actual nodes."
)


def change_ratio(before: str, after: str) -> float:
    """Approximate how much of a file changed, comparing lines by position.

    Line ``i`` of ``before`` is compared with line ``i`` of ``after`` only, so
    an insertion near the top counts every following line as changed.  This
    is an approximation, not a sequence diff.
    """
    before_lines = before.split("\n")
    after_lines = after.split("\n")
    longest = max(len(before_lines), len(after_lines))
    if longest == 0:
        return 0.0
    matched = sum(
        1 for a, b in zip(before_lines, after_lines) if a == b
    )
    return 1.0 - (matched / longest)


def create_diff(original: str, modified: str, filename: str = "file") -> str:
    """Create unified diff between two versions.

    Args:
        original: Original content
        modified: Modified content
        filename: Name of file for diff header

    Returns:
        Unified diff string
    """
    diff = difflib.unified_diff(
        original.splitlines(keepends=True),
        modified.splitlines(keepends=True),
        fromfile=f"a/{filename}",
        tofile=f"b/{filename}",
    )
    return "".join(diff)


class DiffEngine:
    """Compares resolved design edges against the source dependency graph."""

    def __init__(self, low_coverage_threshold: float = 0.6):
        self.low_coverage_threshold = low_coverage_threshold

    @staticmethod
    def _keyed(pairs: Iterable[Tuple[str, str]]) -> Dict[str, DependencyEdge]:
        keyed: Dict[str, DependencyEdge] = {}
        for source, target in pairs:
            edge = DependencyEdge(normalize_path(source), normalize_path(target))
            keyed.setdefault(edge.key, edge)
        return keyed

    def compare(
        self,
        desired: Iterable[Tuple[str, str]],
        current: Iterable[DependencyEdge],
        total_visual_edges: int,
    ) -> EdgeComparison:
        """Diff desired edges against current edges.

        Args:
            desired: ``(source, target)`` path pairs resolved from the graph
            current: Ground-truth dependency edges from the source index
            total_visual_edges: Number of edges in the visual graph, resolved or not

        Returns:
            EdgeComparison with added/removed edges and mapping coverage
        """
        desired_list = list(desired)
        current_list = list(current)
        desired_set = self._keyed(desired_list)
        current_set = self._keyed((e.source, e.target) for e in current_list)

        added = [edge for key, edge in desired_set.items() if key not in current_set]
        removed = [edge for key, edge in current_set.items() if key not in desired_set]

        coverage = len(desired_list) / total_visual_edges if total_visual_edges > 0 else 1.0

        comparison = EdgeComparison(
            current_edge_count=len(current_list),
            desired_edge_count=total_visual_edges,
            mapped_desired_edge_count=len(desired_list),
            added_edges=added,
            removed_edges=removed,
            mapping_coverage=round(coverage, 3),
        )
        logger.info(
            "Edge diff: +%d / -%d (coverage %.3f)",
            len(added), len(removed), comparison.mapping_coverage,
        )
        return comparison

    def coverage_warnings(self, comparison: EdgeComparison) -> List[str]:
        if comparison.mapping_coverage < self.low_coverage_threshold:
            return [LOW_COVERAGE_WARNING]
        return []
