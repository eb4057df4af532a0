"""Tests for edge comparison, change ratio and unified diffs."""

from designsync.diff_engine import LOW_COVERAGE_WARNING, DiffEngine, change_ratio, create_diff
from designsync.models import DependencyEdge


class TestChangeRatio:

    def test_identical(self):
        assert change_ratio("a\nb\n", "a\nb\n") == 0.0

    def test_one_line_of_four(self):
        assert change_ratio("a\nb\nc\nd", "a\nb\nc\nX") == 0.25

    def test_positional_insertion_counts_everything_after(self):
        # inserting at the top shifts every line, so nothing matches by position
        assert change_ratio("a\nb\nc", "new\na\nb\nc") == 1.0

    def test_longer_side_is_denominator(self):
        assert change_ratio("a", "a\nb\nc\nd") == 0.75


class TestCompare:

    def test_added_and_removed(self):
        engine = DiffEngine()
        current = [DependencyEdge("a.js", "c.js"), DependencyEdge("b.js", "c.js")]
        result = engine.compare([("a.js", "b.js"), ("./a.js", "c.js")], current, total_visual_edges=2)

        assert [e.key for e in result.added_edges] == ["a.js=>b.js"]
        assert [e.key for e in result.removed_edges] == ["b.js=>c.js"]
        assert result.mapping_coverage == 1.0
        assert result.current_edge_count == 2
        assert result.mapped_desired_edge_count == 2

    def test_coverage_when_no_visual_edges(self):
        result = DiffEngine().compare([], [], total_visual_edges=0)
        assert result.mapping_coverage == 1.0

    def test_coverage_rounded(self):
        result = DiffEngine().compare([("a", "b")], [], total_visual_edges=3)
        assert result.mapping_coverage == 0.333

    def test_low_coverage_warning(self):
        engine = DiffEngine(low_coverage_threshold=0.6)
        low = engine.compare([("a", "b")], [], total_visual_edges=2)
        assert engine.coverage_warnings(low) == [LOW_COVERAGE_WARNING]
        full = engine.compare([("a", "b")], [], total_visual_edges=1)
        assert engine.coverage_warnings(full) == []

    def test_to_dict_uses_wire_names(self):
        result = DiffEngine().compare([("a", "b")], [], total_visual_edges=1)
        payload = result.to_dict()
        assert payload["addedEdges"] == [{"source": "a", "target": "b"}]
        assert payload["mappingCoverage"] == 1.0


def test_create_diff():
    diff = create_diff("one\ntwo\n", "one\n2\n", "f.txt")
    assert "--- a/f.txt" in diff
    assert "+++ b/f.txt" in diff
    assert "-two" in diff
    assert "+2" in diff
