"""End-to-end tests for the commit pipeline and the preview flows."""

import asyncio
import json

from conftest import EchoOracle, ScriptedOracle, current_from_prompt, path_from_prompt

from designsync.errors import OracleError
from designsync.orchestrator import MERMAID_COVERAGE_WARNING, SyncOrchestrator


def _actual(node_id, path, instructions=""):
    data = {"kind": "actual", "path": path}
    if instructions:
        data["instructions"] = instructions
    return {"id": node_id, "type": "file", "position": {"x": 0, "y": 0}, "data": data}


def _draft(node_id, label, instructions=""):
    return {"id": node_id, "data": {"kind": "draft", "label": label, "instructions": instructions}}


def _edge(source, target):
    return {"id": f"{source}-{target}", "source": source, "target": target}


def _append_marker(prompt):
    return current_from_prompt(prompt) + "// synced\n"


def _orchestrator(index, workspace, oracle, settings):
    return SyncOrchestrator(index, oracle, workspace, settings)


WIRE_A_TO_B = {
    "nodes": [
        _actual("a", "a.js", "Import helper from b.js and call it from x()"),
        _actual("b", "b.js"),
    ],
    "edges": [_edge("a", "b")],
}


class TestCommit:

    def test_applies_instructions_and_reports_edge_diff(self, indexed_workspace, workspace, fast_settings):
        oracle = ScriptedOracle(_append_marker)
        orchestrator = _orchestrator(indexed_workspace, workspace, oracle, fast_settings)

        report = asyncio.run(orchestrator.commit(WIRE_A_TO_B))

        assert report.applied
        assert report.summary == "Applied 1 file(s) from the architecture graph."
        assert report.comparison["addedEdges"] == [{"source": "a.js", "target": "b.js"}]
        assert {"source": "a.js", "target": "c.js"} in report.comparison["removedEdges"]
        assert report.comparison["mappingCoverage"] == 1.0
        assert report.comparison["actualGoalCount"] == 1
        assert report.comparison["appliedCount"] == 1

        assert [(c.file_path, c.action) for c in report.changed_files] == [("a.js", "updated")]
        assert report.plan[0].id == "commit-1"
        assert report.plan[0].confidence == 0.9
        assert (workspace / "a.js").read_text(encoding="utf-8").endswith("// synced\n")
        assert [path_from_prompt(p) for p in oracle.prompts] == ["a.js"]

    def test_only_instructed_files_are_touched(self, indexed_workspace, workspace, fast_settings):
        before = (workspace / "b.js").read_text(encoding="utf-8")
        orchestrator = _orchestrator(indexed_workspace, workspace, ScriptedOracle(_append_marker), fast_settings)

        asyncio.run(orchestrator.commit(WIRE_A_TO_B))

        assert (workspace / "b.js").read_text(encoding="utf-8") == before
        assert orchestrator.last_results[0].update.relative_path == "a.js"

    def test_empty_dirty_selection_applies_nothing(self, indexed_workspace, workspace, fast_settings):
        oracle = ScriptedOracle(_append_marker)
        orchestrator = _orchestrator(indexed_workspace, workspace, oracle, fast_settings)

        report = asyncio.run(orchestrator.commit({**WIRE_A_TO_B, "dirtyNodeIds": []}))

        assert report.summary == "No edited nodes were selected for commit."
        assert not report.applied
        assert report.comparison["appliedCount"] == 0
        assert oracle.prompts == []

    def test_dirty_selection_from_argument(self, indexed_workspace, workspace, fast_settings):
        payload = {
            "nodes": [_actual("a", "a.js", "add a comment"), _actual("c", "c.js", "export a second value")],
            "edges": [],
        }
        oracle = ScriptedOracle(_append_marker)
        orchestrator = _orchestrator(indexed_workspace, workspace, oracle, fast_settings)

        report = asyncio.run(orchestrator.commit(payload, dirty_node_ids=["c"]))

        assert [c.file_path for c in report.changed_files] == ["c.js"]
        assert "// synced" not in (workspace / "a.js").read_text(encoding="utf-8")

    def test_two_spellings_of_one_file_write_once(self, indexed_workspace, workspace, fast_settings, monkeypatch):
        index_writes = []
        update_file = indexed_workspace.update_file

        def counting_update(path, content):
            index_writes.append(path)
            return update_file(path, content)

        monkeypatch.setattr(indexed_workspace, "update_file", counting_update)
        payload = {
            "nodes": [
                _actual("a", "./a.js", "FIRST goal"),
                {"id": "d", "data": {"kind": "draft", "path": "pkg/../a.js", "instructions": "SECOND goal"}},
            ],
            "edges": [],
        }
        oracle = ScriptedOracle(_append_marker)
        orchestrator = _orchestrator(indexed_workspace, workspace, oracle, fast_settings)

        report = asyncio.run(orchestrator.commit(payload))

        assert [(c.file_path, c.action) for c in report.changed_files] == [("a.js", "updated")]
        [prompt] = oracle.prompts
        assert "FIRST goal" in prompt and "SECOND goal" in prompt
        assert index_writes == ["a.js"]
        assert (workspace / "a.js").read_text(encoding="utf-8").count("// synced") == 1
        assert "pkg/../a.js" not in indexed_workspace.known_paths()

    def test_unencodable_reply_does_not_stop_other_writes(self, indexed_workspace, workspace, fast_settings):
        before = (workspace / "a.js").read_bytes()

        def reply(prompt):
            if path_from_prompt(prompt) == "a.js":
                return current_from_prompt(prompt) + "// \ud800\n"
            return _append_marker(prompt)

        payload = {"nodes": [_actual("a", "a.js", "tag a"), _actual("c", "c.js", "tag c")], "edges": []}
        orchestrator = _orchestrator(indexed_workspace, workspace, ScriptedOracle(reply), fast_settings)

        report = asyncio.run(orchestrator.commit(payload))

        by_path = {c.file_path: c for c in report.changed_files}
        assert by_path["a.js"].action == "failed"
        assert by_path["a.js"].error.startswith("write failed")
        assert by_path["c.js"].action == "updated"
        assert (workspace / "a.js").read_bytes() == before
        assert (workspace / "c.js").read_text(encoding="utf-8").endswith("// synced\n")

    def test_named_file_outside_index_is_rewritten(self, indexed_workspace, workspace, fast_settings):
        (workspace / "docs").mkdir()
        (workspace / "docs" / "utils-notes.js").write_text("// notes\n", encoding="utf-8")
        utils_before = (workspace / "pkg" / "utils.py").read_text(encoding="utf-8")
        payload = {"nodes": [_actual("utils-notes", "docs/utils-notes.js", "Add a usage note")], "edges": []}
        orchestrator = _orchestrator(indexed_workspace, workspace, ScriptedOracle(_append_marker), fast_settings)

        report = asyncio.run(orchestrator.commit(payload))

        assert [(c.file_path, c.action) for c in report.changed_files] == [("docs/utils-notes.js", "updated")]
        assert (workspace / "docs" / "utils-notes.js").read_text(encoding="utf-8") == "// notes\n// synced\n"
        assert (workspace / "pkg" / "utils.py").read_text(encoding="utf-8") == utils_before

    def test_missing_named_file_is_not_redirected(self, indexed_workspace, workspace, fast_settings):
        utils_before = (workspace / "pkg" / "utils.py").read_text(encoding="utf-8")
        payload = {"nodes": [_actual("utils-notes", "docs/utils-notes.js", "Add a usage note")], "edges": []}
        oracle = ScriptedOracle(_append_marker)
        orchestrator = _orchestrator(indexed_workspace, workspace, oracle, fast_settings)

        report = asyncio.run(orchestrator.commit(payload))

        assert report.changed_files == []
        assert oracle.prompts == []
        assert any("alias match pkg/utils.py was not used" in w for w in report.warnings)
        assert (workspace / "pkg" / "utils.py").read_text(encoding="utf-8") == utils_before

    def test_draft_node_creates_file(self, indexed_workspace, workspace, fast_settings):
        payload = {"nodes": [_draft("billing", "Billing Service", "Export a charge() function")], "edges": []}
        oracle = ScriptedOracle("export function charge() {\n  return true;\n}\n")
        orchestrator = _orchestrator(indexed_workspace, workspace, oracle, fast_settings)

        report = asyncio.run(orchestrator.commit(payload))

        created = workspace / "src" / "billing-service.js"
        assert created.read_text(encoding="utf-8").startswith("export function charge()")
        assert report.changed_files[0].action == "created"
        assert report.plan[0].type == "create_file"
        assert report.plan[0].to_path == "src/billing-service.js"
        assert report.comparison["blueprintGoalCount"] == 1
        assert "src/billing-service.js" in indexed_workspace.known_paths()

    def test_markdown_rewrite_is_accepted(self, indexed_workspace, workspace, fast_settings):
        payload = {"nodes": [_actual("readme", "README.md", "Document how to run pkg.main")], "edges": []}
        rewritten = (
            "# Sample\n\n"
            "Call `pkg.main.run(name)` to get a slug for any name.\n\n"
            "## Running\n\n"
            "Import the package and pass a string.\n"
        )
        orchestrator = _orchestrator(indexed_workspace, workspace, ScriptedOracle(rewritten), fast_settings)

        report = asyncio.run(orchestrator.commit(payload))

        assert (workspace / "README.md").read_text(encoding="utf-8") == rewritten
        assert not report.changed_files[0].forced_fallback
        assert report.plan[0].confidence == 0.9

    def test_unchanged_reply_falls_back(self, indexed_workspace, workspace, fast_settings):
        payload = {"nodes": [_actual("readme", "README.md", "Document how to run pkg.main")], "edges": []}
        oracle = EchoOracle()
        orchestrator = _orchestrator(indexed_workspace, workspace, oracle, fast_settings)

        report = asyncio.run(orchestrator.commit(payload))

        changed = report.changed_files[0]
        assert changed.forced_fallback
        assert changed.action == "updated"
        assert report.plan[0].confidence == 0.65
        assert len(oracle.prompts) == fast_settings.max_attempts
        assert "## Enforcement Addendum" in (workspace / "README.md").read_text(encoding="utf-8")

    def test_oracle_failure_is_reported(self, indexed_workspace, workspace, fast_settings):
        oracle = ScriptedOracle(OracleError("invalid api key", status=401))
        orchestrator = _orchestrator(indexed_workspace, workspace, oracle, fast_settings)
        before = (workspace / "a.js").read_text(encoding="utf-8")

        report = asyncio.run(orchestrator.commit(WIRE_A_TO_B))

        assert not report.applied
        assert report.changed_files[0].action == "failed"
        assert "a.js: invalid api key" in report.warnings
        assert (workspace / "a.js").read_text(encoding="utf-8") == before

    def test_unresolved_actual_node(self, indexed_workspace, workspace, fast_settings):
        payload = {
            "nodes": [_actual("ghost", "ghost.js"), _actual("pkg", "pkg"), _actual("a", "a.js")],
            "edges": [_edge("ghost", "a"), _edge("pkg", "a")],
        }
        orchestrator = _orchestrator(indexed_workspace, workspace, EchoOracle(), fast_settings)

        report = asyncio.run(orchestrator.commit(payload))

        assert any("ghost (ghost.js) could not be mapped" in w for w in report.warnings)
        assert report.questions == [
            "Which file does 'pkg' refer to? Candidates: pkg/__init__.py, pkg/main.py, pkg/utils.py."
        ]
        assert report.comparison["mappingCoverage"] == 0.0
        assert report.summary == "No node instructions to apply."

    def test_empty_index(self, empty_index, workspace, fast_settings):
        orchestrator = _orchestrator(empty_index, workspace, EchoOracle(), fast_settings)

        report = asyncio.run(orchestrator.commit(WIRE_A_TO_B))

        assert report.summary == "No project indexed yet."
        assert report.warnings == ["Index a project before running architecture sync."]
        assert report.questions == ["Should the backend trigger indexing first?"]
        assert report.comparison["mappingCoverage"] == 0.0

    def test_malformed_payload(self, indexed_workspace, workspace, fast_settings):
        orchestrator = _orchestrator(indexed_workspace, workspace, EchoOracle(), fast_settings)
        report = asyncio.run(orchestrator.commit({"nodes": "nope", "edges": [42]}))
        assert report.summary == "No node instructions to apply."
        assert "Skipped edge #1 because it is not an object." in report.warnings


class TestPreview:

    def test_uses_oracle_plan(self, indexed_workspace, workspace, fast_settings):
        answer = json.dumps({
            "summary": "Wire a.js to b.js",
            "plan": [{"type": "change_import", "filePath": "a.js", "importFrom": "b.js", "confidence": 0.8}],
            "questions": ["Keep c.js?"],
        })
        orchestrator = _orchestrator(indexed_workspace, workspace, ScriptedOracle(answer), fast_settings)

        report = orchestrator.preview(WIRE_A_TO_B)

        assert report.summary == "Wire a.js to b.js"
        assert [(p.type, p.confidence) for p in report.plan] == [("change_import", 0.8)]
        assert report.questions == ["Keep c.js?"]
        assert not report.applied
        assert "// synced" not in (workspace / "a.js").read_text(encoding="utf-8")

    def test_falls_back_to_edge_diff(self, indexed_workspace, workspace, fast_settings):
        orchestrator = _orchestrator(indexed_workspace, workspace, ScriptedOracle("not json"), fast_settings)

        report = orchestrator.preview(WIRE_A_TO_B)

        first = report.plan[0]
        assert (first.id, first.type, first.confidence) == ("edge-add-1", "change_import", 0.72)
        assert (first.file_path, first.import_from) == ("a.js", "b.js")
        removals = [p for p in report.plan if p.type == "delete_import"]
        assert {p.confidence for p in removals} == {0.7}
        goal = [p for p in report.plan if p.id == "goal-actual-1"][0]
        assert goal.type == "update_file_goal" and goal.confidence == 0.62
        assert "Oracle response was not valid JSON." in report.warnings
        assert report.summary == f"Generated {len(report.plan)} candidate change(s) from the architecture graph."

    def test_draft_goal_fallback(self, indexed_workspace, workspace, fast_settings):
        payload = {"nodes": [_draft("billing", "Billing Service", "Export charge()")], "edges": []}
        orchestrator = _orchestrator(indexed_workspace, workspace, ScriptedOracle("{}"), fast_settings)

        report = orchestrator.preview(payload)

        draft = [p for p in report.plan if p.id == "goal-draft-1"][0]
        assert draft.type == "create_module"
        assert draft.to_path == "src/billing-service.js"
        assert draft.confidence == 0.58
        assert not (workspace / "src" / "billing-service.js").exists()

    def test_oracle_error_becomes_warning(self, indexed_workspace, workspace, fast_settings):
        oracle = ScriptedOracle(OracleError("provider unreachable"))
        orchestrator = _orchestrator(indexed_workspace, workspace, oracle, fast_settings)

        report = orchestrator.preview(WIRE_A_TO_B)

        assert "Oracle request failed: provider unreachable" in report.warnings
        assert report.plan

    def test_empty_index(self, empty_index, workspace, fast_settings):
        report = _orchestrator(empty_index, workspace, EchoOracle(), fast_settings).preview(WIRE_A_TO_B)
        assert report.summary == "No project indexed yet."


class TestPreviewMermaid:

    def test_fallback_items(self, indexed_workspace, workspace, fast_settings):
        orchestrator = _orchestrator(indexed_workspace, workspace, ScriptedOracle("not json"), fast_settings)

        report = orchestrator.preview_mermaid("graph TD\n  b.js --> c.js\n  a.js --> c.js\n")

        assert report.comparison["addedEdges"] == [{"source": "b.js", "target": "c.js"}]
        assert report.comparison["removedEdges"] == [{"source": "pkg/main.py", "target": "pkg/utils.py"}]
        added = report.plan[0]
        assert (added.id, added.type, added.confidence) == ("auto-edge-add-1", "manual_review", 0.4)
        removed = report.plan[1]
        assert (removed.id, removed.type, removed.confidence) == ("auto-edge-remove-1", "delete_import", 0.55)
        assert MERMAID_COVERAGE_WARNING not in report.warnings
        assert report.summary == "Generated 2 candidate change(s) from Mermaid-to-code sync."

    def test_unmapped_nodes_lower_coverage(self, indexed_workspace, workspace, fast_settings):
        orchestrator = _orchestrator(indexed_workspace, workspace, ScriptedOracle("not json"), fast_settings)

        report = orchestrator.preview_mermaid("flowchart LR\n  Nowhere --> c.js\n")

        assert report.comparison["mappingCoverage"] == 0.0
        assert MERMAID_COVERAGE_WARNING in report.warnings
        assert "1 Mermaid edge(s) could not be mapped to concrete files." in report.warnings

    def test_prompt_carries_both_diagrams(self, indexed_workspace, workspace, fast_settings):
        oracle = ScriptedOracle("{}")
        orchestrator = _orchestrator(indexed_workspace, workspace, oracle, fast_settings)

        orchestrator.preview_mermaid("graph TD\n  a.js --> b.js\n", original="graph TD\n  a.js --> c.js\n")

        assert "a.js --> b.js" in oracle.prompts[0]
        assert "a.js --> c.js" in oracle.prompts[0]
