"""Prompt templates for the content oracle."""

from __future__ import annotations

import json
from typing import Any, Dict, List

from .models import RewriteUpdate

PLAN_SCHEMA = """{
  "summary": "string",
  "plan": [
    {
      "id": "string",
      "type": "change_import|delete_import|move_file|create_file|create_module|extract_module|rename_symbol|update_file_goal|add_dependency|remove_dependency|manual_review",
      "filePath": "existing/file/path.js",
      "fromPath": "existing/file/path.js",
      "toPath": "new/or/existing/path.js",
      "importFrom": "existing/file/path.js",
      "importTo": "existing/or/new/path.js",
      "symbol": "optional symbol",
      "reason": "single sentence with why",
      "confidence": 0.0
    }
  ],
  "warnings": ["string"],
  "questions": ["string"]
}"""


def build_rewrite_prompt(update: RewriteUpdate, current: str, force_diff: bool = False, previous_issue: str = "") -> str:
    """Ask for a complete replacement of one file."""
    goals = "\n".join(f"{i}. {text}" for i, text in enumerate(update.instructions, 1))
    state = "This file does not exist yet; create it." if not update.exists else "Current file content follows."
    parts = [
        "You are rewriting a single file of a codebase to satisfy the goals below.",
        "",
        f"FILE: {update.relative_path}",
        f"LANGUAGE: {update.language_hint}",
        "",
        "GOALS:",
        goals,
        "",
        "RULES:",
        "- Return the COMPLETE new file content, nothing else.",
        "- No explanations, no markdown fences around the whole file.",
        "- Keep behaviour that the goals do not ask to change.",
    ]
    if force_diff:
        parts.append(
            "- FORCE CONCRETE DIFF: the previous attempt was rejected"
            + (f" ({previous_issue})" if previous_issue else "")
            + ". Make substantive, visible edits that implement every goal."
        )
    parts.extend(["", state, "<<<FILE", current, "FILE>>>"])
    return "\n".join(parts)


def _dump(value: Any) -> str:
    return json.dumps(value, indent=2)


def build_architect_prompt(
    file_catalog: List[Dict[str, Any]],
    current_edges: List[Dict[str, str]],
    visual_nodes: List[Dict[str, Any]],
    visual_edges: List[Dict[str, Any]],
    hints: Dict[str, Any],
) -> str:
    """Turn a modified visual graph into a JSON refactor plan request."""
    return f"""You are a system architect. Convert a modified visual graph into a concrete, minimal refactor plan.

Interpretation rules:
1. An arrow Actual(A) -> Actual(B) means A should depend on B (add or update an import in A).
2. An existing Actual(A) -> Actual(B) dependency missing from the graph should likely be removed.
3. Goal text on an Actual node is a refactor objective for that existing file.
4. A Draft node is a proposed module that may not exist yet.
5. If mapping is ambiguous, output manual_review and ask clarifying questions.

Output JSON only (no markdown):
{PLAN_SCHEMA}

Hard constraints:
- For existing-file operations, use only paths present in FILE_CATALOG.
- Keep actions atomic and executable.
- confidence in [0,1].

FILE_CATALOG:
{_dump(file_catalog)}

CURRENT_AST_EDGES:
{_dump(current_edges)}

VISUAL_GRAPH_NODES:
{_dump(visual_nodes)}

VISUAL_GRAPH_EDGES:
{_dump(visual_edges)}

DETERMINISTIC_DIFF_HINTS:
{_dump(hints)}

Return final JSON only."""


def build_design_prompt(
    file_catalog: List[Dict[str, Any]],
    current_edges: List[Dict[str, str]],
    mermaid: str,
    original_mermaid: str,
    hints: Dict[str, Any],
) -> str:
    """Turn an edited Mermaid diagram into a JSON refactor plan request."""
    return f"""You are generating a concrete codebase refactor plan from an edited architecture diagram.

Return JSON only. Do not include markdown fences.

OUTPUT JSON SCHEMA:
{PLAN_SCHEMA}

HARD RULES:
1. Use only file paths that exist in FILE_CATALOG for filePath/fromPath/importFrom/importTo.
2. Keep the plan minimal and executable. Avoid speculative rewrites.
3. Prefer change_import or move_file when possible.
4. If mapping ambiguity exists, add a manual_review item and a question.
5. confidence must be between 0 and 1.

FILE_CATALOG:
{_dump(file_catalog)}

CURRENT_AST_EDGES:
{_dump(current_edges)}

DESIRED_MERMAID:
{mermaid}

OPTIONAL_ORIGINAL_MERMAID:
{original_mermaid or 'N/A'}

DETERMINISTIC_EDGE_DIFF:
{_dump(hints)}

Produce the final JSON only."""
