"""Plan assembly: the reviewable report produced at the end of a sync."""

from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from .models import (
    PLAN_ITEM_TYPES,
    ChangedFile,
    DependencyEdge,
    EdgeComparison,
    PersistOutcome,
    PlanItem,
    RewriteResult,
    RewriteStatus,
    SyncReport,
)

logger = logging.getLogger(__name__)

CONFIDENCE_CLEAN = 0.9
CONFIDENCE_FALLBACK = 0.65
CONFIDENCE_NOOP = 0.55

SUMMARY_NOTHING_SELECTED = "No edited nodes were selected for commit."
SUMMARY_NO_INSTRUCTIONS = "No node instructions to apply."

_NEW_FILE_PATH_TYPES = {"create_module", "create_file"}
_NEW_TO_PATH_TYPES = {"move_file", "create_module", "create_file"}


def clamp_confidence(value: Any) -> float:
    """Clamp to [0, 1] with 3 decimals; anything non-numeric becomes 0.5."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.5
    if math.isnan(number) or math.isinf(number):
        return 0.5
    return round(min(max(number, 0.0), 1.0), 3)


def extract_json_from_response(answer: Optional[str]) -> Optional[Dict[str, Any]]:
    """Pull a JSON object out of an LLM reply (raw, fenced, or embedded)."""
    if not answer or not isinstance(answer, str):
        return None
    trimmed = answer.strip()
    if not trimmed:
        return None

    def try_parse(value: str) -> Optional[Dict[str, Any]]:
        try:
            parsed = json.loads(value)
        except ValueError:
            return None
        return parsed if isinstance(parsed, dict) else None

    direct = try_parse(trimmed)
    if direct is not None:
        return direct

    fenced = re.search(r"```(?:json)?\s*([\s\S]*?)```", trimmed, re.IGNORECASE)
    if fenced:
        from_block = try_parse(fenced.group(1).strip())
        if from_block is not None:
            return from_block

    first, last = trimmed.find("{"), trimmed.rfind("}")
    if first != -1 and last > first:
        return try_parse(trimmed[first:last + 1])
    return None


def _text(item: Dict[str, Any], key: str) -> str:
    value = item.get(key)
    return value.strip() if isinstance(value, str) else ""


@dataclass
class NormalizedPlan:
    summary: str = ""
    plan: List[PlanItem] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    questions: List[str] = field(default_factory=list)


def normalize_refactor_plan(raw: Optional[Dict[str, Any]], known_paths: Set[str]) -> NormalizedPlan:
    """Validate an oracle-produced plan against the indexed file set."""
    result = NormalizedPlan()
    if not isinstance(raw, dict):
        result.warnings.append("Oracle response was not valid JSON.")
        return result

    if isinstance(raw.get("summary"), str):
        result.summary = raw["summary"].strip()
    for key, target in (("warnings", result.warnings), ("questions", result.questions)):
        for entry in raw.get(key) or []:
            if isinstance(entry, str) and entry.strip():
                target.append(entry.strip())

    for index, item in enumerate(raw.get("plan") or []):
        if not isinstance(item, dict):
            continue
        item_type = item.get("type") if item.get("type") in PLAN_ITEM_TYPES else "manual_review"
        normalized = PlanItem(
            id=_text(item, "id") or f"plan-{index + 1}",
            type=item_type,
            file_path=_text(item, "filePath"),
            from_path=_text(item, "fromPath"),
            to_path=_text(item, "toPath"),
            import_from=_text(item, "importFrom"),
            import_to=_text(item, "importTo"),
            symbol=_text(item, "symbol"),
            reason=_text(item, "reason") or _text(item, "description"),
            confidence=clamp_confidence(item.get("confidence")),
        )

        checks = (
            ("filePath", normalized.file_path, item_type not in _NEW_FILE_PATH_TYPES),
            ("fromPath", normalized.from_path, True),
            ("toPath", normalized.to_path, item_type not in _NEW_TO_PATH_TYPES),
            ("importFrom", normalized.import_from, True),
            ("importTo", normalized.import_to, item_type not in _NEW_FILE_PATH_TYPES),
        )
        for label, value, must_exist in checks:
            if value and must_exist and value not in known_paths:
                result.warnings.append(f"Plan item {normalized.id} references unknown {label}: {value}")

        result.plan.append(normalized)
    return result


def edge_plan_items(
    added: Sequence[DependencyEdge],
    removed: Sequence[DependencyEdge],
    *,
    added_type: str,
    added_confidence: float,
    removed_confidence: float,
    prefix: str,
    limit: int,
) -> List[PlanItem]:
    """Deterministic plan items for an edge diff when the oracle offers none."""
    items: List[PlanItem] = []
    for index, edge in enumerate(added[:limit], 1):
        items.append(PlanItem(
            id=f"{prefix}-add-{index}",
            type=added_type,
            file_path=edge.source,
            import_from=edge.target,
            reason=f"Design adds dependency {edge.source} -> {edge.target}.",
            confidence=added_confidence,
        ))
    for index, edge in enumerate(removed[:limit], 1):
        items.append(PlanItem(
            id=f"{prefix}-remove-{index}",
            type="delete_import",
            file_path=edge.source,
            import_from=edge.target,
            reason=f"Design removes dependency {edge.source} -> {edge.target}. Delete the import if unused.",
            confidence=removed_confidence,
        ))
    return items


class PlanAssembler:
    """Builds the final :class:`SyncReport` for a commit."""

    def _changed_file(self, result: RewriteResult, outcome: PersistOutcome) -> ChangedFile:
        update = result.update
        before = update.current_content
        written = outcome.written
        after = result.rewritten_content if written else before

        if written:
            action = "updated" if update.exists else "created"
        elif result.status is RewriteStatus.SKIPPED:
            action = "unchanged"
        else:
            action = "failed"

        return ChangedFile(
            file_path=update.relative_path,
            action=action,
            changed=written and after != before,
            bytes_before=len(before.encode("utf-8")),
            bytes_after=len(after.encode("utf-8")),
            instructions=update.instruction_text,
            rewrite_attempts=result.attempts,
            forced_fallback=result.forced_fallback,
            change_ratio=result.change_ratio if written else 0.0,
            fallback_reason=result.fallback_reason,
            error=outcome.error or result.error,
        )

    def _plan_item(self, index: int, result: RewriteResult, changed: ChangedFile) -> PlanItem:
        update = result.update
        goal = "; ".join(update.instructions)
        if changed.action in ("updated", "created") and not result.forced_fallback:
            confidence, reason = CONFIDENCE_CLEAN, f"Rewrote {update.relative_path} to satisfy: {goal}"
        elif changed.action in ("updated", "created"):
            confidence = CONFIDENCE_FALLBACK
            reason = f"Applied guaranteed-diff fallback to {update.relative_path} ({result.fallback_reason}). Goal: {goal}"
        else:
            confidence = CONFIDENCE_NOOP
            reason = f"No change applied to {update.relative_path}: {changed.error or 'no acceptable rewrite'}. Goal: {goal}"

        return PlanItem(
            id=f"commit-{index}",
            type="update_file_goal" if update.exists else "create_file",
            file_path=update.relative_path,
            to_path="" if update.exists else update.relative_path,
            reason=reason,
            confidence=clamp_confidence(confidence),
        )

    def assemble(
        self,
        *,
        work,
        results: List[RewriteResult],
        outcomes: List[PersistOutcome],
        comparison: EdgeComparison,
        warnings: Iterable[str],
        questions: Iterable[str],
        actual_goal_count: int,
        blueprint_goal_count: int,
    ) -> SyncReport:
        """
        Args:
            work: The :class:`~designsync.rewrite.WorkList` the commit ran on
            results: Rewrite results in submission order
            outcomes: Persist outcomes, one per result, same order
            comparison: Edge diff for the graph
            warnings: Warnings from normalization, resolution and diffing
            questions: Clarifying questions for the caller
        """
        report = SyncReport(summary="", warnings=list(warnings), questions=list(questions))
        report.warnings.extend(work.warnings)

        for index, (result, outcome) in enumerate(zip(results, outcomes), 1):
            changed = self._changed_file(result, outcome)
            report.changed_files.append(changed)
            report.plan.append(self._plan_item(index, result, changed))
            if changed.error:
                report.warnings.append(f"{changed.file_path}: {changed.error}")

        applied_count = sum(1 for o in outcomes if o.written)
        skipped_count = (
            (len(results) - applied_count) + len(work.capped_paths) + len(work.rejected_nodes)
        )
        report.applied = applied_count > 0

        if work.selection_empty:
            report.summary = SUMMARY_NOTHING_SELECTED
        elif work.instructed_count == 0:
            report.summary = SUMMARY_NO_INSTRUCTIONS
        else:
            report.summary = f"Applied {applied_count} file(s) from the architecture graph."
            if skipped_count:
                report.summary += f" {skipped_count} instructed target(s) were not applied."

        report.comparison = {
            **comparison.to_dict(),
            "actualGoalCount": actual_goal_count,
            "blueprintGoalCount": blueprint_goal_count,
            "appliedCount": applied_count,
            "skippedCount": skipped_count,
        }
        logger.info("Commit report: %s", report.summary)
        return report
