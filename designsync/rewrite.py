"""RewriteOrchestrator: turn per-file instructions into concrete new content.

Each instructed file goes through the same small state machine::

    pending -> attempting (1..K) -> accepted
                                 -> fallback applied
                                 -> failed

Files are processed by a fixed pool of asyncio workers pulling from one
shared cursor.  Results are stored by submission index, so callers see them
in work-list order regardless of which worker finished first.  Nothing is
written here; see :mod:`designsync.persistence`.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from .config import SyncSettings
from .content_rules import (
    ensure_trailing_newline,
    language_hint,
    markdown_quality,
    requires_full_rewrite,
    strip_code_fence,
    synthesize_fallback,
)
from .diff_engine import change_ratio
from .errors import PathEscapeError
from .graph_normalizer import normalize_path, resolve_inside_root
from .models import GraphNode, NodeKind, Resolution, RewriteResult, RewriteStatus, RewriteUpdate
from .prompts import build_rewrite_prompt
from .retry import is_retryable

logger = logging.getLogger(__name__)


@dataclass
class WorkList:
    """Output of :meth:`RewriteOrchestrator.build_updates`."""
    updates: List[RewriteUpdate] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    capped_paths: List[str] = field(default_factory=list)
    rejected_nodes: List[str] = field(default_factory=list)
    selection_empty: bool = False
    instructed_count: int = 0


class RewriteOrchestrator:
    """Bounded-concurrency rewrite of instructed files through the content oracle."""

    def __init__(self, oracle, workspace_root: Path, settings: Optional[SyncSettings] = None):
        """
        Args:
            oracle: Object with ``generate(prompt, max_retries=, retry_delay_ms=) -> str``
            workspace_root: Directory every target path must stay inside
            settings: Commit tunables (defaults from :class:`SyncSettings`)
        """
        self.oracle = oracle
        self.workspace_root = Path(workspace_root)
        self.settings = settings or SyncSettings()

    # ------------------------------------------------------------------
    # Work list
    # ------------------------------------------------------------------

    def _target_path(self, node: GraphNode, resolution: Optional[Resolution]) -> Tuple[str, Optional[str]]:
        """Return ``(target, problem)`` for an instructed node.

        An Actual node that names its own file keeps that file when it exists
        on disk, even if it was never indexed.  A name-based match to some
        other file is refused rather than written.
        """
        named = normalize_path(node.path)
        if not node.is_actual or resolution is None or not resolution.resolved:
            return named, None
        if not node.explicit_path or resolution.path == named:
            return resolution.path, None
        try:
            on_disk = resolve_inside_root(self.workspace_root, named)
        except PathEscapeError:
            return named, None
        if on_disk.is_file():
            return named, None
        try:
            if on_disk == resolve_inside_root(self.workspace_root, resolution.path):
                return resolution.path, None
        except PathEscapeError:
            pass
        return "", (
            f"Node {node.id} points at {named}, which is not in the workspace; "
            f"alias match {resolution.path} was not used."
        )

    def build_updates(
        self,
        nodes: Iterable[GraphNode],
        resolutions: Dict[str, Resolution],
        selected_ids: Optional[Iterable[str]] = None,
    ) -> WorkList:
        """Merge instructed nodes into one update per target path.

        Only nodes in ``selected_ids`` (when given) are eligible.  Distinct
        targets are capped at ``commit_limit`` unless specific nodes were
        selected, in which case the size of the selection is the cap.
        """
        selected = set(selected_ids) if selected_ids is not None else None
        node_list = list(nodes)
        work = WorkList()

        eligible = [n for n in node_list if selected is None or n.id in selected]
        work.selection_empty = selected is not None and not eligible
        queue = [n for n in eligible if n.instructions.strip()]
        work.instructed_count = len(queue)

        root = self.workspace_root.resolve()
        merged: Dict[str, RewriteUpdate] = {}
        for node in queue:
            target, problem = self._target_path(node, resolutions.get(node.id))
            if problem:
                work.warnings.append(problem)
                work.rejected_nodes.append(node.id)
                continue
            if not target:
                work.warnings.append(f"Node {node.id} has instructions but no target path; skipped.")
                work.rejected_nodes.append(node.id)
                continue
            try:
                absolute = resolve_inside_root(self.workspace_root, target)
            except PathEscapeError as exc:
                work.warnings.append(f"Rejected node {node.id}: {exc}.")
                work.rejected_nodes.append(node.id)
                continue

            # Different spellings of one file share a single update.
            key = str(absolute)
            update = merged.get(key)
            if update is None:
                rel = absolute.relative_to(root).as_posix()
                merged[key] = RewriteUpdate(
                    relative_path=rel,
                    absolute_path=key,
                    node_kind=node.kind,
                    node_ids=[node.id],
                    instructions=[node.instructions],
                    language_hint=language_hint(rel),
                )
                continue
            update.node_ids.append(node.id)
            update.instructions.append(node.instructions)
            if node.is_actual:
                update.node_kind = NodeKind.ACTUAL

        updates = list(merged.values())
        limit = len(selected) if selected else self.settings.commit_limit
        work.updates = updates[:limit]
        work.capped_paths = [u.relative_path for u in updates[limit:]]
        if work.capped_paths:
            work.warnings.append(
                f"Commit limit of {limit} file(s) reached; skipped {len(work.capped_paths)} "
                f"file(s): {', '.join(work.capped_paths)}. Select nodes explicitly to apply them."
            )
        return work

    # ------------------------------------------------------------------
    # Worker pool
    # ------------------------------------------------------------------

    async def run(self, updates: List[RewriteUpdate]) -> List[RewriteResult]:
        """Process every update; results come back in submission order."""
        if not updates:
            return []

        results: List[Optional[RewriteResult]] = [None] * len(updates)
        cursor = iter(enumerate(updates))

        async def worker(worker_id: int) -> None:
            for index, update in cursor:
                logger.debug("worker %d picked %s", worker_id, update.relative_path)
                results[index] = await self.process(update)

        pool_size = max(1, min(self.settings.workers, len(updates)))
        await asyncio.gather(*(worker(i) for i in range(pool_size)))
        return [r for r in results if r is not None]

    # ------------------------------------------------------------------
    # Per-file state machine
    # ------------------------------------------------------------------

    @staticmethod
    def _read_current(path: Path) -> Tuple[bool, str]:
        if not path.exists():
            return False, ""
        with open(path, "r", encoding="utf-8", newline="") as handle:
            return True, handle.read()

    def _generate(self, prompt: str) -> str:
        return self.oracle.generate(
            prompt,
            max_retries=self.settings.oracle_max_retries,
            retry_delay_ms=self.settings.oracle_retry_delay_ms,
        )

    async def process(self, update: RewriteUpdate) -> RewriteResult:
        rel = update.relative_path
        try:
            exists, current = await asyncio.to_thread(self._read_current, Path(update.absolute_path))
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Could not read %s: %s", rel, exc)
            return RewriteResult(update, RewriteStatus.FAILED, error=f"could not read file: {exc}")

        update.exists = exists
        update.current_content = current

        if not exists and update.node_kind is NodeKind.ACTUAL:
            return RewriteResult(update, RewriteStatus.SKIPPED, current, error="file not found in workspace")
        if len(current) > self.settings.max_file_chars:
            return RewriteResult(
                update, RewriteStatus.SKIPPED, current,
                error=f"file exceeds {self.settings.max_file_chars} characters",
            )
        if not any(text.strip() for text in update.instructions):
            return RewriteResult(update, RewriteStatus.SKIPPED, current, error="no instructions")

        full_rewrite = requires_full_rewrite(rel)
        threshold = self.settings.change_threshold
        issue = ""
        attempts = 0

        for attempt in range(1, max(self.settings.max_attempts, 1) + 1):
            attempts = attempt
            prompt = build_rewrite_prompt(update, current, force_diff=attempt > 1, previous_issue=issue)
            try:
                reply = await asyncio.to_thread(self._generate, prompt)
            except Exception as exc:
                if not is_retryable(exc):
                    logger.warning("Oracle failed for %s: %s", rel, exc)
                    return RewriteResult(
                        update, RewriteStatus.FAILED, current, attempts=attempts, error=str(exc),
                    )
                issue = str(exc)
                logger.warning("Attempt %d for %s hit a transient error: %s", attempt, rel, exc)
                continue

            candidate = strip_code_fence(reply or "")
            if not candidate.strip():
                issue = "oracle returned empty content"
                continue
            candidate = ensure_trailing_newline(candidate)
            if candidate == current:
                issue = "oracle returned unchanged content"
                continue

            ratio = change_ratio(current, candidate)
            if full_rewrite:
                if ratio < threshold:
                    issue = f"quality threshold not met (changeRatio {ratio:.3f} < {threshold})"
                    continue
                passed, reason = markdown_quality(current, candidate, update.instructions)
                if not passed:
                    issue = reason
                    continue

            logger.info("Accepted rewrite for %s after %d attempt(s)", rel, attempts)
            return RewriteResult(
                update, RewriteStatus.ACCEPTED, candidate,
                attempts=attempts, change_ratio=round(ratio, 3),
            )

        fallback = synthesize_fallback(rel, current, update.instructions)
        if fallback != current:
            logger.info("Applying guaranteed-diff fallback for %s (%s)", rel, issue)
            return RewriteResult(
                update, RewriteStatus.FALLBACK_APPLIED, fallback,
                attempts=attempts,
                forced_fallback=True,
                change_ratio=round(change_ratio(current, fallback), 3),
                fallback_reason=issue or "no acceptable rewrite",
            )
        return RewriteResult(
            update, RewriteStatus.FAILED, current,
            attempts=attempts, error=issue or "fallback produced no change",
        )
