"""PersistenceGateway: the single writer for files and the source index."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Iterable, List

from .errors import PathEscapeError
from .graph_normalizer import resolve_inside_root
from .models import PersistOutcome, RewriteResult

logger = logging.getLogger(__name__)


class PersistenceGateway:
    """Writes accepted rewrites and updates the index, one file at a time.

    The source index is a shared mutable structure, so every mutation goes
    through :meth:`persist` under one lock, after all generation work is done.
    """

    def __init__(self, workspace_root: Path, index):
        """
        Args:
            workspace_root: Directory that bounds every write
            index: Object with ``update_file(path, content)``
        """
        self.workspace_root = Path(workspace_root)
        self.index = index
        self._lock = asyncio.Lock()

    async def persist(self, results: Iterable[RewriteResult]) -> List[PersistOutcome]:
        """Write results in the order given; one failure never stops the rest."""
        outcomes: List[PersistOutcome] = []
        async with self._lock:
            for result in results:
                rel = result.update.relative_path
                if not result.should_write:
                    outcomes.append(PersistOutcome(rel, written=False, error=result.error))
                    continue
                outcomes.append(self._write_one(rel, result.rewritten_content))
        return outcomes

    def _write_one(self, rel: str, content: str) -> PersistOutcome:
        try:
            # Encode before opening so an unencodable reply never truncates the file.
            data = content.encode("utf-8")
            target = resolve_inside_root(self.workspace_root, rel)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except (OSError, UnicodeError, PathEscapeError) as exc:
            logger.warning("Failed to write %s: %s", rel, exc)
            return PersistOutcome(rel, written=False, error=f"write failed: {exc}")

        try:
            self.index.update_file(rel, content)
        except Exception as exc:
            logger.warning("Index update failed for %s: %s", rel, exc)
            return PersistOutcome(rel, written=True, error=f"index update failed: {exc}")

        logger.info("Wrote %s (%d bytes)", rel, len(data))
        return PersistOutcome(rel, written=True)
