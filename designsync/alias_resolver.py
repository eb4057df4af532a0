"""Map symbolic graph references (ids, labels) to concrete file paths."""

from __future__ import annotations

import re
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Set

from .graph_normalizer import normalize_path
from .models import CanonicalFile, GraphNode, Resolution

_QUOTES = "\"'`"
_DISALLOWED = re.compile(r"[^a-z0-9./_-]")


def normalize_alias(value: Optional[str]) -> str:
    """Lowercase, unquote and strip everything outside ``[a-z0-9./_-]``."""
    text = str(value or "").strip().lower().strip(_QUOTES)
    text = text.replace("\\", "/")
    return _DISALLOWED.sub("", text)


def _strip_extension(name: str) -> str:
    return re.sub(r"\.[^./]+$", "", name)


class AliasResolver:
    """Exact-then-fuzzy alias lookup over the indexed files.

    Built once per commit.  A reference resolves only when exactly one path
    matches; two or more matches are reported as ambiguous, never guessed.
    """

    def __init__(self, files: Iterable[CanonicalFile]):
        self.aliases: Dict[str, Set[str]] = defaultdict(set)
        self.known_paths: Set[str] = set()
        for file in files:
            self._add_file(file)

    def _add_file(self, file: CanonicalFile) -> None:
        full_path = file.full_path
        base_name = full_path.split("/")[-1] or full_path
        self.known_paths.add(full_path)

        for alias in (
            full_path,
            base_name,
            _strip_extension(base_name),
            file.label,
            _strip_extension(full_path),
        ):
            key = normalize_alias(alias)
            if key:
                self.aliases[key].add(full_path)

    def resolve(self, *candidates: Optional[str]) -> Resolution:
        """Resolve the first usable candidate (typically ``id`` then ``label``)."""
        for candidate in candidates:
            key = normalize_alias(candidate)
            if not key:
                continue
            exact = self.aliases.get(key)
            if not exact:
                continue
            if len(exact) == 1:
                return Resolution(path=next(iter(exact)), reason="exact_alias")
            return Resolution(
                path=None,
                reason=f"ambiguous_alias:{candidate}",
                candidates=sorted(exact),
            )

        keys = [k for k in (normalize_alias(c) for c in candidates) if k]
        if not keys:
            return Resolution(path=None, reason="no_candidate")

        matches: List[str] = []
        for alias, paths in self.aliases.items():
            for key in keys:
                if key in alias or alias in key:
                    matches.extend(sorted(paths))
        unique = list(dict.fromkeys(matches))

        if len(unique) == 1:
            return Resolution(path=unique[0], reason="fuzzy_alias")
        if len(unique) > 1:
            return Resolution(path=None, reason="ambiguous_fuzzy", candidates=sorted(unique))
        return Resolution(path=None, reason="not_found")

    def resolve_node(self, node: GraphNode) -> Resolution:
        """Resolve a graph node, trusting an Actual node's path when it is indexed."""
        if node.is_actual:
            path = normalize_path(node.path)
            if path in self.known_paths:
                return Resolution(path=path, reason="known_path")
        return self.resolve(node.id, node.label)
