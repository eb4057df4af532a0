"""Import and symbol extraction for indexed source files.

Python files go through the built-in ``ast`` module.  JavaScript and
TypeScript use import/require/export patterns; they are good enough to
build a file-level dependency graph, which is all the index needs.
"""

from __future__ import annotations

import ast
import logging
import posixpath
import re
from typing import Iterable, List, Optional, Set

from .content_rules import language_hint
from .graph_normalizer import normalize_path
from .models import CanonicalFile

logger = logging.getLogger(__name__)

JS_LANGUAGES = {"javascript", "typescript"}
JS_RESOLVE_SUFFIXES = (
    "", ".js", ".jsx", ".ts", ".tsx", ".mjs", ".cjs",
    "/index.js", "/index.jsx", "/index.ts", "/index.tsx",
)

_JS_IMPORT_FROM = re.compile(r"""^\s*import\s+(?:[\w*{}\s,$]+?\s+from\s+)?['"]([^'"]+)['"]""", re.MULTILINE)
_JS_EXPORT_FROM = re.compile(r"""^\s*export\s+[\w*{}\s,$]+?\s+from\s+['"]([^'"]+)['"]""", re.MULTILINE)
_JS_REQUIRE = re.compile(r"""\brequire\(\s*['"]([^'"]+)['"]\s*\)""")
_JS_DYNAMIC_IMPORT = re.compile(r"""\bimport\(\s*['"]([^'"]+)['"]\s*\)""")
_JS_EXPORT_SYMBOL = re.compile(
    r"^\s*export\s+(?:default\s+)?(?:async\s+)?(?:function\*?|class|const|let|var)\s+([A-Za-z_$][\w$]*)",
    re.MULTILINE,
)


def _unique(items: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(item for item in items if item))


class SourceFileParser:
    """Produce a :class:`CanonicalFile` from one file's text."""

    def parse_file(self, rel_path: str, source: str) -> CanonicalFile:
        rel_path = normalize_path(rel_path)
        language = language_hint(rel_path)
        label = posixpath.basename(rel_path)

        if language == "python":
            imports, symbols = self._parse_python(rel_path, source)
        elif language in JS_LANGUAGES:
            imports, symbols = self._parse_js(source)
        else:
            imports, symbols = [], []

        return CanonicalFile(
            full_path=rel_path,
            label=label,
            language=language,
            imports=imports,
            symbols=symbols,
        )

    @staticmethod
    def _parse_python(rel_path: str, source: str):
        try:
            tree = ast.parse(source)
        except SyntaxError as exc:
            logger.warning("SyntaxError in %s: %s", rel_path, exc)
            return [], []

        imports: List[str] = []
        symbols: List[str] = []
        for stmt in tree.body:
            if isinstance(stmt, ast.Import):
                imports.extend(alias.name for alias in stmt.names)
            elif isinstance(stmt, ast.ImportFrom):
                prefix = "." * stmt.level
                if stmt.module:
                    imports.append(prefix + stmt.module)
                else:
                    # ``from . import a, b`` names sibling modules
                    imports.extend(prefix + alias.name for alias in stmt.names)
            elif isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
                symbols.append(stmt.name)
        return _unique(imports), _unique(symbols)

    @staticmethod
    def _parse_js(source: str):
        specifiers: List[str] = []
        for pattern in (_JS_IMPORT_FROM, _JS_EXPORT_FROM, _JS_REQUIRE, _JS_DYNAMIC_IMPORT):
            specifiers.extend(match.group(1) for match in pattern.finditer(source))
        symbols = [match.group(1) for match in _JS_EXPORT_SYMBOL.finditer(source)]
        return _unique(specifiers), _unique(symbols)


def _resolve_js(specifier: str, source_path: str, known_paths: Set[str]) -> Optional[str]:
    if not specifier.startswith("."):
        return None
    base = posixpath.normpath(posixpath.join(posixpath.dirname(source_path), specifier))
    if base.startswith(".."):
        return None
    for suffix in JS_RESOLVE_SUFFIXES:
        candidate = normalize_path(base + suffix)
        if candidate in known_paths:
            return candidate
    return None


def _resolve_python(specifier: str, source_path: str, known_paths: Set[str]) -> Optional[str]:
    level = len(specifier) - len(specifier.lstrip("."))
    module = specifier[level:]

    if level:
        package = posixpath.dirname(source_path)
        for _ in range(level - 1):
            package = posixpath.dirname(package)
        bases = [package]
    else:
        # absolute names may live at the root or under a src/ layout
        bases = ["", "src"]

    for base in bases:
        stem = posixpath.join(base, module.replace(".", "/")) if module else base
        for candidate in (f"{stem}.py", f"{stem}/__init__.py"):
            candidate = normalize_path(candidate)
            if candidate in known_paths:
                return candidate
    return None


def resolve_import(specifier: str, source_path: str, known_paths: Set[str], language: str) -> Optional[str]:
    """Map an import specifier to an indexed file path, or ``None`` for externals."""
    if not specifier:
        return None
    if language == "python":
        return _resolve_python(specifier, source_path, known_paths)
    if language in JS_LANGUAGES:
        return _resolve_js(specifier, source_path, known_paths)
    return None
