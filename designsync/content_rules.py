"""Language-aware rules for judging and forcing file rewrites."""

from __future__ import annotations

import re
from pathlib import PurePosixPath
from typing import Iterable, List, Tuple

LANGUAGE_BY_EXTENSION = {
    ".py": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".json": "json",
    ".md": "markdown",
    ".markdown": "markdown",
    ".mdx": "markdown",
    ".txt": "text",
    ".text": "text",
    ".rst": "text",
    ".css": "css",
    ".scss": "css",
    ".html": "html",
    ".htm": "html",
    ".xml": "html",
    ".yml": "yaml",
    ".yaml": "yaml",
    ".toml": "toml",
    ".sh": "shell",
    ".go": "go",
    ".rs": "rust",
    ".java": "java",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".rb": "ruby",
    ".sql": "sql",
}

# (prefix, suffix) for a single-line comment
COMMENT_SYNTAX = {
    "python": ("# ", ""),
    "yaml": ("# ", ""),
    "toml": ("# ", ""),
    "shell": ("# ", ""),
    "ruby": ("# ", ""),
    "javascript": ("// ", ""),
    "typescript": ("// ", ""),
    "go": ("// ", ""),
    "rust": ("// ", ""),
    "java": ("// ", ""),
    "c": ("// ", ""),
    "cpp": ("// ", ""),
    "css": ("/* ", " */"),
    "html": ("<!-- ", " -->"),
    "sql": ("-- ", ""),
}

FULL_REWRITE_LANGUAGES = {"markdown", "text"}
MIN_ECHO_LENGTH = 8

_FENCE = re.compile(r"^```[\w+.-]*[ \t]*\n(.*?)\n?```$", re.DOTALL)
_TOP_HEADING = re.compile(r"^#\s+\S")


def language_hint(path: str) -> str:
    return LANGUAGE_BY_EXTENSION.get(PurePosixPath(path).suffix.lower(), "text")


def requires_full_rewrite(path: str) -> bool:
    """Markdown and plain text need a substantial rewrite, not a token edit."""
    return language_hint(path) in FULL_REWRITE_LANGUAGES


def sanitize_instruction(text: str, limit: int = 160) -> str:
    """Collapse an instruction to one line of printable text."""
    flat = " ".join(str(text or "").split())
    return flat[:limit].rstrip()


def strip_code_fence(text: str) -> str:
    """Unwrap a reply that is entirely one fenced code block."""
    match = _FENCE.match(text.strip())
    return match.group(1) if match else text


def ensure_trailing_newline(text: str) -> str:
    return text if text.endswith("\n") else text + "\n"


def count_top_level_headings(text: str) -> int:
    return sum(1 for line in text.splitlines() if _TOP_HEADING.match(line))


def markdown_quality(original: str, rewritten: str, instructions: Iterable[str]) -> Tuple[bool, str]:
    """Reject rewrites that parrot the instruction or drop the document's structure.

    Returns:
        ``(passed, reason)``; ``reason`` is empty when the check passes.
    """
    lowered = rewritten.lower()
    lines = [line.strip().lower() for line in rewritten.splitlines() if line.strip()]

    for instruction in instructions:
        needle = sanitize_instruction(instruction).lower()
        if len(needle) < MIN_ECHO_LENGTH:
            continue
        echoes = lowered.count(needle)
        if echoes >= 3:
            return False, f"instruction text echoed {echoes} times"
        if lines:
            leading = sum(1 for line in lines if line.lstrip("#->*0123456789. ").startswith(needle))
            if leading / len(lines) > 0.2:
                return False, "too many lines start with the instruction text"

    before = count_top_level_headings(original)
    if before >= 3 and count_top_level_headings(rewritten) < before / 2:
        return False, "rewrite dropped more than half of the top-level headings"

    return True, ""


def _title_for(path: str) -> str:
    stem = PurePosixPath(path).stem or "Document"
    return re.sub(r"[-_]+", " ", stem).strip().title() or "Document"


def _bullets(instructions: List[str]) -> str:
    return "\n".join(f"- {sanitize_instruction(i)}" for i in instructions if sanitize_instruction(i))


def synthesize_fallback(path: str, current: str, instructions: List[str]) -> str:
    """Deterministically produce content that differs from ``current``.

    Used once the oracle has not produced an acceptable rewrite.  The result
    keeps the original text and appends the instructions in the file's own
    syntax, so the change is visible and reviewable.
    """
    language = language_hint(path)
    body = current.rstrip("\n")

    if language == "json":
        return current + "\n"

    if language == "markdown":
        if not body.strip():
            return f"# {_title_for(path)}\n\n## Rewritten Content\n\n{_bullets(instructions)}\n"
        return f"{body}\n\n## Enforcement Addendum\n\n{_bullets(instructions)}\n"

    syntax = COMMENT_SYNTAX.get(language)
    if syntax is None:
        prefix = f"{body}\n\n" if body.strip() else ""
        return f"{prefix}Enforcement Addendum:\n{_bullets(instructions)}\n"

    start, end = syntax
    notes = "\n".join(
        f"{start}Enforcement addendum: {sanitize_instruction(i)}{end}"
        for i in instructions
        if sanitize_instruction(i)
    )
    prefix = f"{body}\n\n" if body.strip() else ""
    return f"{prefix}{notes}\n"
