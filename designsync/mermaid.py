"""Parse Mermaid flowchart text into design nodes and edges.

A line is first split into tokens, then a small state machine walks the
tokens.  This handles chains (``A --> B --> C``), node groups
(``A & B --> C``), inline shapes and edge labels without the fragility of
stacking regexes on raw text.

Only the structure matters here: which node points at which.  Styling,
subgraph boundaries and click handlers are ignored.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

SKIP_KEYWORDS = {
    "graph", "flowchart", "subgraph", "end", "classdef", "class",
    "style", "linkstyle", "click", "direction",
}

# (opening, closing), longest openings first
SHAPES = (
    ("[(", ")]"),
    ("[[", "]]"),
    ("{{", "}}"),
    ("((", "))"),
    ("[", "]"),
    ("{", "}"),
    ("(", ")"),
    (">", "]"),
)

_PLAIN_ARROW = re.compile(r"-\.->|-->|==>|---")
_LABELLED_ARROW = re.compile(r"--(?![->])(.*?)-->|==(?![=>])(.*?)==>|-\.(?!->)(.*?)\.->")
_ARROW_START = re.compile(r"--|==|-\.")
_ID_CHAR = re.compile(r"[A-Za-z0-9_.:/-]")
_CLASS_REF = re.compile(r":::[A-Za-z0-9_-]+")


class TokenType(str, Enum):
    ID = "id"
    SHAPE = "shape"
    ARROW = "arrow"
    LABEL = "label"
    CLASS = "class"
    AMP = "amp"
    SEMI = "semi"


@dataclass
class Token:
    type: TokenType
    value: str
    text: str = ""


@dataclass
class MermaidNode:
    id: str
    label: str = ""


@dataclass
class MermaidEdge:
    from_id: str
    to_id: str
    arrow: str
    label: str = ""
    raw: str = ""


@dataclass
class MermaidDesign:
    nodes: List[MermaidNode] = field(default_factory=list)
    edges: List[MermaidEdge] = field(default_factory=list)

    def node_by_id(self) -> Dict[str, MermaidNode]:
        return {node.id: node for node in self.nodes}


def _clean_label(text: str) -> str:
    return text.strip().strip("\"'`").strip()


def _read_shape(line: str, pos: int) -> Optional[tuple]:
    for opening, closing in SHAPES:
        if not line.startswith(opening, pos):
            continue
        start = pos + len(opening)
        end = line.find(closing, start)
        if end == -1:
            return _clean_label(line[start:]), len(line)
        return _clean_label(line[start:end]), end + len(closing)
    return None


def tokenize_line(line: str) -> List[Token]:
    """Split one Mermaid statement line into tokens; ``%%`` starts a comment."""
    tokens: List[Token] = []
    pos = 0
    length = len(line)
    last_was_id = False

    while pos < length:
        char = line[pos]
        if char.isspace():
            pos += 1
            continue
        if line.startswith("%%", pos):
            break

        match = _CLASS_REF.match(line, pos)
        if match:
            tokens.append(Token(TokenType.CLASS, match.group(0)[3:], match.group(0)))
            pos = match.end()
            continue

        match = _PLAIN_ARROW.match(line, pos)
        if match:
            tokens.append(Token(TokenType.ARROW, match.group(0), match.group(0)))
            pos = match.end()
            last_was_id = False
            continue

        match = _LABELLED_ARROW.match(line, pos)
        if match:
            text = match.group(0)
            arrow = "-->" if text.startswith("--") else "==>" if text.startswith("==") else "-.->"
            label = next(g for g in match.groups() if g is not None)
            tokens.append(Token(TokenType.ARROW, arrow, text))
            if label.strip():
                tokens.append(Token(TokenType.LABEL, _clean_label(label), label))
            pos = match.end()
            last_was_id = False
            continue

        if char == "|":
            end = line.find("|", pos + 1)
            end = length if end == -1 else end
            tokens.append(Token(TokenType.LABEL, _clean_label(line[pos + 1:end]), line[pos:end + 1]))
            pos = end + 1
            continue

        if char == ";":
            tokens.append(Token(TokenType.SEMI, ";", ";"))
            pos += 1
            last_was_id = False
            continue

        if char == "&":
            tokens.append(Token(TokenType.AMP, "&", "&"))
            pos += 1
            last_was_id = False
            continue

        # ``>`` only opens an asymmetric shape right after a node id
        shape = _read_shape(line, pos) if (char != ">" or last_was_id) else None
        if shape is not None:
            label, end = shape
            tokens.append(Token(TokenType.SHAPE, label, line[pos:end]))
            pos = end
            last_was_id = False
            continue

        if _ID_CHAR.match(char):
            start = pos
            while pos < length and _ID_CHAR.match(line[pos]):
                if pos > start and (_ARROW_START.match(line, pos) or line.startswith(":::", pos)):
                    break
                pos += 1
            tokens.append(Token(TokenType.ID, line[start:pos], line[start:pos]))
            last_was_id = True
            continue

        pos += 1

    return tokens


class _State(str, Enum):
    START = "start"
    NODE = "node"
    GROUP = "group"
    ARROW = "arrow"


class _LineParser:
    """Token state machine for one line, writing into a shared design."""

    def __init__(self, design: MermaidDesign, nodes: Dict[str, MermaidNode], raw: str):
        self.design = design
        self.nodes = nodes
        self.raw = raw
        self.state = _State.START
        self.current: List[str] = []
        self.previous: List[str] = []
        self.arrow = ""
        self.edge_label = ""

    def _upsert(self, node_id: str, label: str = "") -> None:
        node = self.nodes.get(node_id)
        if node is None:
            node = MermaidNode(node_id, label)
            self.nodes[node_id] = node
            self.design.nodes.append(node)
        elif label and not node.label:
            node.label = label

    def _link(self, target: str) -> None:
        for source in self.previous:
            self.design.edges.append(MermaidEdge(source, target, self.arrow, self.edge_label, self.raw))

    def _reset(self) -> None:
        self.state = _State.START
        self.current, self.previous = [], []
        self.arrow, self.edge_label = "", ""

    def feed(self, token: Token) -> None:
        if token.type is TokenType.SEMI:
            self._reset()
            return

        if self.state in (_State.START, _State.NODE):
            if token.type is TokenType.ID:
                self._upsert(token.value)
                self.current, self.previous = [token.value], []
                self.state = _State.NODE
            elif self.state is _State.NODE and token.type is TokenType.SHAPE:
                self._upsert(self.current[-1], token.value)
            elif self.state is _State.NODE and token.type is TokenType.AMP:
                self.state = _State.GROUP
            elif self.state is _State.NODE and token.type is TokenType.ARROW:
                self.previous, self.current = self.current, []
                self.arrow, self.edge_label = token.value, ""
                self.state = _State.ARROW
            return

        if self.state is _State.GROUP:
            if token.type is TokenType.ID:
                self._upsert(token.value)
                self.current.append(token.value)
                self._link(token.value)
                self.state = _State.NODE
            return

        # ARROW: waiting for the target
        if token.type is TokenType.LABEL:
            self.edge_label = token.value
        elif token.type is TokenType.ID:
            self._upsert(token.value)
            self.current = [token.value]
            self._link(token.value)
            self.state = _State.NODE


def _statement_text(line: str) -> str:
    """Drop directive lines; ``graph TD; A --> B`` keeps the part after ``;``."""
    first = line.split(None, 1)[0].lower().rstrip(";")
    if first not in SKIP_KEYWORDS:
        return line
    if first in ("graph", "flowchart") and ";" in line:
        return line.split(";", 1)[1].strip()
    return ""


def parse_mermaid_design(text: Optional[str]) -> MermaidDesign:
    """Parse Mermaid flowchart text. Unknown syntax is ignored, never raised."""
    design = MermaidDesign()
    nodes: Dict[str, MermaidNode] = {}

    for raw_line in str(text or "").splitlines():
        line = raw_line.split("%%", 1)[0].strip()
        line = _statement_text(line) if line else ""
        if not line:
            continue
        parser = _LineParser(design, nodes, line)
        for token in tokenize_line(line):
            parser.feed(token)

    return design
