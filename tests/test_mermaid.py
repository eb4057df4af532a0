"""Tests for the Mermaid tokenizer and flowchart parser."""

from designsync.mermaid import TokenType, parse_mermaid_design, tokenize_line


def _edges(design):
    return [(e.from_id, e.to_id) for e in design.edges]


class TestTokenizer:

    def test_simple_edge(self):
        tokens = tokenize_line("A-->B")
        assert [t.type for t in tokens] == [TokenType.ID, TokenType.ARROW, TokenType.ID]
        assert [t.value for t in tokens] == ["A", "-->", "B"]

    def test_shapes_and_labels(self):
        tokens = tokenize_line('api[(Users DB)] -.->|reads| cache{{"Cache"}}:::hot;')
        assert [(t.type, t.value) for t in tokens] == [
            (TokenType.ID, "api"),
            (TokenType.SHAPE, "Users DB"),
            (TokenType.ARROW, "-.->"),
            (TokenType.LABEL, "reads"),
            (TokenType.ID, "cache"),
            (TokenType.SHAPE, "Cache"),
            (TokenType.CLASS, "hot"),
            (TokenType.SEMI, ";"),
        ]

    def test_inline_labelled_arrow(self):
        tokens = tokenize_line("A -- uses --> B")
        assert [(t.type, t.value) for t in tokens] == [
            (TokenType.ID, "A"),
            (TokenType.ARROW, "-->"),
            (TokenType.LABEL, "uses"),
            (TokenType.ID, "B"),
        ]

    def test_ids_may_contain_path_characters(self):
        tokens = tokenize_line("src/auth-service.js --> lib/db.js")
        assert [t.value for t in tokens] == ["src/auth-service.js", "-->", "lib/db.js"]

    def test_comment_ends_line(self):
        assert [t.value for t in tokenize_line("A --> B %% ignore --> C")] == ["A", "-->", "B"]


class TestParseDesign:

    def test_nodes_and_edges(self):
        design = parse_mermaid_design(
            "graph TD\n"
            "  %% services\n"
            "  auth[Auth Service] --> db[(Database)]\n"
            "  auth ==> cache\n"
            "  classDef hot fill:#f00\n"
            "  style auth stroke:#333\n"
        )
        assert _edges(design) == [("auth", "db"), ("auth", "cache")]
        labels = {n.id: n.label for n in design.nodes}
        assert labels == {"auth": "Auth Service", "db": "Database", "cache": ""}
        assert design.edges[1].arrow == "==>"

    def test_chain(self):
        design = parse_mermaid_design("flowchart LR\nA --> B --> C")
        assert _edges(design) == [("A", "B"), ("B", "C")]

    def test_groups(self):
        design = parse_mermaid_design("A & B --> C & D")
        assert _edges(design) == [("A", "C"), ("B", "C"), ("A", "D"), ("B", "D")]

    def test_edge_label_is_kept(self):
        design = parse_mermaid_design("A -->|calls| B")
        assert design.edges[0].label == "calls"

    def test_label_filled_by_later_declaration(self):
        design = parse_mermaid_design("A --> B\nB[Billing]")
        assert design.node_by_id()["B"].label == "Billing"

    def test_subgraph_and_end_are_skipped(self):
        design = parse_mermaid_design("subgraph core\nA --> B\nend\n")
        assert _edges(design) == [("A", "B")]
        assert [n.id for n in design.nodes] == ["A", "B"]

    def test_graph_header_with_statement(self):
        design = parse_mermaid_design("graph TD; A --> B")
        assert _edges(design) == [("A", "B")]

    def test_semicolon_separates_statements(self):
        design = parse_mermaid_design("A --> B; C --> D")
        assert _edges(design) == [("A", "B"), ("C", "D")]

    def test_dangling_arrow_is_ignored(self):
        design = parse_mermaid_design("A -->\n--> B")
        assert design.edges == []

    def test_empty(self):
        design = parse_mermaid_design(None)
        assert design.nodes == [] and design.edges == []
