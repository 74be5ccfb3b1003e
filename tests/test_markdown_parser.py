"""Tests for the Markdown -> document tree parser."""

from __future__ import annotations

import pytest

from loopd.cleanup import normalize_tree
from loopd.converter import build_tree
from loopd.dom import find_content_root
from loopd.markdown import to_markdown
from loopd.markdown_parser import parse_inline, parse_markdown, split_table_row
from loopd.schemas.nodes import DocNode, paragraph, root, text

CANONICAL = """# Title

Some **bold** and *italic* and ~~gone~~ text with `code` and [a link](https://example.com/a_(b)).

> [!WARNING]
> Careful here

- one
- [x] two
  - nested

1. first
2. second

| a | b |
| --- | ---: |
| 1 | 2 |
| 3 | 4 |

```python
print("x")
```

---

![diagram](images/image_0.png)
"""


class TestParseBlocks:
    """Tests for block parsing."""

    def test_headings(self) -> None:
        """ATX headings with optional closing sequence."""
        tree = parse_markdown("## Goals ##\n")

        assert tree.children == [DocNode(type="heading", depth=2, children=[text("Goals")])]

    def test_fenced_code(self) -> None:
        """Fence info string becomes the language."""
        tree = parse_markdown("```js\nlet a = 1;\n\nlet b = 2;\n```\n")

        assert tree.children == [DocNode(type="code", lang="js", value="let a = 1;\n\nlet b = 2;")]

    def test_unclosed_fence_runs_to_end(self) -> None:
        """A missing closing fence ends the block at the end of input."""
        tree = parse_markdown("```\nopen")

        assert tree.children == [DocNode(type="code", value="open")]

    def test_blockquote_with_nested_blocks(self) -> None:
        """Quote bodies are parsed recursively."""
        tree = parse_markdown("> # Inside\n>\n> - item\n")

        quote = tree.children[0]
        assert quote.type == "blockquote"
        assert [node.type for node in quote.children] == ["heading", "list"]

    def test_list_with_tasks_and_nesting(self) -> None:
        """Task markers and indented sublists are recognised."""
        tree = parse_markdown("- [ ] open\n- [X] done\n  - child\n")

        items = tree.children[0].children
        assert [item.checked for item in items] == [False, True]
        assert [node.type for node in items[1].children] == ["paragraph", "list"]

    def test_loose_list_item_continuation(self) -> None:
        """Indented content after a blank line stays in the item."""
        tree = parse_markdown("- first\n\n  more\n- second\n")

        items = tree.children[0].children
        assert len(items) == 2
        assert [node.type for node in items[0].children] == ["paragraph", "paragraph"]

    def test_list_type_change_starts_new_list(self) -> None:
        """Switching from bullets to numbers ends the list."""
        tree = parse_markdown("- a\n1. b\n")

        assert [(node.type, node.ordered) for node in tree.children] == [
            ("list", False),
            ("list", True),
        ]

    def test_thematic_breaks(self) -> None:
        """All three rule characters are accepted."""
        tree = parse_markdown("---\n\n***\n\n___\n")

        assert [node.type for node in tree.children] == ["thematicBreak"] * 3

    def test_table_alignment(self) -> None:
        """Delimiter row sets column alignment."""
        tree = parse_markdown("| a | b | c |\n| :--- | :---: | ---: |\n| 1 | 2 | 3 |\n")

        table = tree.children[0]
        assert table.align == ["left", "center", "right"]
        assert len(table.children) == 2

    def test_paragraph_hard_break(self) -> None:
        """A trailing backslash joins the next line with a break."""
        tree = parse_markdown("a\\\nb\n")

        assert tree.children == [paragraph([text("a"), DocNode(type="break"), text("b")])]


class TestSplitTableRow:
    """Tests for split_table_row function."""

    def test_escaped_pipe_stays_in_cell(self) -> None:
        """\\| is a literal pipe inside a cell."""
        assert split_table_row("| a \\| b | c |") == ["a | b", "c"]

    def test_empty_cells(self) -> None:
        """Empty cells are kept."""
        assert split_table_row("| a |  |") == ["a", ""]


class TestParseInline:
    """Tests for inline parsing."""

    def test_emphasis_kinds(self) -> None:
        """Strong, emphasis and strikethrough nest as written."""
        nodes = parse_inline("**a *b*** ~~c~~")

        assert nodes == [
            DocNode(
                type="strong",
                children=[text("a "), DocNode(type="emphasis", children=[text("b")])],
            ),
            text(" "),
            DocNode(type="delete", children=[text("c")]),
        ]

    def test_intraword_star_does_not_need_spaces(self) -> None:
        """Left/right flanking follows CommonMark."""
        assert parse_inline("a*b*c") == [
            text("a"),
            DocNode(type="emphasis", children=[text("b")]),
            text("c"),
        ]

    def test_unmatched_delimiters_are_text(self) -> None:
        """Spaces on both sides keep a star literal."""
        assert parse_inline("2 * 3 = 6") == [text("2 * 3 = 6")]

    def test_single_tilde_is_text(self) -> None:
        """Strikethrough needs a double tilde."""
        assert parse_inline("~a~") == [text("~a~")]

    def test_code_span_wins_over_emphasis(self) -> None:
        """Markup inside code spans is literal."""
        assert parse_inline("`*x*`") == [DocNode(type="inlineCode", value="*x*")]

    def test_link_with_angle_destination(self) -> None:
        """<...> destinations may contain spaces."""
        assert parse_inline("[t](<https://x/a b>)") == [
            DocNode(type="link", url="https://x/a b", children=[text("t")])
        ]

    def test_image(self) -> None:
        """Image alt text is unescaped."""
        assert parse_inline("![a \\* b](images/image_0.png)") == [
            DocNode(type="image", url="images/image_0.png", alt="a * b")
        ]

    def test_backslash_escapes(self) -> None:
        """Escaped punctuation is literal; other backslashes are kept."""
        assert parse_inline("\\*not\\* C:\\dir") == [text("*not* C:\\dir")]

    def test_bracket_without_destination_is_text(self) -> None:
        """Brackets that do not form a link stay text."""
        assert parse_inline("[!NOTE]") == [text("[!NOTE]")]


class TestRoundTrip:
    """serialize(parse(markdown)) reproduces canonical Markdown."""

    def test_canonical_document(self) -> None:
        """Every construct the serializer emits survives a parse."""
        assert to_markdown(parse_markdown(CANONICAL)) == CANONICAL

    def test_right_aligned_table(self) -> None:
        """A 3x2 table keeps its ---: marker."""
        source = "| Item | Qty |\n| --- | ---: |\n| Apples | 3 |\n| Pears | 12 |\n"

        assert to_markdown(parse_markdown(source)) == source

    def test_escaped_text_round_trips_to_same_tree(self) -> None:
        """Escaped literal text parses back to the same tree."""
        tree = root(
            [
                paragraph([text("1. not a list * star _under_ # hash")]),
                DocNode(type="heading", depth=1, children=[text("C #")]),
                paragraph([text("- [x] literal | pipe ~tilde~ `tick`")]),
            ]
        )

        assert parse_markdown(to_markdown(tree)) == tree

    def test_converted_page_is_stable(self, make_page) -> None:
        """A converted Loop page re-serializes identically after parsing."""
        soup = make_page(
            "<h1>Release notes</h1>"
            "<p>Run <code>make release</code> then check <a href=\"https://ci.example.com/run (1)\">CI</a>.</p>"
            '<div class="scriptor-callout warning"><p>Do <b>not</b> skip tests</p></div>'
            "<ul><li>Backend<ul><li><i>api</i> v2</li></ul></li><li>1. frontend</li></ul>"
            "<table><tr><th>Env</th><th>Status</th></tr><tr><td>prod</td><td><s>down</s> up</td></tr></table>"
            "<pre>make release\nmake deploy</pre>"
            "<hr>"
            "<p>Ask #ops or email ops_team@example.com!</p>"
        )
        tree = normalize_tree(build_tree(find_content_root(soup)))
        markdown = to_markdown(tree)

        assert to_markdown(parse_markdown(markdown)) == markdown

    @pytest.mark.parametrize(
        "body",
        [
            "<p><b>a<b>b</b></b> c</p>",
            "<p><i>see<s>#42</s></i></p>",
            "<p><b>bold<i>both</i></b><i>italic</i></p>",
            "<p><b><i>x</i></b>y<s>z<code>q</code></s></p>",
            "<p><code>a</code><code>b</code><b>c</b><s>d</s></p>",
            "<p>x<b> padded </b>y<i>(paren)</i>.</p>",
            '<p><a href="https://x"><b>a</b><i>b</i></a><b>c</b></p>',
            "<p>a<br><b>b</b><br><span> </span></p>",
            "<ul><li>---a</li><li><s>--- draft ---</s></li></ul>",
            "<table><tr><th><b>h<i>i</i></b></th><th>n</th></tr>"
            "<tr><td><s>a</s><b>b</b></td><td>1</td></tr></table>",
        ],
    )
    def test_inline_nesting_round_trips(self, make_page, body: str) -> None:
        """Nested and adjacent formatting re-serializes identically after parsing."""
        tree = normalize_tree(build_tree(find_content_root(make_page(body))))
        markdown = to_markdown(tree)

        assert to_markdown(parse_markdown(markdown)) == markdown
