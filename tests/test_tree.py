"""Tests for document tree helpers."""

from __future__ import annotations

from loopd.schemas.nodes import DocNode, paragraph, root, text
from loopd.tree import count_node_types, flatten_inline, plain_text, walk, wrap_in_paragraph


class TestFlattenInline:
    """Tests for flatten_inline function."""

    def test_unwraps_paragraphs(self) -> None:
        """Paragraph children are lifted into the inline run."""
        nodes = [paragraph([text("a")]), text("b")]

        result = flatten_inline(nodes)

        assert [node.value for node in result] == ["a", "b"]

    def test_code_block_becomes_inline_code(self) -> None:
        """Code blocks inside inline context turn into inline code."""
        result = flatten_inline([DocNode(type="code", lang="py", value="x = 1")])

        assert result == [DocNode(type="inlineCode", value="x = 1")]

    def test_breaks_dropped_unless_kept(self) -> None:
        """Breaks only survive with keep_breaks."""
        nodes = [text("a"), DocNode(type="break"), text("b")]

        assert [node.type for node in flatten_inline(nodes)] == ["text", "text"]
        assert [node.type for node in flatten_inline(nodes, keep_breaks=True)] == [
            "text",
            "break",
            "text",
        ]

    def test_keeps_phrasing_wrappers_intact(self) -> None:
        """Strong/emphasis/link nodes are kept as they are."""
        strong = DocNode(type="strong", children=[text("x")])

        assert flatten_inline([strong]) == [strong]

    def test_drops_empty_leaf_blocks(self) -> None:
        """A thematic break has nothing inline to contribute."""
        assert flatten_inline([DocNode(type="thematicBreak")]) == []


class TestWrapInParagraph:
    """Tests for wrap_in_paragraph function."""

    def test_groups_inline_runs(self) -> None:
        """Consecutive inline nodes share one paragraph; blocks stay in place."""
        heading = DocNode(type="heading", depth=2, children=[text("H")])
        nodes = [text("a"), text("b"), heading, text("c")]

        result = wrap_in_paragraph(nodes)

        assert [node.type for node in result] == ["paragraph", "heading", "paragraph"]
        assert len(result[0].children) == 2

    def test_groups_stray_list_items(self) -> None:
        """List items outside a list are gathered into an unordered list."""
        first = DocNode(type="listItem", checked=True, children=[paragraph([text("x")])])
        second = DocNode(type="listItem", checked=False, children=[paragraph([text("y")])])

        result = wrap_in_paragraph([first, second, text("after")])

        assert [node.type for node in result] == ["list", "paragraph"]
        assert result[0].ordered is False
        assert result[0].children == [first, second]

    def test_empty_input(self) -> None:
        """No nodes, no paragraphs."""
        assert wrap_in_paragraph([]) == []


class TestWalking:
    """Tests for walk, count_node_types and plain_text."""

    def test_walk_is_preorder(self) -> None:
        """Parents come before their children."""
        tree = root([paragraph([text("a"), DocNode(type="strong", children=[text("b")])])])

        assert [node.type for node in walk(tree)] == ["root", "paragraph", "text", "strong", "text"]

    def test_count_node_types(self) -> None:
        """Counts every node, the root included."""
        tree = root([paragraph([text("a")]), paragraph([text("b")])])

        assert count_node_types(tree) == {"root": 1, "paragraph": 2, "text": 2}

    def test_plain_text(self) -> None:
        """Markup is dropped, code and alt text are kept."""
        tree = paragraph(
            [
                text("run "),
                DocNode(type="inlineCode", value="ls"),
                text(" "),
                DocNode(type="image", url="images/image_0.png", alt="diagram"),
            ]
        )

        assert plain_text(tree) == "run ls diagram"
