"""Small pure helpers over document trees."""

from __future__ import annotations

from collections import Counter
from typing import Iterable, Iterator

from loopd.schemas.nodes import BLOCK_TYPES, DocNode, paragraph, text

_KEPT_INLINE = frozenset({"text", "inlineCode", "strong", "emphasis", "delete", "link", "image"})


def flatten_inline(nodes: Iterable[DocNode], *, keep_breaks: bool = False) -> list[DocNode]:
    """Reduce ``nodes`` to inline content.

    Paragraphs and other containers are unwrapped, code blocks turn into
    inline code, and leaf blocks without a value vanish. Breaks are dropped
    unless ``keep_breaks`` is set.
    """
    result: list[DocNode] = []
    for node in nodes:
        if node.type == "break":
            if keep_breaks:
                result.append(node)
            continue
        if node.type in _KEPT_INLINE:
            result.append(node)
        elif node.type == "code":
            result.append(DocNode(type="inlineCode", value=node.value or ""))
        elif node.children:
            result.extend(flatten_inline(node.children, keep_breaks=keep_breaks))
        elif node.value:
            result.append(text(node.value))
    return result


def wrap_in_paragraph(nodes: Iterable[DocNode]) -> list[DocNode]:
    """Group runs of inline nodes into paragraphs, leaving blocks in place.

    Stray list items (task items found outside a list) are gathered into an
    unordered list so that no block ends up inside a paragraph.
    """
    result: list[DocNode] = []
    inline: list[DocNode] = []
    stray_items: list[DocNode] = []

    def flush_inline() -> None:
        if inline:
            result.append(paragraph(list(inline)))
            inline.clear()

    def flush_items() -> None:
        if stray_items:
            result.append(DocNode(type="list", ordered=False, children=list(stray_items)))
            stray_items.clear()

    for node in nodes:
        if node.type == "listItem":
            flush_inline()
            stray_items.append(node)
        elif node.type in BLOCK_TYPES:
            flush_inline()
            flush_items()
            result.append(node)
        else:
            flush_items()
            inline.append(node)

    flush_inline()
    flush_items()
    return result


def walk(node: DocNode) -> Iterator[DocNode]:
    """Pre-order traversal including ``node`` itself."""
    yield node
    for child in node.children:
        yield from walk(child)


def count_node_types(node: DocNode) -> dict[str, int]:
    return dict(Counter(current.type for current in walk(node)))


def plain_text(node: DocNode) -> str:
    """Text content of a subtree, without any markup."""
    if node.type in {"text", "inlineCode", "code"}:
        return node.value or ""
    if node.type == "image":
        return node.alt or ""
    return "".join(plain_text(child) for child in node.children)
