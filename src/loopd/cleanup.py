"""Normalization pass over a freshly converted document tree.

The pass rewrites the tree in place and is idempotent: running it on its own
output changes nothing.
"""

from __future__ import annotations

import logging
import re

from loopd.config import CODE_LANGUAGE_LABELS, SHOW_MORE_LINES_TEXT
from loopd.schemas.nodes import PHRASING_WRAPPERS, DocNode, text

logger = logging.getLogger(__name__)

CSS_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"@media[^{]*\{[\s\S]*?\}\s*\}"),
    re.compile(r"@keyframes[^{]*\{[\s\S]*?\}\s*\}"),
    re.compile(r"@font-face\s*\{[^}]*\}"),
    re.compile(r"\.[a-zA-Z_][\w-]*\s*\{[^}]*\}"),
    re.compile(r"#[a-zA-Z_][\w-]*\s*\{[^}]*\}"),
    re.compile(
        r"\{[^}]*(?:display|position|margin|padding|font-size|color|background|border|width|height)"
        r"\s*:[^}]*\}"
    ),
)

_MULTI_SPACE_RE = re.compile(r"  +")
_SPACED_BEFORE_RE = re.compile(r"[\s(\[{]$")
_SPACED_AFTER_RE = re.compile(r"^[\s.,;:!?)\]}]")
_LANGUAGE_LABEL_RE = re.compile(
    r"^(" + "|".join(re.escape(label) for label in CODE_LANGUAGE_LABELS) + r")$",
    re.IGNORECASE,
)
_SHOW_MORE_RE = re.compile(re.escape(SHOW_MORE_LINES_TEXT), re.IGNORECASE)

# Inline nodes that need a word boundary against neighbouring text.
_SPACED_TYPES = frozenset({"inlineCode", "link", "strong", "emphasis", "delete"})
_SPACED_PARENTS = frozenset(
    {"paragraph", "heading", "tableCell", "strong", "emphasis", "delete", "link"}
)
_MERGEABLE_WRAPPERS = frozenset({"strong", "emphasis", "delete"})
# Markdown for these holds a single line, so hard breaks become spaces.
_SINGLE_LINE_TYPES = frozenset({"heading", "tableCell", "link"})
_BLOCK_CONTAINERS = frozenset({"root", "blockquote", "listItem"})
_EMPTY_CONTAINERS = PHRASING_WRAPPERS | {
    "paragraph",
    "heading",
    "blockquote",
    "list",
    "table",
    "tableRow",
}


def strip_css(value: str) -> str:
    """Remove CSS rule text captured as content. Surrounding whitespace is kept."""
    previous = None
    while previous != value:
        previous = value
        for pattern in CSS_PATTERNS:
            value = pattern.sub("", value)
    return value


def normalize_tree(root: DocNode) -> DocNode:
    """Clean up ``root`` in place and return it."""
    _unwrap_nested(root)
    _merge(root)
    _strip_css(root)
    _flatten_breaks(root)
    _prune(root)
    _merge(root)
    _ensure_spacing(root)
    _rewrite_collapsed_snippets(root)
    _drop_blank_paragraphs(root)
    _prune(root)
    _merge(root)
    return root


def _unwrap_nested(node: DocNode, enclosing: frozenset[str] = frozenset()) -> None:
    """Splice out wrappers that repeat a type already applied by an ancestor."""
    if node.type in _MERGEABLE_WRAPPERS:
        enclosing = enclosing | {node.type}
    children: list[DocNode] = []
    for child in node.children:
        _unwrap_nested(child, enclosing)
        if child.type in enclosing:
            children.extend(child.children)
        else:
            children.append(child)
    node.children = children


def _flatten_breaks(node: DocNode, single_line: bool = False) -> None:
    single_line = single_line or node.type in _SINGLE_LINE_TYPES
    if single_line:
        node.children = [text(" ") if child.type == "break" else child for child in node.children]
    for child in node.children:
        _flatten_breaks(child, single_line)


def _strip_css(node: DocNode) -> None:
    if node.type == "text" and node.value:
        node.value = strip_css(node.value)
    elif node.type == "code" and node.value and not node.lang:
        stripped = strip_css(node.value)
        if stripped != node.value and not stripped.strip():
            node.value = ""
    for child in node.children:
        _strip_css(child)


def _is_removable(node: DocNode) -> bool:
    if node.type == "text":
        return not node.value
    if node.type == "code":
        return not (node.value or "").strip()
    if node.type == "image":
        return not node.url or node.url.startswith("data:")
    if node.type in _EMPTY_CONTAINERS:
        return not node.children
    # inlineCode is kept even when empty.
    return False


def _is_edge_filler(node: DocNode) -> bool:
    return node.type == "break" or (node.type == "text" and not (node.value or "").strip())


def _hoist_edges(wrapper: DocNode) -> tuple[list[DocNode], list[DocNode]]:
    """Pop the breaks and blank text at either end of ``wrapper``."""
    leading: list[DocNode] = []
    trailing: list[DocNode] = []
    while wrapper.children and _is_edge_filler(wrapper.children[0]):
        leading.append(wrapper.children.pop(0))
    while wrapper.children and _is_edge_filler(wrapper.children[-1]):
        trailing.insert(0, wrapper.children.pop())
    return leading, trailing


def _prune(node: DocNode) -> None:
    for child in node.children:
        _prune(child)
    children: list[DocNode] = []
    for child in node.children:
        if child.type in _MERGEABLE_WRAPPERS:
            # A delimiter run next to a break or a space cannot open or close.
            leading, trailing = _hoist_edges(child)
            children.extend([*leading, child, *trailing])
        else:
            children.append(child)
    node.children = [child for child in children if not _is_removable(child)]
    if node.type == "paragraph":
        while node.children and _is_edge_filler(node.children[0]):
            node.children.pop(0)
        while node.children and _is_edge_filler(node.children[-1]):
            node.children.pop()


def _merge(node: DocNode) -> None:
    """Merge adjacent text runs and redundant phrasing wrappers below ``node``."""
    for child in node.children:
        _merge(child)

    merged: list[DocNode] = []
    for child in node.children:
        previous = merged[-1] if merged else None
        if previous is not None and child.type == "text" and previous.type == "text":
            previous.value = (previous.value or "") + (child.value or "")
        elif (
            previous is not None
            and child.type in _MERGEABLE_WRAPPERS
            and previous.type == child.type
        ):
            previous.children = previous.children + child.children
            _merge(previous)
        else:
            merged.append(child)

    for child in merged:
        if child.type == "text" and child.value:
            child.value = _MULTI_SPACE_RE.sub(" ", child.value)
    node.children = merged


def _needs_separator(previous: DocNode, child: DocNode) -> bool:
    if previous.type == "inlineCode" and child.type == "inlineCode":
        return True
    return (previous.type in _MERGEABLE_WRAPPERS and child.type in _SPACED_TYPES) or (
        child.type in _MERGEABLE_WRAPPERS and previous.type in _SPACED_TYPES
    )


def _ensure_spacing(node: DocNode) -> None:
    if node.type in _SPACED_PARENTS:
        separated: list[DocNode] = []
        for child in node.children:
            if separated and _needs_separator(separated[-1], child):
                separated.append(text(" "))
            separated.append(child)
        node.children = separated
        children = separated
        for index, child in enumerate(children):
            if child.type not in _SPACED_TYPES:
                continue
            previous = children[index - 1] if index > 0 else None
            following = children[index + 1] if index + 1 < len(children) else None
            if (
                previous is not None
                and previous.type == "text"
                and previous.value
                and not _SPACED_BEFORE_RE.search(previous.value)
            ):
                previous.value += " "
            if (
                following is not None
                and following.type == "text"
                and following.value
                and not _SPACED_AFTER_RE.search(following.value)
            ):
                following.value = " " + following.value
    for child in node.children:
        _ensure_spacing(child)


def _collapsed_snippet(paragraph: DocNode) -> DocNode | None:
    """Return the code node a ``{label}{inlineCode}{Show more lines}`` paragraph stands for."""
    language: str | None = None
    code: DocNode | None = None
    for child in paragraph.children:
        value = (child.value or "").strip()
        if child.type == "text" and not value:
            continue
        if child.type == "text" and language is None and _LANGUAGE_LABEL_RE.match(value):
            language = value.lower()
        elif child.type == "inlineCode" and language is not None and code is None:
            code = child
        elif child.type == "text" and code is not None and _SHOW_MORE_RE.search(value):
            continue
        else:
            return None
    if language is None or code is None:
        return None
    return DocNode(type="code", lang=language, value=code.value or "")


def _rewrite_collapsed_snippets(node: DocNode) -> None:
    if node.type in _BLOCK_CONTAINERS:
        rewritten: list[DocNode] = []
        for child in node.children:
            snippet = _collapsed_snippet(child) if child.type == "paragraph" else None
            if snippet is not None:
                logger.debug("Converting to code block (%s): %.40s", snippet.lang, snippet.value)
                rewritten.append(snippet)
            else:
                rewritten.append(child)
        node.children = rewritten
    for child in node.children:
        _rewrite_collapsed_snippets(child)


def _is_blank_paragraph(node: DocNode) -> bool:
    return (
        node.type == "paragraph"
        and len(node.children) == 1
        and node.children[0].type == "text"
        and not (node.children[0].value or "").strip()
    )


def _drop_blank_paragraphs(node: DocNode) -> None:
    if node.type in _BLOCK_CONTAINERS:
        node.children = [child for child in node.children if not _is_blank_paragraph(child)]
    for child in node.children:
        _drop_blank_paragraphs(child)
