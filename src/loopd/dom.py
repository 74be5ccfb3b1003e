"""Traversal helpers over a Loop page snapshot.

The converter never touches BeautifulSoup navigation directly; it goes through
``children_of`` / ``attribute_of`` so that shadow roots (serialized as
``<template shadowrootmode>`` children of their host) are walked exactly like
light-DOM children.
"""

from __future__ import annotations

import re
from typing import Any, Callable, Iterator

from loopd.exceptions import ContentNotFoundError

try:
    from bs4 import BeautifulSoup
    from bs4.element import (
        CData,
        Comment,
        Declaration,
        Doctype,
        NavigableString,
        PageElement,
        ProcessingInstruction,
        Tag,
    )
except ImportError as exc:  # pragma: no cover - runtime dependency check
    raise RuntimeError(
        "BeautifulSoup4 is required for HTML parsing (pip install beautifulsoup4)."
    ) from exc


_NON_CONTENT_STRINGS = (CData, Comment, Declaration, Doctype, ProcessingInstruction)
_NON_CONTENT_TAGS = frozenset(
    {"style", "script", "noscript", "meta", "link", "template", "head", "title"}
)
_CHROME_CLASS_RE = re.compile(
    r"scriptor-(collapseButton|block-command|commands|toolbar|pageHeader)"
    r"|presence|avatar|toolbar|menu",
    re.IGNORECASE,
)
_LINE_NUMBER_RE = re.compile(r"line-number|lineNumber", re.IGNORECASE)
_CODE_LINE_CLASS_RE = re.compile(r"scriptor-paragraph|scriptor-line", re.IGNORECASE)
_CODE_LINE_TAGS = frozenset({"p", "div", "pre", "li"})
_MONOSPACE_FONTS = ("monospace", "consolas", "monaco", "courier", "menlo")

_CONTENT_SELECTORS = (
    "div.scriptor-pageContainer",
    'div[class*="pageContainer"]',
    ".scriptor-pageFrame.scriptor-firstPage",
    ".scriptor-pageBody",
    ".scriptor-pageFrame",
    ".scriptor-canvas",
    '[id^="componentPartHostingElementId"]',
    '[role="main"]',
)
_SCORED_SELECTOR = '.scriptor-paragraph, p, [role="heading"], img'
_CONTENT_ELEMENT_SELECTOR = (
    '.scriptor-paragraph, p, h1, h2, h3, h4, h5, h6, [role="heading"], img, li, table, pre'
)
_MIN_FALLBACK_PARAGRAPHS = 3
_TITLE_SUFFIX_RE = re.compile(r"\s*[-–—|].*$")


def parse_snapshot(html: str) -> BeautifulSoup:
    """Parse a serialized page snapshot."""
    return BeautifulSoup(html, "html.parser")


def is_text(node: PageElement | None) -> bool:
    return isinstance(node, NavigableString) and not isinstance(node, _NON_CONTENT_STRINGS)


def shadow_root_of(tag: Tag) -> Tag | None:
    """Return the serialized shadow root attached to ``tag``, if any."""
    for child in tag.children:
        if isinstance(child, Tag) and child.name == "template" and (
            child.has_attr("shadowrootmode") or child.has_attr("shadowroot")
        ):
            return child
    return None


def children_of(node: PageElement) -> list[PageElement]:
    """Shadow-root children first (they render in place of light DOM), then light children."""
    if not isinstance(node, Tag):
        return []
    shadow = shadow_root_of(node)
    children: list[PageElement] = list(shadow.children) if shadow is not None else []
    children.extend(child for child in node.children if child is not shadow)
    return children


def attribute_of(tag: Tag, name: str) -> str | None:
    value = tag.get(name)
    if value is None:
        return None
    if isinstance(value, list):
        return " ".join(value)
    return str(value)


def class_name(tag: Tag) -> str:
    return attribute_of(tag, "class") or ""


def is_skipped(tag: Tag) -> bool:
    """UI chrome and non-content elements contribute nothing to the export."""
    if (tag.name or "").lower() in _NON_CONTENT_TAGS:
        return True
    if _CHROME_CLASS_RE.search(class_name(tag)):
        return True
    return attribute_of(tag, "aria-hidden") == "true"


def is_monospace(tag: Tag) -> bool:
    """Whether the element renders in a monospace font.

    Live snapshots stamp ``data-loopd-monospace`` from the computed style;
    saved HTML only has the inline ``style`` attribute to go on.
    """
    if attribute_of(tag, "data-loopd-monospace") == "true":
        return True
    style = (attribute_of(tag, "style") or "").lower()
    match = re.search(r"font-family\s*:([^;]*)", style)
    if not match:
        return False
    family = match.group(1)
    return any(font in family for font in _MONOSPACE_FONTS)


def extract_text(node: PageElement) -> str:
    """Concatenated text of ``node``, ignoring skipped elements."""
    if is_text(node):
        return str(node)
    if not isinstance(node, Tag) or is_skipped(node):
        return ""
    return "".join(extract_text(child) for child in children_of(node))


def extract_code_text(node: PageElement) -> str:
    """Like ``extract_text`` but ``<br>`` becomes a newline."""
    if is_text(node):
        return str(node)
    if not isinstance(node, Tag):
        return ""
    if node.name == "br":
        return "\n"
    if is_skipped(node):
        return ""
    return "".join(extract_code_text(child) for child in children_of(node))


def extract_code_block_text(tag: Tag) -> str:
    """Rebuild the visual lines of a code block.

    ``<br>`` is a newline, block-level children (``p``, ``div``, ``pre``,
    ``li`` or a Loop line wrapper) close the current line, and everything else
    is concatenated inline. Line-number gutters are ignored.
    """
    lines: list[str] = []
    current: list[str] = []

    def flush() -> None:
        chunk = "".join(current)
        current.clear()
        if chunk.strip():
            lines.append(chunk)

    def visit(node: PageElement) -> None:
        if is_text(node):
            current.append(str(node))
            return
        if not isinstance(node, Tag) or is_skipped(node):
            return
        if _LINE_NUMBER_RE.search(class_name(node)):
            return
        if node.name == "br":
            current.append("\n")
            return
        is_line = node.name in _CODE_LINE_TAGS or bool(
            _CODE_LINE_CLASS_RE.search(class_name(node))
        )
        if is_line:
            flush()
        for child in children_of(node):
            visit(child)
        if is_line:
            flush()

    for child in children_of(tag):
        visit(child)
    flush()

    if not lines:
        return extract_text(tag).strip("\n")
    return "\n".join(lines).strip("\n")


def iter_elements(node: PageElement) -> Iterator[Tag]:
    """Depth-first walk over descendant elements, descending into shadow roots."""
    for child in children_of(node):
        if isinstance(child, Tag):
            yield child
            yield from iter_elements(child)


def find_first(node: PageElement, predicate: Callable[[Tag], bool]) -> Tag | None:
    for element in iter_elements(node):
        if predicate(element):
            return element
    return None


def closest(tag: Tag, predicate: Callable[[Tag], bool]) -> Tag | None:
    """Nearest ancestor-or-self matching ``predicate``; crosses shadow boundaries."""
    current: Tag | None = tag
    while current is not None and not isinstance(current, BeautifulSoup):
        if predicate(current):
            return current
        current = current.parent
    return None


def document_of(tag: Tag) -> Tag:
    top = tag
    while top.parent is not None:
        top = top.parent
    return top


def find_content_root(soup: BeautifulSoup) -> Tag:
    """Locate the element holding the Loop page content.

    Candidates from the known container selectors are scored by their number
    of paragraphs, headings and images; the best one wins. Falls back to the
    nearest ancestor of the first ``.scriptor-paragraph`` holding at least
    three paragraphs.

    Raises:
        ContentNotFoundError: If nothing on the page looks like content.
    """
    best: Tag | None = None
    best_score = 0
    for selector in _CONTENT_SELECTORS:
        for candidate in soup.select(selector):
            score = len(candidate.select(_SCORED_SELECTOR))
            if score > best_score:
                best_score = score
                best = candidate
    if best is not None:
        return best

    first_paragraph = soup.select_one(".scriptor-paragraph")
    if first_paragraph is not None:
        parent = first_paragraph.parent
        while parent is not None and parent.name not in {"body", "[document]"}:
            if len(parent.select(".scriptor-paragraph")) >= _MIN_FALLBACK_PARAGRAPHS:
                return parent
            parent = parent.parent

    raise ContentNotFoundError(
        "Could not find Loop content on this page. "
        "Make sure the page has finished loading and shows a Loop document."
    )


def count_content_elements(root: Tag) -> int:
    """Number of content-bearing elements (paragraphs, headings, images, items, tables)."""
    return len(root.select(_CONTENT_ELEMENT_SELECTOR))


def collect_automation_types(root: Tag) -> dict[str, dict[str, Any]]:
    """Census of ``data-automation-type`` values, with up to three samples each."""
    types: dict[str, dict[str, Any]] = {}
    elements = [root, *iter_elements(root)]
    for element in elements:
        automation_type = attribute_of(element, "data-automation-type")
        if not automation_type:
            continue
        entry = types.setdefault(automation_type, {"count": 0, "samples": []})
        entry["count"] += 1
        if len(entry["samples"]) < 3:
            entry["samples"].append(
                {
                    "tag": element.name,
                    "className": class_name(element)[:80],
                    "text": element.get_text()[:100].strip(),
                }
            )
    return types


def find_page_title(soup: BeautifulSoup, root: Tag) -> str | None:
    """Best-effort page title: Loop title block, then first H1, then ``<title>``."""
    title_tag = root.select_one('.scriptor-pageTitle, [data-automation-type="Title"]')
    if title_tag is not None:
        title = title_tag.get_text(" ", strip=True)
        if title:
            return title

    heading = root.select_one('h1, [role="heading"][aria-level="1"]')
    if heading is not None:
        title = heading.get_text(" ", strip=True)
        if title:
            return title

    if soup.title and soup.title.string:
        title = _TITLE_SUFFIX_RE.sub("", soup.title.string).strip()
        return title or None
    return None
