"""Convert a Loop page snapshot into a document tree.

Elements are classified by an ordered rule table; the first rule whose
predicate matches and whose converter accepts the element wins. A converter
may decline (return ``None``) to let later rules, and ultimately the generic
"recurse into children" fallback, handle the element.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from typing import Callable, Mapping

from loopd.config import (
    CALLOUT_TYPES,
    CODE_LANGUAGE_LABELS,
    COLLAPSED_SNIPPET_MAX_CHARS,
    DEFAULT_CALLOUT_TYPE,
    INLINE_CODE_MAX_CHARS,
    SHOW_MORE_LINES_TEXT,
)
from loopd.dom import (
    attribute_of,
    children_of,
    class_name,
    document_of,
    extract_code_block_text,
    extract_code_text,
    extract_text,
    find_first,
    is_monospace,
    is_skipped,
    is_text,
)
from loopd.exceptions import ConversionError
from loopd.schemas.nodes import DocNode, paragraph, root, text
from loopd.tree import flatten_inline, wrap_in_paragraph

try:
    from bs4.element import PageElement, Tag
except ImportError as exc:  # pragma: no cover - runtime dependency check
    raise RuntimeError(
        "BeautifulSoup4 is required for HTML parsing (pip install beautifulsoup4)."
    ) from exc

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")
_HEADING_TAG_RE = re.compile(r"^h[1-6]$")
_HEADING_CLASS_RE = re.compile(
    r"scriptor-collapsibleHeading|scriptor-heading|scriptor-title", re.IGNORECASE
)
_HEADING_LEVEL_CLASS_RE = re.compile(r"heading(\d)", re.IGNORECASE)
_SNIPPET_CLASS_RE = re.compile(r"scriptor-code|code-snippet|collapsed.*code", re.IGNORECASE)
_SHOW_MORE_RE = re.compile(re.escape(SHOW_MORE_LINES_TEXT), re.IGNORECASE)
_SNIPPET_LANGUAGE_RE = re.compile(
    r"^("
    + "|".join(re.escape(label) for label in sorted(CODE_LANGUAGE_LABELS, key=len, reverse=True))
    + r")\s*",
    re.IGNORECASE,
)
_CODE_BLOCK_CLASS_RE = re.compile(r"scriptor-codeBlock|scriptor-code-editor", re.IGNORECASE)
_INLINE_CODE_CLASS_RE = re.compile(r"scriptor-inlineCode|inline-?code|code-?span", re.IGNORECASE)
_LANGUAGE_CLASS_RE = re.compile(r"language-(\w+)", re.IGNORECASE)
_TASK_CLASS_RE = re.compile(r"scriptor-task|scriptor-checkbox", re.IGNORECASE)
_CALLOUT_CLASS_RE = re.compile(
    r"scriptor-callout|scriptor-infoBlock|scriptor-highlightBlock"
    r"|scriptor-component-block-callout|scriptor-block-callout",
    re.IGNORECASE,
)
_DIVIDER_CLASS_RE = re.compile(r"scriptor-divider|scriptor-horizontalRule", re.IGNORECASE)
_HYPERLINK_CLASS_RE = re.compile(r"scriptor-hyperlink", re.IGNORECASE)
_TITLE_URL_RE = re.compile(r"^(https?://\S+)", re.IGNORECASE)
_TITLE_TOKEN_RE = re.compile(r"^(\S+)")
_LINK_AFFORDANCE_PREFIX = "Click"
_PARAGRAPH_CLASS_RE = re.compile(r"scriptor-paragraph", re.IGNORECASE)
_TABLE_ROW_CLASS_RE = re.compile(r"scriptor-tableRow", re.IGNORECASE)
_TABLE_CELL_CLASS_RE = re.compile(r"scriptor-tableCell", re.IGNORECASE)
_ROW_INDEX_RE = re.compile(r"^\d+$")

_LIST_TAGS = frozenset({"ul", "ol"})
_ROW_GROUP_TAGS = frozenset({"thead", "tbody", "tfoot"})
_CELL_TAGS = frozenset({"th", "td"})
_CELL_ROLES = frozenset({"cell", "gridcell", "columnheader", "rowheader"})
_STRONG_TAGS = frozenset({"strong", "b"})
_EMPHASIS_TAGS = frozenset({"em", "i"})
_DELETE_TAGS = frozenset({"s", "del", "strike"})


@dataclass(frozen=True)
class ConversionContext:
    """Flags threaded through the recursive conversion.

    ``preserve_whitespace`` keeps text runs verbatim (code regions);
    ``in_code`` marks that an enclosing element already claimed code handling.
    """

    preserve_whitespace: bool = False
    in_code: bool = False


@dataclass(frozen=True)
class ElementInfo:
    tag: str
    classes: str
    role: str | None

    @classmethod
    def of(cls, element: Tag) -> "ElementInfo":
        return cls(
            tag=(element.name or "").lower(),
            classes=class_name(element),
            role=attribute_of(element, "role"),
        )


ConvertResult = list[DocNode] | None


@dataclass(frozen=True)
class Rule:
    name: str
    matches: Callable[[Tag, ElementInfo, ConversionContext], bool]
    convert: Callable[["_Walker", Tag, ElementInfo, ConversionContext], ConvertResult]


@dataclass
class _Walker:
    image_map: Mapping[str, str]
    _ids: dict[str, Tag] | None = field(default=None, repr=False)

    def convert(self, node: PageElement, context: ConversionContext) -> list[DocNode]:
        if is_text(node):
            return _convert_text(str(node), context)
        if not isinstance(node, Tag) or is_skipped(node):
            return []

        info = ElementInfo.of(node)
        for rule in RULES:
            if not rule.matches(node, info, context):
                continue
            converted = rule.convert(self, node, info, context)
            if converted is not None:
                return converted
        return self.convert_children(node, context)

    def convert_children(self, element: Tag, context: ConversionContext) -> list[DocNode]:
        results: list[DocNode] = []
        for child in children_of(element):
            results.extend(self.convert(child, context))
        return results

    def element_by_id(self, anchor: Tag, element_id: str) -> Tag | None:
        if self._ids is None:
            self._ids = {}
            for element in document_of(anchor).find_all(id=True):
                self._ids.setdefault(str(element["id"]), element)
        return self._ids.get(element_id)


def convert(
    node: PageElement,
    image_map: Mapping[str, str] | None = None,
    context: ConversionContext | None = None,
) -> list[DocNode]:
    """Convert one DOM node (and its subtree) into document nodes.

    ``image_map`` maps an image's source URL to its bundle filename; images
    found there are pointed at ``images/<filename>``.
    """
    walker = _Walker(image_map=dict(image_map or {}))
    return walker.convert(node, context or ConversionContext())


def build_tree(element: Tag, image_map: Mapping[str, str] | None = None) -> DocNode:
    """Convert the content root into a raw (not yet cleaned) document tree."""
    if not isinstance(element, Tag):
        raise ConversionError(f"Expected an element to convert, got {type(element).__name__}")
    return root(wrap_in_paragraph(convert(element, image_map)))


def _convert_text(value: str, context: ConversionContext) -> list[DocNode]:
    if context.preserve_whitespace:
        return [text(value)] if value else []
    # Whitespace-only runs survive as a single space: they separate words
    # split across adjacent inline elements.
    normalized = _WHITESPACE_RE.sub(" ", value)
    return [text(normalized)] if normalized else []


def _code_language(element: Tag) -> str | None:
    language = attribute_of(element, "data-language")
    if not language:
        match = _LANGUAGE_CLASS_RE.search(class_name(element))
        if match:
            language = match.group(1)
    if not language:
        code_child = find_first(element, lambda tag: tag.name == "code")
        if code_child is not None:
            match = _LANGUAGE_CLASS_RE.search(class_name(code_child))
            if match:
                language = match.group(1)
    return language.lower() if language else None


# ---------------------------------------------------------------------------
# Rules, in precedence order
# ---------------------------------------------------------------------------


def _matches_snippet(element: Tag, info: ElementInfo, context: ConversionContext) -> bool:
    return bool(_SNIPPET_CLASS_RE.search(info.classes))


def _convert_snippet(
    walker: _Walker, element: Tag, info: ElementInfo, context: ConversionContext
) -> ConvertResult:
    content = extract_text(element)
    if not _SHOW_MORE_RE.search(content):
        return None
    content = _SHOW_MORE_RE.sub("", content).strip()
    language_match = _SNIPPET_LANGUAGE_RE.match(content)
    language = language_match.group(1).lower() if language_match else None
    code_value = content[language_match.end():].strip() if language_match else content
    if not code_value or len(code_value) >= COLLAPSED_SNIPPET_MAX_CHARS:
        return None
    logger.debug("Found collapsed code snippet (%s): %.40s", language or "no lang", code_value)
    return [DocNode(type="code", lang=language, value=code_value)]


def _matches_heading(element: Tag, info: ElementInfo, context: ConversionContext) -> bool:
    if _HEADING_TAG_RE.match(info.tag) or info.role == "heading":
        return True
    if _HEADING_CLASS_RE.search(info.classes):
        return True
    return "heading" in (attribute_of(element, "data-automation-type") or "").lower()


def _convert_heading(
    walker: _Walker, element: Tag, info: ElementInfo, context: ConversionContext
) -> ConvertResult:
    if _HEADING_TAG_RE.match(info.tag):
        level = int(info.tag[1])
    else:
        level = _aria_level(element, info)
    inline = flatten_inline(walker.convert_children(element, context))
    if not inline:
        return []
    logger.debug("Found heading (level %d): %.50s", level, extract_text(element).strip())
    return [DocNode(type="heading", depth=min(max(level, 1), 6), children=inline)]


def _aria_level(element: Tag, info: ElementInfo) -> int:
    try:
        return int(attribute_of(element, "aria-level") or "")
    except ValueError:
        pass
    match = _HEADING_LEVEL_CLASS_RE.search(info.classes)
    return int(match.group(1)) if match else 2


def _matches_inline_code(element: Tag, info: ElementInfo, context: ConversionContext) -> bool:
    if _CODE_BLOCK_CLASS_RE.search(info.classes):
        return False
    if info.tag == "code":
        return True
    automation_type = (attribute_of(element, "data-automation-type") or "").lower()
    if _INLINE_CODE_CLASS_RE.search(info.classes) or "code" in automation_type:
        return True
    if "monospace" in info.classes.lower():
        return True
    return info.tag in {"span", "div"} and is_monospace(element)


def _convert_inline_code(
    walker: _Walker, element: Tag, info: ElementInfo, context: ConversionContext
) -> ConvertResult:
    value = extract_code_text(element).strip()
    if not value:
        return None
    if "\n" in value or len(value) >= INLINE_CODE_MAX_CHARS:
        logger.debug("Found code block in inline code element: %.40s", value)
        return [DocNode(type="code", lang=_code_language(element), value=value)]
    return [DocNode(type="inlineCode", value=value)]


def _matches_code_block(element: Tag, info: ElementInfo, context: ConversionContext) -> bool:
    if _CODE_BLOCK_CLASS_RE.search(info.classes):
        return True
    return info.tag == "pre" and not context.in_code


def _convert_code_block(
    walker: _Walker, element: Tag, info: ElementInfo, context: ConversionContext
) -> ConvertResult:
    value = extract_code_block_text(element)
    if not value.strip():
        return walker.convert_children(element, replace(context, in_code=True))
    return [DocNode(type="code", lang=_code_language(element), value=value)]


def _matches_table(element: Tag, info: ElementInfo, context: ConversionContext) -> bool:
    return info.tag == "table" or info.role in {"table", "grid"}


def _convert_table(
    walker: _Walker, element: Tag, info: ElementInfo, context: ConversionContext
) -> ConvertResult:
    rows: list[DocNode] = []
    for row in _find_rows(element):
        cells: list[DocNode] = []
        for cell in children_of(row):
            if not isinstance(cell, Tag):
                continue
            cell_info = ElementInfo.of(cell)
            if cell_info.role == "rowheader" and _ROW_INDEX_RE.match(extract_text(cell).strip()):
                # Synthetic row number rendered by Loop grids.
                continue
            if (
                cell_info.tag in _CELL_TAGS
                or cell_info.role in _CELL_ROLES
                or _TABLE_CELL_CLASS_RE.search(cell_info.classes)
            ):
                inline = flatten_inline(walker.convert_children(cell, context))
                cells.append(DocNode(type="tableCell", children=inline or [text("")]))
        if cells:
            rows.append(DocNode(type="tableRow", children=cells))

    if not rows:
        return walker.convert_children(element, context)
    column_count = len(rows[0].children)
    return [DocNode(type="table", align=[None] * column_count, children=rows)]


def _find_rows(element: Tag) -> list[Tag]:
    rows: list[Tag] = []
    for child in children_of(element):
        if not isinstance(child, Tag):
            continue
        child_info = ElementInfo.of(child)
        if (
            child_info.tag == "tr"
            or child_info.role == "row"
            or _TABLE_ROW_CLASS_RE.search(child_info.classes)
        ):
            rows.append(child)
        elif child_info.tag in _ROW_GROUP_TAGS or child_info.role == "rowgroup":
            rows.extend(_find_rows(child))
    return rows


def _matches_list(element: Tag, info: ElementInfo, context: ConversionContext) -> bool:
    return info.tag in _LIST_TAGS or info.role == "list"


def _convert_list(
    walker: _Walker, element: Tag, info: ElementInfo, context: ConversionContext
) -> ConvertResult:
    # Loop renders one <ul> per item; only the first carries aria-owns with the
    # logical ordering, the rest are aria-hidden copies.
    if attribute_of(element, "aria-hidden") == "true":
        return []

    items: list[DocNode] = []
    owned_ids = (attribute_of(element, "aria-owns") or "").split()
    if owned_ids:
        for item_id in owned_ids:
            item_element = walker.element_by_id(element, item_id)
            if item_element is not None:
                items.append(_convert_list_item(walker, item_element, context))
    else:
        for child in children_of(element):
            if isinstance(child, Tag) and (
                child.name == "li" or attribute_of(child, "role") == "listitem"
            ):
                items.append(_convert_list_item(walker, child, context))

    if not items:
        return walker.convert_children(element, context)
    return [DocNode(type="list", ordered=info.tag == "ol", children=items)]


def _convert_list_item(walker: _Walker, item: Tag, context: ConversionContext) -> DocNode:
    checked = _checkbox_state(item)
    converted = walker.convert_children(item, context)

    significant = [
        node for node in converted if not (node.type == "text" and not (node.value or "").strip())
    ]
    if len(significant) == 1 and significant[0].type == "listItem":
        task = significant[0]
        if task.checked is None:
            task.checked = checked
        return task

    return DocNode(type="listItem", checked=checked, children=wrap_in_paragraph(converted))


def _checkbox_state(element: Tag) -> bool | None:
    checkbox = find_first(
        element,
        lambda tag: (tag.name == "input" and (attribute_of(tag, "type") or "").lower() == "checkbox")
        or attribute_of(tag, "role") == "checkbox",
    )
    if checkbox is None:
        return None
    if checkbox.name == "input":
        return checkbox.has_attr("checked")
    return attribute_of(checkbox, "aria-checked") == "true"


def _matches_task(element: Tag, info: ElementInfo, context: ConversionContext) -> bool:
    return bool(_TASK_CLASS_RE.search(info.classes))


def _convert_task(
    walker: _Walker, element: Tag, info: ElementInfo, context: ConversionContext
) -> ConvertResult:
    checked = bool(_checkbox_state(element)) or attribute_of(element, "aria-checked") == "true"
    children = wrap_in_paragraph(walker.convert_children(element, context))
    return [DocNode(type="listItem", checked=checked, children=children)]


def _matches_blockquote(element: Tag, info: ElementInfo, context: ConversionContext) -> bool:
    return info.tag == "blockquote"


def _convert_blockquote(
    walker: _Walker, element: Tag, info: ElementInfo, context: ConversionContext
) -> ConvertResult:
    children = wrap_in_paragraph(walker.convert_children(element, context))
    return [DocNode(type="blockquote", children=children)]


def _matches_callout(element: Tag, info: ElementInfo, context: ConversionContext) -> bool:
    return bool(_CALLOUT_CLASS_RE.search(info.classes))


def _convert_callout(
    walker: _Walker, element: Tag, info: ElementInfo, context: ConversionContext
) -> ConvertResult:
    alert_type = detect_callout_type(info.classes, attribute_of(element, "data-type"))
    children = wrap_in_paragraph(walker.convert_children(element, context))
    logger.debug("Found callout block (%s): %.50s", alert_type, extract_text(element).strip())
    marker = paragraph([text(f"[!{alert_type}]")])
    return [DocNode(type="blockquote", children=[marker, *children])]


def detect_callout_type(classes: str, data_type: str | None = None) -> str:
    """Map a callout's class names / ``data-type`` onto a GitHub alert type."""
    source = f"{classes} {data_type or ''}".lower()
    for keyword, alert_type in CALLOUT_TYPES:
        if keyword in source:
            return alert_type
    return DEFAULT_CALLOUT_TYPE


def _matches_rule(element: Tag, info: ElementInfo, context: ConversionContext) -> bool:
    return info.tag == "hr" or bool(_DIVIDER_CLASS_RE.search(info.classes))


def _convert_rule(
    walker: _Walker, element: Tag, info: ElementInfo, context: ConversionContext
) -> ConvertResult:
    return [DocNode(type="thematicBreak")]


def _matches_image(element: Tag, info: ElementInfo, context: ConversionContext) -> bool:
    return info.tag == "img"


def _convert_image(
    walker: _Walker, element: Tag, info: ElementInfo, context: ConversionContext
) -> ConvertResult:
    source = attribute_of(element, "src")
    alt = attribute_of(element, "alt") or ""
    if not source:
        return []
    if source in walker.image_map:
        return [DocNode(type="image", url=f"images/{walker.image_map[source]}", alt=alt)]
    if source.startswith("data:"):
        # Never downloaded, so it cannot be externalized.
        return []
    return [DocNode(type="image", url=source, alt=alt)]


def _matches_loop_link(element: Tag, info: ElementInfo, context: ConversionContext) -> bool:
    return info.role == "link" or bool(_HYPERLINK_CLASS_RE.search(info.classes))


def _convert_loop_link(
    walker: _Walker, element: Tag, info: ElementInfo, context: ConversionContext
) -> ConvertResult:
    # Loop keeps the target in the title: "<url>\nClick to follow link".
    href = link_from_title(attribute_of(element, "title") or "")
    if not href:
        return None
    return [_link(walker, element, href, context)]


def link_from_title(title: str) -> str | None:
    """Pull the URL out of a Loop hyperlink ``title`` attribute."""
    match = _TITLE_URL_RE.match(title) or _TITLE_TOKEN_RE.match(title)
    if not match:
        return None
    href = match.group(1)
    if href.startswith(_LINK_AFFORDANCE_PREFIX):
        return None
    return href


def _matches_anchor(element: Tag, info: ElementInfo, context: ConversionContext) -> bool:
    return info.tag == "a"


def _convert_anchor(
    walker: _Walker, element: Tag, info: ElementInfo, context: ConversionContext
) -> ConvertResult:
    href = attribute_of(element, "href") or ""
    if not href or href == "#" or href.lower().startswith("javascript:"):
        return walker.convert_children(element, context)
    return [_link(walker, element, href, context)]


def _link(walker: _Walker, element: Tag, href: str, context: ConversionContext) -> DocNode:
    inline = flatten_inline(walker.convert_children(element, context))
    if not inline:
        inline = [text(extract_text(element).strip() or href)]
    logger.debug("Found link: %.50s", href)
    return DocNode(type="link", url=href, children=inline)


def _phrasing_rule(tags: frozenset[str], node_type: str) -> Rule:
    def matches(element: Tag, info: ElementInfo, context: ConversionContext) -> bool:
        return info.tag in tags

    def convert_phrasing(
        walker: _Walker, element: Tag, info: ElementInfo, context: ConversionContext
    ) -> ConvertResult:
        inline = flatten_inline(walker.convert_children(element, context))
        if not inline:
            return []
        if all(node.type == "text" and not (node.value or "").strip() for node in inline):
            return inline
        return [DocNode(type=node_type, children=inline)]

    return Rule(node_type, matches, convert_phrasing)


def _matches_break(element: Tag, info: ElementInfo, context: ConversionContext) -> bool:
    return info.tag == "br"


def _convert_break(
    walker: _Walker, element: Tag, info: ElementInfo, context: ConversionContext
) -> ConvertResult:
    for sibling in element.next_siblings:
        if is_text(sibling) and str(sibling).strip():
            return [DocNode(type="break")]
        if isinstance(sibling, Tag) and sibling.name != "br":
            return [DocNode(type="break")]
    return []


def _matches_paragraph(element: Tag, info: ElementInfo, context: ConversionContext) -> bool:
    return info.tag == "p" or bool(_PARAGRAPH_CLASS_RE.search(info.classes))


def _convert_paragraph(
    walker: _Walker, element: Tag, info: ElementInfo, context: ConversionContext
) -> ConvertResult:
    children = walker.convert_children(element, context)
    if not children:
        return []
    if any(child.is_block or child.type == "listItem" for child in children):
        return children
    inline = flatten_inline(children, keep_breaks=True)
    while inline and inline[-1].type == "break":
        inline.pop()
    if not inline:
        return []
    return [paragraph(inline)]


RULES: list[Rule] = [
    Rule("collapsed-snippet", _matches_snippet, _convert_snippet),
    Rule("heading", _matches_heading, _convert_heading),
    Rule("inline-code", _matches_inline_code, _convert_inline_code),
    Rule("code-block", _matches_code_block, _convert_code_block),
    Rule("table", _matches_table, _convert_table),
    Rule("list", _matches_list, _convert_list),
    Rule("task", _matches_task, _convert_task),
    Rule("blockquote", _matches_blockquote, _convert_blockquote),
    Rule("callout", _matches_callout, _convert_callout),
    Rule("thematic-break", _matches_rule, _convert_rule),
    Rule("image", _matches_image, _convert_image),
    Rule("loop-link", _matches_loop_link, _convert_loop_link),
    Rule("anchor", _matches_anchor, _convert_anchor),
    _phrasing_rule(_STRONG_TAGS, "strong"),
    _phrasing_rule(_EMPHASIS_TAGS, "emphasis"),
    _phrasing_rule(_DELETE_TAGS, "delete"),
    Rule("break", _matches_break, _convert_break),
    Rule("paragraph", _matches_paragraph, _convert_paragraph),
]
