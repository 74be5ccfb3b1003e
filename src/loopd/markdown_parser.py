"""Line-oriented Markdown reader used on the rendering side.

Understands the Markdown subset produced by ``loopd.markdown`` (headings,
paragraphs with hard breaks, fenced code, block quotes and alerts, nested
and task lists, pipe tables, thematic breaks) plus the usual hand-written
variations of those constructs. Anything else is read as a paragraph.
"""

from __future__ import annotations

import re
import string
import unicodedata
from dataclasses import dataclass
from typing import Callable

from loopd.schemas.nodes import Alignment, DocNode, paragraph, root, text

_FENCE_RE = re.compile(r"^( {0,3})(`{3,}|~{3,})[ \t]*(.*?)[ \t]*$")
_HEADING_RE = re.compile(r"^ {0,3}(#{1,6})(?:[ \t]+(.*?))?[ \t]*$")
_CLOSING_HASHES_RE = re.compile(r"(?:^|[ \t]+)#+[ \t]*$")
_THEMATIC_RE = re.compile(r"^ {0,3}([-*_])(?:[ \t]*\1){2,}[ \t]*$")
_BLOCKQUOTE_RE = re.compile(r"^ {0,3}>")
_BLOCKQUOTE_PREFIX_RE = re.compile(r"^ {0,3}> ?")
_BULLET_RE = re.compile(r"^( {0,3})([-*+·])([ \t]+|$)")
_ORDERED_RE = re.compile(r"^( {0,3})(\d{1,9}[.)])([ \t]+|$)")
_TASK_RE = re.compile(r"^\[([ xX])\](?:[ \t]+|$)")
_DELIMITER_CELL_RE = re.compile(r"^:?-+:?$")
_PLAIN_RE = re.compile(r"[^\\`!\[*~\n]+")

_ESCAPABLE = frozenset(string.punctuation) | {"·"}


# ---------------------------------------------------------------------------
# Blocks
# ---------------------------------------------------------------------------


def parse_markdown(source: str) -> DocNode:
    """Parse Markdown text into a ``root`` document node."""
    lines = source.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    return root(parse_blocks(lines))


BlockResult = tuple[DocNode, int] | None


def parse_blocks(lines: list[str]) -> list[DocNode]:
    blocks: list[DocNode] = []
    index = 0
    while index < len(lines):
        if not lines[index].strip():
            index += 1
            continue
        for parse_block in _BLOCK_PARSERS:
            result = parse_block(lines, index)
            if result is not None:
                node, index = result
                blocks.append(node)
                break
    return blocks


def _indent_of(line: str) -> int:
    return len(line) - len(line.lstrip(" "))


def _parse_fence(lines: list[str], index: int) -> BlockResult:
    match = _FENCE_RE.match(lines[index])
    if not match:
        return None
    indent, fence, info = len(match.group(1)), match.group(2), match.group(3)
    if fence[0] == "`" and "`" in info:
        return None

    body: list[str] = []
    position = index + 1
    while position < len(lines):
        line = lines[position]
        stripped = line.strip()
        position += 1
        if (
            _indent_of(line) <= 3
            and len(stripped) >= len(fence)
            and stripped == fence[0] * len(stripped)
        ):
            break
        # Drop up to the opening fence's indentation.
        body.append(line[min(indent, _indent_of(line)) :])
    return DocNode(type="code", lang=info or None, value="\n".join(body)), position


def _parse_heading(lines: list[str], index: int) -> BlockResult:
    match = _HEADING_RE.match(lines[index])
    if not match:
        return None
    content = _CLOSING_HASHES_RE.sub("", match.group(2) or "")
    node = DocNode(type="heading", depth=len(match.group(1)), children=parse_inline(content))
    return node, index + 1


def _parse_thematic_break(lines: list[str], index: int) -> BlockResult:
    if not _THEMATIC_RE.match(lines[index]):
        return None
    return DocNode(type="thematicBreak"), index + 1


def _parse_blockquote(lines: list[str], index: int) -> BlockResult:
    if not _BLOCKQUOTE_RE.match(lines[index]):
        return None
    body: list[str] = []
    position = index
    while position < len(lines) and _BLOCKQUOTE_RE.match(lines[position]):
        body.append(_BLOCKQUOTE_PREFIX_RE.sub("", lines[position], count=1))
        position += 1
    return DocNode(type="blockquote", children=parse_blocks(body)), position


def _is_table_line(line: str) -> bool:
    stripped = line.strip()
    return (
        len(stripped) >= 2
        and stripped.startswith("|")
        and stripped.endswith("|")
        and not stripped.endswith("\\|")
    )


def split_table_row(line: str) -> list[str]:
    """Split a pipe-table row into raw cell texts; ``\\|`` stays inside its cell as ``|``."""
    row = line.strip()[1:]
    if row.endswith("|") and not row.endswith("\\|"):
        row = row[:-1]
    cells: list[str] = []
    current: list[str] = []
    position = 0
    while position < len(row):
        char = row[position]
        if char == "\\" and row.startswith("|", position + 1):
            current.append("|")
            position += 2
            continue
        if char == "|":
            cells.append("".join(current))
            current = []
        else:
            current.append(char)
        position += 1
    cells.append("".join(current))
    return [cell.strip() for cell in cells]


def _is_delimiter_row(cells: list[str]) -> bool:
    return bool(cells) and all(_DELIMITER_CELL_RE.match(cell) for cell in cells)


def _cell_alignment(cell: str) -> Alignment:
    left, right = cell.startswith(":"), cell.endswith(":")
    if left and right:
        return "center"
    if left:
        return "left"
    if right:
        return "right"
    return None


def _parse_table(lines: list[str], index: int) -> BlockResult:
    if not _is_table_line(lines[index]):
        return None
    rows: list[list[str]] = []
    position = index
    while position < len(lines) and _is_table_line(lines[position]):
        rows.append(split_table_row(lines[position]))
        position += 1

    if len(rows) >= 2 and _is_delimiter_row(rows[1]):
        align = [_cell_alignment(cell) for cell in rows[1]]
        rows = [rows[0], *rows[2:]]
    else:
        align = [None] * max(len(row) for row in rows)

    table_rows = [
        DocNode(
            type="tableRow",
            children=[DocNode(type="tableCell", children=parse_inline(cell)) for cell in row],
        )
        for row in rows
    ]
    return DocNode(type="table", align=align, children=table_rows), position


@dataclass(frozen=True)
class _ListMarker:
    ordered: bool
    width: int
    content: str


def _list_marker(line: str) -> _ListMarker | None:
    match = _BULLET_RE.match(line) or _ORDERED_RE.match(line)
    if not match:
        return None
    ordered = match.re is _ORDERED_RE
    spacing = match.group(3)
    marker_end = len(match.group(1)) + len(match.group(2))
    # Five or more spaces after the marker: the content starts one column in.
    width = marker_end + (len(spacing) if 0 < len(spacing) <= 4 else 1)
    return _ListMarker(ordered=ordered, width=width, content=line[min(width, len(line)) :])


def _parse_list(lines: list[str], index: int) -> BlockResult:
    first = _list_marker(lines[index])
    if first is None:
        return None

    items: list[DocNode] = []
    position = index
    while position < len(lines):
        line = lines[position]
        if _THEMATIC_RE.match(line):
            break
        marker = _list_marker(line)
        if marker is None or marker.ordered != first.ordered:
            break

        body = [marker.content]
        position += 1
        while position < len(lines):
            line = lines[position]
            if not line.strip():
                following = position
                while following < len(lines) and not lines[following].strip():
                    following += 1
                if following < len(lines) and _indent_of(lines[following]) >= marker.width:
                    body.extend([""] * (following - position))
                    position = following
                    continue
                break
            if _indent_of(line) >= marker.width:
                body.append(line[marker.width :])
                position += 1
                continue
            break

        items.append(_list_item(body))
        if position < len(lines) and not lines[position].strip():
            break

    return DocNode(type="list", ordered=first.ordered, children=items), position


def _list_item(body: list[str]) -> DocNode:
    checked: bool | None = None
    task = _TASK_RE.match(body[0])
    if task:
        checked = task.group(1) != " "
        body = [body[0][task.end() :], *body[1:]]
    return DocNode(type="listItem", checked=checked, children=parse_blocks(body))


def _ends_with_hard_break(line: str) -> bool:
    trailing = len(line) - len(line.rstrip("\\"))
    return trailing % 2 == 1


def _parse_paragraph(lines: list[str], index: int) -> BlockResult:
    collected = [lines[index].strip()]
    position = index + 1
    while (
        _ends_with_hard_break(collected[-1])
        and position < len(lines)
        and lines[position].strip()
    ):
        collected.append(lines[position].rstrip())
        position += 1
    return paragraph(parse_inline("\n".join(collected))), position


_BLOCK_PARSERS: tuple[Callable[[list[str], int], BlockResult], ...] = (
    _parse_fence,
    _parse_heading,
    _parse_thematic_break,
    _parse_blockquote,
    _parse_table,
    _parse_list,
    _parse_paragraph,
)


# ---------------------------------------------------------------------------
# Inline
# ---------------------------------------------------------------------------


class _Delimiter:
    """A run of ``*`` or ``~`` waiting to be paired."""

    __slots__ = ("char", "length", "original", "can_open", "can_close")

    def __init__(self, char: str, length: int, can_open: bool, can_close: bool) -> None:
        self.char = char
        self.length = length
        self.original = length
        self.can_open = can_open
        self.can_close = can_close


def _is_punctuation(char: str) -> bool:
    return char in string.punctuation or unicodedata.category(char).startswith("P")


def _flanking(before: str, after: str) -> tuple[bool, bool]:
    left = not after.isspace() and (
        not _is_punctuation(after) or before.isspace() or _is_punctuation(before)
    )
    right = not before.isspace() and (
        not _is_punctuation(before) or after.isspace() or _is_punctuation(after)
    )
    return left, right


def _run_length(source: str, position: int, char: str) -> int:
    end = position
    while end < len(source) and source[end] == char:
        end += 1
    return end - position


def _unescape(value: str) -> str:
    out: list[str] = []
    position = 0
    while position < len(value):
        char = value[position]
        if char == "\\" and position + 1 < len(value) and value[position + 1] in _ESCAPABLE:
            out.append(value[position + 1])
            position += 2
            continue
        out.append(char)
        position += 1
    return "".join(out)


def _code_span(source: str, position: int) -> tuple[DocNode, int] | None:
    length = _run_length(source, position, "`")
    search = position + length
    while True:
        start = source.find("`", search)
        if start < 0:
            return None
        run = _run_length(source, start, "`")
        if run == length:
            content = source[position + length : start].replace("\n", " ")
            if len(content) >= 2 and content[0] == " " and content[-1] == " " and content.strip(" "):
                content = content[1:-1]
            return DocNode(type="inlineCode", value=content), start + run
        search = start + run


def _matching_bracket(source: str, position: int) -> int | None:
    depth = 0
    index = position
    while index < len(source):
        char = source[index]
        if char == "\\":
            index += 2
            continue
        if char == "`":
            span = _code_span(source, index)
            index = span[1] if span else index + _run_length(source, index, "`")
            continue
        if char == "[":
            depth += 1
        elif char == "]":
            depth -= 1
            if depth == 0:
                return index
        index += 1
    return None


def _link_destination(source: str, position: int) -> tuple[str, int] | None:
    """Read ``url)`` or ``<url>)`` starting at ``position``; returns the URL and the index after ``)``."""
    index = position
    while index < len(source) and source[index] in " \t":
        index += 1
    out: list[str] = []

    if source.startswith("<", index):
        index += 1
        while True:
            if index >= len(source) or source[index] in "\n<":
                return None
            char = source[index]
            if char == "\\" and index + 1 < len(source) and source[index + 1] in _ESCAPABLE:
                out.append(source[index + 1])
                index += 2
                continue
            if char == ">":
                index += 1
                break
            out.append(char)
            index += 1
    else:
        depth = 0
        while index < len(source):
            char = source[index]
            if char == "\\" and index + 1 < len(source) and source[index + 1] in _ESCAPABLE:
                out.append(source[index + 1])
                index += 2
                continue
            if char.isspace():
                break
            if char == "(":
                depth += 1
            elif char == ")":
                if depth == 0:
                    break
                depth -= 1
            out.append(char)
            index += 1
        if depth:
            return None

    while index < len(source) and source[index] in " \t":
        index += 1
    if not source.startswith(")", index):
        return None
    return "".join(out), index + 1


def _link_or_image(source: str, bracket: int, *, image: bool) -> tuple[DocNode, int] | None:
    close = _matching_bracket(source, bracket)
    if close is None or not source.startswith("(", close + 1):
        return None
    destination = _link_destination(source, close + 2)
    if destination is None:
        return None
    url, end = destination
    label = source[bracket + 1 : close]
    if image:
        node = DocNode(type="image", url=url, alt=_unescape(label).replace("\n", " "))
    else:
        node = DocNode(type="link", url=url, children=parse_inline(label))
    return node, end


def parse_inline(source: str) -> list[DocNode]:
    """Parse inline Markdown into document nodes."""
    items: list[DocNode | _Delimiter] = []
    buffer: list[str] = []

    def flush() -> None:
        if buffer:
            items.append(text("".join(buffer)))
            buffer.clear()

    position = 0
    while position < len(source):
        char = source[position]
        plain = _PLAIN_RE.match(source, position)
        if plain:
            buffer.append(plain.group(0))
            position = plain.end()
            continue

        if char == "\\":
            following = source[position + 1] if position + 1 < len(source) else ""
            if following == "\n":
                flush()
                items.append(DocNode(type="break"))
                position += 2
            elif following in _ESCAPABLE and following:
                buffer.append(following)
                position += 2
            else:
                buffer.append("\\")
                position += 1
            continue

        if char == "`":
            span = _code_span(source, position)
            if span is not None:
                flush()
                items.append(span[0])
                position = span[1]
            else:
                run = _run_length(source, position, "`")
                buffer.append("`" * run)
                position += run
            continue

        if char in "![":
            is_image = char == "!"
            parsed = None
            if not is_image or source.startswith("[", position + 1):
                bracket = position + 1 if is_image else position
                parsed = _link_or_image(source, bracket, image=is_image)
            if parsed is not None:
                flush()
                items.append(parsed[0])
                position = parsed[1]
            else:
                buffer.append(char)
                position += 1
            continue

        if char in "*~":
            run = _run_length(source, position, char)
            before = source[position - 1] if position > 0 else "\n"
            after = source[position + run] if position + run < len(source) else "\n"
            can_open, can_close = _flanking(before, after)
            flush()
            items.append(_Delimiter(char, run, can_open, can_close))
            position += run
            continue

        # Soft line break.
        buffer.append(" ")
        position += 1

    flush()
    return _process_emphasis(items)


def _find_opener(items: list[DocNode | _Delimiter], closer_index: int) -> int | None:
    closer = items[closer_index]
    assert isinstance(closer, _Delimiter)
    for index in range(closer_index - 1, -1, -1):
        candidate = items[index]
        if (
            not isinstance(candidate, _Delimiter)
            or candidate.char != closer.char
            or not candidate.can_open
            or candidate.length == 0
        ):
            continue
        if closer.char == "~":
            if candidate.length >= 2 and closer.length >= 2:
                return index
            continue
        # Rule of three for runs that can both open and close.
        if (
            (closer.can_open or candidate.can_close)
            and (candidate.original + closer.original) % 3 == 0
            and not (candidate.original % 3 == 0 and closer.original % 3 == 0)
        ):
            continue
        return index
    return None


def _process_emphasis(items: list[DocNode | _Delimiter]) -> list[DocNode]:
    index = 0
    while index < len(items):
        closer = items[index]
        if not isinstance(closer, _Delimiter) or not closer.can_close or closer.length == 0:
            index += 1
            continue
        opener_index = _find_opener(items, index)
        if opener_index is None:
            index += 1
            continue

        opener = items[opener_index]
        assert isinstance(opener, _Delimiter)
        if closer.char == "~":
            used, node_type = 2, "delete"
        elif opener.length >= 2 and closer.length >= 2:
            used, node_type = 2, "strong"
        else:
            used, node_type = 1, "emphasis"

        node = DocNode(type=node_type, children=_finish(items[opener_index + 1 : index]))
        opener.length -= used
        closer.length -= used
        items[opener_index + 1 : index] = [node]
        index = opener_index + 2
        if opener.length == 0:
            del items[opener_index]
            index -= 1
        if closer.length == 0:
            del items[index]
    return _finish(items)


def _finish(items: list[DocNode | _Delimiter]) -> list[DocNode]:
    """Turn leftover delimiters into text and merge adjacent text nodes."""
    result: list[DocNode] = []
    for item in items:
        if isinstance(item, _Delimiter):
            if not item.length:
                continue
            item = text(item.char * item.length)
        if item.type == "text" and result and result[-1].type == "text":
            result[-1] = text((result[-1].value or "") + (item.value or ""))
        else:
            result.append(item)
    return result
