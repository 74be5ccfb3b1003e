"""Render a document tree as GitHub-flavored Markdown.

Output is deterministic and re-parses (see ``loopd.markdown_parser``) to a
tree that renders to the same text.
"""

from __future__ import annotations

import re

from loopd.schemas.nodes import Alignment, DocNode
from loopd.tree import walk

BULLET = "-"
THEMATIC_BREAK = "---"
ALERT_TYPES = ("NOTE", "TIP", "IMPORTANT", "WARNING", "CAUTION")

_ALERT_MARKER_RE = re.compile(r"^\[!(" + "|".join(ALERT_TYPES) + r")\]$")
_ALWAYS_ESCAPED = frozenset("\\`*[]~")
_BACKTICK_RUN_RE = re.compile(r"`+")
_DELIMITER_CELL_RE = re.compile(r"^:?-+:?$")
_ORDERED_MARKER_RE = re.compile(r"^(\d{1,9})([.)])(\s|$)")
_LINE_START_TRIGGER_RE = re.compile(
    r"^(?:#{1,6}(?:\s|$)|>|[-+·](?:\s|$)|\||([-_])(?:[ \t]*\1){2,}[ \t]*$)"
)
_TRAILING_HASHES_RE = re.compile(r"(^|\s)(#+)$")
_ALIGN_DELIMITERS: dict[Alignment, str] = {
    None: "---",
    "left": ":---",
    "right": "---:",
    "center": ":---:",
}


def to_markdown(root: DocNode) -> str:
    """Serialize ``root`` (normally a cleaned ``root`` node) to Markdown."""
    blocks = _render_blocks(root.children)
    return blocks + "\n" if blocks else ""


def collect_image_references(root: DocNode) -> list[str]:
    """URLs of all images in document order, without duplicates."""
    seen: dict[str, None] = {}
    for node in walk(root):
        if node.type == "image" and node.url:
            seen.setdefault(node.url, None)
    return list(seen)


# ---------------------------------------------------------------------------
# Blocks
# ---------------------------------------------------------------------------


def _render_blocks(nodes: list[DocNode], *, tight: bool = False) -> str:
    """Join rendered blocks; tight containers (list items) use single newlines."""
    out: list[str] = []
    previous: DocNode | None = None
    for node in nodes:
        rendered = _render_block(node)
        if not rendered:
            continue
        if out:
            out.append("\n" if tight and not _needs_blank_line(previous, node) else "\n\n")
        out.append(rendered)
        previous = node
    return "".join(out)


def _needs_blank_line(previous: DocNode | None, node: DocNode) -> bool:
    # Without a blank line these pairs would read back as one block.
    if previous is None or previous.type != node.type:
        return False
    if node.type == "list":
        return bool(previous.ordered) == bool(node.ordered)
    return node.type in {"table", "blockquote"}


def _render_block(node: DocNode) -> str:
    if node.type == "paragraph":
        return _render_paragraph(node)
    if node.type == "heading":
        return _render_heading(node)
    if node.type == "code":
        return _render_code(node)
    if node.type == "blockquote":
        return _render_blockquote(node)
    if node.type == "list":
        return _render_list(node)
    if node.type == "listItem":
        return _render_list(DocNode(type="list", ordered=False, children=[node]))
    if node.type == "table":
        return _render_table(node)
    if node.type == "thematicBreak":
        return THEMATIC_BREAK
    # Inline content where a block was expected.
    return _render_paragraph(DocNode(type="paragraph", children=[node]))


def _render_paragraph(node: DocNode) -> str:
    content = render_inline(node.children).strip()
    # Lines only break after a hard break; indentation there would not survive a re-parse.
    return "\n".join(_escape_line_start(line.lstrip()) for line in content.split("\n"))


def _escape_line_start(line: str) -> str:
    stripped = line.lstrip(" ")
    indent = line[: len(line) - len(stripped)]
    ordered = _ORDERED_MARKER_RE.match(stripped)
    if ordered:
        digits = ordered.group(1)
        return f"{indent}{digits}\\{stripped[len(digits):]}"
    if _LINE_START_TRIGGER_RE.match(stripped):
        return f"{indent}\\{stripped}"
    return line


def _render_heading(node: DocNode) -> str:
    content = render_inline(node.children).replace("\n", " ").strip()
    # A trailing " ###" would be read as a closing sequence.
    content = _TRAILING_HASHES_RE.sub(lambda match: f"{match.group(1)}\\{match.group(2)}", content)
    marker = "#" * (node.depth or 1)
    return f"{marker} {content}" if content else marker


def _render_code(node: DocNode) -> str:
    value = node.value or ""
    longest = max((len(run) for run in _BACKTICK_RUN_RE.findall(value)), default=0)
    fence = "`" * max(3, longest + 1)
    lines = [fence + (node.lang or "")]
    if value:
        lines.append(value)
    lines.append(fence)
    return "\n".join(lines)


def _is_alert_marker(node: DocNode) -> bool:
    return (
        node.type == "paragraph"
        and len(node.children) == 1
        and node.children[0].type == "text"
        and bool(_ALERT_MARKER_RE.match(node.children[0].value or ""))
    )


def _render_blockquote(node: DocNode) -> str:
    children = node.children
    if children and _is_alert_marker(children[0]):
        body = _render_blocks(children[1:])
        marker = children[0].children[0].value or ""
        content = f"{marker}\n{body}" if body else marker
    else:
        content = _render_blocks(children)
    return "\n".join(f"> {line}" if line else ">" for line in content.split("\n"))


def _render_list(node: DocNode) -> str:
    items: list[str] = []
    for index, item in enumerate(node.children, start=1):
        marker = f"{index}. " if node.ordered else f"{BULLET} "
        items.append(_render_list_item(item, marker))
    return "\n".join(items)


def _render_list_item(item: DocNode, marker: str) -> str:
    task = ""
    if item.checked is not None:
        task = "[x] " if item.checked else "[ ] "
    content = _render_blocks(item.children, tight=True)
    if item.children and item.children[0].type == "thematicBreak" and not task:
        # "- ---" is itself a thematic break.
        content = "***" + content[len(THEMATIC_BREAK):]
    indent = " " * len(marker)
    lines = content.split("\n")
    first = f"{marker}{task}{lines[0]}"
    rendered = [first if lines[0] else first.rstrip()]
    rendered.extend(f"{indent}{line}" if line else "" for line in lines[1:])
    return "\n".join(rendered)


def _render_table(node: DocNode) -> str:
    rows = [[_render_cell(cell) for cell in row.children] for row in node.children]
    if not rows:
        return ""
    align = list(node.align or [])
    column_count = max(len(align), max(len(row) for row in rows))
    align.extend([None] * (column_count - len(align)))

    def format_row(cells: list[str]) -> str:
        padded = cells + [""] * (column_count - len(cells))
        return "| " + " | ".join(padded) + " |"

    lines = [format_row(rows[0])]
    lines.append("| " + " | ".join(_ALIGN_DELIMITERS[value] for value in align) + " |")
    lines.extend(format_row(row) for row in rows[1:])
    return "\n".join(lines)


def _render_cell(cell: DocNode) -> str:
    content = render_inline(cell.children).replace("\n", " ").strip().replace("|", "\\|")
    if _DELIMITER_CELL_RE.match(content):
        content = "\\" + content
    return content


# ---------------------------------------------------------------------------
# Inline
# ---------------------------------------------------------------------------


def render_inline(nodes: list[DocNode]) -> str:
    parts: list[str] = []
    for index, node in enumerate(nodes):
        following = nodes[index + 1] if index + 1 < len(nodes) else None
        parts.append(_render_inline_node(node, following))
    return "".join(parts)


def _render_inline_node(node: DocNode, following: DocNode | None) -> str:
    if node.type == "text":
        escaped = escape_text(node.value or "")
        if following is not None and following.type == "link" and escaped.endswith("!"):
            # "!" directly before "[" would turn the link into an image.
            escaped = escaped[:-1] + "\\!"
        return escaped
    if node.type == "inlineCode":
        return _render_inline_code(node.value or "")
    if node.type == "strong":
        return _wrap("**", node.children)
    if node.type == "emphasis":
        return _wrap("*", node.children)
    if node.type == "delete":
        return _wrap("~~", node.children)
    if node.type == "link":
        label = render_inline(node.children).replace("\n", " ")
        return f"[{label}]({_link_destination(node.url or '')})"
    if node.type == "image":
        return f"![{_escape_alt(node.alt or '')}]({_link_destination(node.url or '')})"
    if node.type == "break":
        return "\\\n"
    if node.type == "code":
        return _render_inline_code(node.value or "")
    # Blocks nested in inline content render as their text.
    return render_inline(node.children)


def _wrap(marker: str, children: list[DocNode]) -> str:
    content = render_inline(children)
    inner = content.strip()
    if not inner:
        return content
    leading = content[: len(content) - len(content.lstrip())]
    trailing = content[len(content.rstrip()) :]
    return f"{leading}{marker}{inner}{marker}{trailing}"


def escape_text(value: str) -> str:
    """Backslash-escape characters that would otherwise start inline markup."""
    value = value.replace("\r\n", " ").replace("\n", " ")
    out: list[str] = []
    for index, char in enumerate(value):
        if char in _ALWAYS_ESCAPED:
            out.append("\\" + char)
        elif char == "_":
            before = value[index - 1] if index > 0 else ""
            after = value[index + 1] if index + 1 < len(value) else ""
            intraword = before.isalnum() and after.isalnum()
            out.append("_" if intraword else "\\_")
        else:
            out.append(char)
    return "".join(out)


def _escape_alt(value: str) -> str:
    value = value.replace("\r\n", " ").replace("\n", " ")
    return "".join("\\" + char if char in "\\[]*_`~" else char for char in value)


def _render_inline_code(value: str) -> str:
    value = value.replace("\r\n", " ").replace("\n", " ")
    if not value:
        return "` `"
    runs = {len(run) for run in _BACKTICK_RUN_RE.findall(value)}
    length = 1
    while length in runs:
        length += 1
    fence = "`" * length
    padded = value.startswith("`") or value.endswith("`") or (
        value.startswith(" ") and value.endswith(" ") and value.strip(" ")
    )
    if padded:
        value = f" {value} "
    return f"{fence}{value}{fence}"


def _has_balanced_parens(url: str) -> bool:
    depth = 0
    for char in url:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                return False
    return depth == 0


def _link_destination(url: str) -> str:
    escaped = url.replace("\\", "\\\\")
    if not url or any(char.isspace() for char in url) or "<" in url or not _has_balanced_parens(url):
        escaped = escaped.replace("<", "\\<").replace(">", "\\>")
        return f"<{escaped}>"
    return escaped
