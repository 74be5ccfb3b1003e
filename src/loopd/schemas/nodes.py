"""Document tree models."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

NodeType = Literal[
    "root",
    "heading",
    "paragraph",
    "text",
    "strong",
    "emphasis",
    "delete",
    "inlineCode",
    "code",
    "link",
    "image",
    "list",
    "listItem",
    "table",
    "tableRow",
    "tableCell",
    "blockquote",
    "thematicBreak",
    "break",
]
Alignment = Literal["left", "center", "right"] | None

BLOCK_TYPES = frozenset(
    {"paragraph", "heading", "code", "blockquote", "list", "table", "thematicBreak"}
)
# Wrappers that are meaningless without content.
PHRASING_WRAPPERS = frozenset({"strong", "emphasis", "delete", "link"})


class DocNode(BaseModel):
    """A node of the document tree.

    One model covers every variant; ``type`` is the tag and only the fields
    relevant to that type are set:

    - ``heading``: ``depth`` (1..6)
    - ``text``, ``inlineCode``, ``code``: ``value``; ``code`` also ``lang``
    - ``link``: ``url``; ``image``: ``url`` and ``alt``
    - ``list``: ``ordered``; ``listItem``: ``checked`` (None when not a task)
    - ``table``: ``align``, one entry per column
    """

    type: NodeType
    value: str | None = None
    depth: int | None = Field(default=None, ge=1, le=6)
    lang: str | None = None
    url: str | None = None
    alt: str | None = None
    ordered: bool | None = None
    checked: bool | None = None
    align: list[Alignment] | None = None
    children: list["DocNode"] = Field(default_factory=list)

    @property
    def is_block(self) -> bool:
        return self.type in BLOCK_TYPES


def text(value: str) -> DocNode:
    return DocNode(type="text", value=value)


def paragraph(children: list[DocNode]) -> DocNode:
    return DocNode(type="paragraph", children=children)


def root(children: list[DocNode] | None = None) -> DocNode:
    return DocNode(type="root", children=children or [])
