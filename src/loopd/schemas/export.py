"""Export output models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from loopd.schemas.nodes import DocNode


class ContentDiagnostics(BaseModel):
    """Completeness check: content elements seen vs. document nodes emitted."""

    elements_seen: int = 0
    nodes_emitted: int = 0
    node_types: dict[str, int] = Field(default_factory=dict)

    @property
    def summary(self) -> str:
        return f"{self.nodes_emitted} blocks emitted from {self.elements_seen} content elements"


class ExportResult(BaseModel):
    """Final export output handed to packaging."""

    title: str | None = None
    markdown: str
    image_map: dict[str, str] = Field(default_factory=dict)
    image_files: list[str] = Field(default_factory=list)
    raw_tree: DocNode | None = None
    automation_types: dict[str, Any] = Field(default_factory=dict)
    diagnostics: ContentDiagnostics = Field(default_factory=ContentDiagnostics)


class Bundle(BaseModel):
    """Contents of an export tar as seen by the rendering side."""

    markdown: str
    images: dict[str, bytes] = Field(default_factory=dict)
