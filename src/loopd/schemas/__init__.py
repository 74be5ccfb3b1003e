"""Shared schemas for loopd."""

from loopd.schemas.export import Bundle, ContentDiagnostics, ExportResult
from loopd.schemas.images import ImageRecord
from loopd.schemas.nodes import DocNode

__all__ = ["Bundle", "ContentDiagnostics", "DocNode", "ExportResult", "ImageRecord"]
