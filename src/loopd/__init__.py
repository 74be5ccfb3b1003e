"""loopd: export Microsoft Loop pages to Markdown."""

from loopd.bundle import load_document, read_bundle
from loopd.cleanup import normalize_tree
from loopd.converter import build_tree, convert
from loopd.exceptions import (
    BrowserError,
    BundleError,
    ContentNotFoundError,
    ConversionError,
    FetchError,
    LoopdError,
)
from loopd.export import ExportOptions, export_file, export_snapshot, export_url
from loopd.markdown import to_markdown
from loopd.markdown_parser import parse_markdown
from loopd.schemas import Bundle, ContentDiagnostics, DocNode, ExportResult, ImageRecord

__all__ = [
    "BrowserError",
    "Bundle",
    "BundleError",
    "ContentDiagnostics",
    "ContentNotFoundError",
    "ConversionError",
    "DocNode",
    "ExportOptions",
    "ExportResult",
    "FetchError",
    "ImageRecord",
    "LoopdError",
    "build_tree",
    "convert",
    "export_file",
    "export_snapshot",
    "export_url",
    "load_document",
    "normalize_tree",
    "parse_markdown",
    "read_bundle",
    "to_markdown",
]
