"""Tar bundle packaging and reading."""

from __future__ import annotations

import json
import logging
import re
import tarfile
import time
from datetime import datetime
from io import BytesIO
from pathlib import Path
from typing import Iterable

from loopd.exceptions import BundleError
from loopd.markdown_parser import parse_markdown
from loopd.schemas.export import Bundle, ExportResult
from loopd.schemas.images import ImageRecord
from loopd.schemas.nodes import DocNode

logger = logging.getLogger(__name__)

CONTENT_FILENAME = "content.md"
DEBUG_TREE_FILENAME = "debug-tree.json"
AUTOMATION_TYPES_FILENAME = "automation-types.json"
IMAGES_DIR = "images"

_MAX_TITLE_CHARS = 60
_FORBIDDEN_FILENAME_CHARS_RE = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_WHITESPACE_RE = re.compile(r"\s+")
_EDGE_DOTS_RE = re.compile(r"^[\s.]+|[\s.]+$")


def bundle_filename(title: str | None, now: datetime | None = None) -> str:
    """Friendly archive name: ``<Title> - 2024-05-01 at 3.07 PM.tar``."""
    now = now or datetime.now()
    hour = now.hour % 12 or 12
    suffix = "AM" if now.hour < 12 else "PM"
    stamp = f"{now:%Y-%m-%d} at {hour}.{now.minute:02d} {suffix}"

    clean = (title or "")[:_MAX_TITLE_CHARS]
    clean = _FORBIDDEN_FILENAME_CHARS_RE.sub("", clean)
    clean = _WHITESPACE_RE.sub(" ", clean)
    clean = _EDGE_DOTS_RE.sub("", clean).strip()
    if clean:
        return f"{clean} - {stamp}.tar"
    return f"Loop Export {stamp}.tar"


def _add_file(tar: tarfile.TarFile, name: str, data: bytes, mtime: float) -> None:
    info = tarfile.TarInfo(name=name)
    info.size = len(data)
    info.mtime = int(mtime)
    info.mode = 0o644
    tar.addfile(info, BytesIO(data))


def build_bundle(
    result: ExportResult,
    images: Iterable[ImageRecord] = (),
    *,
    include_debug_tree: bool = True,
) -> bytes:
    """Pack an export into tar bytes.

    Members: ``content.md``, then ``debug-tree.json`` (raw tree, when present
    and requested), ``automation-types.json`` (when the census is non-empty)
    and ``images/<filename>`` for every downloaded image.
    """
    mtime = time.time()
    buffer = BytesIO()
    records = list(images)
    with tarfile.open(fileobj=buffer, mode="w", format=tarfile.USTAR_FORMAT) as tar:
        _add_file(tar, CONTENT_FILENAME, result.markdown.encode("utf-8"), mtime)

        if include_debug_tree and result.raw_tree is not None:
            tree_json = result.raw_tree.model_dump_json(indent=2, exclude_none=True)
            _add_file(tar, DEBUG_TREE_FILENAME, tree_json.encode("utf-8"), mtime)

        if result.automation_types:
            types_json = json.dumps(result.automation_types, indent=2, ensure_ascii=False)
            _add_file(tar, AUTOMATION_TYPES_FILENAME, types_json.encode("utf-8"), mtime)
            logger.info("Found %d unique data-automation-type values", len(result.automation_types))

        if records:
            directory = tarfile.TarInfo(name=f"{IMAGES_DIR}/")
            directory.type = tarfile.DIRTYPE
            directory.mode = 0o755
            directory.mtime = int(mtime)
            tar.addfile(directory)
        for record in records:
            _add_file(tar, record.bundle_path, record.data, mtime)
            logger.debug("Added %s to bundle", record.bundle_path)

    return buffer.getvalue()


def write_bundle(data: bytes, output_dir: Path, filename: str) -> Path:
    """Write bundle bytes to ``output_dir / filename`` and return the path."""
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / filename
    path.write_bytes(data)
    logger.info("Bundle written to %s (%d KB)", path, len(data) // 1024)
    return path


def read_bundle(source: bytes | Path) -> Bundle:
    """Read ``content.md`` and ``images/*`` from a bundle, in memory.

    Raises:
        BundleError: If the archive is unreadable or has no ``content.md``.
    """
    data = source.read_bytes() if isinstance(source, Path) else source
    markdown: str | None = None
    images: dict[str, bytes] = {}
    try:
        with tarfile.open(fileobj=BytesIO(data), mode="r:*") as tar:
            for member in tar.getmembers():
                # Security: ignore absolute paths and parent traversal
                if not member.isfile() or member.name.startswith("/") or ".." in member.name:
                    continue
                name = member.name.removeprefix("./")
                extracted = tar.extractfile(member)
                if extracted is None:
                    continue
                if name == CONTENT_FILENAME:
                    markdown = extracted.read().decode("utf-8")
                elif name.startswith(f"{IMAGES_DIR}/"):
                    images[name[len(IMAGES_DIR) + 1 :]] = extracted.read()
    except (tarfile.TarError, UnicodeDecodeError) as exc:
        raise BundleError(f"Unable to read bundle: {exc}") from exc

    if markdown is None:
        raise BundleError(f"Bundle has no {CONTENT_FILENAME}")
    return Bundle(markdown=markdown, images=images)


def load_document(source: Bundle | bytes | Path) -> DocNode:
    """Parse a bundle's Markdown back into a document tree."""
    bundle = source if isinstance(source, Bundle) else read_bundle(source)
    return parse_markdown(bundle.markdown)
