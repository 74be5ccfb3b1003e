"""Export pipeline: live Loop page or saved snapshot -> Markdown bundle."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

import httpx
from bs4 import BeautifulSoup
from bs4.element import Tag
from playwright.async_api import Page

from loopd.browser import PlaywrightPage, open_page, session_cookies, take_snapshot
from loopd.bundle import build_bundle, bundle_filename, write_bundle
from loopd.cleanup import normalize_tree
from loopd.config import LOOPD_OUTPUT_DIR
from loopd.converter import build_tree
from loopd.dom import (
    collect_automation_types,
    count_content_elements,
    find_content_root,
    find_page_title,
    parse_snapshot,
)
from loopd.expansion import ExpansionOptions, expand_collapsed_sections
from loopd.http_utils import create_client
from loopd.images import ImageStore, collect_images
from loopd.markdown import to_markdown
from loopd.schemas import ContentDiagnostics, ExportResult
from loopd.tree import count_node_types

logger = logging.getLogger(__name__)

# Node types compared against the DOM elements counted by count_content_elements.
_EMITTED_TYPES = ("paragraph", "heading", "image", "listItem", "table", "code")


@dataclass
class ExportOptions:
    """Options for a Loop export.

    Attributes:
        output_dir: Directory the bundle is written to.
        expand: If True, expand collapsed sections and mount virtualized
            content before the snapshot is taken.
        download_images: If True, download content images into the bundle.
        include_debug_tree: If True, add the pre-cleanup tree as
            ``debug-tree.json``.
        expansion: Timing and cap settings for the expansion driver.
    """

    output_dir: Path = LOOPD_OUTPUT_DIR
    expand: bool = True
    download_images: bool = True
    include_debug_tree: bool = True
    expansion: ExpansionOptions = field(default_factory=ExpansionOptions)


def convert_snapshot(
    soup: BeautifulSoup,
    content_root: Tag,
    image_map: dict[str, str] | None = None,
) -> ExportResult:
    """Convert the content root of a parsed snapshot into an export result."""
    image_map = dict(image_map or {})
    raw_tree = build_tree(content_root, image_map)
    # Cleanup works in place; the debug artifact keeps the unclean tree.
    cleaned = normalize_tree(raw_tree.model_copy(deep=True))
    markdown = to_markdown(cleaned)

    node_types = count_node_types(cleaned)
    diagnostics = ContentDiagnostics(
        elements_seen=count_content_elements(content_root),
        nodes_emitted=sum(node_types.get(node_type, 0) for node_type in _EMITTED_TYPES),
        node_types=node_types,
    )
    logger.info("Content diagnostics: %s", diagnostics.summary)

    return ExportResult(
        title=find_page_title(soup, content_root),
        markdown=markdown,
        image_map=image_map,
        image_files=sorted(set(image_map.values())),
        raw_tree=raw_tree,
        automation_types=collect_automation_types(content_root),
        diagnostics=diagnostics,
    )


async def export_snapshot(
    html: str,
    *,
    store: ImageStore,
    client: httpx.AsyncClient | None = None,
    base_url: str | None = None,
    download_images: bool = True,
) -> ExportResult:
    """Parse a snapshot, download its images into ``store`` and convert it.

    Raises:
        ContentNotFoundError: If the snapshot holds no Loop content.
    """
    soup = parse_snapshot(html)
    content_root = find_content_root(soup)
    logger.info("Content root: <%s class=%.60r>", content_root.name, " ".join(content_root.get("class", [])))

    image_map: dict[str, str] = {}
    if download_images:
        image_map = await collect_images(content_root, store, client=client, base_url=base_url)
    return convert_snapshot(soup, content_root, image_map)


def save_export(
    result: ExportResult,
    store: ImageStore,
    options: ExportOptions | None = None,
    *,
    now: datetime | None = None,
) -> Path:
    """Package ``result`` with the stored images and write the bundle."""
    opts = options or ExportOptions()
    data = build_bundle(result, store.records(), include_debug_tree=opts.include_debug_tree)
    return write_bundle(data, opts.output_dir, bundle_filename(result.title, now))


async def export_page(page: Page, options: ExportOptions | None = None) -> tuple[ExportResult, Path]:
    """Export an already loaded Loop page.

    Image downloads reuse the page's session cookies, so images behind the
    Microsoft sign-in resolve the same way they do in the browser.
    """
    opts = options or ExportOptions()
    if opts.expand:
        report = await expand_collapsed_sections(PlaywrightPage(page), opts.expansion)
        if report.failed:
            logger.warning("%d sections could not be expanded", len(report.failed))

    html = await take_snapshot(page)
    store = ImageStore()
    cookies = await session_cookies(page)
    async with create_client(cookies) as client:
        result = await export_snapshot(
            html,
            store=store,
            client=client,
            base_url=page.url,
            download_images=opts.download_images,
        )
    path = save_export(result, store, opts)
    logger.info("Export complete: %s", path)
    return result, path


async def export_url(
    url: str,
    options: ExportOptions | None = None,
    *,
    user_data_dir: Path | None = None,
    headless: bool = False,
    wait_s: float = 0.0,
) -> tuple[ExportResult, Path]:
    """Open ``url`` in Chromium and export it.

    Raises:
        BrowserError: If the browser cannot load the page.
        ContentNotFoundError: If the loaded page holds no Loop content.
    """
    async with open_page(url, user_data_dir=user_data_dir, headless=headless, wait_s=wait_s) as page:
        return await export_page(page, options)


async def export_file(
    path: Path,
    options: ExportOptions | None = None,
    *,
    base_url: str | None = None,
) -> tuple[ExportResult, Path]:
    """Export a snapshot saved to disk (e.g. with the browser's "Save page")."""
    opts = options or ExportOptions()
    html = path.read_text(encoding="utf-8")
    store = ImageStore()
    async with create_client() as client:
        result = await export_snapshot(
            html,
            store=store,
            client=client,
            base_url=base_url,
            download_images=opts.download_images,
        )
    bundle_path = save_export(result, store, opts)
    logger.info("Export complete: %s", bundle_path)
    return result, bundle_path
