"""Image discovery, filtering and download for export bundles."""

from __future__ import annotations

import base64
import binascii
import logging
import re
from urllib.parse import unquote_to_bytes, urljoin

import httpx
from filetype import guess

from loopd.config import LOOPD_MIN_IMAGE_PX
from loopd.dom import attribute_of, class_name, closest, iter_elements
from loopd.exceptions import FetchError
from loopd.http_utils import create_client, fetch_resource
from loopd.schemas.images import ImageRecord

try:
    from bs4.element import Tag
except ImportError as exc:  # pragma: no cover - runtime dependency check
    raise RuntimeError(
        "BeautifulSoup4 is required for HTML parsing (pip install beautifulsoup4)."
    ) from exc

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = frozenset({"png", "jpg", "jpeg", "gif", "webp", "svg", "bmp"})
DEFAULT_EXTENSION = "png"

_AVATAR_RE = re.compile(r"avatar|presence|profile|user-photo", re.IGNORECASE)
_HEADER_CLASS_FRAGMENTS = ("header", "presence", "author")
_DATA_URL_RE = re.compile(r"^data:([^;,]*)((?:;[^;,]*)*),(.*)$", re.DOTALL)
_DATA_IMAGE_RE = re.compile(r"^data:image/([a-z]+)", re.IGNORECASE)


class ImageStore:
    """Downloaded image bytes keyed by their source URL, in download order."""

    def __init__(self) -> None:
        self._records: dict[str, ImageRecord] = {}

    def __contains__(self, source_url: object) -> bool:
        return source_url in self._records

    def __len__(self) -> int:
        return len(self._records)

    def add(self, record: ImageRecord) -> None:
        self._records[record.source_url] = record

    def records(self) -> list[ImageRecord]:
        return list(self._records.values())

    @property
    def filename_map(self) -> dict[str, str]:
        return {url: record.filename for url, record in self._records.items()}


def find_images(root: Tag) -> list[Tag]:
    """Every ``<img>`` under ``root`` (shadow roots included), in document order."""
    candidates = [root, *iter_elements(root)]
    return [element for element in candidates if element.name == "img"]


def _dimension(img: Tag, natural_attr: str, attr: str) -> int:
    for name in (natural_attr, attr):
        value = attribute_of(img, name)
        if not value:
            continue
        try:
            number = int(float(value))
        except ValueError:
            continue
        if number:
            return number
    return 0


def should_skip_image(img: Tag, *, min_px: int = LOOPD_MIN_IMAGE_PX) -> bool:
    """Whether ``img`` is decoration (icons, avatars, page-header art) rather than content."""
    width = _dimension(img, "data-loopd-natural-width", "width")
    height = _dimension(img, "data-loopd-natural-height", "height")
    if (0 < width < min_px) or (0 < height < min_px):
        return True

    nearest_with_class = closest(img, lambda tag: tag.has_attr("class"))
    parent_classes = class_name(nearest_with_class) if nearest_with_class is not None else ""
    if _AVATAR_RE.search(f"{class_name(img)} {parent_classes}"):
        return True

    def in_header(tag: Tag) -> bool:
        classes = class_name(tag)
        if "scriptor-pageHeader" in classes.split():
            return True
        return any(fragment in classes for fragment in _HEADER_CLASS_FRAGMENTS)

    return closest(img, in_header) is not None


def decode_data_url(url: str) -> tuple[bytes, str | None]:
    """Decode a ``data:`` URL into its payload and media type.

    Raises:
        FetchError: If the URL is not a well-formed data URL.
    """
    match = _DATA_URL_RE.match(url)
    if not match:
        raise FetchError("Malformed data URL")
    media_type = match.group(1) or None
    params = match.group(2).lower()
    payload = match.group(3)
    if ";base64" in params:
        try:
            return base64.b64decode(payload, validate=False), media_type
        except (binascii.Error, ValueError) as exc:
            raise FetchError(f"Invalid base64 data URL: {exc}") from exc
    return unquote_to_bytes(payload), media_type


def _normalize_extension(extension: str) -> str:
    extension = extension.lower()
    return "jpg" if extension == "jpeg" else extension


def image_extension(source_url: str, data: bytes | None = None) -> str:
    """Pick a file extension from the bytes, then the data URL type, then the URL path."""
    if data:
        kind = guess(data)
        if kind and kind.mime.startswith("image/"):
            return _normalize_extension(kind.extension)

    if source_url.startswith("data:"):
        match = _DATA_IMAGE_RE.match(source_url)
        return _normalize_extension(match.group(1)) if match else DEFAULT_EXTENSION

    path = source_url.split("?")[0].split("#")[0]
    last_dot = path.rfind(".")
    if last_dot > 0:
        extension = path[last_dot + 1 :].lower()
        if extension in ALLOWED_EXTENSIONS:
            return _normalize_extension(extension)
    return DEFAULT_EXTENSION


async def _load_image(source_url: str, client: httpx.AsyncClient) -> tuple[bytes, str | None]:
    if source_url.startswith("data:"):
        return decode_data_url(source_url)
    resource = await fetch_resource(source_url, client=client)
    return resource.content, resource.content_type


async def collect_images(
    root: Tag,
    store: ImageStore,
    *,
    client: httpx.AsyncClient | None = None,
    base_url: str | None = None,
) -> dict[str, str]:
    """Download the content images under ``root`` into ``store``.

    Images are fetched one at a time. Each successful download gets the next
    free ``image_<n>.<ext>`` name; failures are logged and left out of the
    returned source URL -> filename map, so their references keep the
    original URL.
    """
    images = find_images(root)
    logger.info("Images found: %d", len(images))

    failed: set[str] = set()

    async def download_all(http_client: httpx.AsyncClient) -> None:
        for img in images:
            source = attribute_of(img, "src")
            if not source or source in store or source in failed or should_skip_image(img):
                continue
            fetch_url = source if source.startswith("data:") or not base_url else urljoin(base_url, source)
            try:
                data, content_type = await _load_image(fetch_url, http_client)
            except FetchError as exc:
                logger.warning("Failed to download image %.80s: %s", source, exc)
                failed.add(source)
                continue

            filename = f"image_{len(store)}.{image_extension(source, data)}"
            store.add(
                ImageRecord(
                    source_url=source,
                    filename=filename,
                    data=data,
                    content_type=content_type,
                )
            )
            logger.debug("Downloaded image %s -> %s", source[:80], filename)

    if client is not None:
        await download_all(client)
    else:
        async with create_client() as new_client:
            await download_all(new_client)

    logger.info("Images downloaded: %d", len(store))
    return store.filename_map
