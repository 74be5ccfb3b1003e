"""Playwright side of the exporter: page handle, DOM snapshot and browser session."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

from playwright.async_api import (
    Error as PlaywrightError,
    Page,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from loopd.config import LOOPD_NAVIGATION_TIMEOUT_S
from loopd.exceptions import BrowserError
from loopd.expansion import ScrollRegion, ToggleCandidate

logger = logging.getLogger(__name__)

TOGGLE_ID_ATTRIBUTE = "data-loopd-expand-id"

# Walks light and shadow DOM alike.
_WALK_JS = """
function walk(node, visit) {
  if (node.nodeType === Node.ELEMENT_NODE) {
    visit(node);
    if (node.shadowRoot) walk(node.shadowRoot, visit);
  }
  for (const child of node.childNodes || []) walk(child, visit);
}
"""

_OPEN_DETAILS_JS = (
    "() => {"
    + _WALK_JS
    + """
  let opened = 0;
  walk(document.documentElement, (el) => {
    if (el.tagName === 'DETAILS' && !el.open) { el.open = true; opened++; }
  });
  return opened;
}"""
)

_SCROLLABLE_REGIONS_JS = """() => {
  const regions = [];
  window.__loopdScrollables = [];
  if (document.body.scrollHeight > window.innerHeight) {
    regions.push({index: -1, scrollHeight: document.body.scrollHeight, viewportHeight: window.innerHeight});
  }
  document.querySelectorAll('div').forEach((div) => {
    const style = window.getComputedStyle(div);
    if ((style.overflowY === 'auto' || style.overflowY === 'scroll') &&
        div.scrollHeight > div.clientHeight + 100) {
      window.__loopdScrollables.push(div);
      regions.push({
        index: window.__loopdScrollables.length - 1,
        scrollHeight: div.scrollHeight,
        viewportHeight: div.clientHeight,
      });
    }
  });
  return regions;
}"""

_SCROLL_REGION_JS = """([index, top]) => {
  if (index < 0) {
    window.scrollTo(0, top);
    return document.body.scrollHeight;
  }
  const el = (window.__loopdScrollables || [])[index];
  if (!el) return 0;
  el.scrollTop = top;
  return el.scrollHeight;
}"""

_FIND_TOGGLES_JS = (
    "([attribute]) => {"
    + _WALK_JS
    + """
  const found = [];
  const seen = new Set();
  const idOf = (el) => {
    if (!el.getAttribute(attribute)) {
      el.setAttribute(attribute, 'exp_' + Math.random().toString(36).slice(2, 10));
    }
    return el.getAttribute(attribute);
  };
  walk(document.documentElement, (el) => {
    const className = typeof el.className === 'string' ? el.className : (el.getAttribute('class') || '');
    if (el.getAttribute('aria-expanded') !== 'false') return;
    let rank = -1;
    if (/scriptor-collapseButtonContainer/i.test(className)) {
      rank = 0;
    } else if (el.getAttribute('role') === 'button' && el.getAttribute('aria-label') &&
               !/menuButton/i.test(className) && /collapse/i.test(className)) {
      rank = 1;
    }
    if (rank < 0 || seen.has(el)) return;
    seen.add(el);
    found.push({id: idOf(el), label: el.getAttribute('aria-label') || '(unknown)', rank});
  });
  return found;
}"""
)

_SCROLL_INTO_VIEW_JS = "(el) => el.scrollIntoView({block: 'center', behavior: 'instant'})"

_POINTER_SEQUENCE_JS = """(el) => {
  const rect = el.getBoundingClientRect();
  const x = rect.left + rect.width / 2;
  const y = rect.top + rect.height / 2;
  const init = {
    bubbles: true, cancelable: true, composed: true, view: window,
    clientX: x, clientY: y, screenX: x + window.screenX, screenY: y + window.screenY,
    button: 0, buttons: 1, pointerId: 1, pointerType: 'mouse', isPrimary: true,
  };
  const sequence = [
    ['pointerover', PointerEvent], ['pointerenter', PointerEvent],
    ['mouseover', MouseEvent], ['mouseenter', MouseEvent],
    ['pointerdown', PointerEvent], ['mousedown', MouseEvent],
    ['pointerup', PointerEvent], ['mouseup', MouseEvent],
    ['click', MouseEvent],
  ];
  for (const [type, EventType] of sequence) el.dispatchEvent(new EventType(type, init));
}"""

_FRAMEWORK_CLICK_JS = """(el) => {
  for (const key of Object.keys(el)) {
    if (!key.startsWith('__reactProps$')) continue;
    const props = el[key];
    if (props && typeof props.onClick === 'function') {
      props.onClick({
        preventDefault: () => {},
        stopPropagation: () => {},
        nativeEvent: new MouseEvent('click', {bubbles: true}),
        target: el,
        currentTarget: el,
      });
      return true;
    }
  }
  return false;
}"""

# Serializes the document with open shadow roots as declarative templates and
# stamps the live state the snapshot would otherwise lose.
SNAPSHOT_JS = """() => {
  const VOID = new Set(['area', 'base', 'br', 'col', 'embed', 'hr', 'img', 'input',
                        'link', 'meta', 'source', 'track', 'wbr']);
  const SKIP = new Set(['script', 'noscript']);
  const MONOSPACE = /monospace|consolas|monaco|courier|menlo/i;
  const escapeText = (s) => s.replace(/&/g, '&amp;').replace(/</g, '&lt;').replace(/>/g, '&gt;');
  const escapeAttr = (s) => s.replace(/&/g, '&amp;').replace(/"/g, '&quot;');

  function attributes(el) {
    const tag = el.tagName.toLowerCase();
    const isCheckbox = tag === 'input' && (el.type || '').toLowerCase() === 'checkbox';
    const values = new Map();
    for (const attr of el.attributes) {
      if (tag === 'img' && attr.name === 'src') continue;
      if (isCheckbox && attr.name === 'checked') continue;
      values.set(attr.name, attr.value);
    }
    if (tag === 'img') {
      if (el.src) values.set('src', el.src);
      if (el.naturalWidth) values.set('data-loopd-natural-width', String(el.naturalWidth));
      if (el.naturalHeight) values.set('data-loopd-natural-height', String(el.naturalHeight));
    }
    if (isCheckbox && el.checked) values.set('checked', '');
    if ((tag === 'span' || tag === 'div') && MONOSPACE.test(getComputedStyle(el).fontFamily || '')) {
      values.set('data-loopd-monospace', 'true');
    }
    let out = '';
    for (const [name, value] of values) out += ' ' + name + '="' + escapeAttr(value) + '"';
    return out;
  }

  function children(node) {
    let out = '';
    for (const child of node.childNodes) out += serialize(child);
    return out;
  }

  function serialize(node) {
    if (node.nodeType === Node.TEXT_NODE) return escapeText(node.data);
    if (node.nodeType !== Node.ELEMENT_NODE) return '';
    const tag = node.tagName.toLowerCase();
    if (SKIP.has(tag)) return '';
    let out = '<' + tag + attributes(node) + '>';
    if (VOID.has(tag)) return out;
    if (node.shadowRoot) {
      out += '<template shadowrootmode="open">' + children(node.shadowRoot) + '</template>';
    }
    out += children(tag === 'template' ? node.content : node);
    return out + '</' + tag + '>';
  }

  return '<!DOCTYPE html>' + serialize(document.documentElement);
}"""


class PlaywrightPage:
    """``PageHandle`` backed by a Playwright page.

    Toggles are addressed through the ``data-loopd-expand-id`` attribute the
    toggle scan stamps on them; Playwright CSS locators pierce open shadow
    roots, so the same selector reaches toggles inside components.
    """

    def __init__(self, page: Page) -> None:
        self.page = page

    def _toggle(self, toggle_id: str):
        return self.page.locator(f'[{TOGGLE_ID_ATTRIBUTE}="{toggle_id}"]').first

    async def open_details(self) -> int:
        return int(await self.page.evaluate(_OPEN_DETAILS_JS))

    async def scrollable_regions(self) -> list[ScrollRegion]:
        regions = await self.page.evaluate(_SCROLLABLE_REGIONS_JS)
        return [
            ScrollRegion(
                index=int(region["index"]),
                scroll_height=float(region["scrollHeight"]),
                viewport_height=float(region["viewportHeight"]),
            )
            for region in regions
        ]

    async def scroll_region(self, index: int, top: float) -> float:
        return float(await self.page.evaluate(_SCROLL_REGION_JS, [index, top]))

    async def find_collapsed_toggles(self) -> list[ToggleCandidate]:
        found = await self.page.evaluate(_FIND_TOGGLES_JS, [TOGGLE_ID_ATTRIBUTE])
        return [
            ToggleCandidate(toggle_id=item["id"], label=item["label"], rank=int(item["rank"]))
            for item in found
        ]

    async def scroll_into_view(self, toggle_id: str) -> None:
        await self._toggle(toggle_id).evaluate(_SCROLL_INTO_VIEW_JS)

    async def dispatch_pointer_sequence(self, toggle_id: str) -> None:
        await self._toggle(toggle_id).evaluate(_POINTER_SEQUENCE_JS)

    async def invoke_framework_click(self, toggle_id: str) -> bool:
        return bool(await self._toggle(toggle_id).evaluate(_FRAMEWORK_CLICK_JS))

    async def aria_expanded(self, toggle_id: str) -> str | None:
        return await self._toggle(toggle_id).get_attribute("aria-expanded")


async def take_snapshot(page: Page) -> str:
    """Serialize the live page, shadow roots included, to HTML."""
    html = await page.evaluate(SNAPSHOT_JS)
    logger.info("Snapshot taken (%d KB)", len(html) // 1024)
    return html


async def session_cookies(page: Page) -> dict[str, str]:
    """Cookies of the page's browser context, for authenticated image downloads."""
    cookies = await page.context.cookies()
    return {cookie["name"]: cookie["value"] for cookie in cookies if "name" in cookie}


@asynccontextmanager
async def open_page(
    url: str,
    *,
    user_data_dir: Path | None = None,
    headless: bool = False,
    wait_s: float = 0.0,
) -> AsyncIterator[Page]:
    """Open ``url`` in Chromium and yield the page.

    With ``user_data_dir`` the browser profile persists between runs, so a
    Microsoft sign-in done once in a headed session is reused afterwards.

    Raises:
        BrowserError: If the browser cannot start or the page does not load.
    """
    async with async_playwright() as playwright:
        try:
            if user_data_dir is not None:
                context = await playwright.chromium.launch_persistent_context(
                    str(user_data_dir), headless=headless
                )
                browser = None
            else:
                browser = await playwright.chromium.launch(headless=headless)
                context = await browser.new_context(viewport={"width": 1440, "height": 1000})
        except PlaywrightError as exc:
            raise BrowserError(f"Could not start Chromium: {exc}") from exc

        try:
            page = context.pages[0] if context.pages else await context.new_page()
            page.set_default_navigation_timeout(LOOPD_NAVIGATION_TIMEOUT_S * 1000)
            try:
                logger.info("Loading %s", url)
                await page.goto(url, wait_until="domcontentloaded")
                if wait_s:
                    await page.wait_for_timeout(int(wait_s * 1000))
            except PlaywrightTimeoutError as exc:
                raise BrowserError(f"Timeout while loading {url}") from exc
            except PlaywrightError as exc:
                raise BrowserError(f"Failed to load {url}: {exc}") from exc
            yield page
        finally:
            await context.close()
            if browser is not None:
                await browser.close()

