"""Force collapsed and virtualized Loop content into the live DOM.

The driver only talks to the page through ``PageHandle``; ``loopd.browser``
provides the Playwright implementation.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Protocol

from loopd.config import (
    LOOPD_EXPAND_MAX_OPERATIONS,
    LOOPD_EXPAND_SETTLE_S,
    LOOPD_SCROLL_STEP_DELAY_S,
)

logger = logging.getLogger(__name__)

_SCROLL_STEP_RATIO = 0.7


@dataclass(frozen=True)
class ScrollRegion:
    """A scrollable area; index ``-1`` is the window itself."""

    index: int
    scroll_height: float
    viewport_height: float


@dataclass(frozen=True)
class ToggleCandidate:
    """A collapsed toggle found on the page.

    ``rank`` orders candidates by how specific the match was: component class
    matches (0) are tried before generic ARIA button matches (1).
    """

    toggle_id: str
    label: str
    rank: int = 0


class PageHandle(Protocol):
    async def open_details(self) -> int: ...

    async def scrollable_regions(self) -> list[ScrollRegion]: ...

    async def scroll_region(self, index: int, top: float) -> float: ...

    async def find_collapsed_toggles(self) -> list[ToggleCandidate]: ...

    async def scroll_into_view(self, toggle_id: str) -> None: ...

    async def dispatch_pointer_sequence(self, toggle_id: str) -> None: ...

    async def invoke_framework_click(self, toggle_id: str) -> bool: ...

    async def aria_expanded(self, toggle_id: str) -> str | None: ...


@dataclass
class ExpansionOptions:
    max_operations: int = LOOPD_EXPAND_MAX_OPERATIONS
    settle_s: float = LOOPD_EXPAND_SETTLE_S
    scroll_step_delay_s: float = LOOPD_SCROLL_STEP_DELAY_S
    scroll_settle_s: float = 0.15
    click_settle_s: float = 0.1


@dataclass
class ExpansionReport:
    confirmed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    operations: int = 0
    details_opened: int = 0
    capped: bool = False

    @property
    def summary(self) -> str:
        return (
            f"{len(self.confirmed)} expanded, {len(self.failed)} failed "
            f"in {self.operations} operations"
        )


async def load_virtualized_content(page: PageHandle, options: ExpansionOptions) -> None:
    """Scroll every scrollable region to its end and back so lazy content mounts."""
    regions = await page.scrollable_regions()
    logger.debug("Found %d scrollable areas", len(regions))
    for region in regions:
        height = region.scroll_height
        step = max(region.viewport_height * _SCROLL_STEP_RATIO, 1.0)
        position = 0.0
        while position < height:
            position += step
            # Content mounting while we scroll grows the region.
            height = await page.scroll_region(region.index, position)
            await asyncio.sleep(options.scroll_step_delay_s)
        await page.scroll_region(region.index, 0)


async def _expand_toggle(page: PageHandle, toggle: ToggleCandidate, options: ExpansionOptions) -> bool:
    await page.scroll_into_view(toggle.toggle_id)
    await asyncio.sleep(options.scroll_settle_s)

    await page.dispatch_pointer_sequence(toggle.toggle_id)
    await asyncio.sleep(options.click_settle_s)
    if await page.aria_expanded(toggle.toggle_id) != "true":
        invoked = await page.invoke_framework_click(toggle.toggle_id)
        logger.debug("Framework click fallback for %r (handler found: %s)", toggle.label, invoked)

    await asyncio.sleep(options.settle_s)
    return await page.aria_expanded(toggle.toggle_id) == "true"


async def expand_collapsed_sections(
    page: PageHandle,
    options: ExpansionOptions | None = None,
) -> ExpansionReport:
    """Expand every collapsed section on the page.

    Each toggle gets exactly one attempt. Toggles that do not report
    ``aria-expanded="true"`` after the settle interval are recorded as failed
    and never retried. Stops when no unattempted toggle remains after a fresh
    scroll pass, or after ``max_operations`` attempts.
    """
    options = options or ExpansionOptions()
    report = ExpansionReport()
    attempted: set[str] = set()

    report.details_opened = await page.open_details()
    await load_virtualized_content(page, options)
    expanded_since_scroll = False

    while True:
        candidates = [
            toggle
            for toggle in await page.find_collapsed_toggles()
            if toggle.toggle_id not in attempted
        ]
        if not candidates:
            if not expanded_since_scroll:
                break
            # Expanded sections may hold more virtualized content and toggles.
            await load_virtualized_content(page, options)
            expanded_since_scroll = False
            continue

        if report.operations >= options.max_operations:
            report.capped = True
            logger.warning(
                "Expansion stopped after %d operations; %d toggles left untried",
                report.operations,
                len(candidates),
            )
            break

        toggle = min(candidates, key=lambda candidate: candidate.rank)
        attempted.add(toggle.toggle_id)
        report.operations += 1
        logger.info("Expanding [%d]: %.50s", report.operations, toggle.label)

        if await _expand_toggle(page, toggle, options):
            report.confirmed.append(toggle.label)
            expanded_since_scroll = True
        else:
            report.failed.append(toggle.label)
            logger.warning("Section did not expand: %.50s", toggle.label)

    logger.info("Expansion complete: %s", report.summary)
    return report
