"""Tests for the Playwright page handle and snapshot helpers."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from loopd.browser import (
    SNAPSHOT_JS,
    TOGGLE_ID_ATTRIBUTE,
    PlaywrightPage,
    session_cookies,
    take_snapshot,
)
from loopd.expansion import ScrollRegion, ToggleCandidate


def _page() -> MagicMock:
    page = MagicMock()
    page.evaluate = AsyncMock()
    locator = MagicMock()
    locator.evaluate = AsyncMock()
    locator.get_attribute = AsyncMock()
    page.locator.return_value.first = locator
    return page


class TestPlaywrightPage:
    """Tests for PlaywrightPage class."""

    @pytest.mark.asyncio
    async def test_scrollable_regions(self) -> None:
        """Region dicts from the page become ScrollRegion values."""
        page = _page()
        page.evaluate.return_value = [{"index": -1, "scrollHeight": 4000, "viewportHeight": 900}]

        regions = await PlaywrightPage(page).scrollable_regions()

        assert regions == [ScrollRegion(index=-1, scroll_height=4000.0, viewport_height=900.0)]

    @pytest.mark.asyncio
    async def test_scroll_region_passes_index_and_top(self) -> None:
        """The scroll script receives its arguments as one list."""
        page = _page()
        page.evaluate.return_value = 5200

        height = await PlaywrightPage(page).scroll_region(2, 630.0)

        assert height == 5200.0
        assert page.evaluate.call_args.args[1] == [2, 630.0]

    @pytest.mark.asyncio
    async def test_find_collapsed_toggles(self) -> None:
        """Toggle scan results keep their id, label and rank."""
        page = _page()
        page.evaluate.return_value = [
            {"id": "exp_1", "label": "Expand section", "rank": 0},
            {"id": "exp_2", "label": "Show details", "rank": 1},
        ]

        toggles = await PlaywrightPage(page).find_collapsed_toggles()

        assert toggles == [
            ToggleCandidate(toggle_id="exp_1", label="Expand section", rank=0),
            ToggleCandidate(toggle_id="exp_2", label="Show details", rank=1),
        ]
        assert page.evaluate.call_args.args[1] == [TOGGLE_ID_ATTRIBUTE]

    @pytest.mark.asyncio
    async def test_toggles_addressed_by_stamped_attribute(self) -> None:
        """Per-toggle calls locate the element through its stamped id."""
        page = _page()
        locator = page.locator.return_value.first
        locator.get_attribute.return_value = "true"
        locator.evaluate.return_value = True
        handle = PlaywrightPage(page)

        assert await handle.aria_expanded("exp_1") == "true"
        assert await handle.invoke_framework_click("exp_1") is True
        page.locator.assert_called_with('[data-loopd-expand-id="exp_1"]')
        locator.get_attribute.assert_awaited_once_with("aria-expanded")

    @pytest.mark.asyncio
    async def test_open_details_count(self) -> None:
        """The number of opened details elements is returned."""
        page = _page()
        page.evaluate.return_value = 3

        assert await PlaywrightPage(page).open_details() == 3


class TestSnapshotHelpers:
    """Tests for take_snapshot and session_cookies."""

    @pytest.mark.asyncio
    async def test_take_snapshot(self) -> None:
        """The snapshot script output is returned unchanged."""
        page = _page()
        page.evaluate.return_value = "<!DOCTYPE html><html></html>"

        html = await take_snapshot(page)

        assert html == "<!DOCTYPE html><html></html>"
        page.evaluate.assert_awaited_once_with(SNAPSHOT_JS)

    def test_snapshot_script_serializes_shadow_roots(self) -> None:
        """Shadow roots are written as declarative templates."""
        assert '<template shadowrootmode="open">' in SNAPSHOT_JS
        assert "data-loopd-natural-width" in SNAPSHOT_JS

    @pytest.mark.asyncio
    async def test_session_cookies(self) -> None:
        """Context cookies become a name -> value mapping."""
        page = MagicMock()
        page.context.cookies = AsyncMock(
            return_value=[
                {"name": "FedAuth", "value": "abc", "domain": ".sharepoint.com"},
                {"name": "rtFa", "value": "def", "domain": ".sharepoint.com"},
            ]
        )

        assert await session_cookies(page) == {"FedAuth": "abc", "rtFa": "def"}
