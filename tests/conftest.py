"""Test setup for loopd."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from loopd.dom import parse_snapshot  # noqa: E402


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for pytest.

    This allows running browser tests selectively:
        pytest -m integration       # run only integration tests
        pytest -m "not integration" # skip integration tests
    """
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests (launch a real browser)",
    )


def loop_page(body: str, *, title: str = "Sprint notes - Microsoft Loop") -> str:
    """Wrap ``body`` in the page container Loop renders documents into."""
    return (
        "<!DOCTYPE html><html><head>"
        f"<title>{title}</title>"
        "</head><body>"
        '<div class="scriptor-pageContainer">'
        f"{body}"
        "</div></body></html>"
    )


@pytest.fixture
def loop_html():
    """Render a content fragment as a full Loop page snapshot."""
    return loop_page


@pytest.fixture
def make_page():
    """Build a parsed Loop page snapshot from a content fragment."""

    def build(body: str, **kwargs):
        return parse_snapshot(loop_page(body, **kwargs))

    return build


@pytest.fixture
def png_bytes() -> bytes:
    """Smallest byte string ``filetype`` recognises as a PNG."""
    return b"\x89PNG\r\n\x1a\n" + b"\x00" * 32
