"""HTTP utilities for fetching page resources with retry logic and connection pooling."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Final

import httpx

from loopd.config import (
    LOOPD_FETCH_BACKOFF_S,
    LOOPD_FETCH_MAX_RETRIES,
    LOOPD_FETCH_TIMEOUT_S,
    LOOPD_USER_AGENT,
)
from loopd.exceptions import FetchError

RETRY_STATUS_CODES: Final[frozenset[int]] = frozenset({429, 500, 502, 503, 504})

_MAX_REDIRECTS: Final[int] = 5


@dataclass(frozen=True)
class FetchedResource:
    url: str
    content: bytes
    content_type: str | None = None


def create_client(cookies: httpx.Cookies | dict[str, str] | None = None) -> httpx.AsyncClient:
    """Build the shared client used for resource downloads.

    ``cookies`` lets image requests reuse the browser session's credentials.
    """
    return httpx.AsyncClient(
        timeout=httpx.Timeout(LOOPD_FETCH_TIMEOUT_S),
        headers={"User-Agent": LOOPD_USER_AGENT},
        cookies=cookies,
        follow_redirects=True,
        max_redirects=_MAX_REDIRECTS,
    )


async def fetch_resource(
    url: str,
    *,
    client: httpx.AsyncClient | None = None,
) -> FetchedResource:
    """Fetch a resource, retrying transient failures.

    Args:
        url: The URL to fetch.
        client: Optional httpx.AsyncClient for connection pooling. If not
            provided, a new client is created for this request.

    Returns:
        The response body together with its declared content type.

    Raises:
        FetchError: If the fetch fails after all retries or returns 404.
    """
    last_exc: Exception | None = None

    async def do_fetch(http_client: httpx.AsyncClient) -> FetchedResource:
        nonlocal last_exc

        for attempt in range(LOOPD_FETCH_MAX_RETRIES + 1):
            try:
                response = await http_client.get(url)

                if response.status_code == 404:
                    raise FetchError(f"Resource not found at {url}")

                if response.status_code in RETRY_STATUS_CODES:
                    last_exc = FetchError(f"HTTP {response.status_code} from {url}")
                else:
                    response.raise_for_status()
                    return FetchedResource(
                        url=url,
                        content=response.content,
                        content_type=response.headers.get("content-type"),
                    )
            except (httpx.RequestError, httpx.HTTPStatusError) as exc:
                last_exc = exc

            if attempt < LOOPD_FETCH_MAX_RETRIES:
                backoff = LOOPD_FETCH_BACKOFF_S * (2**attempt)
                await asyncio.sleep(backoff)

        raise FetchError(f"Failed to fetch {url}: {last_exc}")

    if client is not None:
        return await do_fetch(client)

    async with create_client() as new_client:
        return await do_fetch(new_client)
