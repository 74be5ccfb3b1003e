"""Tests for HTTP utilities module."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from loopd.exceptions import FetchError
from loopd.http_utils import RETRY_STATUS_CODES, create_client, fetch_resource


def _response(status_code: int, content: bytes = b"", content_type: str | None = None) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.content = content
    response.headers = {"content-type": content_type} if content_type else {}
    response.raise_for_status = MagicMock()
    return response


def _mock_client(mock_client_class: MagicMock, get: AsyncMock) -> AsyncMock:
    mock_client = AsyncMock()
    mock_client.get = get
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=None)
    mock_client_class.return_value = mock_client
    return mock_client


class TestRetryStatusCodes:
    """Tests for RETRY_STATUS_CODES constant."""

    def test_contains_expected_codes(self) -> None:
        """Should contain all expected retryable status codes."""
        expected = {429, 500, 502, 503, 504}
        assert RETRY_STATUS_CODES == frozenset(expected)

    def test_is_immutable(self) -> None:
        """Should be a frozenset (immutable)."""
        assert isinstance(RETRY_STATUS_CODES, frozenset)


class TestFetchResource:
    """Tests for fetch_resource function."""

    @pytest.mark.asyncio
    async def test_returns_content_and_type(self) -> None:
        """Returns the body bytes and the declared content type."""
        response = _response(200, b"\x89PNG", "image/png")

        with patch("loopd.http_utils.httpx.AsyncClient") as mock_client_class:
            _mock_client(mock_client_class, AsyncMock(return_value=response))

            result = await fetch_resource("https://example.com/a.png")

        assert result.content == b"\x89PNG"
        assert result.content_type == "image/png"
        assert result.url == "https://example.com/a.png"

    @pytest.mark.asyncio
    async def test_raises_on_404(self) -> None:
        """Raises FetchError on 404 without retrying."""
        with (
            patch("loopd.http_utils.LOOPD_FETCH_MAX_RETRIES", 2),
            patch("loopd.http_utils.httpx.AsyncClient") as mock_client_class,
        ):
            mock_client = _mock_client(mock_client_class, AsyncMock(return_value=_response(404)))

            with pytest.raises(FetchError, match="Resource not found"):
                await fetch_resource("https://example.com/notfound")

            assert mock_client.get.call_count == 1

    @pytest.mark.asyncio
    async def test_fetched_once_by_default(self) -> None:
        """Transient failures are not retried unless configured."""
        with patch("loopd.http_utils.httpx.AsyncClient") as mock_client_class:
            mock_client = _mock_client(mock_client_class, AsyncMock(return_value=_response(503)))

            with pytest.raises(FetchError, match="Failed to fetch"):
                await fetch_resource("https://example.com")

            assert mock_client.get.call_count == 1

    @pytest.mark.asyncio
    async def test_retries_on_503(self) -> None:
        """Retries on 503 status code."""
        with (
            patch("loopd.http_utils.LOOPD_FETCH_MAX_RETRIES", 2),
            patch("loopd.http_utils.LOOPD_FETCH_BACKOFF_S", 0.01),
            patch("loopd.http_utils.httpx.AsyncClient") as mock_client_class,
        ):
            mock_client = _mock_client(
                mock_client_class,
                AsyncMock(side_effect=[_response(503), _response(200, b"ok")]),
            )

            result = await fetch_resource("https://example.com")

        assert result.content == b"ok"
        assert mock_client.get.call_count == 2

    @pytest.mark.asyncio
    async def test_raises_after_max_retries(self) -> None:
        """Raises FetchError after exhausting retries."""
        with (
            patch("loopd.http_utils.LOOPD_FETCH_MAX_RETRIES", 2),
            patch("loopd.http_utils.LOOPD_FETCH_BACKOFF_S", 0.01),
            patch("loopd.http_utils.httpx.AsyncClient") as mock_client_class,
        ):
            mock_client = _mock_client(mock_client_class, AsyncMock(return_value=_response(503)))

            with pytest.raises(FetchError, match="Failed to fetch"):
                await fetch_resource("https://example.com")

            # Initial attempt + 2 retries = 3 total
            assert mock_client.get.call_count == 3

    @pytest.mark.asyncio
    async def test_retries_on_request_error(self) -> None:
        """Retries on network request errors."""
        with (
            patch("loopd.http_utils.LOOPD_FETCH_MAX_RETRIES", 2),
            patch("loopd.http_utils.LOOPD_FETCH_BACKOFF_S", 0.01),
            patch("loopd.http_utils.httpx.AsyncClient") as mock_client_class,
        ):
            _mock_client(
                mock_client_class,
                AsyncMock(
                    side_effect=[
                        httpx.RequestError("Connection failed"),
                        _response(200, b"ok"),
                    ]
                ),
            )

            result = await fetch_resource("https://example.com")

        assert result.content == b"ok"

    @pytest.mark.asyncio
    async def test_uses_provided_client(self) -> None:
        """Uses provided httpx.AsyncClient if passed."""
        mock_client = AsyncMock()
        mock_client.get = AsyncMock(return_value=_response(200, b"ok"))

        result = await fetch_resource("https://example.com", client=mock_client)

        assert result.content == b"ok"
        mock_client.get.assert_called_once_with("https://example.com")


class TestCreateClient:
    """Tests for create_client function."""

    def test_client_has_correct_settings(self) -> None:
        """Creates client with timeout, redirect and cookie settings."""
        with patch("loopd.http_utils.httpx.AsyncClient") as mock_client_class:
            create_client({"FedAuth": "token"})

            call_kwargs = mock_client_class.call_args[1]
            assert call_kwargs["follow_redirects"] is True
            assert call_kwargs["max_redirects"] == 5
            assert call_kwargs["cookies"] == {"FedAuth": "token"}
            assert "timeout" in call_kwargs
            assert "User-Agent" in call_kwargs["headers"]
