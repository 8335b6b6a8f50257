"""Async HTTP helper shared by the normalizer, explorer and health probe."""

from __future__ import annotations

import logging
from urllib.parse import urlparse

import httpx

from .errors import RequestTimeoutError, SourceFetchError

logger = logging.getLogger(__name__)

USER_AGENT = "mcp-builder"


def is_valid_url(value: str) -> bool:
    """True for absolute http(s) URLs with a host."""
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class HttpFetcher:
    """Thin wrapper over ``httpx.AsyncClient`` with per-call timeouts.

    Timeouts surface as ``RequestTimeoutError`` and transport or status
    failures as ``SourceFetchError`` so callers can tell them apart.
    """

    def __init__(self, client: httpx.AsyncClient | None = None, timeout: float = 30.0):
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                headers={"User-Agent": USER_AGENT},
            )
        return self._client

    async def get(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        check: bool = True,
    ) -> httpx.Response:
        """GET a URL.

        Args:
            url: Absolute URL
            headers: Extra request headers
            timeout: Override of the default timeout in seconds
            check: Raise SourceFetchError on non-2xx responses

        Returns:
            The response
        """
        limit = timeout if timeout is not None else self.timeout
        try:
            response = await self.client.get(url, headers=headers, timeout=limit)
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(f"Request timed out after {limit}s: {url}", timeout=limit) from e
        except httpx.HTTPError as e:
            raise SourceFetchError(f"Request failed for {url}: {e}") from e

        if check and not response.is_success:
            raise SourceFetchError(
                f"Failed to fetch {url}: {response.status_code} {response.reason_phrase}",
                status=response.status_code,
            )
        return response

    async def get_text(self, url: str, **kwargs) -> str:
        response = await self.get(url, **kwargs)
        return response.text

    async def aclose(self) -> None:
        """Close the underlying client if this fetcher created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
