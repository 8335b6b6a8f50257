"""Post-deploy health probe."""

from __future__ import annotations

import logging

from ..errors import HealthCheckError, RequestTimeoutError, SourceFetchError
from ..http import HttpFetcher

logger = logging.getLogger(__name__)


class HealthChecker:
    """Checks ``GET {url}/health`` of a deployed server.

    A deployment only counts as live when the probe answers 2xx and the body,
    if JSON, does not report ``ok: false``.
    """

    def __init__(self, fetcher: HttpFetcher, timeout: float = 10.0):
        self.fetcher = fetcher
        self.timeout = timeout

    async def check(self, url: str) -> dict:
        probe = f"{url.rstrip('/')}/health"
        try:
            response = await self.fetcher.get(probe, timeout=self.timeout, check=False)
        except (SourceFetchError, RequestTimeoutError) as e:
            raise HealthCheckError(f"Health check failed for {probe}: {e}") from e

        if not response.is_success:
            raise HealthCheckError(f"Health check failed for {probe}: HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError:
            body = {}
        if isinstance(body, dict) and body.get("ok") is False:
            raise HealthCheckError(
                f"Health check failed for {probe}: {body.get('error') or 'server reported not ok'}"
            )
        logger.info("Health check passed for %s", probe)
        return body if isinstance(body, dict) else {}
