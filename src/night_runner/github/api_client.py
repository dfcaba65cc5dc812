"""GitHub REST API client with retry and rate-limit handling."""

import asyncio
import random
import time
from typing import Any, Callable

import httpx
import structlog

from night_runner.config.settings import Settings, get_settings

logger = structlog.get_logger(__name__)

PER_PAGE = 100
RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})


class GitHubAPIClient:
    """Thin async wrapper over the GitHub REST API for one token."""

    def __init__(
        self,
        token: str,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the GitHub API client.

        Args:
            token: GitHub token
            settings: Optional settings (defaults to get_settings())
            transport: Optional httpx transport, used by tests
        """
        self.token = token
        self._settings = settings or get_settings()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Lazily build the shared HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._settings.github_api_url,
                headers={
                    "Authorization": f"Bearer {self.token}",
                    "Accept": "application/vnd.github+json",
                    "X-GitHub-Api-Version": "2022-11-28",
                },
                timeout=30.0,
                transport=self._transport,
            )
        return self._client

    async def rest_get(self, endpoint: str, params: dict[str, Any] | None = None) -> Any:
        """GET a single resource and return its decoded JSON."""
        logger.debug("github_rest_get", endpoint=endpoint, params=params)
        response = await self._send("GET", endpoint, params=params)
        return response.json()

    async def rest_get_all(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
        limit: int | None = None,
        keep: Callable[[Any], bool] | None = None,
    ) -> list[Any]:
        """GET a list endpoint, following ``Link: rel="next"`` pages.

        Items rejected by ``keep`` are dropped before counting, and paging
        stops as soon as ``limit`` kept items have been collected.
        """
        items: list[Any] = []
        url: str | None = endpoint
        page_params: dict[str, Any] | None = {**(params or {}), "per_page": PER_PAGE}
        while url:
            logger.debug("github_rest_get_page", url=url, collected=len(items))
            response = await self._send("GET", url, params=page_params)
            batch = response.json()
            if not isinstance(batch, list):
                raise ValueError(f"Expected a JSON list from {endpoint}")
            items.extend(item for item in batch if keep is None or keep(item))
            if limit is not None and len(items) >= limit:
                return items[:limit]
            # The next link already carries every query parameter.
            url = response.links.get("next", {}).get("url")
            page_params = None
        return items

    async def rest_post(self, endpoint: str, json: dict[str, Any]) -> Any:
        """POST a JSON body and return the decoded JSON response."""
        logger.debug("github_rest_post", endpoint=endpoint)
        response = await self._send("POST", endpoint, json=json)
        return response.json()

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Send with retries, then raise for any status still in error."""
        max_retries = self._settings.github_api_max_retries
        attempt = 0
        while True:
            last_try = attempt >= max_retries
            try:
                response = await self.client.request(method, url, **kwargs)
            except httpx.TransportError as e:
                if last_try:
                    raise
                await self._back_off(method, url, attempt, None, error=str(e))
                attempt += 1
                continue

            if not last_try and self._is_retryable(response):
                await self._back_off(method, url, attempt, response)
                attempt += 1
                continue

            response.raise_for_status()
            return response

    async def _back_off(
        self,
        method: str,
        url: str,
        attempt: int,
        response: httpx.Response | None,
        error: str | None = None,
    ) -> None:
        delay = self._delay_for(response, attempt)
        logger.warning(
            "github_api_retry",
            method=method,
            url=str(url),
            status=response.status_code if response is not None else None,
            attempt=attempt + 1,
            delay_seconds=round(delay, 2),
            error=error,
        )
        await asyncio.sleep(delay)

    @staticmethod
    def _is_retryable(response: httpx.Response) -> bool:
        if response.status_code in RETRYABLE_STATUSES:
            return True
        # 403 is only transient when it is a (secondary) rate limit.
        return response.status_code == 403 and (
            response.headers.get("X-RateLimit-Remaining") == "0"
            or "Retry-After" in response.headers
        )

    def _delay_for(self, response: httpx.Response | None, attempt: int) -> float:
        """Seconds to wait: what the server asked for, else jittered exponential backoff."""
        ceiling = self._settings.github_api_retry_max_seconds
        requested = _server_requested_delay(response)
        if requested is not None:
            return min(requested, ceiling)
        base = self._settings.github_api_retry_base_seconds
        return min(ceiling, base * 2**attempt + random.uniform(0, base))


def _server_requested_delay(response: httpx.Response | None) -> float | None:
    if response is None:
        return None
    headers = response.headers
    if "Retry-After" in headers:
        try:
            return float(headers["Retry-After"])
        except ValueError:
            return None
    if headers.get("X-RateLimit-Remaining") == "0" and headers.get("X-RateLimit-Reset"):
        try:
            reset_at = int(headers["X-RateLimit-Reset"])
        except ValueError:
            return None
        return max(0.0, reset_at - time.time()) + 1.0
    return None
