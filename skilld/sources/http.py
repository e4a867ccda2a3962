"""Shared async HTTP client for upstream sources.

Wraps ``httpx.AsyncClient``. A non-2xx response means "nothing there" and
yields ``None``; transport failures and timeouts raise
``TransientFetchError`` so the cascade can record them as errors.
"""

import json
from typing import Any, Dict, Optional

import httpx

from skilld.core import debug as log
from skilld.core.errors import TransientFetchError

USER_AGENT = "skilld/1.0"


class HttpClient:
    """Async HTTP client used by every upstream fetcher."""

    def __init__(
        self,
        timeout: float = 15.0,
        github_token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            timeout: Per-request timeout in seconds
            github_token: Optional token sent to api.github.com
            transport: Custom transport (tests pass ``httpx.MockTransport``)
        """
        self.timeout = timeout
        self.github_token = github_token
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        """Async context manager entry."""
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the underlying HTTP client."""
        if self._client is None:
            raise RuntimeError("Client not initialized. Use 'async with' context manager.")
        return self._client

    def _headers_for(self, url: str) -> Dict[str, str]:
        if self.github_token and url.startswith("https://api.github.com/"):
            return {"Authorization": f"Bearer {self.github_token}"}
        return {}

    async def request(self, method: str, url: str, **kwargs: Any) -> Optional[httpx.Response]:
        """Send a request; None for non-2xx responses."""
        headers = {**self._headers_for(url), **kwargs.pop("headers", {})}
        try:
            response = await self.client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            log.debug(f"HTTP {method} {url} failed: {e}")
            raise TransientFetchError(f"{method} {url}: {type(e).__name__}: {e}") from e

        if not response.is_success:
            log.debug(f"HTTP {method} {url} -> {response.status_code}")
            return None
        return response

    async def exists(self, url: str) -> bool:
        """GET ``url`` and report whether it answered 2xx."""
        return await self.request("GET", url) is not None

    async def fetch_text(self, url: str) -> Optional[str]:
        response = await self.request("GET", url)
        if response is None:
            return None
        return response.text

    async def fetch_json(self, url: str) -> Optional[Any]:
        """GET and decode JSON; None when missing or not valid JSON."""
        text = await self.fetch_text(url)
        if not text:
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            log.debug(f"Invalid JSON from {url}")
            return None

    async def post_json(self, url: str, payload: Dict[str, Any]) -> Optional[Any]:
        response = await self.request("POST", url, json=payload)
        if response is None:
            return None
        try:
            return response.json()
        except json.JSONDecodeError:
            return None

    async def fetch_bytes(self, url: str) -> Optional[bytes]:
        response = await self.request("GET", url)
        if response is None:
            return None
        return response.content

    async def verify_url(self, url: str) -> bool:
        """HEAD ``url``: exists and is not an HTML page (likely a soft 404)."""
        response = await self.request("HEAD", url)
        if response is None:
            return False
        return "text/html" not in response.headers.get("content-type", "")
