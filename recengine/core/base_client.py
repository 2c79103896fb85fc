from typing import Any

import httpx
from loguru import logger

from recengine.core.errors import TransientStoreError, ValidationError


class BaseClient:
    """
    Base asynchronous HTTP client with error classification and logging.

    A single attempt is made per call. Transport errors and 5xx/429 responses
    become ``TransientStoreError`` so the caller's retry policy can decide what to
    do; any other 4xx becomes ``ValidationError``.
    """

    def __init__(self, base_url: str = "", timeout: float = 10.0, headers: dict[str, str] | None = None):
        self.base_url = base_url
        self.timeout = timeout
        self.headers = headers or {}
        self._client: httpx.AsyncClient | None = None

    async def get_client(self) -> httpx.AsyncClient:
        """Get or create the httpx.AsyncClient instance."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, headers=self.headers, follow_redirects=True
            )
        return self._client

    async def close(self):
        """Close the underlying HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        client = await self.get_client()
        try:
            response = await client.request(method, url, **kwargs)
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status >= 500 or status == 429:
                logger.warning(f"Request failed ({method} {url}): HTTP {status}")
                raise TransientStoreError(f"{method} {url} returned {status}") from e
            logger.error(f"Request rejected ({method} {url}): HTTP {status} {e.response.text[:200]}")
            raise ValidationError(f"{method} {url} returned {status}") from e
        except httpx.RequestError as e:
            logger.warning(f"Request failed ({method} {url}): {str(e)}")
            raise TransientStoreError(f"{method} {url} failed: {e}") from e

    async def get(self, url: str, params: Any = None, **kwargs) -> Any:
        """Perform a GET request and return the JSON response."""
        response = await self._request("GET", url, params=params, **kwargs)
        return response.json()

    async def post(self, url: str, json: Any = None, **kwargs) -> Any:
        """Perform a POST request and return the JSON response."""
        response = await self._request("POST", url, json=json, **kwargs)
        return response.json() if response.content else None

    async def patch(self, url: str, json: Any = None, **kwargs) -> Any:
        """Perform a PATCH request and return the JSON response."""
        response = await self._request("PATCH", url, json=json, **kwargs)
        return response.json() if response.content else None
