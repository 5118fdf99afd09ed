"""HTTP 传输层：基于 httpx 的异步 HTTP 客户端，将 HTTP 失败映射为分类后的后端错误。

HTTP client shared by the backend adapters.

Provides:
- Lazily created httpx.AsyncClient per backend
- Configurable timeouts
- Mapping of connection failures, timeouts and 4xx/5xx responses onto
  classified BackendErrors
"""

from __future__ import annotations

import os
from contextlib import suppress
from importlib.metadata import PackageNotFoundError, version
from typing import Any

import httpx

from image_broker.errors import BackendError, ErrorClass

_DEFAULT_TIMEOUT = 120.0
_DEFAULT_CONNECT_TIMEOUT = 10.0

_UA_VERSION: str | None = None


def _trust_env_enabled() -> bool:
    """Use env proxy settings only when explicitly enabled."""
    return os.getenv("IMAGE_BROKER_HTTP_TRUST_ENV", "0") == "1"


def _get_ua_version() -> str:
    """Get package version for User-Agent (cached)."""
    global _UA_VERSION
    if _UA_VERSION is None:
        try:
            _UA_VERSION = version("image-broker-python")
        except PackageNotFoundError:
            _UA_VERSION = "0.1.0"
    return _UA_VERSION


class BackendHttpClient:
    """HTTP client for one backend service.

    Example:
        >>> http = BackendHttpClient("openai", "https://api.openai.com/v1",
        ...                          headers={"Authorization": f"Bearer {key}"})
        >>> body = await http.post_json("/images/generations", payload)
    """

    def __init__(
        self,
        backend: str,
        base_url: str,
        *,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize HTTP client.

        Args:
            backend: Backend name, used in errors
            base_url: Base URL for relative paths
            headers: Headers sent with every request (auth goes here)
            timeout: Request timeout in seconds
            transport: Custom httpx transport (tests)
        """
        self._backend = backend
        self._base_url = base_url.rstrip("/")
        self._headers = dict(headers or {})
        self._timeout = timeout if timeout is not None else _DEFAULT_TIMEOUT
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def base_url(self) -> str:
        return self._base_url

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=httpx.Timeout(self._timeout, connect=_DEFAULT_CONNECT_TIMEOUT),
                trust_env=_trust_env_enabled(),
                transport=self._transport,
                follow_redirects=True,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _build_headers(self, extra_headers: dict[str, str] | None = None) -> dict[str, str]:
        headers = {
            "Accept": "application/json",
            "User-Agent": f"image-broker-python/{_get_ua_version()}",
        }
        headers.update(self._headers)
        if extra_headers:
            headers.update(extra_headers)
        return headers

    async def request(
        self,
        method: str,
        url: str,
        *,
        json: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        files: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        authenticated: bool = True,
    ) -> httpx.Response:
        """Make an HTTP request.

        Args:
            method: HTTP method
            url: Path relative to the base URL, or an absolute URL
            json: JSON body
            data: Form fields (multipart when ``files`` is given)
            files: Multipart file parts
            params: Query parameters
            headers: Additional headers
            authenticated: Send the backend's auth headers (off for result downloads)

        Returns:
            HTTP response with a 2xx/3xx status

        Raises:
            BackendError: On network errors, timeouts and 4xx/5xx responses
        """
        client = self._get_client()
        if authenticated:
            request_headers = self._build_headers(headers)
        else:
            request_headers = {"User-Agent": f"image-broker-python/{_get_ua_version()}", **(headers or {})}

        try:
            response = await client.request(
                method=method,
                url=url,
                json=json,
                data=data,
                files=files,
                params=params,
                headers=request_headers,
            )
        except httpx.ConnectError as e:
            raise BackendError(
                f"{self._backend}: connection failed: {e}",
                backend=self._backend,
                retryable=True,
                error_class=ErrorClass.NETWORK,
                cause=e,
            ) from e
        except httpx.TimeoutException as e:
            raise BackendError(
                f"{self._backend}: request timed out: {e}",
                backend=self._backend,
                retryable=True,
                error_class=ErrorClass.TIMEOUT,
                cause=e,
            ) from e
        except httpx.HTTPError as e:
            raise BackendError(
                f"{self._backend}: HTTP error: {e}",
                backend=self._backend,
                retryable=True,
                error_class=ErrorClass.NETWORK,
                cause=e,
            ) from e

        if response.status_code >= 400:
            body: Any = None
            with suppress(ValueError):
                body = response.json()
            if body is None:
                body = response.text
            raise BackendError.from_response(
                self._backend,
                response.status_code,
                body=body,
                headers=response.headers,
            )

        return response

    async def post_json(
        self,
        url: str,
        json: dict[str, Any],
        *,
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """POST a JSON body and parse the JSON response."""
        response = await self.request(
            "POST",
            url,
            json=json,
            params=params,
            headers={"Content-Type": "application/json", **(headers or {})},
        )
        return self.parse_json(response)

    async def get_json(
        self,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """GET and parse the JSON response."""
        response = await self.request("GET", url, params=params, headers=headers)
        return self.parse_json(response)

    async def download(self, url: str) -> tuple[bytes, str | None]:
        """Fetch a result image from an absolute URL without auth headers.

        Returns:
            Tuple of (bytes, content type)
        """
        response = await self.request("GET", url, authenticated=False, headers={"Accept": "image/*"})
        return response.content, response.headers.get("content-type")

    def parse_json(self, response: httpx.Response) -> Any:
        """Parse a JSON response body.

        Raises:
            BackendError: If the body is not JSON (permanent)
        """
        try:
            return response.json()
        except ValueError as e:
            raise BackendError(
                f"{self._backend}: invalid JSON response",
                backend=self._backend,
                retryable=False,
                error_class=ErrorClass.OTHER,
                raw_error=response.text[:200],
                cause=e,
            ) from e

    async def __aenter__(self) -> BackendHttpClient:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
