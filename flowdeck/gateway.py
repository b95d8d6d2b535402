"""Typed request/response gateway for the dashboard REST API."""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

import httpx

from .config import FlowdeckConfig, load_config
from .errors import ApiError

logger = logging.getLogger(__name__)

DEFAULT_HEADERS: Dict[str, str] = {"Content-Type": "application/json"}

# Stand-in for error bodies that are missing or not JSON. It carries no
# ``error`` field, so the raised message falls back to the status code.
UNKNOWN_ERROR_BODY: Dict[str, str] = {"detail": "Unknown error"}


def error_message(status_code: int, body: Any) -> str:
    """Return the message to raise for a non-success response."""
    if isinstance(body, dict):
        message = body.get("error")
        if isinstance(message, str) and message:
            return message
    return f"HTTP {status_code}"


class ApiGateway:
    """Issues JSON requests against the dashboard backend.

    The gateway is stateless between calls. Successful bodies are returned
    exactly as parsed, without schema validation; non-success responses are
    normalised into :class:`ApiError`.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: Optional[float] = 30.0,
        headers: Optional[Mapping[str, str]] = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._headers = {**DEFAULT_HEADERS, **(headers or {})}
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    @classmethod
    def from_config(
        cls,
        config: Optional[FlowdeckConfig] = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> "ApiGateway":
        config = config or load_config()
        return cls(
            config.api.base_url,
            timeout=config.api.timeout,
            headers=config.api.headers,
            http_client=http_client,
        )

    @property
    def http_client(self) -> httpx.AsyncClient:
        return self._client

    def url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def build_headers(self, headers: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        """Merge default headers with caller headers; the caller wins on collisions."""
        return {**self._headers, **(headers or {})}

    async def fetch(
        self,
        path: str,
        *,
        method: str = "GET",
        params: Optional[Mapping[str, Any]] = None,
        json: Any = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Any:
        """Send a request and return the parsed JSON body.

        Args:
            path: Path below the base origin, e.g. ``/api/status``.
            method: HTTP method.
            params: Query parameters, sent in insertion order.
            json: Request body, serialised as JSON when given.
            headers: Extra headers merged over the defaults.

        Returns:
            The decoded body, or ``None`` when the response has no content.

        Raises:
            ApiError: On transport failure, a non-success status or an
                undecodable success body.
        """
        logger.debug(f"{method} {path} params={dict(params or {})}")
        try:
            response = await self._client.request(
                method,
                self.url(path),
                params=params,
                json=json,
                headers=self.build_headers(headers),
            )
        except httpx.HTTPError as exc:
            logger.warning(f"{method} {path} failed: {exc}")
            raise ApiError(str(exc) or exc.__class__.__name__) from exc

        if not response.is_success:
            try:
                body = response.json()
            except ValueError:
                body = UNKNOWN_ERROR_BODY
            message = error_message(response.status_code, body)
            logger.warning(
                f"{method} {path} returned {response.status_code}: {message}"
            )
            raise ApiError(message, status_code=response.status_code, body=body)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            logger.warning(f"{method} {path} returned an invalid JSON body: {exc}")
            raise ApiError(
                f"Invalid JSON response: {exc}", status_code=response.status_code
            ) from exc

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this gateway created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "ApiGateway":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()


async def api_fetch(
    path: str,
    *,
    config: Optional[FlowdeckConfig] = None,
    http_client: httpx.AsyncClient | None = None,
    **options: Any,
) -> Any:
    """One-shot request through a temporary :class:`ApiGateway`.

    ``options`` are forwarded to :meth:`ApiGateway.fetch`.
    """
    async with ApiGateway.from_config(config, http_client=http_client) as gateway:
        return await gateway.fetch(path, **options)
