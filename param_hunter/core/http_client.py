"""
HTTP transport for Param Hunter built on httpx.

The mining engine only needs ``send(request) -> response``; anything that
implements :class:`Transport` can be plugged in instead of httpx.
"""

import asyncio
import time
from typing import List, Optional, Protocol, Tuple

import httpx

from .config import HTTPConfig
from .logger import get_component_logger
from .models import Request, Response

logger = get_component_logger("http_client")

# Framing headers httpx derives from the request itself
_SKIPPED_HEADERS = {"transfer-encoding", "connection"}


class Transport(Protocol):
    """Capability required by the mining engine."""

    async def send(self, request: Request) -> Response:
        ...


class HttpxTransport:
    """Asynchronous transport with retries on connection failures."""

    def __init__(self, http_config: Optional[HTTPConfig] = None):
        self.http_config = http_config or HTTPConfig()

        # Redirects are never followed: Location is a baseline factor
        self.client_config = {
            "timeout": httpx.Timeout(self.http_config.timeout),
            "verify": self.http_config.verify_ssl,
            "follow_redirects": False,
        }
        if self.http_config.proxy_url:
            self.client_config["proxy"] = self.http_config.proxy_url

        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        """Async context manager entry."""
        if self._client is None:
            self._client = httpx.AsyncClient(**self.client_config)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def close(self):
        """Close the underlying client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _build_headers(self, request: Request) -> List[Tuple[str, str]]:
        headers = []
        has_user_agent = False
        for name, values in request.headers.items():
            lowered = name.lower()
            if lowered == "user-agent":
                has_user_agent = True
            if lowered in _SKIPPED_HEADERS:
                continue
            for value in values:
                headers.append((name, value))
        if not has_user_agent and self.http_config.user_agent:
            headers.append(("User-Agent", self.http_config.user_agent))
        return headers

    async def send(self, request: Request) -> Response:
        """
        Send a request and convert the result.

        Transport errors are retried with exponential backoff. Status codes
        are never retried: 429 and 414 carry meaning for the miner.
        """
        if self._client is None:
            self._client = httpx.AsyncClient(**self.client_config)

        http_request = self._client.build_request(
            request.method,
            request.url,
            headers=self._build_headers(request),
            content=request.body.encode("utf-8") if request.body else None,
        )

        last_exception: Optional[Exception] = None
        for attempt in range(self.http_config.max_retries + 1):
            try:
                logger.debug(f"Request attempt {attempt + 1}: {request.method} {request.url}")
                started = time.monotonic()
                http_response = await self._client.send(http_request)
                elapsed = time.monotonic() - started
                return self._convert_response(http_response, request, elapsed)
            except httpx.TransportError as e:
                last_exception = e
                if attempt == self.http_config.max_retries:
                    break
                backoff_time = self.http_config.backoff_factor * (2 ** attempt)
                logger.warning(f"Request failed with exception: {e}, retrying in {backoff_time}s")
                await asyncio.sleep(backoff_time)

        raise last_exception

    @staticmethod
    def _convert_response(http_response: httpx.Response, request: Request,
                          elapsed: float) -> Response:
        headers = {}
        raw_lines = [f"HTTP/1.1 {http_response.status_code} {http_response.reason_phrase}"]
        for raw_name, raw_value in http_response.headers.raw:
            name = raw_name.decode("latin-1")
            value = raw_value.decode("latin-1")
            headers.setdefault(name, []).append(value)
            raw_lines.append(f"{name}: {value}")

        body = http_response.text
        return Response(
            status=http_response.status_code,
            headers=headers,
            body=body,
            raw="\r\n".join(raw_lines) + "\r\n\r\n" + body,
            time=elapsed,
            request_id=request.id,
        )
