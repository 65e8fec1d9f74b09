"""
Base class for HTTP-backed Redis transports.

Handles the parts every REST transport shares:
- httpx.AsyncClient lifecycle (lazy creation, close, async context manager)
- Bearer authentication
- Error mapping to TransportError
- Optional retry with exponential backoff for connection-level failures

Retry Strategy:
    - Retryable: timeouts and network errors (the command never reached the store)
    - Not retryable: anything the store answered, including NOSCRIPT
    - Off by default (max_retries=0); EVAL of a non-idempotent script
      must not be replayed blindly
"""

from __future__ import annotations

import asyncio
import logging
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx

from luascript.errors import TransportError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class HttpTransportConfig:
    """Configuration for an HTTP transport."""

    base_url: str = ""
    token: str = ""
    timeout: float = 10.0

    max_retries: int = 0
    retry_delay: float = 0.5

    log_requests: bool = False

    def __post_init__(self):
        if not self.base_url:
            raise ValueError("Transport base_url is required")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")


class HttpTransport(ABC):
    """
    Abstract base for REST transports.

    Subclasses must implement:
    - name: Transport identifier, used in log and error messages
    - _get_auth_headers(): Return authentication headers
    """

    def __init__(
        self,
        config: HttpTransportConfig,
        *,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config
        self._http_transport = http_transport
        self._client: httpx.AsyncClient | None = None

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique name for this transport."""
        ...

    @abstractmethod
    def _get_auth_headers(self) -> dict[str, str]:
        """Return authentication headers for requests."""
        ...

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.config.base_url,
                timeout=self.config.timeout,
                transport=self._http_transport,
                headers={
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                    **self._get_auth_headers(),
                },
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def _post(self, path: str, body: Any) -> httpx.Response:
        """
        POST a JSON body, retrying connection-level failures.

        Raises:
            TransportError: On any store error, or after max retries
        """
        for attempt in range(self.config.max_retries + 1):
            try:
                return await self._do_post(path, body)
            except TransportError as e:
                if not e.retryable or attempt >= self.config.max_retries:
                    raise

                backoff = self._calculate_backoff(attempt)
                logger.info(
                    f"[{self.name}] Retry {attempt + 1}/{self.config.max_retries} "
                    f"after {backoff:.2f}s: {e}"
                )
                await asyncio.sleep(backoff)

        raise TransportError(f"[{self.name}] Unknown error")

    def _calculate_backoff(self, attempt: int) -> float:
        """Exponential backoff with ±25% jitter, capped at 30 seconds."""
        base_delay = self.config.retry_delay * (2 ** attempt)
        jitter = base_delay * 0.25 * (2 * random.random() - 1)
        return min(base_delay + jitter, 30.0)

    async def _do_post(self, path: str, body: Any) -> httpx.Response:
        client = await self._get_client()

        if self.config.log_requests:
            logger.debug(f"[{self.name}] POST {path or '/'} body={body}")

        try:
            response = await client.post(path, json=body)
        except httpx.TimeoutException as e:
            raise TransportError(f"[{self.name}] Request timeout: {e}", retryable=True) from e
        except httpx.NetworkError as e:
            raise TransportError(f"[{self.name}] Network error: {e}", retryable=True) from e

        self._check_response(response)
        return response

    def _check_response(self, response: httpx.Response) -> None:
        """
        Raise TransportError for unsuccessful responses.

        The store's own error text is kept in the message so callers (and
        NOSCRIPT detection) can see it.
        """
        if response.is_success:
            return

        status = response.status_code
        body = response.text

        if status in (401, 403):
            raise TransportError(
                f"[{self.name}] Authentication failed",
                status_code=status,
                response_body=body,
            )

        raise TransportError(
            f"[{self.name}] {self._error_text(response)}",
            status_code=status,
            response_body=body,
        )

    def _error_text(self, response: httpx.Response) -> str:
        """Extract an error message from a failed response."""
        return response.text or response.reason_phrase

    async def __aenter__(self) -> HttpTransport:
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()
