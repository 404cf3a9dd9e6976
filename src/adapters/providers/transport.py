"""Throttled HTTP plumbing shared by every provider client.

Responsibilities:
- Every outbound request takes a token from the provider's `RateLimiter` and
  runs inside its `RetryPolicy`; each retry attempt takes its own token.
- The shutdown event is checked right before a request goes out. A request is
  either sent in full or never sent.
- httpx exceptions and HTTP status codes are mapped onto the provider error
  taxonomy here and nowhere else.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from core.domain.errors import (
    AuthenticationError,
    ProviderError,
    RateLimitExceeded,
    TransientProviderError,
)
from core.services.throttle import RateLimiter, RetryPolicy, ensure_not_cancelled

logger = logging.getLogger(__name__)


def _retry_after_seconds(response: httpx.Response) -> float | None:
    raw = response.headers.get("Retry-After")
    if raw is None:
        return None
    try:
        return max(0.0, float(raw))
    except ValueError:
        return None


def _error_excerpt(response: httpx.Response) -> str:
    try:
        text = response.text
    except (httpx.ResponseNotRead, UnicodeDecodeError):
        return ""
    return " ".join(text.split())[:200]


class ThrottledTransport:
    """An `httpx.AsyncClient` behind one provider's rate budget and retry policy."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        provider: str,
        limiter: RateLimiter,
        retry: RetryPolicy,
        cancel: asyncio.Event | None = None,
    ) -> None:
        self.client = client
        self.provider = provider
        self.limiter = limiter
        self.retry = retry
        self.cancel = cancel

    def classify_response(self, response: httpx.Response) -> httpx.Response:
        """Return `response` when it is a success, raise the matching error otherwise."""

        status = response.status_code
        if status < 400:
            return response

        detail = _error_excerpt(response)
        message = f"HTTP {status} from {response.request.method} {response.request.url.path}"
        if detail:
            message = f"{message}: {detail}"

        if status in (401, 403):
            raise AuthenticationError(message, provider=self.provider, status_code=status)
        if status == 429:
            raise RateLimitExceeded(
                message,
                provider=self.provider,
                retry_after=_retry_after_seconds(response),
            )
        if status >= 500 or status == 408:
            raise TransientProviderError(message, provider=self.provider, status_code=status)
        raise ProviderError(message, provider=self.provider, status_code=status)

    async def _send_once(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        ensure_not_cancelled(self.cancel)
        await self.limiter.acquire(self.cancel)
        # The token wait may have overlapped the shutdown.
        ensure_not_cancelled(self.cancel)

        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise TransientProviderError(
                f"{method} {url} timed out: {type(exc).__name__}",
                provider=self.provider,
            ) from exc
        except httpx.TransportError as exc:
            raise TransientProviderError(
                f"{method} {url} failed: {type(exc).__name__}: {exc}",
                provider=self.provider,
            ) from exc

        logger.debug("%s %s %s -> %d", self.provider, method, url, response.status_code)
        return self.classify_response(response)

    async def request(
        self,
        method: str,
        url: str,
        *,
        description: str | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        return await self.retry.run(
            lambda: self._send_once(method, url, **kwargs),
            provider=self.provider,
            description=description or f"{method} {url}",
            cancel=self.cancel,
        )

    @staticmethod
    def json_body(response: httpx.Response, *, provider: str) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderError(
                f"unparseable response body: {exc}",
                provider=provider,
                status_code=response.status_code,
            ) from exc

    async def aclose(self) -> None:
        await self.client.aclose()
