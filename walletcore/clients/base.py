"""JSON-RPC transport for the Solana client.

Provides:
- Per-endpoint token bucket rate limiting
- Retry with exponential backoff on transient failures (429, 5xx, timeouts)
- An ordered endpoint fallback chain
- Structured APIError

Retries live here, never in the signing core.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Iterator

import httpx

log = logging.getLogger("walletcore.clients")


@dataclass
class RateLimiter:
    """Token bucket refilled at `max_per_second`, burst of the same size."""

    max_per_second: float
    _tokens: float = field(init=False)
    _stamp: float = field(init=False)

    def __post_init__(self) -> None:
        self._tokens = self.max_per_second
        self._stamp = time.monotonic()

    def acquire(self) -> float:
        """Take one token. Returns how long the caller should sleep first."""
        now = time.monotonic()
        refill = (now - self._stamp) * self.max_per_second
        self._tokens = min(self.max_per_second, self._tokens + refill)
        self._stamp = now
        if self._tokens < 1.0:
            return (1.0 - self._tokens) / self.max_per_second
        self._tokens -= 1.0
        return 0.0

    async def wait(self) -> None:
        delay = self.acquire()
        if delay > 0:
            await asyncio.sleep(delay)


class APIError(Exception):
    """HTTP or transport failure talking to an RPC endpoint."""

    def __init__(self, message: str, status_code: int = 0, provider: str = "", retryable: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.provider = provider
        self.retryable = retryable


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 1
    backoff_base: float = 1.0
    backoff_max: float = 30.0
    multiplier: float = 2.0

    def delays(self) -> Iterator[float]:
        """Sleep before each retry; yields max_retries values."""
        delay = self.backoff_base
        for _ in range(self.max_retries):
            yield min(delay, self.backoff_max)
            delay *= self.multiplier


def _raise_for_status(response: httpx.Response, provider: str) -> None:
    status = response.status_code
    if status < 400:
        return
    if status == 429:
        raise APIError(f"Rate limited by {provider}", 429, provider, retryable=True)
    if status >= 500:
        raise APIError(f"Server error from {provider}: {status}", status, provider, retryable=True)
    raise APIError(
        f"Client error from {provider}: {status} - {response.text[:200]}",
        status,
        provider,
        retryable=False,
    )


class RPCEndpoint:
    """One JSON-RPC URL with its own rate limit and retry policy."""

    def __init__(
        self,
        url: str,
        provider: str = "unknown",
        rate_limit: float = 10.0,
        timeout: float = 10.0,
        retry: RetryPolicy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url
        self.provider = provider
        self.retry = retry or RetryPolicy()
        self._limiter = RateLimiter(max_per_second=rate_limit)
        self._http = httpx.AsyncClient(timeout=httpx.Timeout(timeout), transport=transport)

    @classmethod
    def from_config(cls, entry: dict[str, Any], transport: httpx.AsyncBaseTransport | None = None) -> "RPCEndpoint":
        """Build from one `rpc.endpoints` item of config/wallet.yaml."""
        return cls(
            url=entry["url"],
            provider=entry.get("provider", "unknown"),
            rate_limit=entry.get("rate_limit", 10.0),
            timeout=entry.get("timeout_seconds", 10.0),
            retry=RetryPolicy(max_retries=entry.get("max_retries", 1)),
            transport=transport,
        )

    async def _post_once(self, payload: dict[str, Any]) -> Any:
        await self._limiter.wait()
        try:
            response = await self._http.post(self.url, json=payload)
        except (httpx.TimeoutException, httpx.ConnectError) as e:
            raise APIError(f"Connection error to {self.provider}: {e}", provider=self.provider, retryable=True) from e
        _raise_for_status(response, self.provider)
        return response.json()

    async def post(self, payload: dict[str, Any]) -> Any:
        """POST `payload`, retrying transient failures per the retry policy."""
        delays = self.retry.delays()
        attempt = 1
        while True:
            try:
                return await self._post_once(payload)
            except APIError as e:
                if not e.retryable:
                    raise
                delay = next(delays, None)
                if delay is None:
                    raise
                log.warning("%s attempt %d failed (%s), retrying in %.1fs", self.provider, attempt, e, delay)
                await asyncio.sleep(delay)
                attempt += 1

    async def close(self) -> None:
        await self._http.aclose()


class RPCFallbackClient:
    """Tries each endpoint in order. First success wins."""

    def __init__(self, endpoints: list[dict[str, Any]], transport: httpx.AsyncBaseTransport | None = None):
        self._endpoints = [RPCEndpoint.from_config(entry, transport) for entry in endpoints]

    async def request(self, json_data: dict[str, Any]) -> Any:
        errors: list[str] = []
        for endpoint in self._endpoints:
            try:
                return await endpoint.post(json_data)
            except APIError as e:
                log.warning("RPC endpoint %s failed: %s", endpoint.provider, e)
                errors.append(f"{endpoint.provider}: {e}")

        raise APIError(
            f"All RPC endpoints failed: {'; '.join(errors)}",
            provider="rpc_fallback",
            retryable=False,
        )

    async def close(self) -> None:
        for endpoint in self._endpoints:
            await endpoint.close()
