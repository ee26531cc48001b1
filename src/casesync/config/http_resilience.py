"""Configuration types for resilient HTTP clients."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import httpx

if TYPE_CHECKING:
    from collections.abc import Mapping


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """Transport-level retries for connection failures and timeouts.

    Only idempotent methods are resent. A POST or PATCH whose response is lost may
    already have been applied by the server.
    """

    total: int = 3
    backoff_factor: float = 0.5
    max_backoff_wait: float = 30.0
    allowed_methods: frozenset[str] = field(
        default_factory=lambda: frozenset({"DELETE", "GET", "HEAD", "OPTIONS", "PUT"})
    )
    retry_on_exceptions: tuple[type[httpx.HTTPError], ...] = (
        httpx.TimeoutException,
        httpx.NetworkError,
        httpx.RemoteProtocolError,
    )
    backoff_jitter: float = 1.0


@dataclass(slots=True, frozen=True)
class StatusRetryPolicy:
    """Response-level retries for rate limiting and server errors.

    ``max_attempts`` counts the first request. Rate-limit waits come from the
    ``Retry-After`` or ``X-RateLimit-Reset`` headers, falling back to
    ``rate_limit_default_wait`` and never exceeding ``rate_limit_max_wait``.
    Server errors wait ``attempt * server_error_backoff`` seconds.
    """

    max_attempts: int = 3
    rate_limit_default_wait: float = 60.0
    rate_limit_max_wait: float = 120.0
    server_error_backoff: float = 2.0
    server_error_statuses: frozenset[int] = field(
        default_factory=lambda: frozenset({500, 502, 503, 504})
    )


@dataclass(slots=True, frozen=True)
class RateLimit:
    max_calls: int
    per_seconds: float


@dataclass(slots=True, frozen=True)
class ResilienceConfig:
    name: str
    base_url: str | None = None
    timeout_seconds: float = 30.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    status_retry: StatusRetryPolicy = field(default_factory=StatusRetryPolicy)
    ratelimit: RateLimit | None = None
    default_headers: Mapping[str, str] | None = None
