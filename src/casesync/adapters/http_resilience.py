from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from email.utils import parsedate_to_datetime
from typing import (
    TYPE_CHECKING,
    TypedDict,
    Unpack,
)

import httpx
from aiolimiter import AsyncLimiter
from httpx_retries import Retry, RetryTransport

from casesync.config.http_resilience import (
    RateLimit,
    ResilienceConfig,
    RetryPolicy,
    StatusRetryPolicy,
)

if TYPE_CHECKING:
    from types import TracebackType

    from httpx._client import UseClientDefault
    from httpx._types import (
        AuthTypes,
        CookieTypes,
        HeaderTypes,
        QueryParamTypes,
        RequestContent,
        RequestData,
        RequestExtensions,
        RequestFiles,
        TimeoutTypes,
        URLTypes,
    )

__all__ = [
    "RateLimit",
    "ResilienceConfig",
    "ResilientClient",
    "RetriesExhaustedError",
    "RetryPolicy",
    "StatusRetryPolicy",
    "rate_limit_wait",
]

log = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class RetriesExhaustedError(httpx.HTTPStatusError):
    """Raised when a rate-limited or failing request used up all its attempts."""


def build_transport_retry(policy: RetryPolicy) -> Retry:
    # Status codes are handled by ResilientClient so waits follow the API's headers.
    return Retry(
        total=policy.total,
        backoff_factor=policy.backoff_factor,
        max_backoff_wait=policy.max_backoff_wait,
        allowed_methods=tuple(policy.allowed_methods),
        status_forcelist=(),
        retry_on_exceptions=policy.retry_on_exceptions,
        backoff_jitter=policy.backoff_jitter,
    )


def rate_limit_wait(
    response: httpx.Response,
    policy: StatusRetryPolicy,
    *,
    now: float | None = None,
) -> float:
    """Seconds to wait after a 429, derived from the response headers.

    ``Retry-After`` (seconds or HTTP date) wins over ``X-RateLimit-Reset`` (epoch
    seconds or HTTP date, plus one second of slack). Without usable headers the
    policy default applies. The result never exceeds ``rate_limit_max_wait``.
    """

    current = time.time() if now is None else now
    wait: float | None = None

    retry_after = response.headers.get("Retry-After")
    if retry_after:
        wait = _parse_delay(retry_after, current)

    if wait is None:
        reset = response.headers.get("X-RateLimit-Reset")
        if reset:
            reset_wait = _parse_delay(reset, current, absolute=True)
            if reset_wait is not None:
                wait = reset_wait + 1.0

    if wait is None or wait <= 0:
        wait = policy.rate_limit_default_wait
    return min(wait, policy.rate_limit_max_wait)


def _parse_delay(value: str, now: float, *, absolute: bool = False) -> float | None:
    text = value.strip()
    try:
        number = float(text)
    except ValueError:
        try:
            moment = parsedate_to_datetime(text)
        except (TypeError, ValueError):
            return None
        return moment.timestamp() - now
    return number - now if absolute else number


class RequestOptions(TypedDict, total=False):
    content: RequestContent | None
    data: RequestData | None
    files: RequestFiles | None
    json: object
    params: QueryParamTypes | None
    headers: HeaderTypes | None
    cookies: CookieTypes | None
    auth: AuthTypes | UseClientDefault | None
    follow_redirects: bool | UseClientDefault
    timeout: TimeoutTypes | UseClientDefault
    extensions: RequestExtensions | None


class AsyncClientOptions(TypedDict, total=False):
    base_url: str
    timeout: TimeoutTypes
    headers: HeaderTypes
    transport: httpx.AsyncBaseTransport


class ResilientClient:
    """``httpx.AsyncClient`` wrapper with request spacing and retries.

    Every attempt passes through the rate limiter, so retries and concurrent
    callers share one rate limit.
    """

    def __init__(
        self,
        config: ResilienceConfig,
        *,
        sleep: Sleep = asyncio.sleep,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self._sleep = sleep
        self._limiter: AsyncLimiter | None = (
            AsyncLimiter(config.ratelimit.max_calls, config.ratelimit.per_seconds)
            if config.ratelimit
            else None
        )

        retry_transport = RetryTransport(
            transport=transport, retry=build_transport_retry(config.retry)
        )
        headers = dict(config.default_headers) if config.default_headers else None

        client_kwargs: AsyncClientOptions = {
            "timeout": config.timeout_seconds,
            "transport": retry_transport,
        }
        if config.base_url is not None:
            client_kwargs["base_url"] = config.base_url
        if headers is not None:
            client_kwargs["headers"] = headers

        self._client = httpx.AsyncClient(**client_kwargs)

    async def __aenter__(self) -> ResilientClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(
        self,
        method: str,
        url: URLTypes,
        **kwargs: Unpack[RequestOptions],
    ) -> httpx.Response:
        async def do_request() -> httpx.Response:
            return await self._client.request(method, url, **kwargs)

        return await self._send(do_request)

    async def get(self, url: URLTypes, **kwargs: Unpack[RequestOptions]) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: URLTypes, **kwargs: Unpack[RequestOptions]) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def patch(self, url: URLTypes, **kwargs: Unpack[RequestOptions]) -> httpx.Response:
        return await self.request("PATCH", url, **kwargs)

    async def _send(self, func: Callable[[], Awaitable[httpx.Response]]) -> httpx.Response:
        policy = self.config.status_retry
        attempt = 1
        while True:
            response = await self._limited(func)
            wait = self._retry_wait(response, policy, attempt)
            if wait is None:
                return response
            if attempt >= policy.max_attempts:
                raise RetriesExhaustedError(
                    f"{self.config.name}: {response.request.method} {response.request.url} "
                    f"still failing with {response.status_code} after {attempt} attempts",
                    request=response.request,
                    response=response,
                )
            log.warning(
                "%s: %s from %s, retrying in %.1fs (attempt %d/%d)",
                self.config.name,
                response.status_code,
                response.request.url,
                wait,
                attempt + 1,
                policy.max_attempts,
            )
            await response.aclose()
            await self._sleep(wait)
            attempt += 1

    async def _limited(self, func: Callable[[], Awaitable[httpx.Response]]) -> httpx.Response:
        if self._limiter is None:
            return await func()
        async with self._limiter:
            return await func()

    @staticmethod
    def _retry_wait(
        response: httpx.Response, policy: StatusRetryPolicy, attempt: int
    ) -> float | None:
        if response.status_code == httpx.codes.TOO_MANY_REQUESTS:
            return rate_limit_wait(response, policy)
        if response.status_code in policy.server_error_statuses:
            return attempt * policy.server_error_backoff
        return None

