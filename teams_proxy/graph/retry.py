"""Retry-governed HTTP fetch with rate-limit awareness.

One logical request is attempted up to ``max_retries + 1`` times. Retryable
statuses, timeouts and transport errors back off exponentially with jitter;
a server-supplied ``Retry-After`` (seconds) takes precedence over the
computed delay. Success returns at once and any other error status fails
without spending more of the retry budget.
"""

import asyncio
import math
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)
from tenacity.wait import wait_base

from teams_proxy.config import settings
from teams_proxy.graph.budget import RequestBudget
from teams_proxy.graph.errors import (
    CredentialError,
    InputValidationError,
    NonRetryableStatusError,
    RetriesExhaustedError,
    TransientUpstreamError,
)

logger = structlog.get_logger()

DEFAULT_RETRYABLE_STATUS_CODES = frozenset({429, 502, 503, 504})

Sleeper = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class RetryPolicy:
    """Immutable retry settings for one call."""

    max_retries: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 30000
    timeout_ms: int = 30000
    retryable_status_codes: frozenset[int] = DEFAULT_RETRYABLE_STATUS_CODES
    max_jitter_ms: int = 1000

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise InputValidationError(f"max_retries must be >= 1, got {self.max_retries}")
        if self.base_delay_ms < 0 or self.max_delay_ms < self.base_delay_ms:
            raise InputValidationError("Backoff delays must satisfy 0 <= base <= max")
        if self.timeout_ms <= 0:
            raise InputValidationError(f"timeout_ms must be > 0, got {self.timeout_ms}")
        if self.max_jitter_ms < 0:
            raise InputValidationError("max_jitter_ms must be >= 0")
        # Accept any iterable of codes from callers
        object.__setattr__(self, "retryable_status_codes", frozenset(self.retryable_status_codes))

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_retries=settings.retry_max_retries,
            base_delay_ms=settings.retry_base_delay_ms,
            max_delay_ms=settings.retry_max_delay_ms,
            timeout_ms=settings.retry_timeout_ms,
            retryable_status_codes=frozenset(settings.retry_status_codes),
            max_jitter_ms=settings.retry_max_jitter_ms,
        )


@dataclass
class GraphRequest:
    """Descriptor for one outbound request."""

    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, Any] | None = None
    json: Any = None
    content: bytes | None = None


def parse_retry_after(value: str | None) -> int | None:
    """Convert a Retry-After header in seconds to milliseconds.

    Returns None for a missing, non-numeric, negative or non-finite value so
    the caller falls back to its own backoff delay.
    """
    if value is None:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    if not math.isfinite(seconds) or seconds < 0:
        return None
    return int(seconds * 1000)


class wait_retry_after(wait_base):
    """Wait for the upstream's Retry-After when present, else ``fallback``."""

    def __init__(self, fallback: wait_base):
        self.fallback = fallback

    def __call__(self, retry_state: RetryCallState) -> float:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(error, TransientUpstreamError) and error.retry_after_ms is not None:
            return error.retry_after_ms / 1000
        return self.fallback(retry_state)


def backoff_for(policy: RetryPolicy) -> wait_base:
    """Capped exponential backoff plus uniform jitter, in seconds."""
    return wait_retry_after(
        wait_exponential(multiplier=policy.base_delay_ms / 1000, max=policy.max_delay_ms / 1000)
    ) + wait_random(0, policy.max_jitter_ms / 1000)


async def _attempt(
    client: httpx.AsyncClient,
    request: GraphRequest,
    policy: RetryPolicy,
) -> httpx.Response:
    """Issue one attempt under the policy deadline and classify the outcome."""
    http_request = client.build_request(
        request.method,
        request.url,
        headers=request.headers,
        params=request.params,
        json=request.json,
        content=request.content,
    )
    try:
        response = await asyncio.wait_for(client.send(http_request), timeout=policy.timeout_ms / 1000)
    except (asyncio.TimeoutError, httpx.TimeoutException) as e:
        raise TransientUpstreamError(f"Request timed out after {policy.timeout_ms}ms") from e
    except httpx.TransportError as e:
        raise TransientUpstreamError(f"Transport error: {e}") from e

    if response.is_success:
        return response

    status = response.status_code
    if status in policy.retryable_status_codes:
        raise TransientUpstreamError(
            f"{request.method} {request.url} returned retryable status {status}",
            status=status,
            retry_after_ms=parse_retry_after(response.headers.get("Retry-After")),
        )

    body = response.text
    if status == 401:
        raise CredentialError(
            f"{request.method} {request.url} rejected credential",
            status=status,
            body=body,
        )
    raise NonRetryableStatusError(
        f"{request.method} {request.url} failed with status {status}",
        status=status,
        body=body,
    )


def _log_retry(request: GraphRequest) -> Callable[[RetryCallState], None]:
    def before_sleep(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception()
        logger.warning(
            "Retrying Graph request",
            method=request.method,
            url=request.url,
            attempt=retry_state.attempt_number,
            status=getattr(error, "status", None),
            delay_ms=round(retry_state.next_action.sleep * 1000),
            error=str(error),
        )

    return before_sleep


async def fetch_with_retry(
    client: httpx.AsyncClient,
    request: GraphRequest,
    policy: RetryPolicy,
    *,
    budget: RequestBudget | None = None,
    sleep: Sleeper = asyncio.sleep,
) -> httpx.Response:
    """Perform ``request`` with bounded retries and return the 2xx response.

    Raises:
        CredentialError: upstream answered 401.
        NonRetryableStatusError: any other non-2xx outside the retryable set.
        RetriesExhaustedError: every attempt failed transiently.
        BudgetExhausted: the run's request budget is spent.
    """

    async def send_once() -> httpx.Response:
        if budget is not None:
            budget.consume()
        return await _attempt(client, request, policy)

    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_retries + 1),
        wait=backoff_for(policy),
        retry=retry_if_exception_type(TransientUpstreamError),
        before_sleep=_log_retry(request),
        sleep=sleep,
    )

    try:
        return await retrying(send_once)
    except RetryError as e:
        attempts = e.last_attempt.attempt_number
        last_error = e.last_attempt.exception()
        logger.error(
            "Graph request retries exhausted",
            method=request.method,
            url=request.url,
            attempts=attempts,
            error=str(last_error),
        )
        raise RetriesExhaustedError(attempts, last_error) from last_error
