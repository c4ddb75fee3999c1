"""Caller-side retries around a ``CallGate``.

The gate only decides admission. Callers that want to retry rejected or
failed calls wrap ``CallGate.execute`` with the helpers below.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from contextlib import suppress
from dataclasses import dataclass
from typing import Any, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    stop_never,
    wait_exponential_jitter,
)
from tenacity.retry import retry_base

from callgate.circuit_breaker.gate import CallGate
from callgate.errors import TransientError

T = TypeVar("T")


@dataclass(frozen=True)
class RetryBackoffPolicy:
    """Configuration for retry attempt count and backoff boundaries."""

    attempts: int | None
    min_seconds: float
    max_seconds: float

    def __post_init__(self) -> None:
        if self.attempts is not None and self.attempts < 1:
            raise ValueError("attempts must be >= 1 when provided")
        if self.min_seconds < 0:
            raise ValueError("min_seconds must be >= 0")
        if self.max_seconds < 0:
            raise ValueError("max_seconds must be >= 0")
        if self.max_seconds < self.min_seconds:
            raise ValueError("max_seconds must be >= min_seconds")


def build_interruptible_sleep(
    stop_event: asyncio.Event,
) -> Callable[[float], Awaitable[None]]:
    """Build an async sleep that exits early when shutdown is requested."""

    async def _interruptible_sleep(delay: float) -> None:
        if stop_event.is_set():
            return
        with suppress(TimeoutError):
            await asyncio.wait_for(stop_event.wait(), timeout=max(delay, 0.0))

    return _interruptible_sleep


def build_exponential_jitter_retrying(
    *,
    retry: retry_base,
    policy: RetryBackoffPolicy,
    sleep: Callable[[float], Awaitable[None]] | None = None,
    before_sleep: Callable[[RetryCallState], None] | None = None,
    reraise: bool = True,
) -> AsyncRetrying:
    """Build an ``AsyncRetrying`` with exponential jitter backoff."""
    options: dict[str, Any] = {
        "retry": retry,
        "wait": wait_exponential_jitter(
            initial=policy.min_seconds,
            max=policy.max_seconds,
        ),
        "stop": (
            stop_never
            if policy.attempts is None
            else stop_after_attempt(policy.attempts)
        ),
        "reraise": reraise,
    }
    if sleep is not None:
        options["sleep"] = sleep
    if before_sleep is not None:
        options["before_sleep"] = before_sleep
    return AsyncRetrying(**options)


async def execute_with_retry(
    gate: CallGate,
    operation: Callable[..., Awaitable[T] | T],
    *args: object,
    policy: RetryBackoffPolicy,
    retry: retry_base | None = None,
    sleep: Callable[[float], Awaitable[None]] | None = None,
    before_sleep: Callable[[RetryCallState], None] | None = None,
    **kwargs: object,
) -> T:
    """Run ``gate.execute(operation, ...)`` under a retry policy.

    Every attempt goes through the gate, so attempts made while the circuit
    is open are rejected with the retained error and count as retries.
    ``retry`` defaults to retrying ``TransientError``.
    """
    retrying = build_exponential_jitter_retrying(
        retry=retry_if_exception_type(TransientError) if retry is None else retry,
        policy=policy,
        sleep=sleep,
        before_sleep=before_sleep,
    )
    async for attempt in retrying:
        with attempt:
            result = await gate.execute(operation, *args, **kwargs)
    return result
