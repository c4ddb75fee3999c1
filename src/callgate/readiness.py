"""Readiness of protected dependencies, derived from their breakers.

A dependency is unavailable while its breaker is ``OPEN``. ``HALF_OPEN``
counts as ready because calls are being admitted again.
"""

from __future__ import annotations

import dataclasses
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from callgate.circuit_breaker import (
    BreakerRegistry,
    BreakerSnapshot,
    CircuitBreaker,
    CircuitState,
)

REASON_READY = "ready"
REASON_CIRCUIT_OPEN = "circuit_open"


@dataclass(frozen=True)
class BreakerReadiness:
    """Readiness of the dependency behind one breaker.

    Attributes:
        name: Breaker (or check) name.
        state: Breaker state when the check ran.
        ready: ``False`` only while the breaker is ``OPEN``.
        detail: Error that opened the circuit, ``"ErrorType: message"``.
        next_attempt_at: Breaker clock time of the next trial call, when open.
    """

    name: str
    state: CircuitState
    ready: bool
    detail: str = ""
    next_attempt_at: float | None = None


@dataclass(frozen=True)
class ReadinessReport:
    """Aggregate readiness across a set of breakers."""

    ready: bool
    reason: str
    checked_at: float
    breakers: tuple[BreakerReadiness, ...]

    @property
    def status(self) -> str:
        return "ok" if self.ready else "degraded"

    @property
    def open_breakers(self) -> tuple[str, ...]:
        return tuple(item.name for item in self.breakers if not item.ready)


def breaker_readiness(snapshot: BreakerSnapshot) -> BreakerReadiness:
    """Classify one breaker snapshot."""
    if snapshot.state != CircuitState.OPEN:
        return BreakerReadiness(name=snapshot.name, state=snapshot.state, ready=True)
    error = snapshot.last_error
    return BreakerReadiness(
        name=snapshot.name,
        state=snapshot.state,
        ready=False,
        detail="circuit open" if error is None else f"{type(error).__name__}: {error}",
        next_attempt_at=snapshot.next_attempt_at,
    )


def make_breaker_check(
    breaker: CircuitBreaker,
    *,
    name: str | None = None,
) -> Callable[[], BreakerReadiness]:
    """Build a zero-argument check reporting ``breaker``'s current readiness."""

    def _check() -> BreakerReadiness:
        result = breaker_readiness(breaker.snapshot())
        if name is None:
            return result
        return dataclasses.replace(result, name=name)

    return _check


def evaluate_readiness(
    snapshots: Iterable[BreakerSnapshot],
    *,
    now_fn: Callable[[], float] = time.time,
) -> ReadinessReport:
    """Combine breaker snapshots into one report; ready when none is open."""
    breakers = tuple(breaker_readiness(snapshot) for snapshot in snapshots)
    ready = all(item.ready for item in breakers)
    return ReadinessReport(
        ready=ready,
        reason=REASON_READY if ready else REASON_CIRCUIT_OPEN,
        checked_at=now_fn(),
        breakers=breakers,
    )


def registry_readiness(
    registry: BreakerRegistry,
    *,
    now_fn: Callable[[], float] = time.time,
) -> ReadinessReport:
    """Report readiness of every breaker in ``registry``."""
    return evaluate_readiness(registry.snapshots(), now_fn=now_fn)
