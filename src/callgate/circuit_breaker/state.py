"""Circuit breaker state primitives."""

from dataclasses import dataclass
from enum import StrEnum
from types import TracebackType


class CircuitState(StrEnum):
    """Circuit breaker state values."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True, slots=True)
class Success:
    """Outcome of a protected call that completed with a value."""


@dataclass(frozen=True, slots=True)
class Failure:
    """Outcome of a protected call that raised a counted exception.

    Attributes:
        error: Exception raised by the protected call.
        traceback: Traceback the error carried when it was observed.
    """

    error: BaseException
    traceback: TracebackType | None = None

    @classmethod
    def of(cls, error: BaseException) -> "Failure":
        """Build a failure outcome capturing the error's current traceback."""
        return cls(error=error, traceback=error.__traceback__)


Outcome = Success | Failure


@dataclass(frozen=True, slots=True)
class Transition:
    """One state change applied by the breaker."""

    old: CircuitState
    new: CircuitState


@dataclass(frozen=True, slots=True)
class Admission:
    """Admission decision for one invocation attempt.

    Attributes:
        permitted: Whether the protected call may run.
        probe: Whether the permitted call is a half-open probe.
        error: Retained last error to fail a rejected call with.
        traceback: Traceback captured with ``error``.
        retry_after: Seconds until the next probe window when rejected.
        transition: State change applied while admitting, if any.
        generation: Breaker state window the permit was issued in. Passed
            back to ``record()`` and ``abandon()`` so outcomes of calls
            admitted in an earlier window cannot act on the current one.
    """

    permitted: bool
    probe: bool = False
    error: BaseException | None = None
    traceback: TracebackType | None = None
    retry_after: float = 0.0
    transition: Transition | None = None
    generation: int = 0


@dataclass(frozen=True)
class BreakerSnapshot:
    """Point-in-time view of breaker internals useful for metrics/logging.

    Attributes:
        name: Breaker name.
        state: Current breaker state.
        failure_count: Consecutive failures since the last reset.
        success_count: Consecutive successes while ``HALF_OPEN``.
        last_error: Error that most recently opened the circuit, if any.
        opened_at: Clock value when the breaker last entered ``OPEN``.
        next_attempt_at: Clock value before which ``OPEN`` rejects calls.
    """

    name: str
    state: CircuitState
    failure_count: int
    success_count: int
    last_error: BaseException | None
    opened_at: float | None
    next_attempt_at: float | None
