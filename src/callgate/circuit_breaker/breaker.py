"""Core circuit breaker state machine."""

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from types import TracebackType

from callgate.circuit_breaker.state import (
    Admission,
    BreakerSnapshot,
    CircuitState,
    Failure,
    Outcome,
    Success,
    Transition,
)

Clock = Callable[[], float]


@dataclass(slots=True)
class CircuitBreakerConfig:
    """Circuit breaker configuration values.

    Attributes:
        failure_threshold: Consecutive failures required while ``CLOSED`` before
            opening.
        success_threshold: Consecutive successes required while ``HALF_OPEN``
            before closing.
        open_duration: Seconds to wait while ``OPEN`` before allowing a probe.
        expected_exceptions: Exceptions that count as failures.
        excluded_exceptions: Exceptions that must not count as failures.
        call_timeout: Optional per-call timeout in seconds. A timed out call
            counts as a failure.
    """

    failure_threshold: int = 3
    success_threshold: int = 3
    open_duration: float = 60.0
    expected_exceptions: tuple[type[BaseException], ...] = (Exception,)
    excluded_exceptions: tuple[type[BaseException], ...] = ()
    call_timeout: float | None = None

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.success_threshold < 1:
            raise ValueError("success_threshold must be >= 1")
        if self.open_duration < 0:
            raise ValueError("open_duration must be >= 0")
        if self.call_timeout is not None and self.call_timeout <= 0:
            raise ValueError("call_timeout must be > 0 when provided")


class CircuitBreaker:
    """Admission and outcome bookkeeping for one protected resource.

    The breaker performs no I/O. ``admit()`` and ``record()`` each run under a
    single lock, so one instance may be shared between threads and asyncio
    tasks. While ``HALF_OPEN`` at most one call is admitted at a time; the
    slot is freed by ``record()`` or ``abandon()`` from the holder of that
    permit. Every state change starts a new generation; outcomes tagged with
    an older generation never free the slot or decide the half-open trial.
    """

    def __init__(
        self,
        name: str,
        *,
        config: CircuitBreakerConfig | None = None,
        clock: Clock = time.monotonic,
    ) -> None:
        """Build a closed circuit breaker.

        Args:
            name: Breaker name used in errors, logs and snapshots.
            config: Breaker behavior configuration. Defaults to
                ``CircuitBreakerConfig()``.
            clock: Time source in seconds. Defaults to ``time.monotonic``.
        """
        self.name = name
        self.config = CircuitBreakerConfig() if config is None else config
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_error: BaseException | None = None
        self._last_traceback: TracebackType | None = None
        self._opened_at: float | None = None
        self._next_attempt_at: float | None = None
        self._probe_in_flight = False
        self._generation = 0

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def success_count(self) -> int:
        return self._success_count

    @property
    def last_error(self) -> BaseException | None:
        return self._last_error

    @property
    def next_attempt_at(self) -> float | None:
        return self._next_attempt_at

    def admit(self) -> Admission:
        """Decide whether one invocation attempt may run.

        An ``OPEN`` breaker whose wait has elapsed moves to ``HALF_OPEN`` and
        permits the caller as the probe.
        """
        with self._lock:
            now = self._clock()
            if self._state == CircuitState.OPEN:
                retry_after = self._retry_after(now)
                if retry_after > 0:
                    return self._reject(retry_after=retry_after)
                self._state = CircuitState.HALF_OPEN
                self._generation += 1
                self._success_count = 0
                self._probe_in_flight = True
                return Admission(
                    permitted=True,
                    probe=True,
                    transition=Transition(CircuitState.OPEN, CircuitState.HALF_OPEN),
                    generation=self._generation,
                )

            if self._state == CircuitState.HALF_OPEN:
                if self._probe_in_flight:
                    return self._reject(retry_after=0.0)
                self._probe_in_flight = True
                return Admission(
                    permitted=True, probe=True, generation=self._generation
                )

            return Admission(permitted=True, generation=self._generation)

    def record(
        self, outcome: Outcome, *, generation: int | None = None
    ) -> Transition | None:
        """Apply one call outcome and return the resulting transition, if any.

        Args:
            outcome: Result of the admitted call.
            generation: ``Admission.generation`` of the permit the call ran
                under. ``None`` applies the outcome to the current window.
        """
        with self._lock:
            current = generation is None or generation == self._generation
            if isinstance(outcome, Success):
                return self._on_success(current=current)
            return self._on_failure(outcome, current=current)

    def abandon(self, *, generation: int | None = None) -> None:
        """Release an in-flight probe slot without recording an outcome."""
        with self._lock:
            if generation is None or generation == self._generation:
                self._probe_in_flight = False

    def force_open(self, error: BaseException | None = None) -> Transition | None:
        """Open the circuit now and restart the wait window.

        Rejected calls fail with ``error``; without one they fail with
        ``CircuitOpenError``.
        """
        with self._lock:
            old = self._state
            failure = None if error is None else Failure.of(error)
            self._open(failure)
            if old == CircuitState.OPEN:
                return None
            return Transition(old, CircuitState.OPEN)

    def reset(self) -> Transition | None:
        """Return the breaker to a healthy ``CLOSED`` state."""
        with self._lock:
            old = self._state
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._success_count = 0
            self._last_error = None
            self._last_traceback = None
            self._opened_at = None
            self._next_attempt_at = None
            self._probe_in_flight = False
            self._generation += 1
            if old == CircuitState.CLOSED:
                return None
            return Transition(old, CircuitState.CLOSED)

    def snapshot(self) -> BreakerSnapshot:
        """Return a consistent view of the breaker internals."""
        with self._lock:
            return BreakerSnapshot(
                name=self.name,
                state=self._state,
                failure_count=self._failure_count,
                success_count=self._success_count,
                last_error=self._last_error,
                opened_at=self._opened_at,
                next_attempt_at=self._next_attempt_at,
            )

    def _retry_after(self, now: float) -> float:
        next_attempt_at = now if self._next_attempt_at is None else (
            self._next_attempt_at
        )
        return max(next_attempt_at - now, 0.0)

    def _reject(self, *, retry_after: float) -> Admission:
        return Admission(
            permitted=False,
            error=self._last_error,
            traceback=self._last_traceback,
            retry_after=retry_after,
        )

    def _on_success(self, *, current: bool) -> Transition | None:
        self._failure_count = 0
        if self._state != CircuitState.HALF_OPEN or not current:
            return None

        self._probe_in_flight = False
        self._success_count += 1
        if self._success_count < self.config.success_threshold:
            return None
        self._success_count = 0
        self._state = CircuitState.CLOSED
        self._generation += 1
        self._opened_at = None
        self._next_attempt_at = None
        return Transition(CircuitState.HALF_OPEN, CircuitState.CLOSED)

    def _on_failure(self, failure: Failure, *, current: bool) -> Transition | None:
        self._failure_count += 1
        old = self._state
        if old == CircuitState.HALF_OPEN and current:
            self._open(failure)
            return Transition(old, CircuitState.OPEN)
        if old == CircuitState.CLOSED:
            if self._failure_count < self.config.failure_threshold:
                return None
            self._open(failure)
            return Transition(old, CircuitState.OPEN)
        # Late outcome of a call admitted in an earlier window.
        return None

    def _open(self, failure: Failure | None) -> None:
        now = self._clock()
        self._state = CircuitState.OPEN
        self._generation += 1
        self._success_count = 0
        self._probe_in_flight = False
        self._last_error = None if failure is None else failure.error
        self._last_traceback = None if failure is None else failure.traceback
        self._opened_at = now
        self._next_attempt_at = now + self.config.open_duration
