"""Call gating with a circuit breaker.

This package implements the circuit breaker pattern from *Release It!*.

Key behavior notes:
  - ``CircuitBreaker`` is pure decision logic: ``admit()`` before each call,
    ``record()`` after each admitted call. It performs no I/O.
  - ``CallGate`` runs the protected operation between those two steps and
    propagates the operation's result or error unchanged.
  - Rejected calls fail with the error that most recently opened the circuit,
    so callers do not need to special-case the breaker.
  - Half-open probing is conservative: at most one in-flight probe call is
    permitted per ``CircuitBreaker`` instance. Concurrent callers are rejected
    until the probe settles.
  - A cancelled call, or one raising an excluded exception, records no
    outcome. A probe slot held by such a call is released.
"""

from callgate.circuit_breaker.breaker import CircuitBreaker, CircuitBreakerConfig
from callgate.circuit_breaker.exceptions import (
    CircuitBreakerError,
    CircuitOpenError,
)
from callgate.circuit_breaker.gate import CallGate
from callgate.circuit_breaker.listeners import LoggingBreakerListener
from callgate.circuit_breaker.metrics import BreakerListener
from callgate.circuit_breaker.registry import BreakerRegistry
from callgate.circuit_breaker.state import (
    Admission,
    BreakerSnapshot,
    CircuitState,
    Failure,
    Outcome,
    Success,
    Transition,
)

__all__ = [
    "Admission",
    "BreakerListener",
    "BreakerRegistry",
    "BreakerSnapshot",
    "CallGate",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerError",
    "CircuitOpenError",
    "CircuitState",
    "Failure",
    "LoggingBreakerListener",
    "Outcome",
    "Success",
    "Transition",
]
