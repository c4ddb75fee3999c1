"""Named circuit breakers shared by every call site of a resource.

A registry replaces framework singleton wiring: the component that owns the
protected resources builds one registry at startup and call sites look up
their gate by name, for example ``"coffees.find_all"``.
"""

import threading
import time
from collections.abc import Sequence

from callgate.circuit_breaker.breaker import CircuitBreaker, CircuitBreakerConfig, Clock
from callgate.circuit_breaker.gate import CallGate
from callgate.circuit_breaker.metrics import BreakerListener
from callgate.circuit_breaker.state import BreakerSnapshot, Transition


class BreakerRegistry:
    """Thread-safe registry of one ``CallGate`` per protected resource name."""

    def __init__(
        self,
        *,
        config: CircuitBreakerConfig | None = None,
        clock: Clock = time.monotonic,
        listeners: Sequence[BreakerListener] | None = None,
    ) -> None:
        """Initialize an empty registry.

        Args:
            config: Default configuration for breakers created by ``gate()``.
            clock: Time source shared by every breaker in the registry.
            listeners: Listener hooks attached to every gate.
        """
        self._config = CircuitBreakerConfig() if config is None else config
        self._clock = clock
        self._listeners = tuple(listeners) if listeners is not None else ()
        self._gates: dict[str, CallGate] = {}
        self._lock = threading.Lock()

    def gate(
        self,
        name: str,
        *,
        config: CircuitBreakerConfig | None = None,
    ) -> CallGate:
        """Return the gate for ``name``, creating it on first use.

        ``config`` only applies when the gate is created; later lookups
        return the existing gate unchanged.
        """
        with self._lock:
            existing = self._gates.get(name)
            if existing is not None:
                return existing
            breaker = CircuitBreaker(
                name,
                config=self._config if config is None else config,
                clock=self._clock,
            )
            created = CallGate(breaker, listeners=self._listeners)
            self._gates[name] = created
            return created

    def get(self, name: str) -> CallGate | None:
        """Return the gate registered for ``name`` without creating one."""
        with self._lock:
            return self._gates.get(name)

    def names(self) -> tuple[str, ...]:
        """Return registered names in sorted order."""
        with self._lock:
            return tuple(sorted(self._gates))

    def snapshots(self) -> tuple[BreakerSnapshot, ...]:
        """Return snapshots of every registered breaker, sorted by name."""
        with self._lock:
            gates = [self._gates[name] for name in sorted(self._gates)]
        return tuple(gate.breaker.snapshot() for gate in gates)

    def reset(self, name: str) -> Transition | None:
        """Reset one breaker to ``CLOSED``.

        Raises:
            KeyError: If no gate is registered for ``name``.
        """
        with self._lock:
            gate = self._gates[name]
        return gate.breaker.reset()
