from __future__ import annotations

from callgate.circuit_breaker.metrics import BreakerListener
from callgate.circuit_breaker.state import CircuitState
from callgate.logging import LoggerLike, log_info, log_warning


class LoggingBreakerListener(BreakerListener):
    """Listener that writes one structured log event per breaker event."""

    def __init__(
        self,
        *,
        logger: LoggerLike,
        log_successes: bool = False,
    ) -> None:
        """Create a logging listener.

        Args:
            logger: structlog or stdlib logger receiving events.
            log_successes: Also log every successful call when true.
        """
        self._logger = logger
        self._log_successes = log_successes

    async def on_state_change(
        self,
        name: str,
        old: CircuitState,
        new: CircuitState,
    ) -> None:
        """Log a state transition; opening is logged as a warning."""
        if new == CircuitState.OPEN:
            log_warning(
                self._logger,
                "circuit_breaker.opened",
                breaker=name,
                old_state=str(old),
                new_state=str(new),
            )
            return
        log_info(
            self._logger,
            "circuit_breaker.state_changed",
            breaker=name,
            old_state=str(old),
            new_state=str(new),
        )

    async def on_call_rejected(self, name: str) -> None:
        """Log a rejected call."""
        log_info(self._logger, "circuit_breaker.call_rejected", breaker=name)

    async def on_call_succeeded(self, name: str, elapsed: float) -> None:
        """Log a successful call when enabled."""
        if not self._log_successes:
            return
        log_info(
            self._logger,
            "circuit_breaker.call_succeeded",
            breaker=name,
            elapsed_seconds=round(elapsed, 6),
        )

    async def on_call_failed(
        self, name: str, exc: BaseException, elapsed: float
    ) -> None:
        """Log a failed call with its error type and message."""
        log_warning(
            self._logger,
            "circuit_breaker.call_failed",
            breaker=name,
            error_type=exc.__class__.__name__,
            error_message=str(exc),
            elapsed_seconds=round(elapsed, 6),
        )
