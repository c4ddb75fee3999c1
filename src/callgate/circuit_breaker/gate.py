"""Protected invocation of an operation through a circuit breaker."""

import asyncio
import functools
import inspect
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import ParamSpec, TypeVar, cast

from callgate.circuit_breaker.breaker import CircuitBreaker
from callgate.circuit_breaker.exceptions import CircuitOpenError
from callgate.circuit_breaker.metrics import BreakerListener
from callgate.circuit_breaker.state import Failure, Success, Transition

T = TypeVar("T")
P = ParamSpec("P")

_logger = logging.getLogger(__name__)


class CallGate:
    """Run operations under the admission rules of one shared breaker.

    The gate never retries and never rewrites an operation failure. Calls
    rejected by the breaker fail with the error that opened the circuit.
    """

    def __init__(
        self,
        breaker: CircuitBreaker,
        *,
        listeners: Sequence[BreakerListener] | None = None,
    ) -> None:
        """Build a gate around an existing breaker.

        Args:
            breaker: Breaker shared by every call to the protected resource.
            listeners: Optional listener hooks for breaker events.
        """
        self._breaker = breaker
        self._listeners = tuple(listeners) if listeners is not None else ()

    @property
    def name(self) -> str:
        return self._breaker.name

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    async def _emit(self, hook: str, *args: object) -> None:
        for listener in self._listeners:
            try:
                await getattr(listener, hook)(self.name, *args)
            except Exception:
                _logger.warning(
                    "Circuit breaker listener failed; continuing",
                    exc_info=True,
                    extra={
                        "breaker": self.name,
                        "hook": hook,
                        "listener": listener.__class__.__name__,
                    },
                )

    async def _emit_transition(self, transition: Transition | None) -> None:
        if transition is None:
            return
        await self._emit("on_state_change", transition.old, transition.new)

    async def _invoke(
        self,
        operation: Callable[P, Awaitable[T] | T],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> T:
        result = operation(*args, **kwargs)
        if not inspect.isawaitable(result):
            return cast(T, result)
        timeout = self._breaker.config.call_timeout
        if timeout is None:
            return await cast(Awaitable[T], result)
        return await asyncio.wait_for(cast(Awaitable[T], result), timeout=timeout)

    async def execute(
        self,
        operation: Callable[P, Awaitable[T] | T],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> T:
        """Invoke a sync or async callable under circuit breaker protection.

        Args:
            operation: Protected callable. Awaitable results are awaited, bounded
                by ``call_timeout`` when configured.
            *args: Positional arguments forwarded to ``operation``.
            **kwargs: Keyword arguments forwarded to ``operation``.

        Returns:
            The result of ``operation`` when admitted and successful.

        Raises:
            Exception: The retained last error when the call is rejected, or
                the original exception from ``operation`` when it fails.
            CircuitOpenError: When the call is rejected and the breaker holds
                no retained error.
        """
        admission = self._breaker.admit()
        if not admission.permitted:
            await self._emit("on_call_rejected")
            error = admission.error
            if error is None:
                raise CircuitOpenError(self.name, retry_after=admission.retry_after)
            # The retained error is shared, so the caller's active exception
            # must not show up as its context.
            raise error.with_traceback(admission.traceback) from error.__cause__

        config = self._breaker.config
        recorded = False
        start = time.monotonic()
        try:
            await self._emit_transition(admission.transition)
            result = await self._invoke(operation, *args, **kwargs)
        except config.excluded_exceptions:
            raise
        except config.expected_exceptions as exc:
            elapsed = max(time.monotonic() - start, 0.0)
            transition = self._breaker.record(
                Failure.of(exc), generation=admission.generation
            )
            recorded = True
            await self._emit("on_call_failed", exc, elapsed)
            await self._emit_transition(transition)
            raise
        else:
            elapsed = max(time.monotonic() - start, 0.0)
            transition = self._breaker.record(
                Success(), generation=admission.generation
            )
            recorded = True
            await self._emit("on_call_succeeded", elapsed)
            await self._emit_transition(transition)
            return result
        finally:
            # Cancelled, excluded and unexpected errors settle without an outcome.
            if admission.probe and not recorded:
                self._breaker.abandon(generation=admission.generation)

    def protect(
        self, operation: Callable[P, Awaitable[T] | T]
    ) -> Callable[P, Awaitable[T]]:
        """Wrap ``operation`` so every call goes through ``execute``."""

        @functools.wraps(operation)
        async def _protected(*args: P.args, **kwargs: P.kwargs) -> T:
            return await self.execute(operation, *args, **kwargs)

        return _protected
