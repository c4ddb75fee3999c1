"""Periodic jobs registered explicitly at startup.

Jobs are listed with ``IntervalScheduler.register`` before ``start()``; there
is no discovery of decorated methods.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from callgate.logging import LoggerLike, get_logger, log_exception, log_info
from callgate.retry import build_interruptible_sleep

JobFunc = Callable[[], object] | Callable[[], Awaitable[object]]


@dataclass(frozen=True)
class IntervalJob:
    """One registered periodic job."""

    name: str
    func: JobFunc
    period_seconds: float


class IntervalScheduler:
    """Run each registered job every ``period_seconds`` until stopped."""

    def __init__(
        self,
        *,
        logger: LoggerLike | None = None,
        stop_grace_seconds: float = 5.0,
    ) -> None:
        """Create an empty scheduler.

        Args:
            logger: Logger for job lifecycle and failures. Defaults to a
                structlog logger for this module.
            stop_grace_seconds: Time allowed for a running job to finish
                before ``stop()`` cancels it.
        """
        self._logger = get_logger(__name__) if logger is None else logger
        self._stop_grace_seconds = max(stop_grace_seconds, 0.0)
        self._jobs: list[IntervalJob] = []
        self._tasks: list[asyncio.Task[None]] = []
        self._stop_event = asyncio.Event()

    @property
    def jobs(self) -> tuple[IntervalJob, ...]:
        return tuple(self._jobs)

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def register(
        self,
        func: JobFunc,
        period_seconds: float,
        *,
        name: str | None = None,
    ) -> IntervalJob:
        """Add a job to the registration list.

        Raises:
            ValueError: If ``period_seconds`` is not positive or the scheduler
                is already running.
        """
        if period_seconds <= 0:
            raise ValueError("period_seconds must be > 0")
        if self.running:
            raise ValueError("cannot register jobs while the scheduler is running")
        job_name = name or getattr(func, "__qualname__", func.__class__.__qualname__)
        job = IntervalJob(name=job_name, func=func, period_seconds=period_seconds)
        self._jobs.append(job)
        return job

    async def start(self) -> None:
        """Start one background task per registered job."""
        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._tasks = [
            asyncio.create_task(self._run_job(job), name=f"interval:{job.name}")
            for job in self._jobs
        ]
        log_info(self._logger, "scheduler.started", jobs=len(self._jobs))

    async def stop(self) -> None:
        """Stop all jobs and await their tasks."""
        self._stop_event.set()
        tasks, self._tasks = self._tasks, []
        if not tasks:
            return
        _, pending = await asyncio.wait(tasks, timeout=self._stop_grace_seconds)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        log_info(
            self._logger,
            "scheduler.stopped",
            jobs=len(tasks),
            cancelled=len(pending),
        )

    async def _run_job(self, job: IntervalJob) -> None:
        sleep = build_interruptible_sleep(self._stop_event)
        while not self._stop_event.is_set():
            await sleep(job.period_seconds)
            if self._stop_event.is_set():
                return
            try:
                result = job.func()
                if inspect.isawaitable(result):
                    await result
            except Exception:
                log_exception(self._logger, "scheduler.job_failed", job=job.name)
