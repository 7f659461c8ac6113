"""Fixed-interval scheduler for reprocessing ticks."""

import asyncio
import contextlib
import logging
from typing import Any

from core.logging.context import set_log_context
from core.logging.setup import generate_cycle_id
from core.logging.utilities import format_cycle_output, log_exception
from reprocessor.retry.reprocessor import BatchReprocessor, TickResult

logger = logging.getLogger(__name__)


class ReprocessingScheduler:
    """
    Fire a reprocessing tick every ``frequency_seconds``.

    At most one tick runs at a time. A trigger that fires while a tick is still
    running is dropped and counted, never queued. A tick that fails is logged
    and counted; the schedule keeps going.

    Usage:
        >>> scheduler = ReprocessingScheduler(reprocessor, frequency_seconds=60)
        >>> scheduler.start()
        >>> ...
        >>> await scheduler.stop()
    """

    def __init__(
        self,
        reprocessor: BatchReprocessor,
        frequency_seconds: float,
    ):
        if frequency_seconds <= 0:
            raise ValueError("frequency_seconds must be positive")

        self.reprocessor = reprocessor
        self.frequency_seconds = frequency_seconds
        self._timer_task: asyncio.Task | None = None
        self._tick_task: asyncio.Task | None = None
        self._cycle_count = 0

        self._ticks_completed = 0
        self._ticks_failed = 0
        self._ticks_skipped = 0
        self._last_result: TickResult | None = None

    @property
    def is_running(self) -> bool:
        return self._timer_task is not None and not self._timer_task.done()

    @property
    def tick_active(self) -> bool:
        return self._tick_task is not None and not self._tick_task.done()

    @property
    def last_result(self) -> TickResult | None:
        return self._last_result

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "ticks_completed": self._ticks_completed,
            "ticks_failed": self._ticks_failed,
            "ticks_skipped": self._ticks_skipped,
            "tick_active": self.tick_active,
        }

    def start(self) -> None:
        if self.is_running:
            logger.warning("Scheduler already running, ignoring duplicate start call")
            return

        self._timer_task = asyncio.create_task(self._run())
        logger.info(
            "Reprocessing scheduler started",
            extra={"scheduler_frequency_seconds": self.frequency_seconds},
        )

    async def stop(self) -> None:
        """Cancel the timer and wait for an in-flight tick to finish."""
        if self._timer_task is not None:
            self._timer_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._timer_task
            self._timer_task = None

        if self._tick_task is not None:
            if not self._tick_task.done():
                logger.info("Waiting for in-flight reprocessing tick to finish")
            with contextlib.suppress(asyncio.CancelledError):
                await self._tick_task
            self._tick_task = None

        logger.info("Reprocessing scheduler stopped", extra=self.stats)

    async def _run(self) -> None:
        try:
            while True:
                await asyncio.sleep(self.frequency_seconds)
                self.trigger()
        except asyncio.CancelledError:
            logger.debug("Scheduler timer cancelled")
            raise

    def trigger(self) -> bool:
        """Start a tick unless one is active. Returns True if a tick was started."""
        if self.tick_active:
            self._ticks_skipped += 1
            logger.warning(
                "Reprocessing tick still running, skipping trigger",
                extra={"ticks_skipped": self._ticks_skipped},
            )
            return False

        self._tick_task = asyncio.create_task(self._guarded_tick())
        return True

    async def run_once(self) -> TickResult:
        """Run a single tick directly. Broker errors propagate to the caller."""
        if self.tick_active:
            raise RuntimeError("A reprocessing tick is already running")

        self._tick_task = asyncio.create_task(self._execute_tick())
        return await self._tick_task

    async def _guarded_tick(self) -> TickResult | None:
        try:
            return await self._execute_tick()
        except Exception:
            # Already logged and counted by _execute_tick
            return None

    async def _execute_tick(self) -> TickResult:
        self._cycle_count += 1
        set_log_context(cycle_id=generate_cycle_id())

        try:
            result = await self.reprocessor.run_tick()
        except Exception as e:
            self._ticks_failed += 1
            log_exception(logger, e, "Reprocessing tick failed", ticks_failed=self._ticks_failed)
            raise

        self._ticks_completed += 1
        self._last_result = result
        logger.info(
            format_cycle_output(
                cycle_count=self._cycle_count,
                succeeded=result.records_succeeded,
                failed=result.records_rerouted,
                skipped=result.records_skipped,
                topic_empty=result.topic_empty,
            ),
            extra=result.as_log_fields(),
        )
        return result


__all__ = ["ReprocessingScheduler"]
