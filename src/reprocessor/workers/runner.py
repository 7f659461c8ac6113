"""Run a worker under the process shutdown event, retrying broker connection at startup."""

import asyncio
import contextlib
import logging
import os
from collections.abc import Awaitable, Callable

from core.logging.context import set_log_context

logger = logging.getLogger(__name__)

DEFAULT_STARTUP_RETRIES = 5
DEFAULT_STARTUP_BACKOFF_BASE = 5  # seconds, multiplied by the attempt number


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


async def _start_with_retry(
    start_fn: Callable[[], Awaitable[None]],
    label: str,
    max_retries: int | None = None,
    backoff_base: int | None = None,
    shutdown_event: asyncio.Event | None = None,
) -> None:
    """Await start_fn, retrying with linear backoff (base, 2*base, ...).

    Attempts default to STARTUP_MAX_RETRIES, backoff to STARTUP_BACKOFF_SECONDS.
    A failure during shutdown, or on the last attempt, is re-raised.
    """
    attempts = max_retries or _env_int("STARTUP_MAX_RETRIES", DEFAULT_STARTUP_RETRIES)
    base = backoff_base or _env_int("STARTUP_BACKOFF_SECONDS", DEFAULT_STARTUP_BACKOFF_BASE)

    attempt = 0
    while True:
        attempt += 1
        try:
            await start_fn()
            return
        except Exception as e:
            shutting_down = shutdown_event is not None and shutdown_event.is_set()
            if shutting_down or attempt >= attempts:
                logger.error(
                    f"Could not start {label} (attempt {attempt}/{attempts})"
                    + (", shutdown in progress" if shutting_down else ", giving up"),
                    extra={"error": str(e)},
                )
                raise
            delay = base * attempt
            logger.warning(
                f"Could not start {label} (attempt {attempt}/{attempts}), next try in {delay}s",
                extra={"error": str(e)},
            )
            await asyncio.sleep(delay)


async def execute_worker_with_shutdown(
    worker_instance,
    stage_name: str,
    shutdown_event: asyncio.Event,
) -> None:
    """Run worker_instance.start() until it returns or shutdown_event fires.

    stop() is called exactly once either way. Startup errors propagate unless
    they happen because shutdown has begun.
    """
    set_log_context(stage=stage_name)
    logger.info(f"Starting {stage_name}")

    stopped = asyncio.Event()

    async def stop_on_shutdown():
        await shutdown_event.wait()
        logger.info(f"Shutdown signal received, stopping {stage_name}")
        await worker_instance.stop()
        stopped.set()

    watcher = asyncio.create_task(stop_on_shutdown())
    try:
        await _start_with_retry(worker_instance.start, stage_name, shutdown_event=shutdown_event)
    except Exception:
        if not shutdown_event.is_set():
            raise
    finally:
        if not shutdown_event.is_set():
            watcher.cancel()
        # A shutdown-triggered stop() may still be draining the worker
        with contextlib.suppress(asyncio.CancelledError):
            await watcher
        if not stopped.is_set():
            await worker_instance.stop()


__all__ = ["execute_worker_with_shutdown"]
