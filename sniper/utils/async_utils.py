"""
Async utilities adapted from Hummingbot.
Attribution: Based on Hummingbot's async utilities (Apache 2.0)
"""

import asyncio
import logging
from typing import Awaitable, Iterator, Optional


def safe_ensure_future(coro: Awaitable, name: Optional[str] = None) -> asyncio.Task:
    """
    Schedule a coroutine and log its failure instead of losing it silently.
    Attribution: Adapted from Hummingbot's safe_ensure_future (Apache 2.0)
    """
    task = asyncio.ensure_future(coro)
    if name:
        task.set_name(name)

    def _log_failure(t: asyncio.Task):
        if t.cancelled():
            return
        exc = t.exception()
        if exc is not None:
            logging.getLogger(__name__).error(
                f"Unhandled error in task {t.get_name()}: {exc}", exc_info=exc
            )

    task.add_done_callback(_log_failure)
    return task


async def wait_for_event(event: asyncio.Event, timeout: float) -> bool:
    """
    Sleep for up to timeout seconds, waking early if the event is set.

    Returns:
        True if the event was set
    """
    if event.is_set():
        return True
    try:
        await asyncio.wait_for(event.wait(), timeout=max(0.0, timeout))
        return True
    except asyncio.TimeoutError:
        return False


def backoff_delays(initial: float, multiplier: float, maximum: float) -> Iterator[float]:
    """Infinite exponential backoff sequence capped at maximum"""
    delay = initial
    while True:
        yield min(delay, maximum)
        delay = min(delay * multiplier, maximum)
