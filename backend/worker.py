"""Background task runner.

Periodic jobs (heartbeat sweep, cache-expiry sweep) run as asyncio tasks
on the server's event loop, decoupled from request handling.  Each run is
isolated: an exception is logged and the next tick still happens.

    worker.start_periodic("cache-sweep", 300, cache.sweep_expired)
    ...
    await worker.shutdown()
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)

_tasks: dict[str, asyncio.Task] = {}


async def _run_periodically(name: str, interval: float, fn: Callable[[], Any]) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            result = fn()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Background task {name} error: {e}")


def start_periodic(name: str, interval: float, fn: Callable[[], Any]) -> asyncio.Task:
    """Run *fn* every *interval* seconds until :func:`shutdown`.

    Must be called from inside a running event loop.  Starting a name
    that is already running replaces the old task.
    """
    old = _tasks.pop(name, None)
    if old is not None:
        old.cancel()
    task = asyncio.create_task(_run_periodically(name, interval, fn), name=f"bg-{name}")
    _tasks[name] = task
    logger.info(f"Background task {name} started (every {interval}s)")
    return task


def running() -> list[str]:
    return [name for name, task in _tasks.items() if not task.done()]


async def shutdown() -> None:
    """Cancel every periodic task and wait for them to finish."""
    tasks = list(_tasks.values())
    _tasks.clear()
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    logger.info("Background tasks shut down")
