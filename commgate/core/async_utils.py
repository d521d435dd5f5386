"""
Async utilities for wrapping synchronous service calls.

The stores, the policy pipeline and the delivery executor are synchronous
(SQLModel sessions, blocking sender calls). Routes are async, so they hop
to a worker thread through run_sync() instead of stalling the event loop.
"""

import asyncio
import functools
import logging
import time
from typing import Any, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_sync(
    func: Callable[..., T],
    *args: Any,
    timeout: Optional[float] = 30,
    **kwargs: Any,
) -> T:
    """
    Run a synchronous function in a worker thread.

    Args:
        func: Synchronous callable to execute.
        *args, **kwargs: Forwarded to func.
        timeout: Maximum seconds to wait; None waits indefinitely.

    Raises:
        TimeoutError: If execution exceeds the timeout. The worker thread is
            not cancelled and keeps running to completion.
        Exception: Any exception raised by func propagates unchanged.
    """
    name = getattr(func, "__qualname__", None) or getattr(func, "__name__", repr(func))
    call = functools.partial(func, *args, **kwargs)
    start = time.perf_counter()
    try:
        result = await asyncio.wait_for(asyncio.to_thread(call), timeout=timeout)
    except asyncio.TimeoutError:
        elapsed = (time.perf_counter() - start) * 1000
        raise TimeoutError(f"{name} timed out after {elapsed:.0f}ms (limit {timeout}s)")
    logger.debug("run_sync %s completed in %.2fms", name, (time.perf_counter() - start) * 1000)
    return result
