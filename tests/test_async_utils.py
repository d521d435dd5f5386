"""
Tests for run_sync (worker-thread offload with timeout).
"""

import threading
import time

import pytest

from commgate.core.async_utils import run_sync


@pytest.mark.asyncio
async def test_returns_result_from_worker_thread():
    main_thread = threading.get_ident()
    result = await run_sync(lambda a, b=0: (a + b, threading.get_ident()), 2, b=3)
    assert result[0] == 5
    assert result[1] != main_thread


@pytest.mark.asyncio
async def test_exceptions_propagate():
    def boom():
        raise KeyError("missing")

    with pytest.raises(KeyError):
        await run_sync(boom)


@pytest.mark.asyncio
async def test_timeout():
    with pytest.raises(TimeoutError, match="timed out"):
        await run_sync(time.sleep, 1.0, timeout=0.05)
