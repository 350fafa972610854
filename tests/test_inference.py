"""Tests for the bounded inference worker pool."""

from __future__ import annotations

import asyncio
import threading

import pytest

from facevector.config import Settings
from facevector.ml.inference import InferencePool


class TestInferencePool:
    async def test_runs_off_event_loop(self) -> None:
        pool = InferencePool(Settings(max_concurrent=1))
        try:
            name = await pool.run(lambda: threading.current_thread().name)
        finally:
            pool.shutdown()
        assert name.startswith("face-pipeline")

    async def test_passes_arguments_and_propagates_errors(self) -> None:
        pool = InferencePool(Settings())
        try:
            assert await pool.run(pow, 2, 5) == 32
            with pytest.raises(ZeroDivisionError):
                await pool.run(divmod, 1, 0)
        finally:
            pool.shutdown()

    async def test_times_out_when_saturated(self) -> None:
        pool = InferencePool(Settings(max_concurrent=1, queue_timeout=0.05))
        release = threading.Event()
        try:
            busy = asyncio.create_task(pool.run(release.wait, 5))
            await asyncio.sleep(0.01)
            assert pool.active_count == 1

            with pytest.raises(TimeoutError):
                await pool.run(int)
            assert pool.queue_depth == 0
        finally:
            release.set()
            await busy
            pool.shutdown()
        assert pool.active_count == 0
