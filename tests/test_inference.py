"""Tests for the inference thread pool."""

from __future__ import annotations

import asyncio
import threading

import pytest

from fruitlens.config import Settings
from fruitlens.ml.errors import InferenceError
from fruitlens.ml.inference import InferencePool


class TestInferencePool:
    async def test_runs_off_the_event_loop_thread(self) -> None:
        pool = InferencePool(Settings(max_concurrent=1))
        try:
            loop_thread = threading.get_ident()
            worker_thread = await pool.run(threading.get_ident)
            assert worker_thread != loop_thread
        finally:
            pool.shutdown()

    async def test_passes_arguments_and_result(self) -> None:
        pool = InferencePool(Settings(max_concurrent=1))
        try:
            assert await pool.run(pow, 2, 10) == 1024
        finally:
            pool.shutdown()

    async def test_counts_active_and_queued(self) -> None:
        pool = InferencePool(Settings(max_concurrent=1))
        gate = threading.Event()
        try:
            first = asyncio.create_task(pool.run(gate.wait, 5))
            await asyncio.sleep(0.05)
            second = asyncio.create_task(pool.run(gate.wait, 5))
            await asyncio.sleep(0.05)

            assert pool.active_count == 1
            assert pool.queue_depth == 1

            gate.set()
            await asyncio.gather(first, second)
            assert pool.active_count == 0
            assert pool.queue_depth == 0
        finally:
            gate.set()
            pool.shutdown()

    async def test_queue_timeout_raises_timeout_error(self) -> None:
        pool = InferencePool(Settings(max_concurrent=1, queue_timeout=0.05))
        gate = threading.Event()
        try:
            blocking = asyncio.create_task(pool.run(gate.wait, 5))
            await asyncio.sleep(0.02)
            with pytest.raises(TimeoutError):
                await pool.run(int)
            assert pool.queue_depth == 0
            gate.set()
            await blocking
        finally:
            gate.set()
            pool.shutdown()

    async def test_no_inference_timeout_by_default(self) -> None:
        assert Settings().inference_timeout is None
        pool = InferencePool(Settings(max_concurrent=1))
        gate = threading.Event()
        try:
            task = asyncio.create_task(pool.run(gate.wait, 5))
            await asyncio.sleep(0.1)
            assert not task.done()
            gate.set()
            assert await task is True
        finally:
            gate.set()
            pool.shutdown()

    async def test_inference_timeout_raises_inference_error(self) -> None:
        pool = InferencePool(Settings(max_concurrent=1, inference_timeout=0.05))
        gate = threading.Event()
        try:
            with pytest.raises(InferenceError, match="timed out"):
                await pool.run(gate.wait, 5)
        finally:
            gate.set()
            pool.shutdown()

    async def test_timed_out_inference_keeps_its_slot_until_the_worker_returns(self) -> None:
        pool = InferencePool(Settings(max_concurrent=1, queue_timeout=0.05, inference_timeout=0.05))
        gate = threading.Event()
        try:
            with pytest.raises(InferenceError, match="timed out"):
                await pool.run(gate.wait, 5)

            assert pool.active_count == 1
            with pytest.raises(TimeoutError):
                await pool.run(int)

            gate.set()
            for _ in range(200):
                if pool.active_count == 0:
                    break
                await asyncio.sleep(0.01)
            assert pool.active_count == 0
            assert await pool.run(pow, 2, 3) == 8
        finally:
            gate.set()
            pool.shutdown()
