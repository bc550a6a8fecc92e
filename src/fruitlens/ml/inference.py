"""Inference concurrency layer.

Architecture:
    FastAPI (async) -> asyncio.Semaphore(N) -> ThreadPoolExecutor(N) -> ONNX inference

Requests beyond the semaphore limit queue for ``queue_timeout`` seconds, then
get 503. Inference itself runs without a deadline unless ``inference_timeout``
is configured.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, TypeVar

from fruitlens.ml.errors import InferenceError

if TYPE_CHECKING:
    from collections.abc import Callable

    from fruitlens.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InferencePool:
    """Manages the semaphore and thread pool for ML inference."""

    def __init__(self, settings: Settings) -> None:
        self._semaphore = asyncio.Semaphore(settings.max_concurrent)
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent,
            thread_name_prefix="onnx-inference",
        )
        self._queue_timeout = settings.queue_timeout
        self._inference_timeout = settings.inference_timeout
        self._active_count: int = 0
        self._queue_depth: int = 0
        self._counter_lock = threading.Lock()

    async def run(self, func: Callable[..., T], *args: object) -> T:
        """Submit a synchronous function to the inference thread pool.

        Acquires the semaphore (with timeout), runs the function in the
        executor, then releases. When the optional inference timeout expires
        the caller gets an error right away, but the slot stays taken until
        the worker thread actually returns.

        Raises:
            TimeoutError: If the semaphore cannot be acquired within the timeout.
            InferenceError: If the optional inference timeout expires.
        """
        with self._counter_lock:
            self._queue_depth += 1
        try:
            await asyncio.wait_for(
                self._semaphore.acquire(),
                timeout=self._queue_timeout,
            )
        finally:
            with self._counter_lock:
                self._queue_depth -= 1

        with self._counter_lock:
            self._active_count += 1
        release_now = True
        try:
            loop = asyncio.get_running_loop()
            future = loop.run_in_executor(self._executor, func, *args)
            if self._inference_timeout is None:
                return await future
            try:
                return await asyncio.wait_for(asyncio.shield(future), timeout=self._inference_timeout)
            except TimeoutError:
                release_now = False
                future.add_done_callback(self._release_overrun)
                logger.warning("Inference exceeded %.1fs timeout", self._inference_timeout)
                raise InferenceError(f"Inference timed out after {self._inference_timeout}s") from None
        finally:
            if release_now:
                self._release()

    def _release(self) -> None:
        self._semaphore.release()
        with self._counter_lock:
            self._active_count -= 1

    def _release_overrun(self, future: asyncio.Future[object]) -> None:
        if not future.cancelled() and future.exception() is not None:
            logger.warning("Timed-out inference later failed: %s", future.exception())
        self._release()

    @property
    def active_count(self) -> int:
        """Number of currently running inference tasks."""
        with self._counter_lock:
            return self._active_count

    @property
    def queue_depth(self) -> int:
        """Number of requests waiting for a semaphore slot."""
        with self._counter_lock:
            return self._queue_depth

    def shutdown(self) -> None:
        """Shut down the thread pool executor."""
        self._executor.shutdown(wait=True)
