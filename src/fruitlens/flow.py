"""Classification flow: the Idle -> Processing -> Done/Failed state machine.

Every request is tagged with a monotonically increasing sequence number. A
result is published only if its sequence number is still the latest one
dispatched, so a slow superseded request can never overwrite a newer outcome.
Superseded inferences are not cancelled; their results are discarded.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import replace
from typing import TYPE_CHECKING

from fruitlens.display import (
    CLASSIFICATION_FAILED_PREFIX,
    IDLE_STATE,
    INVALID_IMAGE_LABEL,
    PROCESSING_LABEL,
    DisplayState,
    FlowPhase,
    present,
)
from fruitlens.ml.errors import InferenceError, InvalidInputError
from fruitlens.ml.image_classifier import classify_image_bytes

if TYPE_CHECKING:
    from collections.abc import Sequence

    from fruitlens.ml.image_classifier import ClassificationResult, ImageClassifier
    from fruitlens.ml.inference import InferencePool

logger = logging.getLogger(__name__)

StateListener = Callable[[DisplayState], None]


class ClassificationFlow:
    """Owns the published DisplayState and serializes every write to it."""

    def __init__(
        self,
        classifier: ImageClassifier,
        pool: InferencePool,
        max_image_pixels: int,
    ) -> None:
        self._classifier = classifier
        self._pool = pool
        self._max_image_pixels = max_image_pixels

        self._lock = threading.Lock()
        # Reentrant so a listener may start a new request.
        self._publish_lock = threading.RLock()
        self._state = IDLE_STATE
        self._latest_sequence = 0
        self._listeners: list[StateListener] = []

    @property
    def state(self) -> DisplayState:
        with self._lock:
            return self._state

    @property
    def latest_sequence(self) -> int:
        with self._lock:
            return self._latest_sequence

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a callback for every published state; returns an unsubscribe function."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    # -- Transitions --------------------------------------------------------

    def begin(self) -> int:
        """Enter PROCESSING for a new request and return its sequence number."""
        with self._publish_lock:
            with self._lock:
                self._latest_sequence += 1
                sequence = self._latest_sequence
                state = DisplayState(
                    label=PROCESSING_LABEL,
                    confidence=None,
                    is_processing=True,
                    phase=FlowPhase.PROCESSING,
                    sequence=sequence,
                )
                self._state = state
                listeners = list(self._listeners)
            self._notify(listeners, state)
        return sequence

    def complete(self, sequence: int, results: Sequence[ClassificationResult]) -> DisplayState:
        """Apply the presenter mapping; publish it unless the request was superseded."""
        return self._settle(sequence, replace(present(results), sequence=sequence))

    def fail(self, sequence: int, message: str) -> DisplayState:
        """Enter FAILED with ``message``; publish it unless the request was superseded."""
        state = DisplayState(label=message, phase=FlowPhase.FAILED, sequence=sequence)
        return self._settle(sequence, state)

    # -- End-to-end request -------------------------------------------------

    async def classify(self, image_bytes: bytes) -> DisplayState:
        """Run one classification request and return the state it resolved to.

        Decoding and inference both run on the inference pool. Every failure
        resolves to a FAILED state, so the flow never stays in PROCESSING. Pool
        admission timeouts propagate so the caller can report the service as
        busy.
        """
        sequence = self.begin()

        try:
            results = await self._pool.run(
                classify_image_bytes, self._classifier, image_bytes, self._max_image_pixels
            )
        except InvalidInputError as exc:
            logger.warning("Request %d: invalid image: %s", sequence, exc)
            return self.fail(sequence, INVALID_IMAGE_LABEL)
        except InferenceError as exc:
            logger.exception("Request %d: classification failed", sequence)
            return self.fail(sequence, f"{CLASSIFICATION_FAILED_PREFIX}{exc}")
        except TimeoutError:
            logger.warning("Request %d: inference queue full", sequence)
            self.fail(sequence, f"{CLASSIFICATION_FAILED_PREFIX}inference queue full")
            raise
        except Exception as exc:
            logger.exception("Request %d: unexpected classifier error", sequence)
            return self.fail(sequence, f"{CLASSIFICATION_FAILED_PREFIX}{exc}")

        return self.complete(sequence, results)

    # -- Internal -----------------------------------------------------------

    def _settle(self, sequence: int, state: DisplayState) -> DisplayState:
        with self._publish_lock:
            with self._lock:
                if sequence != self._latest_sequence:
                    logger.info(
                        "Discarding stale result for request %d (latest is %d)",
                        sequence,
                        self._latest_sequence,
                    )
                    return state
                self._state = state
                listeners = list(self._listeners)
            self._notify(listeners, state)
        return state

    def _notify(self, listeners: list[StateListener], state: DisplayState) -> None:
        # Runs without the state lock; _publish_lock keeps delivery in publish order.
        for listener in listeners:
            try:
                listener(state)
            except Exception:
                logger.exception("State listener %r failed", listener)
