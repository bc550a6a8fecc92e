"""Image classification over a pretrained ONNX model.

The classifier center-crops the bitmap to the model's input size, runs the
session, and returns ranked label/score pairs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import numpy as np

from fruitlens.ml.errors import InferenceError
from fruitlens.ml.preprocessing import as_bitmap, decode_image, to_model_input

if TYPE_CHECKING:
    from numpy.typing import NDArray
    from onnxruntime import InferenceSession

    from fruitlens.ml.model_manager import ModelManager, ModelSpec

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClassificationResult:
    """A single classification prediction."""

    label: str
    confidence: float


class ImageClassifier(Protocol):
    """Protocol for image classification models."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    def classify(self, image: NDArray[np.uint8]) -> list[ClassificationResult]:
        """Classify an image and return ranked tags.

        Args:
            image: HxWx3 RGB uint8 array.

        Returns:
            Non-empty list of classification results sorted by confidence (descending).

        Raises:
            InvalidInputError: If the array is not a usable RGB bitmap.
            InferenceError: If the model runtime fails or yields no scores.
        """
        ...


def classify_image_bytes(
    classifier: ImageClassifier, image_bytes: bytes, max_image_pixels: int
) -> list[ClassificationResult]:
    """Decode an upload and classify it. Blocking; run it on the inference pool."""
    return classifier.classify(decode_image(image_bytes, max_image_pixels))


def softmax(logits: NDArray[np.float32]) -> NDArray[np.float32]:
    shifted = logits - np.max(logits)
    exp = np.exp(shifted)
    return (exp / exp.sum()).astype(np.float32)


def rank_scores(scores: NDArray[np.float32], labels: list[str], top_k: int) -> list[ClassificationResult]:
    """Pair scores with labels, highest first; equal scores keep model output order."""
    order = np.argsort(-scores, kind="stable")[:top_k]
    return [ClassificationResult(label=labels[i], confidence=float(np.clip(scores[i], 0.0, 1.0))) for i in order]


class OnnxImageClassifier:
    """Runs a single-input, single-output ONNX classifier."""

    def __init__(
        self,
        spec: ModelSpec,
        session: InferenceSession,
        labels: list[str],
        top_k: int = 5,
    ) -> None:
        self._spec = spec
        self._session = session
        self._labels = labels
        self._top_k = top_k
        self._input_name: str = session.get_inputs()[0].name

    @classmethod
    def from_manager(cls, manager: ModelManager, model_name: str, top_k: int = 5) -> OnnxImageClassifier:
        """Load session and labels through the model manager (raises ModelLoadError)."""
        spec = manager.get_spec(model_name)
        session = manager.get_session(model_name)
        labels = manager.get_labels(model_name)
        return cls(spec, session, labels, top_k=top_k)

    @property
    def model_name(self) -> str:
        return self._spec.name

    @property
    def labels(self) -> list[str]:
        return list(self._labels)

    def classify(self, image: NDArray[np.uint8]) -> list[ClassificationResult]:
        bitmap = as_bitmap(image)
        tensor = to_model_input(bitmap, self._spec.input_size, self._spec.mean, self._spec.std)

        try:
            outputs = self._session.run(None, {self._input_name: tensor})
        except Exception as exc:
            raise InferenceError(str(exc)) from exc

        scores = np.asarray(outputs[0], dtype=np.float32).reshape(-1)
        if scores.size == 0:
            raise InferenceError("Model returned no scores")
        if scores.size != len(self._labels):
            raise InferenceError(f"Model returned {scores.size} scores for {len(self._labels)} labels")
        if not np.all(np.isfinite(scores)):
            raise InferenceError("Model returned non-finite scores")

        if self._spec.apply_softmax:
            scores = softmax(scores)

        results = rank_scores(scores, self._labels, self._top_k)
        logger.debug("Top result for %s: %s (%.4f)", self.model_name, results[0].label, results[0].confidence)
        return results
