"""Model manager: download, load, and cache the ONNX classifier and its labels.

Handles downloading models from HuggingFace (or using a local file), creating
the ONNX InferenceSession once, and reading the label list that maps output
indices to identifiers. Every failure here is a ModelLoadError.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from huggingface_hub import hf_hub_download
from onnxruntime import InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

from fruitlens.ml.errors import ModelLoadError
from fruitlens.ml.preprocessing import IMAGENET_MEAN, IMAGENET_STD

if TYPE_CHECKING:
    from fruitlens.config import Settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol (kept for test mocking)
# ---------------------------------------------------------------------------


class ModelManager(Protocol):
    """Protocol for model lifecycle management."""

    def get_spec(self, model_name: str) -> ModelSpec:
        """Return the registry entry for a model."""
        ...

    def get_session(self, model_name: str) -> InferenceSession:
        """Return a cached or newly created InferenceSession."""
        ...

    def get_labels(self, model_name: str) -> list[str]:
        """Return the output labels for a model."""
        ...

    def get_loaded_models(self) -> list[str]:
        """Return names of currently loaded models."""
        ...

    def shutdown(self) -> None:
        """Clear all cached sessions."""
        ...


# ---------------------------------------------------------------------------
# Model registry
# ---------------------------------------------------------------------------


class ModelTask(StrEnum):
    IMAGE_CLASSIFICATION = "image_classification"


@dataclass(frozen=True)
class ModelSpec:
    """Static metadata for a single ONNX classifier."""

    name: str
    repo_id: str
    filename: str
    labels_filename: str
    subfolder: str | None
    task: ModelTask
    license: str
    input_size: int = 224
    mean: tuple[float, float, float] = IMAGENET_MEAN
    std: tuple[float, float, float] = IMAGENET_STD
    apply_softmax: bool = True


# Hub entries for the project's exported classifiers. Until a repo is published,
# deployments must point FRUITLENS_MODEL_PATH at a local model file.
MODEL_REGISTRY: dict[str, ModelSpec] = {
    "fruit_classifier_v1": ModelSpec(
        name="fruit_classifier_v1",
        repo_id="fruitlens/fruit-classifier-models",
        filename="mobilenetv2_fruits.onnx",
        labels_filename="labels.txt",
        subfolder=None,
        task=ModelTask.IMAGE_CLASSIFICATION,
        license="Apache-2.0",
    ),
    "fruit_classifier_effnet": ModelSpec(
        name="fruit_classifier_effnet",
        repo_id="fruitlens/fruit-classifier-models",
        filename="efficientnetv2b0_fruits.onnx",
        labels_filename="labels.txt",
        subfolder=None,
        task=ModelTask.IMAGE_CLASSIFICATION,
        license="Apache-2.0",
        input_size=260,
    ),
}


# ---------------------------------------------------------------------------
# Concrete implementation
# ---------------------------------------------------------------------------


def read_labels(path: Path) -> list[str]:
    """Read one label per line, skipping blank lines."""
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ModelLoadError(f"Cannot read labels file {path}: {exc}") from exc

    labels = [line.strip() for line in text.splitlines() if line.strip()]
    if not labels:
        raise ModelLoadError(f"Labels file {path} is empty")
    return labels


class OnnxModelManager:
    """Downloads, loads, and caches ONNX inference sessions and label lists."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._models_dir = Path(settings.models_dir)

        self._lock = threading.Lock()
        self._sessions: dict[str, InferenceSession] = {}
        self._labels: dict[str, list[str]] = {}
        self._model_paths: dict[str, Path] = {}

        self._providers = self._build_providers()
        self._session_options = self._build_session_options()

    # -- Public API ---------------------------------------------------------

    def get_spec(self, model_name: str) -> ModelSpec:
        try:
            return MODEL_REGISTRY[model_name]
        except KeyError:
            raise ModelLoadError(f"Unknown model: {model_name}") from None

    def ensure_downloaded(self, model_name: str) -> Path:
        """Return the local model file, downloading it from HuggingFace if needed."""
        if self._settings.model_path is not None:
            return self._local_file(self._settings.model_path)

        spec = self.get_spec(model_name)
        if model_name in self._model_paths:
            path = self._model_paths[model_name]
            if path.exists():
                return path

        downloaded = self._download(spec, spec.filename)
        self._model_paths[model_name] = downloaded
        logger.info("Downloaded %s to %s", model_name, downloaded)
        return downloaded

    def ensure_labels(self, model_name: str) -> Path:
        """Return the local labels file, downloading it alongside the model if needed."""
        if self._settings.labels_path is not None:
            return self._local_file(self._settings.labels_path)
        if self._settings.model_path is not None:
            # A local model without explicit labels expects labels.txt next to it.
            return self._local_file(str(Path(self._settings.model_path).with_name("labels.txt")))

        spec = self.get_spec(model_name)
        return self._download(spec, spec.labels_filename)

    def get_session(self, model_name: str) -> InferenceSession:
        """Return the cached InferenceSession, creating one if needed."""
        with self._lock:
            cached = self._sessions.get(model_name)
            if cached is not None:
                return cached

        model_path = self.ensure_downloaded(model_name)
        try:
            session = InferenceSession(
                str(model_path),
                sess_options=self._session_options,
                providers=self._providers,
            )
        except Exception as exc:
            raise ModelLoadError(f"Failed to load model {model_name} from {model_path}: {exc}") from exc

        with self._lock:
            # Double-check: another thread may have created it while we loaded.
            existing = self._sessions.get(model_name)
            if existing is not None:
                return existing
            self._sessions[model_name] = session
            logger.info("Loaded session for %s", model_name)
            return session

    def get_labels(self, model_name: str) -> list[str]:
        """Return the cached label list, reading it if needed."""
        with self._lock:
            cached = self._labels.get(model_name)
            if cached is not None:
                return cached

        labels = read_labels(self.ensure_labels(model_name))
        with self._lock:
            self._labels.setdefault(model_name, labels)
            return self._labels[model_name]

    def get_loaded_models(self) -> list[str]:
        """Return names of models with active sessions."""
        with self._lock:
            return list(self._sessions.keys())

    def shutdown(self) -> None:
        """Clear all cached sessions and labels."""
        with self._lock:
            self._sessions.clear()
            self._labels.clear()
            logger.info("All model sessions cleared")

    # -- Internal -----------------------------------------------------------

    @staticmethod
    def _local_file(path_str: str) -> Path:
        path = Path(path_str)
        if not path.is_file():
            raise ModelLoadError(f"Model file not found: {path}")
        return path

    def _download(self, spec: ModelSpec, filename: str) -> Path:
        self._models_dir.mkdir(parents=True, exist_ok=True)
        try:
            return Path(
                hf_hub_download(
                    repo_id=spec.repo_id,
                    filename=filename,
                    subfolder=spec.subfolder,
                    local_dir=str(self._models_dir),
                )
            )
        except Exception as exc:
            raise ModelLoadError(
                f"Failed to download {filename} for {spec.name} from {spec.repo_id}: {exc}. "
                "Publish the model there or set FRUITLENS_MODEL_PATH to a local .onnx file."
            ) from exc

    def _build_providers(self) -> list[str | tuple[str, dict[str, object]]]:
        device = self._settings.device
        if device == "cuda":
            return [
                ("CUDAExecutionProvider", {"device_id": 0, "arena_extend_strategy": "kSameAsRequested"}),
                "CPUExecutionProvider",
            ]
        if device == "openvino":
            return [
                ("OpenVINOExecutionProvider", {"device_type": "CPU"}),
                "CPUExecutionProvider",
            ]
        return ["CPUExecutionProvider"]

    def _build_session_options(self) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
        opts.enable_mem_pattern = True
        opts.enable_mem_reuse = True

        if self._settings.device == "openvino":
            # OpenVINO does its own graph optimization
            from onnxruntime import GraphOptimizationLevel

            opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
        return opts
