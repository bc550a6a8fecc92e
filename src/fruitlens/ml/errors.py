"""Exception hierarchy for image acquisition, model loading, and inference."""

from __future__ import annotations


class ClassificationError(Exception):
    """Base class for all classification failures."""


class InvalidInputError(ClassificationError):
    """The image could not be decoded or violates the input limits."""


class ModelLoadError(ClassificationError):
    """The classifier model or its labels could not be loaded.

    Raised at startup only; the service must not become ready after this.
    """


class InferenceError(ClassificationError):
    """The model runtime failed while classifying an image."""
