"""Pydantic request/response schemas for the FruitLens API."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from fruitlens.display import DisplayState


class ImageTag(BaseModel):
    """A single classification tag with confidence score."""

    label: str
    confidence: float = Field(ge=0.0, le=1.0)


class ClassifyImageResponse(BaseModel):
    """Response for image classification endpoint."""

    model: str
    tags: list[ImageTag]


class DisplayStateResponse(BaseModel):
    """Presentation-ready outcome of a classification request."""

    label: str
    confidence: int | None = Field(default=None, ge=0, le=100, description="Whole confidence percentage")
    is_processing: bool
    phase: str = Field(description="One of 'idle', 'processing', 'done', 'failed'")
    sequence: int = Field(description="Request sequence number this state belongs to")

    @classmethod
    def from_state(cls, state: DisplayState) -> DisplayStateResponse:
        return cls(
            label=state.label,
            confidence=state.confidence,
            is_processing=state.is_processing,
            phase=str(state.phase),
            sequence=state.sequence,
        )


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    models_loaded: list[str]
    concurrent_requests: int
    queue_depth: int


class ModelInfo(BaseModel):
    """Information about an available model."""

    name: str
    task: str = Field(description="Model task: 'image_classification'")
    status: str = Field(description="Model status: 'active' or 'available'")
    license: str
    input_size: int


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
