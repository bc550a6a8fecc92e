"""API route definitions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, HTTPException, Request, UploadFile, status

from fruitlens.api.middleware import get_settings_from_request, read_upload, verify_api_key
from fruitlens.api.schemas import (
    ClassifyImageResponse,
    DisplayStateResponse,
    ErrorResponse,
    HealthResponse,
    ImageTag,
    ModelInfo,
    ModelsResponse,
)
from fruitlens.display import CLASSIFICATION_FAILED_PREFIX
from fruitlens.ml.errors import InferenceError, InvalidInputError
from fruitlens.ml.image_classifier import classify_image_bytes
from fruitlens.ml.model_manager import MODEL_REGISTRY

if TYPE_CHECKING:
    from fruitlens.flow import ClassificationFlow
    from fruitlens.ml.image_classifier import ImageClassifier
    from fruitlens.ml.inference import InferencePool

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])


def _busy() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Inference queue is full, retry later",
    )


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def _get_classifier(request: Request) -> ImageClassifier:
    classifier: ImageClassifier = request.app.state.classifier
    return classifier


def _get_flow(request: Request) -> ClassificationFlow:
    flow: ClassificationFlow = request.app.state.flow
    return flow


@router.post(
    "/classify-image",
    response_model=ClassifyImageResponse,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        413: {"model": ErrorResponse},
        status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Classify an image with ranked tags",
)
async def classify_image(request: Request, file: UploadFile) -> ClassifyImageResponse:
    """Classify an uploaded image and return the ranked label/score list."""
    settings = get_settings_from_request(request)
    classifier = _get_classifier(request)
    pool = _get_inference_pool(request)

    data = await read_upload(file, settings.max_file_size)
    try:
        results = await pool.run(classify_image_bytes, classifier, data, settings.max_image_pixels)
    except InvalidInputError as exc:
        logger.warning("Rejected upload %s: %s", file.filename, exc)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except InferenceError as exc:
        logger.exception("Inference failed for upload %s", file.filename)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"{CLASSIFICATION_FAILED_PREFIX}{exc}",
        ) from exc
    except TimeoutError:
        raise _busy() from None

    return ClassifyImageResponse(
        model=classifier.model_name,
        tags=[ImageTag(label=r.label, confidence=r.confidence) for r in results],
    )


@router.post(
    "/classify",
    response_model=DisplayStateResponse,
    responses={
        413: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Classify an image and return its display state",
)
async def classify(request: Request, file: UploadFile) -> DisplayStateResponse:
    """Run the upload through the classification flow.

    Invalid images and inference errors come back as a 'failed' display state.
    """
    settings = get_settings_from_request(request)
    flow = _get_flow(request)

    data = await read_upload(file, settings.max_file_size)
    try:
        state = await flow.classify(data)
    except TimeoutError:
        raise _busy() from None
    return DisplayStateResponse.from_state(state)


@router.get(
    "/state",
    response_model=DisplayStateResponse,
    summary="Current display state",
)
async def current_state(request: Request) -> DisplayStateResponse:
    """Return the most recently published display state."""
    return DisplayStateResponse.from_state(_get_flow(request).state)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = get_settings_from_request(request)
    pool = _get_inference_pool(request)
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        models_loaded=[_get_classifier(request).model_name],
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List available models",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return registered classifiers and which one is serving."""
    active = _get_classifier(request).model_name
    return ModelsResponse(
        models=[
            ModelInfo(
                name=spec.name,
                task=str(spec.task),
                status="active" if spec.name == active else "available",
                license=spec.license,
                input_size=spec.input_size,
            )
            for spec in MODEL_REGISTRY.values()
        ]
    )
