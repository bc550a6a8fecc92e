"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fruitlens.api.routes import router
from fruitlens.config import get_settings
from fruitlens.flow import ClassificationFlow
from fruitlens.ml.image_classifier import OnnxImageClassifier
from fruitlens.ml.inference import InferencePool
from fruitlens.ml.model_manager import OnnxModelManager

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: load the model on startup, clean up on shutdown.

    A ModelLoadError propagates out of here, so the server never becomes ready
    without a working classifier.
    """
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)

    logger.info(
        "Starting FruitLens (device=%s, max_concurrent=%s, model=%s)",
        settings.device,
        settings.max_concurrent,
        settings.model_path or settings.classifier_model,
    )

    model_manager = OnnxModelManager(settings)
    try:
        classifier = OnnxImageClassifier.from_manager(model_manager, settings.classifier_model, top_k=settings.top_k)
    except Exception:
        logger.critical("Failed to load classifier model, aborting startup")
        raise
    app.state.model_manager = model_manager
    app.state.classifier = classifier

    inference_pool = InferencePool(settings)
    app.state.inference_pool = inference_pool
    app.state.flow = ClassificationFlow(classifier, inference_pool, settings.max_image_pixels)

    logger.info("FruitLens ready (%d labels)", len(classifier.labels))
    yield

    logger.info("Shutting down FruitLens")
    inference_pool.shutdown()
    model_manager.shutdown()
    logger.info("FruitLens shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="FruitLens",
        description="Fruit image classification over a pretrained ONNX model",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    settings = get_settings()
    uvicorn.run("fruitlens.main:app", host=settings.host, port=settings.port, log_config=None)
