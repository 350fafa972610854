"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from facevector.api.routes import router
from facevector.config import Settings, get_settings
from facevector.ml.face_detector import RetinaFaceDetector
from facevector.ml.face_recognizer import ArcFaceRecognizer
from facevector.ml.inference import InferencePool
from facevector.ml.model_manager import OnnxModelManager, get_detector_config
from facevector.ml.preprocessing import PillowPreprocessor
from facevector.ml.similarity import InMemorySimilarityStore
from facevector.service import FaceService

logger = logging.getLogger(__name__)


def build_face_service(settings: Settings, model_manager: OnnxModelManager) -> FaceService:
    """Load both models once and wire them into a :class:`FaceService`."""
    preprocessor = PillowPreprocessor(settings.max_image_pixels, settings.max_file_size)
    detector = RetinaFaceDetector.from_settings(
        settings.face_detection_model,
        get_detector_config(settings.face_detection_model),
        model_manager.get_session(settings.face_detection_model),
        preprocessor,
        settings,
    )
    recognizer = ArcFaceRecognizer(
        settings.face_recognition_model,
        model_manager.get_session(settings.face_recognition_model),
        preprocessor,
        settings.embedding_dim,
    )
    store = InMemorySimilarityStore(settings.embedding_dim)
    return FaceService(preprocessor, detector, recognizer, store)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting FaceVector (device=%s, max_concurrent=%s, detection=%s, recognition=%s)",
        settings.device,
        settings.max_concurrent,
        settings.face_detection_model,
        settings.face_recognition_model,
    )

    model_manager = OnnxModelManager(settings)
    app.state.model_manager = model_manager
    app.state.face_service = build_face_service(settings, model_manager)

    inference_pool = InferencePool(settings)
    app.state.inference_pool = inference_pool

    logger.info("FaceVector ready")
    yield

    logger.info("Shutting down FaceVector")
    inference_pool.shutdown()
    model_manager.shutdown()
    logger.info("FaceVector shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="FaceVector",
        description="Face detection, embedding comparison and similarity search",
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
    import uvicorn

    settings = get_settings()
    uvicorn.run("facevector.main:app", host=settings.host, port=settings.port)
