"""API route definitions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Annotated, TypeVar

from fastapi import APIRouter, Depends, Form, HTTPException, Query, Request, UploadFile, status

from facevector.api.middleware import read_image_upload, verify_api_key
from facevector.api.schemas import (
    CompareResponse,
    DeletedResponse,
    DetectedFace,
    DetectFacesResponse,
    EmbeddingEntry,
    EmbeddingListResponse,
    EnrollResponse,
    ErrorResponse,
    FaceSearchResult,
    HealthResponse,
    Match,
    ModelInfo,
    ModelsResponse,
    SearchResponse,
    StatsResponse,
    StoredFace,
)
from facevector.errors import (
    DimensionMismatchError,
    InvalidEmbeddingError,
    InvalidImageError,
    NoFaceDetectedError,
    ShapeMismatchError,
)
from facevector.ml.model_manager import MODEL_REGISTRY

if TYPE_CHECKING:
    from collections.abc import Callable

    from facevector.config import Settings
    from facevector.ml.inference import InferencePool
    from facevector.ml.model_manager import ModelManager
    from facevector.service import FaceService

logger = logging.getLogger(__name__)

T = TypeVar("T")

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])

_IMAGE_ERRORS = {
    status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
    status.HTTP_415_UNSUPPORTED_MEDIA_TYPE: {"model": ErrorResponse},
    status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
}


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def _get_face_service(request: Request) -> FaceService:
    service: FaceService = request.app.state.face_service
    return service


async def _run(request: Request, func: Callable[..., T], *args: object) -> T:
    """Run blocking face work in the inference pool and map domain errors to HTTP errors."""
    try:
        return await _get_inference_pool(request).run(func, *args)
    except TimeoutError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Server busy, try again later"
        ) from None
    except (NoFaceDetectedError, InvalidImageError, DimensionMismatchError, InvalidEmbeddingError) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except ShapeMismatchError:
        logger.exception("Model output does not match detector configuration")
        raise


@router.post(
    "/detect-faces",
    response_model=DetectFacesResponse,
    responses=_IMAGE_ERRORS,
    summary="Detect faces in an image",
)
async def detect_faces(
    request: Request,
    file: UploadFile,
    visibility_threshold: Annotated[float | None, Form(ge=0.0, le=1.0)] = None,
) -> DetectFacesResponse:
    """Detect faces and return pixel boxes and landmarks, largest face first."""
    data = await read_image_upload(request, file)
    service = _get_face_service(request)
    result = await _run(request, service.detect, data, visibility_threshold)
    if not result.detections:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="no_face_detected")

    return DetectFacesResponse(
        faces=[DetectedFace.from_detection(d) for d in result.detections],
        face_count=len(result.detections),
        image_width=result.image_width,
        image_height=result.image_height,
    )


@router.post(
    "/compare",
    response_model=CompareResponse,
    responses=_IMAGE_ERRORS,
    summary="Compare the largest face of two images",
)
async def compare(request: Request, file_a: UploadFile, file_b: UploadFile) -> CompareResponse:
    data_a = await read_image_upload(request, file_a)
    data_b = await read_image_upload(request, file_b)
    comparison = await _run(request, _get_face_service(request).compare, data_a, data_b)
    return CompareResponse(cosine=comparison.cosine, euclidean=comparison.euclidean)


@router.post(
    "/embeddings",
    response_model=EnrollResponse,
    responses=_IMAGE_ERRORS,
    summary="Store an embedding for every face in an image",
)
async def enroll(
    request: Request,
    file: UploadFile,
    identifier: Annotated[str | None, Form(min_length=1)] = None,
    name: Annotated[str | None, Form()] = None,
) -> EnrollResponse:
    """Enroll every face; an optional identifier and name are returned with search matches."""
    data = await read_image_upload(request, file)
    stored = await _run(request, _get_face_service(request).enroll, data, identifier, name)
    return EnrollResponse(
        total_faces=len(stored),
        stored=len(stored),
        results=[
            StoredFace(face=f"face_{i}", id=entry.id, identifier=entry.identifier, name=entry.name)
            for i, entry in enumerate(stored)
        ],
    )


@router.get(
    "/embeddings",
    response_model=EmbeddingListResponse,
    summary="List stored embeddings, most recent first",
)
async def list_embeddings(
    request: Request,
    limit: Annotated[int, Query(gt=0, le=1000)] = 10,
) -> EmbeddingListResponse:
    entries = _get_face_service(request).recent(limit)
    return EmbeddingListResponse(
        embeddings=[
            EmbeddingEntry(id=e.id, identifier=e.identifier, name=e.name, created_at=e.created_at) for e in entries
        ]
    )


@router.delete(
    "/embeddings/{embedding_id}",
    response_model=DeletedResponse,
    responses={status.HTTP_404_NOT_FOUND: {"model": ErrorResponse}},
    summary="Delete a stored embedding",
)
async def delete_embedding(request: Request, embedding_id: str) -> DeletedResponse:
    if not _get_face_service(request).delete(embedding_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Embedding not found")
    return DeletedResponse(id=embedding_id, deleted=True)


@router.post(
    "/search",
    response_model=SearchResponse,
    responses=_IMAGE_ERRORS,
    summary="Find the most similar stored faces for every face in an image",
)
async def search(
    request: Request,
    file: UploadFile,
    top_k: Annotated[int | None, Form(gt=0)] = None,
) -> SearchResponse:
    data = await read_image_upload(request, file)
    limit = top_k if top_k is not None else _get_settings(request).default_search_limit
    per_face = await _run(request, _get_face_service(request).search, data, limit)
    return SearchResponse(
        total_faces=len(per_face),
        results=[
            FaceSearchResult(
                face=f"face_{face.face_index}",
                matches=[
                    Match(id=m.id, cosine=m.score, identifier=m.identifier, name=m.name) for m in face.matches
                ],
            )
            for face in per_face
        ],
    )


@router.get(
    "/stats",
    response_model=StatsResponse,
    summary="Embedding store statistics",
)
async def stats(request: Request) -> StatsResponse:
    store_stats = _get_face_service(request).stats()
    return StatsResponse(stored_embeddings=store_stats.stored_embeddings, identities=store_stats.identities)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    pool = _get_inference_pool(request)
    manager: ModelManager = request.app.state.model_manager
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        models_loaded=manager.get_loaded_models(),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
        stored_embeddings=len(_get_face_service(request).store),
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List available models",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return available models and their status based on current configuration."""
    settings = _get_settings(request)
    active_models = {settings.face_detection_model, settings.face_recognition_model}

    models: list[ModelInfo] = []
    for spec in MODEL_REGISTRY.values():
        if spec.name in active_models:
            model_status = "active"
        elif spec.insightface and not settings.accept_insightface_license:
            model_status = "requires_license"
        else:
            model_status = "available"

        models.append(
            ModelInfo(
                name=spec.name,
                task=spec.task,
                status=model_status,
                license=spec.license,
                input_size=spec.detector_config.image_size if spec.detector_config else None,
            )
        )

    return ModelsResponse(models=models)
