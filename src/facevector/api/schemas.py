"""Pydantic request/response schemas for the FaceVector API."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from facevector.ml.pipeline import Detection


class BoundingBoxOut(BaseModel):
    """Pixel bounding box in the original image."""

    left: int
    top: int
    width: int
    height: int


class LandmarkOut(BaseModel):
    type: str = Field(description="eyeLeft, eyeRight, nose, mouthLeft or mouthRight")
    x: float = Field(description="Relative x position (0.0-1.0)")
    y: float = Field(description="Relative y position (0.0-1.0)")
    pixel_x: int
    pixel_y: int


class DetectedFace(BaseModel):
    """A single detected face with pixel bounding box, confidence and landmarks."""

    bounding_box: BoundingBoxOut
    confidence: float = Field(ge=0.0, le=100.0, description="Detection confidence (0-100)")
    area: float = Field(description="Face area as a fraction of the image area")
    landmarks: list[LandmarkOut]

    @classmethod
    def from_detection(cls, detection: Detection) -> DetectedFace:
        box = detection.pixel_bounding_box
        return cls(
            bounding_box=BoundingBoxOut(left=box.left, top=box.top, width=box.width, height=box.height),
            confidence=detection.confidence,
            area=detection.area,
            landmarks=[
                LandmarkOut(type=lm.type, x=lm.x, y=lm.y, pixel_x=lm.pixel_x, pixel_y=lm.pixel_y)
                for lm in detection.landmarks
            ],
        )


class DetectFacesResponse(BaseModel):
    faces: list[DetectedFace]
    face_count: int
    image_width: int
    image_height: int


class CompareResponse(BaseModel):
    """Similarity between the largest face of two images."""

    cosine: float
    euclidean: float


class StoredFace(BaseModel):
    face: str
    id: str
    identifier: str | None = None
    name: str | None = None


class EnrollResponse(BaseModel):
    total_faces: int
    stored: int
    results: list[StoredFace]


class Match(BaseModel):
    id: str
    cosine: float = Field(ge=-1.0, le=1.0)
    identifier: str | None = None
    name: str | None = None


class FaceSearchResult(BaseModel):
    face: str
    matches: list[Match]


class SearchResponse(BaseModel):
    total_faces: int
    results: list[FaceSearchResult]


class DeletedResponse(BaseModel):
    id: str
    deleted: bool


class EmbeddingEntry(BaseModel):
    """A stored embedding, without its vector."""

    id: str
    identifier: str | None
    name: str | None
    created_at: datetime


class EmbeddingListResponse(BaseModel):
    embeddings: list[EmbeddingEntry]


class StatsResponse(BaseModel):
    stored_embeddings: int
    identities: int = Field(description="Distinct identifiers among stored embeddings")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    models_loaded: list[str]
    concurrent_requests: int
    queue_depth: int
    stored_embeddings: int


class ModelInfo(BaseModel):
    """Information about an available model."""

    name: str
    task: str = Field(description="Model task: 'face_detection' or 'face_recognition'")
    status: str = Field(description="Model status: 'active', 'available', or 'requires_license'")
    license: str
    input_size: int | None = Field(default=None, description="Detector input resolution, if a detector")


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
