"""Exception hierarchy for FaceVector."""

from __future__ import annotations


class FaceVectorError(Exception):
    """Base class for all FaceVector errors."""


class ShapeMismatchError(FaceVectorError):
    """Raised when raw model output does not line up with the anchor set.

    Indicates a model/config mismatch; never retried.
    """


class DimensionMismatchError(FaceVectorError):
    """Raised when two embeddings of different lengths are compared."""


class InvalidEmbeddingError(FaceVectorError):
    """Raised when an embedding is zero-norm or contains NaN/Inf."""


class NoFaceDetectedError(FaceVectorError):
    """Raised by callers that require at least one face in an image."""

    def __init__(self, message: str = "no_face_detected") -> None:
        super().__init__(message)


class InvalidImageError(FaceVectorError):
    """Raised when image bytes cannot be decoded or exceed size limits."""


class ModelNotFoundError(FaceVectorError, KeyError):
    """Raised for model names missing from the registry."""

    def __str__(self) -> str:
        # KeyError.__str__ would repr() the message
        return str(self.args[0]) if self.args else ""
