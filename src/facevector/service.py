"""Face service: detection, enrollment, search and comparison over images.

All methods are synchronous and CPU-bound; the API layer runs them through
:class:`facevector.ml.inference.InferencePool`.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

from facevector.errors import NoFaceDetectedError
from facevector.ml.similarity import compare_embeddings

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray

    from facevector.ml.face_detector import FaceDetector
    from facevector.ml.face_recognizer import FaceRecognizer
    from facevector.ml.pipeline import Detection
    from facevector.ml.preprocessing import ImagePreprocessor
    from facevector.ml.similarity import EmbeddingComparison, SimilarityResult, SimilarityStore, StoredEmbedding

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DetectionResult:
    """Detections plus the dimensions they were projected onto."""

    detections: list[Detection]
    image_width: int
    image_height: int


@dataclass(frozen=True)
class FaceMatches:
    face_index: int
    matches: list[SimilarityResult]


@dataclass(frozen=True)
class StoreStats:
    stored_embeddings: int
    identities: int


class FaceService:
    """Ties a detector, a recognizer and a similarity store together."""

    def __init__(
        self,
        preprocessor: ImagePreprocessor,
        detector: FaceDetector,
        recognizer: FaceRecognizer,
        store: SimilarityStore,
    ) -> None:
        self.preprocessor = preprocessor
        self.detector = detector
        self.recognizer = recognizer
        self.store = store

    # -- Detection ----------------------------------------------------------

    def detect(self, image_bytes: bytes, visibility_threshold: float | None = None) -> DetectionResult:
        """Detect faces; an empty result is not an error here."""
        image = self.preprocessor.decode_image(image_bytes)
        height, width = image.shape[:2]
        return DetectionResult(self.detector.detect(image, visibility_threshold), width, height)

    def require_faces(self, image: NDArray[np.uint8]) -> list[Detection]:
        """Detect faces, raising :class:`NoFaceDetectedError` if there are none."""
        detections = self.detector.detect(image)
        if not detections:
            raise NoFaceDetectedError
        return detections

    # -- Embeddings ---------------------------------------------------------

    def embed_faces(self, image: NDArray[np.uint8]) -> list[NDArray[np.float32]]:
        """One embedding per detected face, largest face first."""
        embeddings = []
        for detection in self.require_faces(image):
            crop = self.preprocessor.crop_face(image, detection.pixel_bounding_box)
            embeddings.append(self.recognizer.get_embedding(crop))
        return embeddings

    def enroll(
        self,
        image_bytes: bytes,
        identifier: str | None = None,
        name: str | None = None,
    ) -> list[StoredEmbedding]:
        """Store an embedding for every face in the image under new ids.

        ``identifier`` and ``name`` are attached to each stored face and
        returned with later search matches.
        """
        image = self.preprocessor.decode_image(image_bytes)
        stored = [
            self.store.add(str(uuid.uuid4()), embedding, identifier, name) for embedding in self.embed_faces(image)
        ]
        logger.info("Enrolled %d faces (identifier=%s)", len(stored), identifier)
        return stored

    def search(self, image_bytes: bytes, limit: int) -> list[FaceMatches]:
        """Query the store once per detected face."""
        image = self.preprocessor.decode_image(image_bytes)
        return [
            FaceMatches(face_index=i, matches=self.store.query(embedding, limit))
            for i, embedding in enumerate(self.embed_faces(image))
        ]

    def compare(self, image_a: bytes, image_b: bytes) -> EmbeddingComparison:
        """Compare the largest face of each image."""
        embedding_a = self._embed_largest_face(self.preprocessor.decode_image(image_a))
        embedding_b = self._embed_largest_face(self.preprocessor.decode_image(image_b))
        return compare_embeddings(embedding_a, embedding_b)

    def _embed_largest_face(self, image: NDArray[np.uint8]) -> NDArray[np.float32]:
        largest = self.require_faces(image)[0]
        return self.recognizer.get_embedding(self.preprocessor.crop_face(image, largest.pixel_bounding_box))

    def delete(self, embedding_id: str) -> bool:
        return self.store.delete(embedding_id)

    def recent(self, limit: int) -> list[StoredEmbedding]:
        return self.store.recent(limit)

    def stats(self) -> StoreStats:
        return StoreStats(stored_embeddings=len(self.store), identities=len(self.store.identities()))
