"""Face recognition (embedding) over an ONNX Runtime session.

Implementations: ArcFace (default), ArcFace w600k_r50 (opt-in).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

import numpy as np

from facevector.errors import ShapeMismatchError

if TYPE_CHECKING:
    from numpy.typing import NDArray
    from onnxruntime import InferenceSession

    from facevector.ml.preprocessing import ImagePreprocessor


class FaceRecognizer(Protocol):
    """Protocol for face recognition (embedding) models."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    @property
    def embedding_dim(self) -> int:
        """Return the embedding dimensionality (e.g., 512)."""
        ...

    def get_embedding(self, face: NDArray[np.uint8]) -> NDArray[np.float32]:
        """Generate an embedding for a cropped face.

        Args:
            face: HxWx3 RGB uint8 crop of a single face.

        Returns:
            Embedding vector of length ``embedding_dim``, as produced by the model.
        """
        ...


class ArcFaceRecognizer:
    """Runs an ArcFace-style ONNX session on 112x112 face crops."""

    def __init__(
        self,
        model_name: str,
        session: InferenceSession,
        preprocessor: ImagePreprocessor,
        embedding_dim: int = 512,
    ) -> None:
        self._model_name = model_name
        self._session = session
        self._preprocessor = preprocessor
        self._embedding_dim = embedding_dim
        self._input_name = session.get_inputs()[0].name

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def embedding_dim(self) -> int:
        return self._embedding_dim

    def get_embedding(self, face: NDArray[np.uint8]) -> NDArray[np.float32]:
        tensor = self._preprocessor.preprocess_for_recognition(face)
        outputs = self._session.run(None, {self._input_name: tensor})
        embedding = np.asarray(outputs[0], dtype=np.float32).ravel()
        if embedding.size != self._embedding_dim:
            raise ShapeMismatchError(
                f"{self._model_name} returned {embedding.size} values, expected {self._embedding_dim}"
            )
        return embedding
