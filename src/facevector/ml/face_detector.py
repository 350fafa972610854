"""RetinaFace face detection over an ONNX Runtime session.

Variants: ResNet50 (840x840 input), MobileNet 0.25 (640x640 input). Both
share one post-processing pipeline parameterized by ``DetectorConfig``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

import numpy as np

from facevector.ml.pipeline import DetectionPipeline

if TYPE_CHECKING:
    from numpy.typing import NDArray
    from onnxruntime import InferenceSession

    from facevector.config import Settings
    from facevector.ml.anchors import DetectorConfig
    from facevector.ml.pipeline import Detection
    from facevector.ml.preprocessing import ImagePreprocessor

logger = logging.getLogger(__name__)


class FaceDetector(Protocol):
    """Protocol for face detection models."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    def detect(self, image: NDArray[np.uint8], visibility_threshold: float | None = None) -> list[Detection]:
        """Detect faces in an image.

        Args:
            image: HxWx3 RGB uint8 array at its original resolution.
            visibility_threshold: Overrides the configured final score threshold.

        Returns:
            Detections sorted by area, largest first. Empty when no face is found.
        """
        ...


class RetinaFaceDetector:
    """Runs a RetinaFace ONNX session and post-processes its outputs."""

    def __init__(
        self,
        model_name: str,
        session: InferenceSession,
        preprocessor: ImagePreprocessor,
        pipeline: DetectionPipeline,
    ) -> None:
        self._model_name = model_name
        self._session = session
        self._preprocessor = preprocessor
        self._pipeline = pipeline
        self._input_name = session.get_inputs()[0].name

    @classmethod
    def from_settings(
        cls,
        model_name: str,
        config: DetectorConfig,
        session: InferenceSession,
        preprocessor: ImagePreprocessor,
        settings: Settings,
    ) -> RetinaFaceDetector:
        pipeline = DetectionPipeline(
            config,
            confidence_threshold=settings.confidence_threshold,
            top_k=settings.top_k,
            nms_threshold=settings.nms_threshold,
            keep_top_k=settings.keep_top_k,
            visibility_threshold=settings.visibility_threshold,
        )
        return cls(model_name, session, preprocessor, pipeline)

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def config(self) -> DetectorConfig:
        return self._pipeline.config

    def detect(self, image: NDArray[np.uint8], visibility_threshold: float | None = None) -> list[Detection]:
        # Geometry is projected onto the original size, so capture it before resizing.
        original_height, original_width = image.shape[:2]

        tensor = self._preprocessor.preprocess_for_detection(image, self.config.image_size)
        outputs = self._session.run(None, {self._input_name: tensor})

        detections = self._pipeline.run(outputs, original_width, original_height, visibility_threshold)
        logger.debug(
            "%s found %d faces in %dx%d image", self._model_name, len(detections), original_width, original_height
        )
        return detections
