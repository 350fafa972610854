"""RetinaFace post-processing: raw tensors to ordered face detections.

Stages run in a fixed order:

    anchors -> decode -> confidence filter (top-k) -> NMS (keep-top-k)
    -> visibility threshold -> pixel projection -> sort by area
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from facevector.errors import ShapeMismatchError
from facevector.ml.anchors import cached_anchors
from facevector.ml.decoder import decode
from facevector.ml.projection import project, round_half_up, to_pixel_box
from facevector.ml.suppression import filter_by_confidence, nms

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from numpy.typing import ArrayLike, NDArray

    from facevector.ml.anchors import DetectorConfig

logger = logging.getLogger(__name__)

LANDMARK_TYPES: tuple[str, ...] = ("eyeLeft", "eyeRight", "nose", "mouthLeft", "mouthRight")

CONFIDENCE_THRESHOLD: float = 0.02
TOP_K: int = 5000
NMS_THRESHOLD: float = 0.4
KEEP_TOP_K: int = 750
VIS_THRESHOLD: float = 0.6


@dataclass(frozen=True)
class BoundingBox:
    """Box as (left, top, width, height); normalized or pixel depending on use."""

    left: float
    top: float
    width: float
    height: float


@dataclass(frozen=True)
class PixelBoundingBox:
    left: int
    top: int
    width: int
    height: int


@dataclass(frozen=True)
class Landmark:
    type: str
    x: float
    y: float
    pixel_x: int
    pixel_y: int


@dataclass(frozen=True)
class Detection:
    """A detected face in original-image coordinates."""

    bounding_box: BoundingBox
    pixel_bounding_box: PixelBoundingBox
    confidence: float
    score: float
    area: float
    landmarks: tuple[Landmark, ...]


@dataclass(frozen=True)
class RawOutputs:
    """Detector outputs reshaped to (N, 4), (N, 2) and (N, 10)."""

    locations: NDArray[np.float32]
    scores: NDArray[np.float32]
    landmarks: NDArray[np.float32]


_TRAILING_DIMS = {4: "locations", 2: "scores", 10: "landmarks"}


def split_outputs(outputs: Mapping[str, ArrayLike] | Iterable[ArrayLike]) -> RawOutputs:
    """Identify location, score and landmark tensors by their trailing dimension.

    Output names differ between model exports, so they are ignored.

    Raises:
        ShapeMismatchError: If a tensor is missing, duplicated, or the anchor counts disagree.
    """
    tensors = outputs.values() if hasattr(outputs, "values") else outputs
    found: dict[str, NDArray[np.float32]] = {}
    for tensor in tensors:
        arr = np.asarray(tensor, dtype=np.float32)
        if arr.ndim < 2:
            continue
        role = _TRAILING_DIMS.get(arr.shape[-1])
        if role is None:
            continue
        if role in found:
            raise ShapeMismatchError(f"Multiple detector outputs with trailing dimension {arr.shape[-1]}")
        found[role] = arr.reshape(-1, arr.shape[-1])

    missing = [role for role in _TRAILING_DIMS.values() if role not in found]
    if missing:
        raise ShapeMismatchError(f"Detector outputs missing: {', '.join(missing)}")

    counts = {role: len(arr) for role, arr in found.items()}
    if len(set(counts.values())) != 1:
        raise ShapeMismatchError(f"Detector outputs disagree on anchor count: {counts}")

    return RawOutputs(locations=found["locations"], scores=found["scores"], landmarks=found["landmarks"])


def sort_by_area(detections: Iterable[Detection]) -> list[Detection]:
    """Largest face first; equal areas keep their incoming order."""
    return sorted(detections, key=lambda d: d.area, reverse=True)


def _clamp01(value: float) -> float:
    return min(max(value, 0.0), 1.0)


def _build_detection(
    box: NDArray[np.float64],
    pixel_box: NDArray[np.float64],
    pixel_points: NDArray[np.float64],
    points: NDArray[np.float64],
    score: float,
    image_width: int,
    image_height: int,
) -> Detection:
    x1, y1, x2, y2 = (_clamp01(float(v)) for v in box)
    width = max(x2 - x1, 0.0)
    height = max(y2 - y1, 0.0)

    landmarks = tuple(
        Landmark(
            type=label,
            x=float(norm[0]),
            y=float(norm[1]),
            pixel_x=round_half_up(pix[0]),
            pixel_y=round_half_up(pix[1]),
        )
        for label, norm, pix in zip(LANDMARK_TYPES, points, pixel_points, strict=True)
    )

    return Detection(
        bounding_box=BoundingBox(left=x1, top=y1, width=width, height=height),
        pixel_bounding_box=PixelBoundingBox(*to_pixel_box(pixel_box, image_width, image_height)),
        confidence=score * 100.0,
        score=score,
        area=width * height,
        landmarks=landmarks,
    )


class DetectionPipeline:
    """Stateless post-processor for one detector configuration.

    Safe to share between threads: the only shared data is the read-only
    anchor cache.
    """

    def __init__(
        self,
        config: DetectorConfig,
        *,
        confidence_threshold: float = CONFIDENCE_THRESHOLD,
        top_k: int = TOP_K,
        nms_threshold: float = NMS_THRESHOLD,
        keep_top_k: int = KEEP_TOP_K,
        visibility_threshold: float = VIS_THRESHOLD,
    ) -> None:
        self.config = config
        self.confidence_threshold = confidence_threshold
        self.top_k = top_k
        self.nms_threshold = nms_threshold
        self.keep_top_k = keep_top_k
        self.visibility_threshold = visibility_threshold

    def anchors(self) -> NDArray[np.float64]:
        size = self.config.image_size
        return cached_anchors(self.config, size, size)

    def run(
        self,
        outputs: Mapping[str, ArrayLike] | Iterable[ArrayLike],
        original_width: int,
        original_height: int,
        visibility_threshold: float | None = None,
    ) -> list[Detection]:
        """Turn raw detector outputs into detections sorted by area, largest first.

        Args:
            outputs: Raw detector tensors, by name or positionally.
            original_width: Width of the image before it was resized for the network.
            original_height: Height of the image before it was resized for the network.
            visibility_threshold: Overrides the pipeline's final score threshold.

        Returns:
            Detections, possibly empty.

        Raises:
            ShapeMismatchError: If the outputs do not match the anchor set.
        """
        raw = split_outputs(outputs)
        anchors = self.anchors()
        if len(raw.scores) != len(anchors):
            raise ShapeMismatchError(
                f"{self.config.name}: model produced {len(raw.scores)} predictions for {len(anchors)} anchors"
            )

        with np.errstate(over="ignore", invalid="ignore"):
            boxes, points = decode(raw.locations, raw.landmarks, anchors, self.config.variance)
        face_scores = raw.scores[:, 1]

        finite = np.isfinite(boxes).all(axis=1) & np.isfinite(points).all(axis=(1, 2)) & np.isfinite(face_scores)
        if not finite.all():
            logger.warning(
                "%s: dropping %d candidates with non-finite geometry", self.config.name, int((~finite).sum())
            )
            boxes, points, face_scores = boxes[finite], points[finite], face_scores[finite]

        boxes, scores, points = filter_by_confidence(
            boxes, face_scores, points, self.confidence_threshold, self.top_k
        )
        keep = nms(boxes, scores, self.nms_threshold, self.keep_top_k)

        threshold = self.visibility_threshold if visibility_threshold is None else visibility_threshold
        keep = keep[scores[keep] >= threshold]
        logger.debug(
            "%s: %d anchors, %d above %.3f, %d visible after NMS",
            self.config.name,
            len(anchors),
            len(scores),
            self.confidence_threshold,
            len(keep),
        )

        pixel_boxes, pixel_points = project(boxes[keep], points[keep], original_width, original_height)
        detections = [
            _build_detection(
                boxes[idx],
                pixel_boxes[n],
                pixel_points[n],
                points[idx],
                float(scores[idx]),
                original_width,
                original_height,
            )
            for n, idx in enumerate(keep)
        ]
        return sort_by_area(detections)
