"""Project normalized geometry onto original-image pixel space.

Scale factors are always the original (pre-resize) image dimensions, never
the detector's fixed input resolution. Values stay float until
:func:`to_pixel_box` rounds them at the output boundary.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray


def project_boxes(boxes: ArrayLike, original_width: int, original_height: int) -> NDArray[np.float64]:
    """Scale (x1, y1, x2, y2) rows from [0, 1] to pixels."""
    scale = np.array([original_width, original_height, original_width, original_height], dtype=np.float64)
    return np.asarray(boxes, dtype=np.float64).reshape(-1, 4) * scale


def project_landmarks(landmarks: ArrayLike, original_width: int, original_height: int) -> NDArray[np.float64]:
    """Scale (..., 2) landmark points from [0, 1] to pixels."""
    scale = np.array([original_width, original_height], dtype=np.float64)
    return np.asarray(landmarks, dtype=np.float64) * scale


def project(
    boxes: ArrayLike,
    landmarks: ArrayLike,
    original_width: int,
    original_height: int,
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Project boxes and landmarks together."""
    return (
        project_boxes(boxes, original_width, original_height),
        project_landmarks(landmarks, original_width, original_height),
    )


def to_pixel_box(pixel_box: ArrayLike, image_width: int, image_height: int) -> tuple[int, int, int, int]:
    """Round a float (x1, y1, x2, y2) pixel box to integer (left, top, width, height).

    Edges are clamped to the image, so width and height are never negative.
    """
    x1, y1, x2, y2 = (round_half_up(v) for v in np.asarray(pixel_box, dtype=np.float64).ravel())
    left = min(max(x1, 0), image_width)
    top = min(max(y1, 0), image_height)
    right = min(max(x2, left), image_width)
    bottom = min(max(y2, top), image_height)
    return left, top, right - left, bottom - top


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves toward +inf (not banker's rounding)."""
    return math.floor(float(value) + 0.5)
