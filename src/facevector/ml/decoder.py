"""Decode per-anchor regression deltas into normalized boxes and landmarks."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from facevector.errors import ShapeMismatchError

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray

NUM_LANDMARKS = 5


def _as_rows(values: ArrayLike, width: int, num_anchors: int, label: str) -> NDArray[np.float64]:
    """Reshape flat or (1, N, width) output into (N, width), refusing any other length."""
    arr = np.asarray(values, dtype=np.float64)
    if arr.size != width * num_anchors:
        raise ShapeMismatchError(
            f"{label}: expected {width * num_anchors} values ({num_anchors} anchors x {width}), got {arr.size}"
        )
    if arr.ndim > 1 and arr.shape[-1] != width:
        raise ShapeMismatchError(f"{label}: expected trailing dimension {width}, got shape {arr.shape}")
    return arr.reshape(num_anchors, width)


def _check_anchors(anchors: ArrayLike) -> NDArray[np.float64]:
    priors = np.asarray(anchors, dtype=np.float64)
    if priors.ndim != 2 or priors.shape[1] != 4:
        raise ShapeMismatchError(f"anchors: expected shape (N, 4), got {priors.shape}")
    return priors


def decode_boxes(
    raw_locations: ArrayLike, anchors: ArrayLike, variance: tuple[float, float]
) -> NDArray[np.float64]:
    """Decode location deltas into (x1, y1, x2, y2) boxes.

    Output is in normalized space and may fall slightly outside [0, 1].
    """
    priors = _check_anchors(anchors)
    loc = _as_rows(raw_locations, 4, len(priors), "locations")

    centers = priors[:, :2] + loc[:, :2] * variance[0] * priors[:, 2:]
    sizes = priors[:, 2:] * np.exp(loc[:, 2:] * variance[1])
    return np.concatenate((centers - sizes / 2, centers + sizes / 2), axis=1)


def decode_landmarks(
    raw_landmarks: ArrayLike, anchors: ArrayLike, variance: tuple[float, float]
) -> NDArray[np.float64]:
    """Decode landmark deltas into (N, 5, 2) normalized points."""
    priors = _check_anchors(anchors)
    deltas = _as_rows(raw_landmarks, 2 * NUM_LANDMARKS, len(priors), "landmarks").reshape(-1, NUM_LANDMARKS, 2)
    return priors[:, np.newaxis, :2] + deltas * variance[0] * priors[:, np.newaxis, 2:]


def decode(
    raw_locations: ArrayLike,
    raw_landmarks: ArrayLike,
    anchors: ArrayLike,
    variance: tuple[float, float],
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Decode boxes and landmarks for every anchor.

    Args:
        raw_locations: 4 x N location deltas, flat or shaped.
        raw_landmarks: 10 x N landmark deltas, flat or shaped.
        anchors: (N, 4) normalized (cx, cy, w, h) priors.
        variance: Decode variance pair.

    Returns:
        Tuple of (N, 4) boxes and (N, 5, 2) landmarks.

    Raises:
        ShapeMismatchError: If either array does not match the anchor count.
    """
    return decode_boxes(raw_locations, anchors, variance), decode_landmarks(raw_landmarks, anchors, variance)
