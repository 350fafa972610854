"""Confidence filtering and greedy non-maximum suppression.

IoU uses the fractional-area convention, ``(x2 - x1) * (y2 - y1)``, with
no +1 pixel term. Boxes here are normalized, so an inclusive pixel term
would dominate every overlap.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray


def rank_by_score(scores: ArrayLike) -> NDArray[np.intp]:
    """Indices ordered by score descending, ties broken by lower index first."""
    arr = np.asarray(scores, dtype=np.float64).ravel()
    # lexsort sorts by the last key first; index is the secondary key.
    return np.lexsort((np.arange(arr.size), -arr))


def filter_by_confidence(
    boxes: ArrayLike,
    scores: ArrayLike,
    landmarks: ArrayLike,
    low_threshold: float,
    top_k: int,
) -> tuple[NDArray[np.float64], NDArray[np.float64], NDArray[np.float64]]:
    """Drop candidates with ``score <= low_threshold`` and keep the best ``top_k``.

    Survivors are returned ordered by score descending.
    """
    boxes_arr = np.asarray(boxes, dtype=np.float64)
    scores_arr = np.asarray(scores, dtype=np.float64).ravel()
    landmarks_arr = np.asarray(landmarks, dtype=np.float64)

    keep = np.flatnonzero(scores_arr > low_threshold)
    order = keep[rank_by_score(scores_arr[keep])][:top_k]
    return boxes_arr[order], scores_arr[order], landmarks_arr[order]


def box_areas(boxes: ArrayLike) -> NDArray[np.float64]:
    arr = np.asarray(boxes, dtype=np.float64).reshape(-1, 4)
    return np.maximum(0.0, arr[:, 2] - arr[:, 0]) * np.maximum(0.0, arr[:, 3] - arr[:, 1])


def compute_iou(box: ArrayLike, boxes: ArrayLike) -> NDArray[np.float64]:
    """IoU of one (x1, y1, x2, y2) box against each row of ``boxes``.

    A zero union yields an IoU of 0.
    """
    ref = np.asarray(box, dtype=np.float64).ravel()
    others = np.asarray(boxes, dtype=np.float64).reshape(-1, 4)

    w = np.maximum(0.0, np.minimum(ref[2], others[:, 2]) - np.maximum(ref[0], others[:, 0]))
    h = np.maximum(0.0, np.minimum(ref[3], others[:, 3]) - np.maximum(ref[1], others[:, 1]))
    inter = w * h
    union = box_areas(ref)[0] + box_areas(others) - inter

    iou = np.zeros_like(inter)
    np.divide(inter, union, out=iou, where=union > 0)
    return iou


def nms(boxes: ArrayLike, scores: ArrayLike, iou_threshold: float, keep_top_k: int) -> NDArray[np.intp]:
    """Greedy non-maximum suppression.

    Args:
        boxes: (N, 4) boxes in (x1, y1, x2, y2) order.
        scores: (N,) scores.
        iou_threshold: Candidates overlapping a kept box by more than this are dropped.
        keep_top_k: Maximum number of survivors.

    Returns:
        Indices into the input of kept boxes, best score first.
    """
    boxes_arr = np.asarray(boxes, dtype=np.float64).reshape(-1, 4)
    order = rank_by_score(scores)

    keep: list[int] = []
    while order.size > 0 and len(keep) < keep_top_k:
        i = int(order[0])
        keep.append(i)
        rest = order[1:]
        iou = compute_iou(boxes_arr[i], boxes_arr[rest])
        order = rest[iou <= iou_threshold]

    return np.asarray(keep, dtype=np.intp)
