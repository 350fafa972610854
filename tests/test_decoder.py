"""Tests for box and landmark decoding."""

from __future__ import annotations

import math

import numpy as np
import pytest

from facevector.errors import ShapeMismatchError
from facevector.ml.decoder import decode, decode_boxes, decode_landmarks

VARIANCE = (0.1, 0.2)
ANCHOR = np.array([[0.5, 0.5, 0.2, 0.2]])


class TestDecodeBoxes:
    def test_zero_deltas_reproduce_anchor(self) -> None:
        boxes = decode_boxes(np.zeros(4), ANCHOR, VARIANCE)

        x1, y1, x2, y2 = boxes[0]
        assert (x1 + x2) / 2 == pytest.approx(0.5)
        assert (y1 + y2) / 2 == pytest.approx(0.5)
        assert x2 - x1 == pytest.approx(0.2)
        assert y2 - y1 == pytest.approx(0.2)

    def test_center_and_size_deltas(self) -> None:
        boxes = decode_boxes([1.0, -2.0, 0.5, 0.0], ANCHOR, VARIANCE)

        cx = 0.5 + 1.0 * 0.1 * 0.2
        cy = 0.5 - 2.0 * 0.1 * 0.2
        w = 0.2 * math.exp(0.5 * 0.2)
        h = 0.2
        np.testing.assert_allclose(boxes[0], [cx - w / 2, cy - h / 2, cx + w / 2, cy + h / 2])

    def test_accepts_batched_model_output(self) -> None:
        anchors = np.tile(ANCHOR, (3, 1))
        boxes = decode_boxes(np.zeros((1, 3, 4), dtype=np.float32), anchors, VARIANCE)
        assert boxes.shape == (3, 4)

    def test_flat_input_is_read_per_anchor(self) -> None:
        anchors = np.array([[0.25, 0.25, 0.1, 0.1], [0.75, 0.75, 0.1, 0.1]])
        boxes = decode_boxes([0, 0, 0, 0, 0, 0, 0, 0], anchors, VARIANCE)
        np.testing.assert_allclose(boxes[1], [0.7, 0.7, 0.8, 0.8])

    def test_short_input_fails_fast(self) -> None:
        with pytest.raises(ShapeMismatchError, match="expected 8 values"):
            decode_boxes(np.zeros(7), np.tile(ANCHOR, (2, 1)), VARIANCE)

    def test_long_input_is_not_truncated(self) -> None:
        with pytest.raises(ShapeMismatchError):
            decode_boxes(np.zeros(12), np.tile(ANCHOR, (2, 1)), VARIANCE)

    def test_wrong_trailing_dimension(self) -> None:
        with pytest.raises(ShapeMismatchError, match="trailing dimension"):
            decode_boxes(np.zeros((4, 2)), np.tile(ANCHOR, (2, 1)), VARIANCE)

    def test_bad_anchor_shape(self) -> None:
        with pytest.raises(ShapeMismatchError, match="anchors"):
            decode_boxes(np.zeros(4), np.zeros(4), VARIANCE)


class TestDecodeLandmarks:
    def test_zero_deltas_put_points_on_anchor_center(self) -> None:
        points = decode_landmarks(np.zeros(10), ANCHOR, VARIANCE)

        assert points.shape == (1, 5, 2)
        np.testing.assert_allclose(points[0], np.full((5, 2), 0.5))

    def test_point_deltas_use_anchor_size(self) -> None:
        deltas = np.zeros(10)
        deltas[4] = 1.0  # nose x
        deltas[9] = -1.0  # right mouth corner y

        points = decode_landmarks(deltas, ANCHOR, VARIANCE)[0]

        assert points[2, 0] == pytest.approx(0.5 + 0.1 * 0.2)
        assert points[4, 1] == pytest.approx(0.5 - 0.1 * 0.2)
        assert points[0, 0] == pytest.approx(0.5)

    def test_length_mismatch(self) -> None:
        with pytest.raises(ShapeMismatchError, match="landmarks"):
            decode_landmarks(np.zeros(9), ANCHOR, VARIANCE)


class TestDecode:
    def test_returns_boxes_and_landmarks(self) -> None:
        anchors = np.tile(ANCHOR, (4, 1))
        boxes, points = decode(np.zeros(16), np.zeros(40), anchors, VARIANCE)
        assert boxes.shape == (4, 4)
        assert points.shape == (4, 5, 2)

    def test_either_mismatch_raises(self) -> None:
        anchors = np.tile(ANCHOR, (4, 1))
        with pytest.raises(ShapeMismatchError):
            decode(np.zeros(16), np.zeros(30), anchors, VARIANCE)
