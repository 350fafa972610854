"""Tests for prior box generation."""

from __future__ import annotations

import numpy as np
import pytest

from facevector.ml.anchors import (
    CFG_MNET,
    CFG_RE50,
    DetectorConfig,
    anchor_count,
    cached_anchors,
    feature_map_sizes,
    generate_anchors,
)

_SMALL = DetectorConfig(
    name="small",
    min_sizes=((8, 16), (32,)),
    steps=(8, 16),
    variance=(0.1, 0.2),
    clip=False,
    image_size=32,
)


class TestGenerateAnchors:
    def test_deterministic(self) -> None:
        first = generate_anchors(CFG_MNET, 640, 640)
        second = generate_anchors(CFG_MNET, 640, 640)
        np.testing.assert_array_equal(first, second)

    def test_mobilenet_640_count(self) -> None:
        anchors = generate_anchors(CFG_MNET, 640, 640)
        # (80*80 + 40*40 + 20*20) cells * 2 sizes
        assert anchors.shape == (16800, 4)
        assert anchor_count(CFG_MNET, 640, 640) == 16800

    def test_resnet_840_uses_ceil_for_grid(self) -> None:
        assert feature_map_sizes(CFG_RE50, 840, 840) == [(105, 105), (53, 53), (27, 27)]
        assert len(generate_anchors(CFG_RE50, 840, 840)) == (105 * 105 + 53 * 53 + 27 * 27) * 2

    def test_order_is_level_row_col_size(self) -> None:
        anchors = generate_anchors(_SMALL, 32, 32)

        # level 0: 4x4 grid, two sizes per cell
        np.testing.assert_allclose(anchors[0], [4 / 32, 4 / 32, 8 / 32, 8 / 32])
        np.testing.assert_allclose(anchors[1], [4 / 32, 4 / 32, 16 / 32, 16 / 32])
        # next column, same row
        np.testing.assert_allclose(anchors[2], [12 / 32, 4 / 32, 8 / 32, 8 / 32])
        # first cell of the second row
        np.testing.assert_allclose(anchors[8], [4 / 32, 12 / 32, 8 / 32, 8 / 32])
        # level 1 starts after 4*4*2 anchors: 2x2 grid, one size
        np.testing.assert_allclose(anchors[32], [8 / 32, 8 / 32, 1.0, 1.0])
        assert len(anchors) == 32 + 4

    def test_non_square_input_scales_axes_separately(self) -> None:
        anchors = generate_anchors(_SMALL, 64, 32)

        # width 64 -> 8 columns; height 32 -> 4 rows
        assert feature_map_sizes(_SMALL, 64, 32)[0] == (4, 8)
        np.testing.assert_allclose(anchors[0], [4 / 64, 4 / 32, 8 / 64, 8 / 32])

    def test_clip_limits_anchors_to_unit_square(self) -> None:
        clipped = DetectorConfig(
            name="clipped", min_sizes=((64,),), steps=(16,), variance=(0.1, 0.2), clip=True, image_size=32
        )
        anchors = generate_anchors(clipped, 32, 32)
        assert anchors.max() <= 1.0
        assert anchors.min() >= 0.0

    def test_mismatched_levels_rejected(self) -> None:
        with pytest.raises(ValueError, match="min-size levels"):
            DetectorConfig(
                name="bad", min_sizes=((16,),), steps=(8, 16), variance=(0.1, 0.2), clip=False, image_size=32
            )


class TestCachedAnchors:
    def test_same_array_returned(self) -> None:
        assert cached_anchors(CFG_MNET, 640, 640) is cached_anchors(CFG_MNET, 640, 640)

    def test_cached_array_is_read_only(self) -> None:
        anchors = cached_anchors(_SMALL, 32, 32)
        with pytest.raises(ValueError, match="read-only"):
            anchors[0, 0] = 1.0

    def test_matches_fresh_generation(self) -> None:
        np.testing.assert_array_equal(cached_anchors(_SMALL, 32, 32), generate_anchors(_SMALL, 32, 32))
