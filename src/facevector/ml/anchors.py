"""Prior (anchor) box generation for RetinaFace-style detectors.

Raw detector outputs are positional arrays aligned to the exact order
produced here: feature-map level, then row, then column, then min size.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from functools import lru_cache

import numpy as np
from numpy.typing import NDArray


@dataclass(frozen=True)
class DetectorConfig:
    """Static anchor/decode configuration for one detector backbone."""

    name: str
    min_sizes: tuple[tuple[int, ...], ...]
    steps: tuple[int, ...]
    variance: tuple[float, float]
    clip: bool
    image_size: int

    def __post_init__(self) -> None:
        if len(self.min_sizes) != len(self.steps):
            raise ValueError(
                f"{self.name}: {len(self.min_sizes)} min-size levels but {len(self.steps)} steps"
            )


CFG_MNET = DetectorConfig(
    name="mobilenet0.25",
    min_sizes=((16, 32), (64, 128), (256, 512)),
    steps=(8, 16, 32),
    variance=(0.1, 0.2),
    clip=False,
    image_size=640,
)

CFG_RE50 = DetectorConfig(
    name="Resnet50",
    min_sizes=((16, 32), (64, 128), (256, 512)),
    steps=(8, 16, 32),
    variance=(0.1, 0.2),
    clip=False,
    image_size=840,
)


def feature_map_sizes(config: DetectorConfig, input_width: int, input_height: int) -> list[tuple[int, int]]:
    """Return (rows, cols) of each feature-map level."""
    return [(math.ceil(input_height / step), math.ceil(input_width / step)) for step in config.steps]


def anchor_count(config: DetectorConfig, input_width: int, input_height: int) -> int:
    """Number of anchors :func:`generate_anchors` emits for this resolution."""
    return sum(
        rows * cols * len(sizes)
        for (rows, cols), sizes in zip(
            feature_map_sizes(config, input_width, input_height), config.min_sizes, strict=True
        )
    )


def generate_anchors(config: DetectorConfig, input_width: int, input_height: int) -> NDArray[np.float64]:
    """Generate the ordered anchor set for a detector input resolution.

    Args:
        config: Detector configuration.
        input_width: Network input width in pixels.
        input_height: Network input height in pixels.

    Returns:
        Array of shape (N, 4) holding normalized (cx, cy, w, h) rows.
    """
    levels: list[NDArray[np.float64]] = []
    for (rows, cols), step, sizes in zip(
        feature_map_sizes(config, input_width, input_height), config.steps, config.min_sizes, strict=True
    ):
        # Row-major grid; the size axis is innermost.
        ii, jj, kk = np.meshgrid(np.arange(rows), np.arange(cols), np.arange(len(sizes)), indexing="ij")
        size_arr = np.asarray(sizes, dtype=np.float64)[kk.ravel()]

        level = np.empty((ii.size, 4), dtype=np.float64)
        level[:, 0] = (jj.ravel() + 0.5) * step / input_width
        level[:, 1] = (ii.ravel() + 0.5) * step / input_height
        level[:, 2] = size_arr / input_width
        level[:, 3] = size_arr / input_height
        levels.append(level)

    anchors = np.concatenate(levels, axis=0) if levels else np.empty((0, 4), dtype=np.float64)
    if config.clip:
        np.clip(anchors, 0.0, 1.0, out=anchors)
    return anchors


@lru_cache(maxsize=16)
def cached_anchors(config: DetectorConfig, input_width: int, input_height: int) -> NDArray[np.float64]:
    """Memoized :func:`generate_anchors`, keyed by (config, resolution).

    The returned array is shared between callers and marked read-only.
    """
    anchors = generate_anchors(config, input_width, input_height)
    anchors.setflags(write=False)
    return anchors
