"""Image preprocessing for the detector and embedding models.

Decoding, EXIF orientation and resizing are delegated to Pillow; this
module only lays the pixels out as the models expect.
"""

from __future__ import annotations

import io
import logging
from typing import TYPE_CHECKING, Protocol

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from facevector.errors import InvalidImageError

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from facevector.ml.pipeline import PixelBoundingBox

logger = logging.getLogger(__name__)

# Per-channel mean subtracted from detector input, in RGB channel order.
DETECTOR_MEAN: tuple[float, float, float] = (104.0, 117.0, 123.0)
RECOGNITION_INPUT_SIZE = 112


class ImagePreprocessor(Protocol):
    """Protocol for image preprocessing."""

    def decode_image(self, image_bytes: bytes) -> NDArray[np.uint8]:
        """Decode raw image bytes into an RGB uint8 numpy array.

        Args:
            image_bytes: Raw file bytes (any supported format).

        Returns:
            HxWx3 RGB uint8 numpy array.

        Raises:
            InvalidImageError: If the image cannot be decoded or exceeds size limits.
        """
        ...

    def preprocess_for_detection(self, image: NDArray[np.uint8], input_size: int) -> NDArray[np.float32]:
        """Resize to the detector's square input and return a (1, 3, S, S) tensor."""
        ...

    def preprocess_for_recognition(self, face: NDArray[np.uint8]) -> NDArray[np.float32]:
        """Resize a face crop and return a (1, 3, 112, 112) tensor scaled to [-1, 1]."""
        ...

    def crop_face(self, image: NDArray[np.uint8], box: PixelBoundingBox) -> NDArray[np.uint8]:
        """Cut a pixel box out of an image."""
        ...


def _resize(image: NDArray[np.uint8], width: int, height: int) -> NDArray[np.uint8]:
    if image.shape[0] == height and image.shape[1] == width:
        return image
    resized = Image.fromarray(image).resize((width, height), Image.Resampling.BILINEAR)
    return np.asarray(resized, dtype=np.uint8)


class PillowPreprocessor:
    """Pillow/numpy implementation of :class:`ImagePreprocessor`."""

    def __init__(self, max_image_pixels: int, max_file_size: int) -> None:
        self._max_image_pixels = max_image_pixels
        self._max_file_size = max_file_size

    def decode_image(self, image_bytes: bytes) -> NDArray[np.uint8]:
        if not image_bytes:
            raise InvalidImageError("Empty image")
        if len(image_bytes) > self._max_file_size:
            raise InvalidImageError(f"Image file exceeds {self._max_file_size} bytes")

        try:
            with Image.open(io.BytesIO(image_bytes)) as img:
                width, height = img.size
                if width * height > self._max_image_pixels:
                    raise InvalidImageError(
                        f"Image has {width * height} pixels, limit is {self._max_image_pixels}"
                    )
                oriented = ImageOps.exif_transpose(img) or img
                rgb = oriented.convert("RGB")
        except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as exc:
            raise InvalidImageError(f"Could not decode image: {exc}") from exc

        return np.asarray(rgb, dtype=np.uint8)

    def preprocess_for_detection(self, image: NDArray[np.uint8], input_size: int) -> NDArray[np.float32]:
        resized = _resize(image, input_size, input_size).astype(np.float32)
        resized -= np.asarray(DETECTOR_MEAN, dtype=np.float32)
        return np.ascontiguousarray(resized.transpose(2, 0, 1)[np.newaxis])

    def preprocess_for_recognition(self, face: NDArray[np.uint8]) -> NDArray[np.float32]:
        resized = _resize(face, RECOGNITION_INPUT_SIZE, RECOGNITION_INPUT_SIZE).astype(np.float32)
        scaled = (resized / 255.0 - 0.5) / 0.5
        return np.ascontiguousarray(scaled.transpose(2, 0, 1)[np.newaxis], dtype=np.float32)

    def crop_face(self, image: NDArray[np.uint8], box: PixelBoundingBox) -> NDArray[np.uint8]:
        if box.width <= 0 or box.height <= 0:
            raise InvalidImageError(f"Empty face box {box}")
        return np.ascontiguousarray(image[box.top : box.top + box.height, box.left : box.left + box.width])
