"""
Heightmap image sampling.

A raster of intensities in [0, 1] covers a rectangular world footprint.
Queries anywhere on the plane are answered by bilinear interpolation;
points outside the footprint take the value of the nearest edge.
"""

import io
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Tuple, Union

import numpy as np
import structlog
from PIL import Image

from ..config.terrain_settings import HeightmapParameters
from .errors import ConfigurationError

logger = structlog.get_logger()


def _sat(value: float) -> float:
    return min(1.0, max(0.0, value))


def _lerp(t, a, b):
    return a + t * (b - a)


def load_raster_from_image(source: Union[str, Path, bytes, BinaryIO]) -> np.ndarray:
    """
    Decode an image into a raster of intensities.

    The red channel divided by 255 is used as intensity, so grayscale and
    color heightmaps both work.

    Args:
        source: File path, raw encoded bytes or a binary file object

    Returns:
        Float array of shape (height, width) with values in [0, 1]

    Raises:
        PIL.UnidentifiedImageError: if the data is not a decodable image
    """
    if isinstance(source, (bytes, bytearray)):
        source = io.BytesIO(source)

    with Image.open(source) as img:
        rgb = img.convert("RGB")
        red = np.asarray(rgb, dtype=np.float64)[:, :, 0]

    pixels = red / 255.0
    logger.info("Heightmap image decoded", width=pixels.shape[1], height=pixels.shape[0])
    return pixels


@dataclass
class RasterHeightSource:
    """Pixel buffer placed on a world-space footprint."""

    pixels: np.ndarray
    footprint_offset: Tuple[float, float] = (-250.0, -250.0)
    footprint_size: Tuple[float, float] = (500.0, 500.0)
    params: HeightmapParameters = field(default_factory=HeightmapParameters)

    def __post_init__(self):
        self.pixels = np.asarray(self.pixels, dtype=np.float64)
        if self.pixels.ndim != 2 or self.pixels.shape[0] < 1 or self.pixels.shape[1] < 1:
            raise ConfigurationError(
                f"Heightmap raster must be a non-empty 2D grid, got shape {self.pixels.shape}",
                ["pixels"],
            )
        if self.footprint_size[0] <= 0 or self.footprint_size[1] <= 0:
            raise ConfigurationError("footprint_size must be positive", ["footprint_size"])

    @property
    def width(self) -> int:
        return self.pixels.shape[1]

    @property
    def height(self) -> int:
        return self.pixels.shape[0]

    @property
    def height_scale(self) -> float:
        return self.params.height_scale


class HeightmapImageSampler:
    """
    Height source backed by a raster.

    With flip_horizontal the image is mirrored along x so it appears the
    right way round once the terrain plane is rotated into the scene; the
    vertical axis is never flipped.
    """

    def __init__(self, raster: RasterHeightSource, flip_horizontal: bool = True):
        self.raster = raster
        self.flip_horizontal = flip_horizontal

    def _normalized(self, x, y, clip, one_minus):
        raster = self.raster
        u = clip((x - raster.footprint_offset[0]) / raster.footprint_size[0])
        v = clip((y - raster.footprint_offset[1]) / raster.footprint_size[1])
        if self.flip_horizontal:
            u = one_minus(u)
        return u, v

    def evaluate(self, x: float, y: float) -> Tuple[float, float]:
        raster = self.raster
        pixels = raster.pixels
        u, v = self._normalized(x, y, _sat, lambda t: 1.0 - t)

        w = raster.width - 1
        h = raster.height - 1

        x1 = int(math.floor(u * w))
        y1 = int(math.floor(v * h))
        x2 = min(x1 + 1, w)
        y2 = min(y1 + 1, h)

        xp = u * w - x1
        yp = v * h - y1

        p11 = pixels[y1, x1]
        p21 = pixels[y1, x2]
        p12 = pixels[y2, x1]
        p22 = pixels[y2, x2]

        px1 = _lerp(xp, p11, p21)
        px2 = _lerp(xp, p12, p22)
        return float(_lerp(yp, px1, px2) * raster.height_scale), 1.0

    def evaluate_grid(self, xs: np.ndarray, ys: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        raster = self.raster
        pixels = raster.pixels
        X, Y = np.meshgrid(np.asarray(xs, dtype=np.float64), np.asarray(ys, dtype=np.float64))
        u, v = self._normalized(
            X, Y, lambda t: np.clip(t, 0.0, 1.0), lambda t: 1.0 - t
        )

        w = raster.width - 1
        h = raster.height - 1

        x1 = np.floor(u * w).astype(np.int64)
        y1 = np.floor(v * h).astype(np.int64)
        x2 = np.minimum(x1 + 1, w)
        y2 = np.minimum(y1 + 1, h)

        xp = u * w - x1
        yp = v * h - y1

        px1 = _lerp(xp, pixels[y1, x1], pixels[y1, x2])
        px2 = _lerp(xp, pixels[y2, x1], pixels[y2, x2])
        heights = _lerp(yp, px1, px2) * raster.height_scale
        return heights, np.ones_like(heights)
