"""
Terrain chunks.

A chunk is a square grid of vertices at a world offset. Rebuilding a chunk
blends every height source at every vertex into a dense height buffer that
an external mesh builder turns into geometry.
"""

from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import structlog

from .height_sources import HeightSource, sample_source, sample_source_grid

logger = structlog.get_logger()

WHITE = np.array([1.0, 1.0, 1.0])
GREEN = np.array([0x46, 0xB0, 0x0C], dtype=np.float64) / 255.0


class HeightTint:
    """
    Cosmetic tint intensity derived from a source's raw height.

    Evaluates like a height source whose "height" is the wrapped source's
    height divided by max_height and clamped to [0, 1].
    """

    def __init__(self, source: HeightSource, max_height: float = 16.0):
        self.source = source
        self.max_height = max_height

    def evaluate(self, x: float, y: float) -> Tuple[float, float]:
        height, _ = sample_source(self.source, x, y)
        return min(1.0, max(0.0, height / self.max_height)), 1.0

    def evaluate_grid(self, xs: np.ndarray, ys: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        heights, _ = sample_source_grid(self.source, xs, ys)
        intensity = np.clip(heights / self.max_height, 0.0, 1.0)
        return intensity, np.ones_like(intensity)


def blend_heights(
    sources: List[HeightSource], xs: np.ndarray, ys: np.ndarray
) -> np.ndarray:
    """
    Weighted average of all sources over a vertex grid.

    Points where every source has weight 0 get height 0.

    Returns:
        Array of shape (len(ys), len(xs))
    """
    shape = (len(ys), len(xs))
    total = np.zeros(shape, dtype=np.float64)
    weight_sum = np.zeros(shape, dtype=np.float64)
    for source in sources:
        heights, weights = sample_source_grid(source, xs, ys)
        total += heights * weights
        weight_sum += weights

    return np.divide(total, weight_sum, out=np.zeros(shape, dtype=np.float64), where=weight_sum > 0)


class TerrainChunk:
    """
    Fixed-resolution tile of the terrain.

    Vertices are laid out like a centred plane: local coordinates run from
    -world_size / 2 to +world_size / 2 on both axes, and heights[j, i] is
    the vertex at local (axis[i], axis[j]).
    """

    def __init__(
        self,
        key: Tuple[int, int],
        world_offset: Tuple[float, float],
        resolution: int,
        world_size: float,
        sources: Optional[List[HeightSource]] = None,
    ):
        if resolution < 2:
            raise ValueError("resolution must be at least 2 vertices per side")
        self.key = key
        self.world_offset = (float(world_offset[0]), float(world_offset[1]))
        self.resolution = resolution
        self.world_size = world_size
        self.sources: List[HeightSource] = list(sources or [])
        self.tint_source: Optional[HeightTint] = None

        self._buffers: Tuple[np.ndarray, np.ndarray] = (
            np.zeros((resolution, resolution), dtype=np.float64),
            np.zeros((resolution, resolution), dtype=np.float64),
        )
        self.rebuild_count = 0

    @property
    def heights(self) -> np.ndarray:
        """Vertex heights, heights[j, i] at local (axis[i], axis[j])."""
        return self._buffers[0]

    @property
    def tint(self) -> np.ndarray:
        """Cosmetic tint intensity per vertex."""
        return self._buffers[1]

    @property
    def axis(self) -> np.ndarray:
        """Local vertex coordinates along one side."""
        half = self.world_size / 2.0
        return np.linspace(-half, half, self.resolution)

    @property
    def world_axes(self) -> Tuple[np.ndarray, np.ndarray]:
        """World x and y coordinates of the vertex columns and rows."""
        axis = self.axis
        return axis + self.world_offset[0], axis + self.world_offset[1]

    def height_at(self, i: int, j: int) -> float:
        """Blended height of one vertex, evaluated directly from the sources."""
        xs, ys = self.world_axes
        weight_sum = 0.0
        total = 0.0
        for source in self.sources:
            h, w = sample_source(source, float(xs[i]), float(ys[j]))
            total += h * w
            weight_sum += w
        if weight_sum > 0:
            return total / weight_sum
        return 0.0

    def compute_buffers(self) -> Tuple[np.ndarray, np.ndarray]:
        """Fresh (heights, tint) buffers from the current sources."""
        xs, ys = self.world_axes
        heights = blend_heights(self.sources, xs, ys)

        if self.tint_source is not None:
            tint, _ = sample_source_grid(self.tint_source, xs, ys)
            tint = np.array(tint, dtype=np.float64)
        else:
            tint = np.zeros_like(heights)
        return heights, tint

    def commit(self, buffers: Tuple[np.ndarray, np.ndarray]) -> None:
        """Replace both buffers in a single assignment."""
        heights, _ = buffers
        self._buffers = buffers
        self.rebuild_count += 1
        logger.debug(
            "Chunk rebuilt",
            key=self.key,
            sources=len(self.sources),
            min_height=float(heights.min()),
            max_height=float(heights.max()),
        )

    def rebuild(self) -> None:
        """
        Recompute every vertex height.

        The new buffers replace the old ones only once fully computed, so a
        failure leaves the previous heights in place.
        """
        self.commit(self.compute_buffers())

    @property
    def colors(self) -> np.ndarray:
        """Per-vertex RGB colors, white lerped toward green by tint."""
        return WHITE + self.tint[..., np.newaxis] * (GREEN - WHITE)

    def export(self) -> Dict[str, Any]:
        """Plain data for mesh builders and the API."""
        heights, tint = self._buffers
        return {
            "key": list(self.key),
            "world_offset": list(self.world_offset),
            "resolution": self.resolution,
            "world_size": self.world_size,
            "heights": heights.tolist(),
            "tint": tint.tolist(),
        }
