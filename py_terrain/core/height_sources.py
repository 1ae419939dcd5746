"""
Height sources and radial influence.

A height source answers evaluate(x, y) with a (height, weight) pair, where
weight in [0, 1] says how much the source contributes to the blended
terrain at that point. Bare height fields that return a single float (such
as FractalNoiseField) are treated as sources of weight 1.

Sources may also offer evaluate_grid(xs, ys), which evaluates the tensor
product of two coordinate axes at once and returns arrays of shape
(len(ys), len(xs)). sample_source_grid() falls back to scalar evaluation
for sources without it.
"""

import math
from typing import Optional, Protocol, Tuple, Union, runtime_checkable

import numpy as np
from pydantic import ValidationError

from ..config.terrain_settings import InfluenceBand
from .errors import ConfigurationError

HeightSample = Tuple[float, float]
GridSample = Tuple[np.ndarray, np.ndarray]


@runtime_checkable
class HeightSource(Protocol):
    """Anything that can be blended into a terrain chunk."""

    def evaluate(self, x: float, y: float) -> Union[float, HeightSample]:
        ...


def sample_source(source: HeightSource, x: float, y: float) -> HeightSample:
    """Evaluate a source and return a (height, weight) pair."""
    result = source.evaluate(x, y)
    if isinstance(result, tuple):
        height, weight = result
        return float(height), float(weight)
    return float(result), 1.0


def sample_source_grid(source: HeightSource, xs: np.ndarray, ys: np.ndarray) -> GridSample:
    """
    Evaluate a source over every combination of two coordinate axes.

    Returns:
        (heights, weights), both of shape (len(ys), len(xs))
    """
    xs = np.asarray(xs, dtype=np.float64)
    ys = np.asarray(ys, dtype=np.float64)
    shape = (len(ys), len(xs))

    evaluate_grid = getattr(source, "evaluate_grid", None)
    if evaluate_grid is not None:
        result = evaluate_grid(xs, ys)
        if isinstance(result, tuple):
            heights, weights = result
            return (
                np.broadcast_to(np.asarray(heights, dtype=np.float64), shape),
                np.broadcast_to(np.asarray(weights, dtype=np.float64), shape),
            )
        return np.asarray(result, dtype=np.float64), np.ones(shape, dtype=np.float64)

    heights = np.zeros(shape, dtype=np.float64)
    weights = np.zeros(shape, dtype=np.float64)
    for j, y in enumerate(ys):
        for i, x in enumerate(xs):
            heights[j, i], weights[j, i] = sample_source(source, float(x), float(y))
    return heights, weights


def validate_influence_band(band: InfluenceBand) -> None:
    """
    Raises:
        ConfigurationError: if the band's outer radius is not beyond its inner radius
    """
    if band.outer_radius <= band.inner_radius:
        raise ConfigurationError(
            "outer_radius must be greater than inner_radius", ["inner_radius", "outer_radius"]
        )


def _smoothstep(t):
    return t * t * (3 - 2 * t)


class RadialInfluenceGenerator:
    """
    Wraps a source with a circular band of influence.

    Only the wrapped source's height is used; the weight comes from the
    distance to the band center, smoothly falling from 1 at the inner
    radius to 0 at the outer radius.
    """

    def __init__(
        self,
        source: HeightSource,
        center: Tuple[float, float] = (0.0, 0.0),
        inner_radius: float = 0.0,
        outer_radius: float = 1.0,
        band: Optional[InfluenceBand] = None,
    ):
        if band is None:
            try:
                band = InfluenceBand(
                    center=tuple(center), inner_radius=inner_radius, outer_radius=outer_radius
                )
            except ValidationError as e:
                raise ConfigurationError.from_validation_error("influence band", e)
        validate_influence_band(band)
        self.source = source
        self.band = band

    def weight(self, x: float, y: float) -> float:
        """Blend weight at a world position."""
        band = self.band
        dx = x - band.center[0]
        dy = y - band.center[1]
        distance = math.sqrt(dx * dx + dy * dy)
        t = 1.0 - min(
            1.0,
            max(0.0, (distance - band.inner_radius) / (band.outer_radius - band.inner_radius)),
        )
        return _smoothstep(t)

    def weight_grid(self, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
        band = self.band
        X, Y = np.meshgrid(np.asarray(xs, dtype=np.float64), np.asarray(ys, dtype=np.float64))
        dx = X - band.center[0]
        dy = Y - band.center[1]
        distance = np.sqrt(dx * dx + dy * dy)
        t = 1.0 - np.clip(
            (distance - band.inner_radius) / (band.outer_radius - band.inner_radius), 0.0, 1.0
        )
        return _smoothstep(t)

    def evaluate(self, x: float, y: float) -> HeightSample:
        height, _ = sample_source(self.source, x, y)
        return height, self.weight(x, y)

    def evaluate_grid(self, xs: np.ndarray, ys: np.ndarray) -> GridSample:
        heights, _ = sample_source_grid(self.source, xs, ys)
        return heights, self.weight_grid(xs, ys)


class BumpHeightSource:
    """Smooth round hill centred on the origin."""

    def __init__(self, radius: float = 250.0, peak_height: float = 128.0):
        if radius <= 0:
            raise ConfigurationError("radius must be positive", ["radius"])
        self.radius = radius
        self.peak_height = peak_height

    @staticmethod
    def _smootherstep(h):
        return h * h * h * (h * (h * 6 - 15) + 10)

    def evaluate(self, x: float, y: float) -> HeightSample:
        distance = math.sqrt(x * x + y * y)
        h = 1.0 - min(1.0, max(0.0, distance / self.radius))
        return self._smootherstep(h) * self.peak_height, 1.0

    def evaluate_grid(self, xs: np.ndarray, ys: np.ndarray) -> GridSample:
        X, Y = np.meshgrid(np.asarray(xs, dtype=np.float64), np.asarray(ys, dtype=np.float64))
        h = 1.0 - np.clip(np.sqrt(X * X + Y * Y) / self.radius, 0.0, 1.0)
        return self._smootherstep(h) * self.peak_height, np.ones_like(h)


class ConstantHeightSource:
    """Same height and weight everywhere."""

    def __init__(self, height: float, weight: float = 1.0):
        if not 0.0 <= weight <= 1.0:
            raise ConfigurationError("weight must be within [0, 1]", ["weight"])
        self.height = height
        self.weight = weight

    def evaluate(self, x: float, y: float) -> HeightSample:
        return self.height, self.weight

    def evaluate_grid(self, xs: np.ndarray, ys: np.ndarray) -> GridSample:
        shape = (len(ys), len(xs))
        return np.full(shape, self.height, dtype=np.float64), np.full(shape, self.weight, dtype=np.float64)
