"""
Continuous 2D noise primitives.

Both families expose the same interface so the fractal field can switch
between them at runtime:

- sample2d(x, y) returns a float in [-1, 1]
- sample_grid(xs, ys) samples every (x, y) combination of two coordinate
  axes and returns an array of shape (len(ys), len(xs))
"""

import math
from typing import Protocol, Union

import numpy as np
from opensimplex import OpenSimplex

from ..config.terrain_settings import NoiseFamily
from .errors import ConfigurationError


class NoisePrimitive(Protocol):
    """Seeded continuous noise in [-1, 1]."""

    def sample2d(self, x: float, y: float) -> float:
        ...

    def sample_grid(self, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
        ...


class SimplexPrimitive:
    """OpenSimplex noise."""

    def __init__(self, seed: int):
        self.seed = seed
        self._generator = OpenSimplex(seed=seed)

    def sample2d(self, x: float, y: float) -> float:
        return self._generator.noise2(x, y)

    def sample_grid(self, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
        xs = np.asarray(xs, dtype=np.float64)
        ys = np.asarray(ys, dtype=np.float64)
        return self._generator.noise2array(xs, ys)


class PerlinPrimitive:
    """
    Classic 2D Perlin gradient noise.

    The permutation table is shuffled from the seed so different seeds give
    different fields. Output is clamped to [-1, 1].
    """

    def __init__(self, seed: int):
        self.seed = seed
        rng = np.random.default_rng(seed & 0xFFFFFFFF)
        perm = rng.permutation(256).astype(np.int64)
        self._perm = np.concatenate([perm, perm])
        self._perm_list = self._perm.tolist()

    @staticmethod
    def _fade(t):
        # 6t^5 - 15t^4 + 10t^3
        return t * t * t * (t * (t * 6 - 15) + 10)

    @staticmethod
    def _lerp(a, b, t):
        return a + t * (b - a)

    @staticmethod
    def _grad(h: int, x: float, y: float) -> float:
        h = h & 3
        if h == 0:
            return x + y
        if h == 1:
            return -x + y
        if h == 2:
            return x - y
        return -x - y

    @staticmethod
    def _grad_array(h: np.ndarray, x: np.ndarray, y: np.ndarray) -> np.ndarray:
        h = h & 3
        return np.select([h == 0, h == 1, h == 2], [x + y, -x + y, x - y], -x - y)

    def sample2d(self, x: float, y: float) -> float:
        p = self._perm_list
        fx = math.floor(x)
        fy = math.floor(y)
        xi = int(fx) & 255
        yi = int(fy) & 255
        xf = x - fx
        yf = y - fy

        u = self._fade(xf)
        v = self._fade(yf)

        aa = p[p[xi] + yi]
        ab = p[p[xi] + yi + 1]
        ba = p[p[xi + 1] + yi]
        bb = p[p[xi + 1] + yi + 1]

        x1 = self._lerp(self._grad(aa, xf, yf), self._grad(ba, xf - 1, yf), u)
        x2 = self._lerp(self._grad(ab, xf, yf - 1), self._grad(bb, xf - 1, yf - 1), u)
        return min(1.0, max(-1.0, self._lerp(x1, x2, v)))

    def sample_grid(self, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
        X, Y = np.meshgrid(
            np.asarray(xs, dtype=np.float64), np.asarray(ys, dtype=np.float64)
        )
        p = self._perm
        fx = np.floor(X)
        fy = np.floor(Y)
        xi = fx.astype(np.int64) & 255
        yi = fy.astype(np.int64) & 255
        xf = X - fx
        yf = Y - fy

        u = self._fade(xf)
        v = self._fade(yf)

        aa = p[p[xi] + yi]
        ab = p[p[xi] + yi + 1]
        ba = p[p[xi + 1] + yi]
        bb = p[p[xi + 1] + yi + 1]

        x1 = self._lerp(self._grad_array(aa, xf, yf), self._grad_array(ba, xf - 1, yf), u)
        x2 = self._lerp(
            self._grad_array(ab, xf, yf - 1), self._grad_array(bb, xf - 1, yf - 1), u
        )
        return np.clip(self._lerp(x1, x2, v), -1.0, 1.0)


_PRIMITIVES = {
    NoiseFamily.SIMPLEX: SimplexPrimitive,
    NoiseFamily.PERLIN: PerlinPrimitive,
}


def create_primitive(family: Union[NoiseFamily, str], seed: int) -> NoisePrimitive:
    """
    Build the noise primitive for a family name.

    Raises:
        ConfigurationError: if the family is not recognized
    """
    try:
        family = NoiseFamily(family)
    except ValueError:
        raise ConfigurationError(f"Unknown noise family: {family!r}", ["noise_family"])
    return _PRIMITIVES[family](seed)
