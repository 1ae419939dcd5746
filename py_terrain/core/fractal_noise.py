"""
Fractal (multi-octave) noise height field.

Sums octaves of a continuous noise primitive, normalizes by the summed
amplitudes and reshapes the result with a power curve:

    total = sum(remap(noise(p / base_scale * f_i)) * a_i) / sum(a_i)
    height = total ** exponentiation * height_scale

with a_0 = 1, f_0 = 1, a_{i+1} = a_i * persistence, f_{i+1} = f_i * lacunarity
and remap(n) = n * 0.5 + 0.5.
"""

from typing import Optional, Tuple

import numpy as np
import structlog

from ..config.terrain_settings import NoiseFamily, NoiseParameters
from .errors import ConfigurationError
from .noise_primitives import NoisePrimitive, create_primitive

logger = structlog.get_logger()


def validate_noise_parameters(params: NoiseParameters) -> None:
    """
    Check parameters that may have been mutated after construction.

    Raises:
        ConfigurationError: on a non-positive base scale, fewer than one
            octave or an unknown noise family
    """
    if params.base_scale <= 0:
        raise ConfigurationError("base_scale must be positive", ["base_scale"])
    if params.octave_count < 1:
        raise ConfigurationError("octave_count must be at least 1", ["octave_count"])
    try:
        NoiseFamily(params.noise_family)
    except ValueError:
        raise ConfigurationError(
            f"Unknown noise family: {params.noise_family!r}", ["noise_family"]
        )


class FractalNoiseField:
    """
    Height field built from fractal noise.

    The parameters object is shared by reference; changes to it are seen on
    the next evaluation. The underlying primitive is rebuilt lazily when the
    noise family or seed changes.
    """

    def __init__(self, params: NoiseParameters):
        validate_noise_parameters(params)
        self.params = params
        self._primitive: Optional[NoisePrimitive] = None
        self._primitive_key: Optional[Tuple[NoiseFamily, int]] = None

    @property
    def primitive(self) -> NoisePrimitive:
        """Noise primitive for the current family and seed."""
        key = (NoiseFamily(self.params.noise_family), self.params.seed)
        if self._primitive is None or key != self._primitive_key:
            self._primitive = create_primitive(*key)
            self._primitive_key = key
            logger.debug("Noise primitive created", family=key[0].value, seed=key[1])
        return self._primitive

    def evaluate(self, x: float, y: float) -> float:
        """Height at a world position."""
        params = self.params
        noise = self.primitive
        xs = x / params.base_scale
        ys = y / params.base_scale

        amplitude = 1.0
        frequency = 1.0
        normalization = 0.0
        total = 0.0
        for _ in range(params.octave_count):
            value = noise.sample2d(xs * frequency, ys * frequency) * 0.5 + 0.5
            total += value * amplitude
            normalization += amplitude
            amplitude *= params.persistence
            frequency *= params.lacunarity

        total /= normalization
        # Fractional powers of negatives are complex
        total = max(total, 0.0)
        return total ** params.exponentiation * params.height_scale

    def evaluate_grid(self, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
        """
        Heights for every combination of two coordinate axes.

        Args:
            xs: World x coordinates (1D)
            ys: World y coordinates (1D)

        Returns:
            Array of shape (len(ys), len(xs))
        """
        params = self.params
        noise = self.primitive
        xs = np.asarray(xs, dtype=np.float64) / params.base_scale
        ys = np.asarray(ys, dtype=np.float64) / params.base_scale

        amplitude = 1.0
        frequency = 1.0
        normalization = 0.0
        total = np.zeros((len(ys), len(xs)), dtype=np.float64)
        for _ in range(params.octave_count):
            values = noise.sample_grid(xs * frequency, ys * frequency) * 0.5 + 0.5
            total += values * amplitude
            normalization += amplitude
            amplitude *= params.persistence
            frequency *= params.lacunarity

        total /= normalization
        np.maximum(total, 0.0, out=total)
        return np.power(total, params.exponentiation) * params.height_scale
