"""
Terrain parameter models.

These are the live-tunable option objects shared by reference between the
chunk manager and the height sources built from them. Defaults reproduce
the reference terrain demo. Assignments are validated, so an invalid edit
fails where it is made.
"""

from enum import Enum
from typing import Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator


class NoiseFamily(str, Enum):
    """Continuous noise algorithms available to the fractal field."""

    SIMPLEX = "simplex"
    PERLIN = "perlin"


class NoiseParameters(BaseModel):
    """Fractal noise options."""

    model_config = ConfigDict(validate_assignment=True)

    octave_count: int = Field(default=10, ge=1, description="Number of octaves summed")
    persistence: float = Field(default=0.5, ge=0.0, le=1.0, description="Amplitude decay per octave")
    lacunarity: float = Field(default=2.0, gt=0.0, description="Frequency growth per octave")
    exponentiation: float = Field(default=3.9, gt=0.0, description="Power applied to the normalized sum")
    height_scale: float = Field(default=64.0, ge=0.0, description="Height of a fully raised sample")
    base_scale: float = Field(default=256.0, gt=0.0, description="World units per noise unit")
    noise_family: NoiseFamily = Field(default=NoiseFamily.SIMPLEX, description="Noise algorithm")
    seed: int = Field(default=1, description="Noise seed")


class HeightmapParameters(BaseModel):
    """Heightmap image options."""

    model_config = ConfigDict(validate_assignment=True)

    height_scale: float = Field(default=16.0, ge=0.0, description="Height of a white pixel")


class InfluenceBand(BaseModel):
    """Annulus over which a source fades from full to no influence."""

    model_config = ConfigDict(validate_assignment=True)

    center: Tuple[float, float] = Field(default=(0.0, 0.0), description="Band center")
    inner_radius: float = Field(description="Distance of full influence")
    outer_radius: float = Field(description="Distance where influence reaches zero")

    @model_validator(mode="after")
    def _check_radii(self):
        if self.outer_radius <= self.inner_radius:
            raise ValueError("outer_radius must be greater than inner_radius")
        return self
