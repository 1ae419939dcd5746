"""
Configuration modules for terrain generation.
"""

from .config import Settings, settings
from .terrain_settings import HeightmapParameters, InfluenceBand, NoiseFamily, NoiseParameters

__all__ = [
    "Settings",
    "settings",
    "NoiseFamily",
    "NoiseParameters",
    "HeightmapParameters",
    "InfluenceBand",
]
