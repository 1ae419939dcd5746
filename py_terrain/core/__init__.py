"""
Core terrain generation functionality.
"""

from .errors import ConfigurationError, DuplicateHeightmapError
from .noise_primitives import NoisePrimitive, PerlinPrimitive, SimplexPrimitive, create_primitive
from .fractal_noise import FractalNoiseField, validate_noise_parameters
from .height_sources import (
    BumpHeightSource,
    ConstantHeightSource,
    HeightSource,
    RadialInfluenceGenerator,
    sample_source,
    sample_source_grid,
)
from .heightmap_image import HeightmapImageSampler, RasterHeightSource, load_raster_from_image
from .terrain_chunk import HeightTint, TerrainChunk, blend_heights
from .chunk_manager import HeightmapLoad, TerrainChunkManager, chunk_key, neighbor_keys

__all__ = ['ConfigurationError', 'DuplicateHeightmapError',
           'NoisePrimitive', 'PerlinPrimitive', 'SimplexPrimitive', 'create_primitive',
           'FractalNoiseField', 'validate_noise_parameters',
           'BumpHeightSource', 'ConstantHeightSource', 'HeightSource',
           'RadialInfluenceGenerator', 'sample_source', 'sample_source_grid',
           'HeightmapImageSampler', 'RasterHeightSource', 'load_raster_from_image',
           'HeightTint', 'TerrainChunk', 'blend_heights',
           'HeightmapLoad', 'TerrainChunkManager', 'chunk_key', 'neighbor_keys']
