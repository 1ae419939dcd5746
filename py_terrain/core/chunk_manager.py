"""
Chunk lattice management.

The manager owns every chunk, keyed by integer lattice coordinates, along
with the configuration objects shared by the height sources it builds.
Configuration changes are funneled through apply_configuration_change(),
which validates them before touching shared state and then rebuilds every
chunk.
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

import numpy as np
import structlog
from pydantic import BaseModel, ValidationError

from ..config.config import Settings
from ..config.terrain_settings import HeightmapParameters, InfluenceBand, NoiseParameters
from .errors import ConfigurationError, DuplicateHeightmapError
from .fractal_noise import FractalNoiseField, validate_noise_parameters
from .height_sources import RadialInfluenceGenerator, validate_influence_band
from .heightmap_image import HeightmapImageSampler, RasterHeightSource
from .terrain_chunk import HeightTint, TerrainChunk

logger = structlog.get_logger()

ChunkKey = Tuple[int, int]


def chunk_key(x: int, z: int) -> ChunkKey:
    """Lattice key for integer chunk coordinates."""
    return int(x), int(z)


def neighbor_keys(x: int, z: int) -> List[ChunkKey]:
    """Keys of the 8 chunks surrounding (x, z)."""
    return [
        chunk_key(x + xi, z + zi)
        for xi in (-1, 0, 1)
        for zi in (-1, 0, 1)
        if xi != 0 or zi != 0
    ]


@dataclass
class LatticeEntry:
    """A chunk and the keys of its neighbors."""

    chunk: TerrainChunk
    edges: List[ChunkKey] = field(default_factory=list)


class TerrainChunkManager:
    """Owns the chunk lattice and the height sources applied to it."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        noise_params: Optional[NoiseParameters] = None,
        heightmap_params: Optional[HeightmapParameters] = None,
        create_lattice: bool = True,
    ):
        """
        Initialize the manager.

        Args:
            settings: Lattice and heightmap settings
            noise_params: Shared fractal noise parameters
            heightmap_params: Shared heightmap parameters
            create_lattice: Create the square lattice of settings.lattice_radius
        """
        self.settings = settings or Settings()
        self.noise_params = noise_params or NoiseParameters()
        self.heightmap_params = heightmap_params or HeightmapParameters()
        self.chunk_size = self.settings.chunk_size

        self.noise = FractalNoiseField(self.noise_params)
        self.heightmap_source: Optional[RadialInfluenceGenerator] = None

        self._chunks: Dict[ChunkKey, LatticeEntry] = {}
        self._lock = threading.RLock()

        if create_lattice:
            radius = self.settings.lattice_radius
            for x in range(-radius, radius + 1):
                for z in range(-radius, radius + 1):
                    self.add_chunk(x, z)

    def __len__(self) -> int:
        return len(self._chunks)

    def __contains__(self, key) -> bool:
        return chunk_key(*key) in self._chunks

    def __iter__(self) -> Iterator[TerrainChunk]:
        return iter([entry.chunk for entry in self._chunks.values()])

    @property
    def keys(self) -> List[ChunkKey]:
        return list(self._chunks.keys())

    def get_chunk(self, x: int, z: int) -> TerrainChunk:
        """
        Raises:
            KeyError: if no chunk exists at (x, z)
        """
        return self._chunks[chunk_key(x, z)].chunk

    def get_edges(self, x: int, z: int) -> List[ChunkKey]:
        """Neighbor keys recorded for a chunk."""
        return list(self._chunks[chunk_key(x, z)].edges)

    def _default_sources(self, offset: Tuple[float, float]) -> list:
        # The noise applies everywhere; its band is far larger than any chunk.
        return [
            RadialInfluenceGenerator(
                self.noise,
                center=offset,
                inner_radius=self.settings.always_on_inner_radius,
                outer_radius=self.settings.always_on_outer_radius,
            )
        ]

    def _is_tint_chunk(self, chunk: TerrainChunk) -> bool:
        return (
            self.settings.demo_tint
            and chunk.world_offset == (0.0, 0.0)
            and len(chunk.sources) > 1
        )

    def _validate_shared(self) -> None:
        validate_noise_parameters(self.noise_params)
        if self.heightmap_source is not None:
            validate_influence_band(self.heightmap_source.band)

    def add_chunk(self, x: int, z: int) -> TerrainChunk:
        """
        Create and build the chunk at lattice position (x, z).

        Raises:
            ConfigurationError: if the shared parameters are invalid
        """
        key = chunk_key(x, z)
        with self._lock:
            if key in self._chunks:
                logger.warning("Chunk already exists", key=key)
                return self._chunks[key].chunk
            self._validate_shared()

            offset = (key[0] * self.chunk_size, key[1] * self.chunk_size)
            sources = self._default_sources(offset)
            if self.heightmap_source is not None:
                sources.insert(0, self.heightmap_source)

            chunk = TerrainChunk(
                key=key,
                world_offset=offset,
                resolution=self.settings.chunk_resolution,
                world_size=self.chunk_size,
                sources=sources,
            )
            if self._is_tint_chunk(chunk):
                chunk.tint_source = HeightTint(chunk.sources[0], self.settings.tint_max_height)

            chunk.rebuild()
            self._chunks[key] = LatticeEntry(chunk=chunk, edges=neighbor_keys(*key))

        logger.info(
            "Chunk added", key=key, world_offset=offset, resolution=chunk.resolution
        )
        return chunk

    def insert_heightmap_source(self, raster: RasterHeightSource) -> RadialInfluenceGenerator:
        """
        Blend a heightmap into every chunk and rebuild the lattice.

        The raster is wrapped in a radial band around the origin so it fades
        into the surrounding noise, then placed first in every chunk's
        source list.

        If the rebuild fails, the source is removed again and every chunk
        keeps its previous heights, so the insertion can be retried.

        Raises:
            DuplicateHeightmapError: if a heightmap was already inserted
            ConfigurationError: if the shared parameters are invalid
        """
        with self._lock:
            if self.heightmap_source is not None:
                logger.warning("Heightmap already inserted, ignoring duplicate")
                raise DuplicateHeightmapError("A heightmap source is already present")
            self._validate_shared()

            sampler = HeightmapImageSampler(
                raster, flip_horizontal=self.settings.heightmap_flip_horizontal
            )
            source = RadialInfluenceGenerator(
                sampler,
                center=(0.0, 0.0),
                inner_radius=self.settings.heightmap_inner_radius,
                outer_radius=self.settings.heightmap_outer_radius,
            )
            self.heightmap_source = source

            for entry in self._chunks.values():
                chunk = entry.chunk
                chunk.sources.insert(0, source)
                if self._is_tint_chunk(chunk):
                    chunk.tint_source = HeightTint(source, self.settings.tint_max_height)

            try:
                self.rebuild_all()
            except Exception:
                logger.error("Heightmap rebuild failed, removing source")
                self._remove_heightmap_source(source)
                raise

        logger.info(
            "Heightmap source inserted",
            width=raster.width,
            height=raster.height,
            chunks=len(self._chunks),
        )
        return source

    def _remove_heightmap_source(self, source: RadialInfluenceGenerator) -> None:
        self.heightmap_source = None
        for entry in self._chunks.values():
            chunk = entry.chunk
            chunk.sources = [s for s in chunk.sources if s is not source]
            chunk.tint_source = None

    def load_heightmap(self, pixels: np.ndarray) -> RadialInfluenceGenerator:
        """Insert a decoded pixel buffer using the configured footprint."""
        raster = RasterHeightSource(
            pixels=pixels,
            footprint_offset=tuple(self.settings.heightmap_footprint_offset),
            footprint_size=tuple(self.settings.heightmap_footprint_size),
            params=self.heightmap_params,
        )
        return self.insert_heightmap_source(raster)

    def _section(self, section: str) -> BaseModel:
        if section == "noise":
            return self.noise_params
        if section == "heightmap":
            return self.heightmap_params
        if section == "heightmap_band":
            if self.heightmap_source is None:
                raise ConfigurationError("No heightmap has been inserted", [section])
            return self.heightmap_source.band
        raise ConfigurationError(f"Unknown configuration section: {section!r}", [section])

    def apply_configuration_change(self, section: str, changes: Dict[str, Any]) -> BaseModel:
        """
        Validate and apply a partial configuration update, then rebuild.

        Args:
            section: "noise", "heightmap" or "heightmap_band"
            changes: Field names mapped to new values

        Returns:
            The updated, shared parameter object

        Raises:
            ConfigurationError: if the section, a field or a value is invalid;
                nothing is changed in that case
        """
        with self._lock:
            target = self._section(section)
            unknown = sorted(set(changes) - set(type(target).model_fields))
            if unknown:
                raise ConfigurationError(
                    f"Unknown {section} fields: {', '.join(unknown)}", unknown
                )

            merged = {**target.model_dump(), **changes}
            try:
                validated = type(target).model_validate(merged)
            except ValidationError as e:
                logger.warning("Configuration change rejected", section=section, changes=changes)
                raise ConfigurationError.from_validation_error(section, e)

            if isinstance(validated, NoiseParameters):
                validate_noise_parameters(validated)
            if isinstance(validated, InfluenceBand):
                validate_influence_band(validated)

            if isinstance(target, InfluenceBand):
                # The radii are only valid together, so the whole band is replaced
                self.heightmap_source.band = validated
                target = validated
            else:
                for name in changes:
                    setattr(target, name, getattr(validated, name))

            logger.info("Configuration changed", section=section, changes=changes)
            self.on_configuration_changed()
        return target

    def on_configuration_changed(self) -> None:
        """Rebuild every chunk after shared parameters changed."""
        self.rebuild_all()

    def rebuild_all(self) -> None:
        """
        Rebuild every chunk, in parallel when several workers are configured.

        All buffers are computed before any chunk is updated, so a failure
        leaves the whole lattice as it was.

        Raises:
            ConfigurationError: if the shared parameters are invalid
        """
        with self._lock:
            self._validate_shared()
            chunks = [entry.chunk for entry in self._chunks.values()]
            workers = self.settings.rebuild_workers
            if workers > 1 and len(chunks) > 1:
                with ThreadPoolExecutor(max_workers=workers) as executor:
                    # list() re-raises the first failure
                    buffers = list(executor.map(lambda chunk: chunk.compute_buffers(), chunks))
            else:
                buffers = [chunk.compute_buffers() for chunk in chunks]

            for chunk, chunk_buffers in zip(chunks, buffers):
                chunk.commit(chunk_buffers)

        logger.info("Lattice rebuilt", chunks=len(chunks), workers=workers)


class HeightmapLoad:
    """
    One-shot completion of an asynchronous heightmap load.

    The first completion inserts the heightmap; later completions are
    ignored so the source is never stacked twice.
    """

    def __init__(self, manager: TerrainChunkManager):
        self.manager = manager
        self.completed = False
        self._lock = threading.Lock()

    def complete(self, pixels: np.ndarray) -> bool:
        """
        Hand a decoded pixel buffer to the manager.

        Returns:
            True if this call inserted the heightmap
        """
        with self._lock:
            if self.completed:
                logger.warning("Heightmap load already completed")
                return False
            self.completed = True

        try:
            self.manager.load_heightmap(pixels)
        except DuplicateHeightmapError:
            raise
        except Exception:
            # Nothing was inserted, so a later load may still complete
            with self._lock:
                self.completed = False
            raise
        return True

    def attach(self, future: "Future[np.ndarray]") -> None:
        """Complete this load when a future resolves with a pixel buffer."""

        def _done(done: "Future[np.ndarray]") -> None:
            error = done.exception()
            if error is not None:
                logger.error("Heightmap load failed", error=str(error))
                return
            try:
                self.complete(done.result())
            except (ConfigurationError, DuplicateHeightmapError) as e:
                logger.error("Heightmap insertion failed", error=str(e))

        future.add_done_callback(_done)
