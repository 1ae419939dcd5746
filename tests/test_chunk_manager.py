"""
Tests for the chunk lattice manager.
"""

from concurrent.futures import Future

import numpy as np
import pytest
from pydantic import ValidationError

from py_terrain.config import NoiseParameters, Settings
from py_terrain.core.chunk_manager import HeightmapLoad, TerrainChunkManager, neighbor_keys
from py_terrain.core.errors import ConfigurationError, DuplicateHeightmapError
from py_terrain.core.height_sources import RadialInfluenceGenerator


@pytest.fixture
def settings():
    return Settings(chunk_resolution=9)


@pytest.fixture
def manager(settings):
    return TerrainChunkManager(settings, NoiseParameters(octave_count=3))


@pytest.fixture
def pixels():
    """Small raster with a bright centre."""
    coords = np.linspace(-1.0, 1.0, 16)
    X, Y = np.meshgrid(coords, coords)
    return np.clip(1.0 - np.sqrt(X * X + Y * Y), 0.0, 1.0)


def snapshot(manager):
    return {key: manager.get_chunk(*key).heights.copy() for key in manager.keys}


class FailingSource:
    """Source that breaks during evaluation."""

    def evaluate(self, x, y):
        raise RuntimeError("sampling failed")


class TestLattice:
    """Test lattice construction."""

    def test_square_lattice(self, manager):
        expected = {(x, z) for x in (-1, 0, 1) for z in (-1, 0, 1)}

        assert len(manager) == 9
        assert set(manager.keys) == expected

    def test_world_offsets(self, manager):
        assert manager.get_chunk(1, -1).world_offset == (500.0, -500.0)
        assert manager.get_chunk(0, 0).world_offset == (0.0, 0.0)

    def test_eight_neighbors(self, manager):
        """Every chunk records all 8 surrounding keys, diagonals included."""
        edges = manager.get_edges(0, 0)

        assert len(edges) == 8
        assert len(set(edges)) == 8
        assert (0, 0) not in edges
        assert {(-1, -1), (1, 1), (-1, 1), (1, -1)} <= set(edges)

    def test_neighbor_keys_off_origin(self):
        assert set(neighbor_keys(5, -2)) == {
            (4, -3), (4, -2), (4, -1), (5, -3), (5, -1), (6, -3), (6, -2), (6, -1)
        }

    def test_missing_chunk(self, manager):
        assert (4, 4) not in manager
        with pytest.raises(KeyError):
            manager.get_chunk(4, 4)

    def test_empty_lattice(self, settings):
        empty = TerrainChunkManager(settings, create_lattice=False)

        assert len(empty) == 0

    def test_add_chunk(self, settings):
        manager = TerrainChunkManager(settings, NoiseParameters(octave_count=2), create_lattice=False)
        chunk = manager.add_chunk(3, 0)

        assert (3, 0) in manager
        assert chunk.world_offset == (1500.0, 0.0)
        assert chunk.heights.shape == (9, 9)
        assert chunk.rebuild_count == 1

    def test_add_duplicate_returns_existing(self, manager):
        chunk = manager.get_chunk(0, 0)

        assert manager.add_chunk(0, 0) is chunk
        assert len(manager) == 9

    def test_default_source_is_noise_everywhere(self, manager):
        """Before any heightmap, chunk heights are exactly the fractal noise."""
        chunk = manager.get_chunk(1, 0)

        assert len(chunk.sources) == 1
        assert isinstance(chunk.sources[0], RadialInfluenceGenerator)
        assert chunk.sources[0].source is manager.noise

        xs, ys = chunk.world_axes
        for j in (0, 4, 8):
            for i in (0, 3, 8):
                expected = manager.noise.evaluate(float(xs[i]), float(ys[j]))
                assert chunk.heights[j, i] == pytest.approx(expected, rel=1e-9, abs=1e-9)


class TestHeightmapInsertion:
    """Test heightmap blending into the lattice."""

    def test_insert_changes_origin_only(self, manager, pixels):
        before = snapshot(manager)
        manager.load_heightmap(pixels)
        after = snapshot(manager)

        assert not np.array_equal(before[(0, 0)], after[(0, 0)])
        # Corner chunks lie entirely outside the heightmap band
        for key in [(1, 1), (-1, -1), (1, -1), (-1, 1)]:
            np.testing.assert_array_equal(before[key], after[key])

    def test_heightmap_first_in_sources(self, manager, pixels):
        source = manager.load_heightmap(pixels)

        for chunk in manager:
            assert chunk.sources[0] is source
            assert len(chunk.sources) == 2

    def test_duplicate_insertion_rejected(self, manager, pixels):
        manager.load_heightmap(pixels)
        before = snapshot(manager)

        with pytest.raises(DuplicateHeightmapError):
            manager.load_heightmap(pixels)

        after = snapshot(manager)
        for key in manager.keys:
            np.testing.assert_array_equal(before[key], after[key])
            assert len(manager.get_chunk(*key).sources) == 2

    def test_chunk_added_after_insertion(self, manager, pixels):
        source = manager.load_heightmap(pixels)
        chunk = manager.add_chunk(2, 0)

        assert chunk.sources[0] is source

    def test_tint_only_on_origin(self, manager, pixels):
        manager.load_heightmap(pixels)

        assert manager.get_chunk(0, 0).tint.max() > 0.0
        for key in manager.keys:
            if key != (0, 0):
                assert np.all(manager.get_chunk(*key).tint == 0.0)

    def test_tint_disabled(self, pixels):
        manager = TerrainChunkManager(
            Settings(chunk_resolution=5, demo_tint=False), NoiseParameters(octave_count=2)
        )
        manager.load_heightmap(pixels)

        assert np.all(manager.get_chunk(0, 0).tint == 0.0)

    def test_empty_raster_rejected(self, manager):
        with pytest.raises(ConfigurationError):
            manager.load_heightmap(np.zeros((0, 4)))

        assert manager.heightmap_source is None


class TestHeightmapLoad:
    """Test one-shot heightmap completion."""

    def test_completes_once(self, manager, pixels):
        load = HeightmapLoad(manager)

        assert load.complete(pixels) is True
        assert load.complete(pixels) is False
        assert len(manager.get_chunk(0, 0).sources) == 2

    def test_failed_load_can_retry(self, manager, pixels):
        load = HeightmapLoad(manager)

        with pytest.raises(ConfigurationError):
            load.complete(np.zeros((0, 0)))

        assert load.completed is False
        assert load.complete(pixels) is True

    def test_attach_future(self, manager, pixels):
        load = HeightmapLoad(manager)
        future = Future()
        load.attach(future)
        future.set_result(pixels)

        assert load.completed is True
        assert manager.heightmap_source is not None

    def test_attach_failed_future(self, manager):
        load = HeightmapLoad(manager)
        future = Future()
        load.attach(future)
        future.set_exception(IOError("missing file"))

        assert load.completed is False
        assert manager.heightmap_source is None


class TestConfigurationChanges:
    """Test live configuration updates."""

    def test_noise_change_rebuilds(self, manager):
        before = snapshot(manager)
        counts = {key: manager.get_chunk(*key).rebuild_count for key in manager.keys}

        manager.apply_configuration_change("noise", {"height_scale": 32.0})

        assert manager.noise_params.height_scale == 32.0
        for key in manager.keys:
            chunk = manager.get_chunk(*key)
            assert chunk.rebuild_count == counts[key] + 1
            np.testing.assert_allclose(chunk.heights, before[key] / 2.0, rtol=1e-9, atol=1e-12)

    def test_shared_parameter_object(self, manager):
        """Updates mutate the object the noise field holds."""
        params = manager.noise_params
        manager.apply_configuration_change("noise", {"seed": 99})

        assert manager.noise.params is params
        assert params.seed == 99

    def test_noise_family_change(self, manager):
        before = snapshot(manager)
        manager.apply_configuration_change("noise", {"noise_family": "perlin"})

        assert manager.noise_params.noise_family.value == "perlin"
        assert not np.array_equal(before[(0, 0)], manager.get_chunk(0, 0).heights)

    @pytest.mark.parametrize(
        "changes",
        [
            {"base_scale": 0},
            {"octave_count": 0},
            {"persistence": 1.5},
            {"noise_family": "cubic"},
            {"no_such_field": 1},
            {"height_scale": 8.0, "lacunarity": -1.0},
        ],
    )
    def test_invalid_noise_change_leaves_state(self, manager, changes):
        before = snapshot(manager)
        params_before = manager.noise_params.model_dump()

        with pytest.raises(ConfigurationError):
            manager.apply_configuration_change("noise", changes)

        assert manager.noise_params.model_dump() == params_before
        for key in manager.keys:
            np.testing.assert_array_equal(before[key], manager.get_chunk(*key).heights)

    def test_invalid_change_reports_fields(self, manager):
        with pytest.raises(ConfigurationError) as exc_info:
            manager.apply_configuration_change("noise", {"base_scale": 0})

        assert "base_scale" in exc_info.value.fields

    def test_unknown_section(self, manager):
        with pytest.raises(ConfigurationError):
            manager.apply_configuration_change("weather", {"rain": 1})

    def test_heightmap_scale_change(self, manager, pixels):
        manager.load_heightmap(pixels)
        far = manager.get_chunk(1, 1).heights.copy()
        origin = manager.get_chunk(0, 0).heights.copy()

        manager.apply_configuration_change("heightmap", {"height_scale": 64.0})

        assert manager.heightmap_params.height_scale == 64.0
        assert not np.array_equal(origin, manager.get_chunk(0, 0).heights)
        np.testing.assert_array_equal(far, manager.get_chunk(1, 1).heights)

    def test_band_change_requires_heightmap(self, manager):
        with pytest.raises(ConfigurationError):
            manager.apply_configuration_change("heightmap_band", {"inner_radius": 10.0})

    def test_band_change(self, manager, pixels):
        manager.load_heightmap(pixels)
        manager.apply_configuration_change("heightmap_band", {"inner_radius": 50.0, "outer_radius": 120.0})

        band = manager.heightmap_source.band
        assert (band.inner_radius, band.outer_radius) == (50.0, 120.0)

    def test_band_inverted_rejected(self, manager, pixels):
        manager.load_heightmap(pixels)

        with pytest.raises(ConfigurationError):
            manager.apply_configuration_change("heightmap_band", {"outer_radius": 10.0})

        assert manager.heightmap_source.band.outer_radius == 300.0

    def test_band_moved_past_old_outer_radius(self, manager, pixels):
        """Both radii change together even when the new band lies outside the old one."""
        manager.load_heightmap(pixels)
        manager.apply_configuration_change("heightmap_band", {"inner_radius": 400.0, "outer_radius": 500.0})

        band = manager.heightmap_source.band
        assert (band.inner_radius, band.outer_radius) == (400.0, 500.0)

    def test_direct_assignment_rejected(self, manager):
        """Invalid edits to the shared objects never reach a rebuild."""
        before = snapshot(manager)

        with pytest.raises(ValidationError):
            manager.noise_params.base_scale = 0.0
        with pytest.raises(ValidationError):
            manager.noise_params.noise_family = "cubic"
        with pytest.raises(ValidationError):
            manager.heightmap_params.height_scale = -1.0

        manager.rebuild_all()
        for key in manager.keys:
            np.testing.assert_array_equal(before[key], manager.get_chunk(*key).heights)


class TestParallelRebuild:
    """Test rebuilding chunks on a worker pool."""

    def test_parallel_matches_serial(self, pixels):
        serial = TerrainChunkManager(Settings(chunk_resolution=9), NoiseParameters(octave_count=3))
        parallel = TerrainChunkManager(
            Settings(chunk_resolution=9, rebuild_workers=4), NoiseParameters(octave_count=3)
        )
        serial.load_heightmap(pixels)
        parallel.load_heightmap(pixels)

        for key in serial.keys:
            np.testing.assert_array_equal(
                serial.get_chunk(*key).heights, parallel.get_chunk(*key).heights
            )

    def test_parallel_rebuild_counts(self):
        manager = TerrainChunkManager(
            Settings(chunk_resolution=5, rebuild_workers=3), NoiseParameters(octave_count=2)
        )
        manager.rebuild_all()

        assert all(chunk.rebuild_count == 2 for chunk in manager)


class TestFailedRebuilds:
    """Test that failures leave the lattice untouched."""

    @pytest.fixture
    def broken(self, manager):
        """Manager whose noise parameters bypassed assignment validation."""
        manager.noise_params.__dict__["noise_family"] = "cubic"
        return manager

    def test_add_chunk_validates(self, broken):
        with pytest.raises(ConfigurationError):
            broken.add_chunk(5, 5)

        assert (5, 5) not in broken

    def test_insert_validates(self, broken, pixels):
        with pytest.raises(ConfigurationError):
            broken.load_heightmap(pixels)

        assert broken.heightmap_source is None
        assert all(len(chunk.sources) == 1 for chunk in broken)

    def test_rebuild_all_validates(self, broken):
        counts = [chunk.rebuild_count for chunk in broken]

        with pytest.raises(ConfigurationError):
            broken.rebuild_all()

        assert [chunk.rebuild_count for chunk in broken] == counts

    @pytest.mark.parametrize("workers", [1, 4])
    def test_rebuild_all_is_all_or_nothing(self, workers):
        manager = TerrainChunkManager(
            Settings(chunk_resolution=5, rebuild_workers=workers), NoiseParameters(octave_count=2)
        )
        before = snapshot(manager)
        manager.get_chunk(1, 1).sources.append(FailingSource())

        with pytest.raises(RuntimeError):
            manager.rebuild_all()

        for key in manager.keys:
            chunk = manager.get_chunk(*key)
            assert chunk.rebuild_count == 1
            np.testing.assert_array_equal(before[key], chunk.heights)

    def test_failed_insert_can_retry(self, manager, pixels):
        """A heightmap whose rebuild fails is removed again."""
        before = snapshot(manager)
        failing = FailingSource()
        manager.get_chunk(1, 1).sources.append(failing)

        with pytest.raises(RuntimeError):
            manager.load_heightmap(pixels)

        assert manager.heightmap_source is None
        assert manager.get_chunk(0, 0).tint_source is None
        for key in manager.keys:
            np.testing.assert_array_equal(before[key], manager.get_chunk(*key).heights)

        manager.get_chunk(1, 1).sources.remove(failing)
        source = manager.load_heightmap(pixels)
        assert all(chunk.sources[0] is source for chunk in manager)

    def test_heightmap_load_retries_after_failed_rebuild(self, manager, pixels):
        load = HeightmapLoad(manager)
        failing = FailingSource()
        manager.get_chunk(0, 1).sources.append(failing)

        with pytest.raises(RuntimeError):
            load.complete(pixels)

        assert load.completed is False
        manager.get_chunk(0, 1).sources.remove(failing)
        assert load.complete(pixels) is True

    def test_attach_logs_insertion_failure(self, manager, pixels):
        """An insertion error inside the completion callback is handled there."""
        manager.load_heightmap(pixels)
        load = HeightmapLoad(manager)
        future = Future()
        load.attach(future)

        future.set_result(pixels)

        assert load.completed is True
        assert len(manager.get_chunk(0, 0).sources) == 2

    def test_attach_invalid_raster(self, manager):
        load = HeightmapLoad(manager)
        future = Future()
        load.attach(future)

        future.set_result(np.zeros((0, 0)))

        assert load.completed is False
        assert manager.heightmap_source is None
