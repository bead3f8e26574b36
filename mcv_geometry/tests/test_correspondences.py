"""
Tests for correspondence sets, the configuration check and the registry.
"""

import pytest
import numpy as np
from numpy.testing import assert_allclose

from mcv_geometry.camera import project_world_points
from mcv_geometry.config import PoseSolverSettings
from mcv_geometry.correspondences import (
    CorrespondenceRegistry,
    CorrespondenceSet,
    ValidationStatus,
    WorldPoint,
    check_configuration,
)
from mcv_geometry.transforms import look_at_rotation


def _project(world, center=(4.0, -5.0, 3.0), focal_length=800.0):
    center = np.asarray(center, dtype=float)
    R = look_at_rotation(center, np.zeros(3))
    pixels, _ = project_world_points(R, -R @ center, focal_length, (640.0, 360.0), world)
    return pixels


class TestCorrespondenceSet:

    def test_from_arrays_default_ids(self, exact_scene):
        cset = exact_scene.correspondences

        assert len(cset) == 12
        assert cset.point_ids[:3] == ["P1", "P2", "P3"]
        assert_allclose(cset.pixels, exact_scene.pixels)
        assert_allclose(cset.world_points, exact_scene.world)

    def test_duplicate_point_rejected(self):
        with pytest.raises(ValueError, match="labeled twice"):
            CorrespondenceSet.from_arrays(
                [[0, 0], [1, 1]], [[0, 0, 0], [1, 1, 1]], point_ids=["A", "A"]
            )

    def test_shape_mismatch_rejected(self):
        with pytest.raises(ValueError):
            CorrespondenceSet.from_arrays([[0, 0], [1, 1]], [[0, 0, 0]])
        with pytest.raises(ValueError):
            CorrespondenceSet.from_arrays([[0, 0, 0]], [[0, 0, 0]])

    def test_empty_set(self):
        cset = CorrespondenceSet(image_id="empty", labels=())
        assert cset.pixels.shape == (0, 2)
        assert cset.world_points.shape == (0, 3)


class TestCheckConfiguration:
    """Tests for the pre-solve degeneracy check."""

    def test_general_configuration(self, exact_scene):
        status = check_configuration(exact_scene.pixels, exact_scene.world)
        assert status is ValidationStatus.OK

    def test_too_few_points(self, scene_factory):
        scene = scene_factory(n_points=5)
        assert check_configuration(scene.pixels, scene.world) is ValidationStatus.INSUFFICIENT_POINTS

    def test_custom_minimum(self, scene_factory):
        scene = scene_factory(n_points=7)
        settings = PoseSolverSettings(min_points=8)
        status = check_configuration(scene.pixels, scene.world, settings)
        assert status is ValidationStatus.INSUFFICIENT_POINTS

    def test_plane_through_camera_is_degenerate(self):
        """Points on a plane containing the camera centre project onto one image line."""
        rng = np.random.default_rng(5)
        world = np.column_stack([
            rng.uniform(-3, 3, 8),
            rng.uniform(-3, 3, 8),
            np.zeros(8),
        ])
        pixels = _project(world, center=(0.0, -10.0, 0.0))

        assert_allclose(pixels[:, 1], 360.0, atol=1e-9)
        assert check_configuration(pixels, world) is ValidationStatus.DEGENERATE_CONFIGURATION

    def test_collinear_world_points_are_degenerate(self):
        world = np.outer(np.linspace(-2, 2, 8), [1.0, 0.5, 0.25])
        pixels = _project(world)
        assert check_configuration(pixels, world) is ValidationStatus.DEGENERATE_CONFIGURATION

    def test_coplanar_points_pass_the_check(self):
        """A plane seen obliquely is not collinear in the image."""
        rng = np.random.default_rng(6)
        world = np.column_stack([rng.uniform(-2, 2, 8), rng.uniform(-2, 2, 8), np.zeros(8)])
        pixels = _project(world)
        assert check_configuration(pixels, world) is ValidationStatus.OK

    def test_coincident_points_are_degenerate(self):
        world = np.tile([1.0, 2.0, 3.0], (6, 1))
        pixels = np.tile([100.0, 200.0], (6, 1))
        assert check_configuration(pixels, world) is ValidationStatus.DEGENERATE_CONFIGURATION


class TestCorrespondenceRegistry:
    """Tests for the mutable label store."""

    @pytest.fixture
    def registry(self, exact_scene):
        registry = CorrespondenceRegistry("frame_0001", image_size=(1280, 720))
        for pid, pixel, world in zip(
            exact_scene.correspondences.point_ids, exact_scene.pixels, exact_scene.world
        ):
            registry.add(pixel, WorldPoint(pid, *world))
        return registry

    def test_add_assigns_increasing_ids(self):
        registry = CorrespondenceRegistry()
        first = registry.add((10, 20), WorldPoint("A", 0, 0, 0))
        second = registry.add((30, 40), WorldPoint("B", 1, 0, 0))

        assert second > first
        assert len(registry) == 2
        assert registry.list().point_ids == ["A", "B"]

    def test_add_triple_gets_automatic_id(self):
        registry = CorrespondenceRegistry()
        registry.add((10, 20), (1.0, 2.0, 3.0))
        registry.add((30, 40), (4.0, 5.0, 6.0))

        assert registry.list().point_ids == ["auto-1", "auto-2"]

    def test_add_rejects_bad_triple(self):
        registry = CorrespondenceRegistry()
        with pytest.raises(ValueError):
            registry.add((10, 20), (1.0, 2.0))

    def test_duplicate_world_point_rejected(self):
        registry = CorrespondenceRegistry()
        registry.add((10, 20), WorldPoint("A", 0, 0, 0))
        with pytest.raises(ValueError, match="already labeled"):
            registry.add((50, 60), WorldPoint("A", 0, 0, 0))
        assert len(registry) == 1

    def test_remove(self, registry):
        snapshot = registry.list()
        label_id = snapshot.labels[0].label_id

        registry.remove(label_id)

        assert len(registry) == 11
        assert snapshot.point_ids[0] not in registry.list().point_ids

    def test_remove_unknown_id(self, registry):
        with pytest.raises(KeyError):
            registry.remove(9999)

    def test_snapshot_is_immutable(self, registry):
        snapshot = registry.list()
        registry.add((1, 1), WorldPoint("late", 9, 9, 9))

        assert len(snapshot) == 12
        assert len(registry.list()) == 13

    def test_every_mutation_bumps_revision(self):
        registry = CorrespondenceRegistry()
        assert registry.revision == 0

        label_id = registry.add((0, 0), WorldPoint("A", 0, 0, 0))
        assert registry.revision == 1

        registry.remove(label_id)
        assert registry.revision == 2
        assert registry.list().revision == 2

    def test_validate(self, registry):
        assert registry.validate() is ValidationStatus.OK

        for label in registry.list().labels[:7]:
            registry.remove(label.label_id)
        assert registry.validate() is ValidationStatus.INSUFFICIENT_POINTS

    def test_store_pose_current_revision(self, registry):
        revision = registry.revision
        assert registry.store_pose(revision, "pose")
        assert registry.pose == "pose"

    def test_stale_pose_is_discarded(self, registry):
        revision = registry.revision
        registry.add((1, 1), WorldPoint("late", 9, 9, 9))

        assert not registry.store_pose(revision, "stale")
        assert registry.pose is None

    def test_mutation_invalidates_stored_pose(self, registry):
        registry.store_pose(registry.revision, "pose")
        registry.add((1, 1), WorldPoint("late", 9, 9, 9))
        assert registry.pose is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
