"""
Shared fixtures: synthetic scenes with a known camera.
"""

import numpy as np
import pytest
from dataclasses import dataclass
from typing import Tuple

from mcv_geometry.camera import project_world_points
from mcv_geometry.correspondences import CorrespondenceSet
from mcv_geometry.transforms import look_at_rotation


@dataclass
class SyntheticScene:
    rotation: np.ndarray
    translation: np.ndarray
    focal_length: float
    principal_point: Tuple[float, float]
    world: np.ndarray
    pixels: np.ndarray
    correspondences: CorrespondenceSet


def make_scene(
    n_points: int = 10,
    focal_length: float = 800.0,
    image_size: Tuple[int, int] = (1280, 720),
    camera_center=(4.0, -5.0, 3.0),
    noise: float = 0.0,
    seed: int = 0,
) -> SyntheticScene:
    """
    Camera about 7 units from a 4 x 4 x 2 box of random points, so depths
    vary by roughly +-30% and perspective is strong.
    """
    rng = np.random.default_rng(seed)
    world = rng.uniform([-2.0, -2.0, -1.0], [2.0, 2.0, 1.0], size=(n_points, 3))

    center = np.asarray(camera_center, dtype=np.float64)
    R = look_at_rotation(center, np.zeros(3))
    t = -R @ center
    principal_point = (image_size[0] / 2.0, image_size[1] / 2.0)

    pixels, depths = project_world_points(R, t, focal_length, principal_point, world)
    assert np.all(depths > 0)
    if noise > 0:
        pixels = pixels + rng.normal(0.0, noise, size=pixels.shape)

    return SyntheticScene(
        rotation=R,
        translation=t,
        focal_length=focal_length,
        principal_point=principal_point,
        world=world,
        pixels=pixels,
        correspondences=CorrespondenceSet.from_arrays(pixels, world),
    )


@pytest.fixture
def scene_factory():
    """Factory for synthetic scenes (see make_scene)."""
    return make_scene


@pytest.fixture
def exact_scene():
    """Noiseless 12-point scene."""
    return make_scene(n_points=12)
