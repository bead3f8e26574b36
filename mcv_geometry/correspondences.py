"""
Correspondence registry: pixel ↔ surveyed world point pairs for one image.

The registry is the only mutable object in the package. It is owned by a
single labeling session; callers serialize add/remove themselves. Every
mutation bumps ``revision`` and drops the cached pose, so a solve that was
started before a mutation can never be stored afterwards.
"""

import itertools
import numpy as np
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple, Union
import logging

from .config import PoseSolverSettings
from .linalg import covariance_eigenvalues

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorldPoint:
    """A surveyed 3D coordinate, identified by its survey id."""
    point_id: str
    x: float
    y: float
    z: float

    def as_array(self) -> np.ndarray:
        """Return coordinates as numpy array."""
        return np.array([self.x, self.y, self.z], dtype=np.float64)


@dataclass(frozen=True)
class ImageLabel:
    """A pixel observation of one world point in one image."""
    label_id: int
    u: float
    v: float
    point: WorldPoint

    @property
    def pixel(self) -> Tuple[float, float]:
        return self.u, self.v


@dataclass(frozen=True)
class CorrespondenceSet:
    """
    Immutable ordered snapshot of the labels of one image.

    No world point id appears twice.
    """
    image_id: str
    labels: Tuple[ImageLabel, ...]
    revision: int = 0

    def __post_init__(self):
        seen = set()
        for label in self.labels:
            if label.point.point_id in seen:
                raise ValueError(
                    f"World point {label.point.point_id!r} labeled twice in image {self.image_id!r}"
                )
            seen.add(label.point.point_id)

    def __len__(self) -> int:
        return len(self.labels)

    def __iter__(self):
        return iter(self.labels)

    @property
    def pixels(self) -> np.ndarray:
        """Nx2 array of observed pixel coordinates."""
        return np.array([[l.u, l.v] for l in self.labels], dtype=np.float64).reshape(-1, 2)

    @property
    def world_points(self) -> np.ndarray:
        """Nx3 array of world coordinates."""
        return np.array(
            [[l.point.x, l.point.y, l.point.z] for l in self.labels], dtype=np.float64
        ).reshape(-1, 3)

    @property
    def point_ids(self) -> List[str]:
        return [l.point.point_id for l in self.labels]

    @classmethod
    def from_arrays(
        cls,
        pixels: Sequence[Sequence[float]],
        world: Sequence[Sequence[float]],
        point_ids: Optional[Sequence[str]] = None,
        image_id: str = "image",
    ) -> "CorrespondenceSet":
        """
        Build a set from parallel pixel (Nx2) and world (Nx3) arrays.

        Point ids default to "P1", "P2", ... in input order.
        """
        pixels = np.asarray(pixels, dtype=np.float64)
        world = np.asarray(world, dtype=np.float64)
        if pixels.ndim != 2 or pixels.shape[1] != 2:
            raise ValueError(f"pixels must be Nx2, got shape {pixels.shape}")
        if world.ndim != 2 or world.shape[1] != 3:
            raise ValueError(f"world points must be Nx3, got shape {world.shape}")
        if len(pixels) != len(world):
            raise ValueError(
                f"{len(pixels)} pixels but {len(world)} world points"
            )
        if point_ids is None:
            point_ids = [f"P{i + 1}" for i in range(len(pixels))]

        labels = tuple(
            ImageLabel(
                label_id=i,
                u=float(px[0]),
                v=float(px[1]),
                point=WorldPoint(str(pid), float(w[0]), float(w[1]), float(w[2])),
            )
            for i, (px, w, pid) in enumerate(zip(pixels, world, point_ids))
        )
        return cls(image_id=image_id, labels=labels)


class ValidationStatus(Enum):
    """Outcome of the pre-solve configuration check."""
    OK = "OK"
    INSUFFICIENT_POINTS = "INSUFFICIENT_POINTS"
    DEGENERATE_CONFIGURATION = "DEGENERATE_CONFIGURATION"


def check_configuration(
    pixels: np.ndarray,
    world: np.ndarray,
    settings: Optional[PoseSolverSettings] = None,
) -> ValidationStatus:
    """
    Decide whether a set of correspondences can constrain pose and focal length.

    The configuration is degenerate when the world points are (near-)coplanar
    and their projections are (near-)collinear: the DLT system is then
    rank-deficient regardless of noise. Flatness is measured as the ratio of
    the smallest to the largest eigenvalue of each point cloud's covariance.

    Args:
        pixels: Nx2 observed pixels
        world: Nx3 world coordinates
        settings: Solver thresholds (defaults if omitted)

    Returns:
        ValidationStatus
    """
    settings = settings or PoseSolverSettings()
    pixels = np.asarray(pixels, dtype=np.float64).reshape(-1, 2)
    world = np.asarray(world, dtype=np.float64).reshape(-1, 3)

    if len(world) < settings.min_points:
        return ValidationStatus.INSUFFICIENT_POINTS

    world_eig = covariance_eigenvalues(world)
    pixel_eig = covariance_eigenvalues(pixels)

    if world_eig[-1] <= 0 or pixel_eig[-1] <= 0:
        logger.debug("All world points or all pixels coincide")
        return ValidationStatus.DEGENERATE_CONFIGURATION

    flatness = world_eig[0] / world_eig[-1]
    thinness = pixel_eig[0] / pixel_eig[-1]
    logger.debug(f"World flatness {flatness:.3e}, pixel thinness {thinness:.3e}")

    coplanar = flatness < settings.coplanarity_tolerance
    collinear = thinness < settings.collinearity_tolerance
    if coplanar and collinear:
        return ValidationStatus.DEGENERATE_CONFIGURATION

    return ValidationStatus.OK


WorldInput = Union[WorldPoint, Sequence[float]]


class CorrespondenceRegistry:
    """
    Mutable store of the labels of one image during a labeling session.

    Example usage:
        registry = CorrespondenceRegistry("frame_0042", image_size=(1920, 1080))
        label_id = registry.add((812.5, 433.0), WorldPoint("A1", 10.0, 2.0, 0.5))
        ...
        if registry.validate() is ValidationStatus.OK:
            snapshot = registry.list()
    """

    def __init__(
        self,
        image_id: str = "image",
        image_size: Optional[Tuple[int, int]] = None,
        settings: Optional[PoseSolverSettings] = None,
    ):
        """
        Initialize an empty registry.

        Args:
            image_id: Identifier of the image/frame the labels belong to
            image_size: Optional (width, height) in pixels
            settings: Solver thresholds used by validate()
        """
        self.image_id = image_id
        self.image_size = image_size
        self.settings = settings or PoseSolverSettings()

        self._labels: Dict[int, ImageLabel] = {}
        self._ids = itertools.count(1)
        self._auto_point_ids = itertools.count(1)
        self._revision = 0
        self._pose = None
        self._pose_revision: Optional[int] = None

    @property
    def revision(self) -> int:
        """Monotonic counter bumped by every mutation."""
        return self._revision

    @property
    def pose(self):
        """Pose stored for the current revision, or None."""
        if self._pose_revision == self._revision:
            return self._pose
        return None

    def __len__(self) -> int:
        return len(self._labels)

    def _mutated(self) -> None:
        self._revision += 1
        self._pose = None
        self._pose_revision = None

    def add(self, pixel: Sequence[float], world: WorldInput) -> int:
        """
        Label a world point at a pixel.

        Args:
            pixel: (u, v) pixel coordinate
            world: WorldPoint, or an (x, y, z) triple that gets an automatic id

        Returns:
            New label id
        """
        if not isinstance(world, WorldPoint):
            coords = [float(c) for c in world]
            if len(coords) != 3:
                raise ValueError(f"World point needs 3 coordinates, got {len(coords)}")
            world = WorldPoint(f"auto-{next(self._auto_point_ids)}", *coords)

        u, v = (float(c) for c in pixel)
        for existing in self._labels.values():
            if existing.point.point_id == world.point_id:
                raise ValueError(
                    f"World point {world.point_id!r} already labeled "
                    f"(label {existing.label_id})"
                )

        label_id = next(self._ids)
        self._labels[label_id] = ImageLabel(label_id=label_id, u=u, v=v, point=world)
        self._mutated()
        logger.debug(f"Added label {label_id} for point {world.point_id} at ({u}, {v})")
        return label_id

    def remove(self, label_id: int) -> None:
        """Remove a label; raises KeyError for unknown ids."""
        if label_id not in self._labels:
            raise KeyError(f"Unknown label id: {label_id}")
        del self._labels[label_id]
        self._mutated()
        logger.debug(f"Removed label {label_id}")

    def list(self) -> CorrespondenceSet:
        """Immutable snapshot of the current labels in insertion order."""
        return CorrespondenceSet(
            image_id=self.image_id,
            labels=tuple(self._labels.values()),
            revision=self._revision,
        )

    def validate(self) -> ValidationStatus:
        """Check count and degeneracy of the current labels."""
        snapshot = self.list()
        status = check_configuration(snapshot.pixels, snapshot.world_points, self.settings)
        logger.debug(f"Image {self.image_id} revision {self._revision}: {status.value}")
        return status

    def is_current(self, revision: int) -> bool:
        return revision == self._revision

    def store_pose(self, revision: int, pose) -> bool:
        """
        Cache a pose computed from the snapshot taken at ``revision``.

        Returns:
            False (and stores nothing) if the registry changed since then
        """
        if not self.is_current(revision):
            logger.info(
                f"Discarding stale pose for image {self.image_id}: "
                f"computed at revision {revision}, registry at {self._revision}"
            )
            return False
        self._pose = pose
        self._pose_revision = revision
        return True
