"""
Camera model module for projecting 3D world points to image coordinates.

Implements the pinhole model with square pixels, zero skew and a fixed
principal point.

Coordinate System:
    - Camera frame: X-right, Y-down, Z-forward (looking along +Z)
    - Image frame: u-right, v-down

Projection Model:
    1. Rigid transform: X_cam = R @ X_world + t
    2. Perspective projection: x' = X/Z, y' = Y/Z
    3. Pixel mapping: u = f*x' + cx, v = f*y' + cy
"""

import numpy as np
from typing import Any, Dict, Tuple
from dataclasses import dataclass
import logging

from .transforms import camera_center

logger = logging.getLogger(__name__)


class PinholeCamera:
    """
    Pinhole projection with a single focal length for both axes.
    """

    def __init__(self, focal_length: float, principal_point: Tuple[float, float] = (0.0, 0.0)):
        """
        Initialize camera model.

        Args:
            focal_length: Focal length in pixels
            principal_point: (cx, cy) in pixels
        """
        self.focal_length = float(focal_length)
        self.cx, self.cy = (float(c) for c in principal_point)

        # Camera matrix
        self.K = np.array([
            [self.focal_length, 0, self.cx],
            [0, self.focal_length, self.cy],
            [0, 0, 1]
        ])

    def project_points(self, points_camera: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        Project points given in the camera frame.

        Points at or behind the camera plane still get a (mirrored) projection
        so that the result stays smooth for the optimizer; use the returned
        depths to tell them apart.

        Args:
            points_camera: Nx3 array of camera frame coordinates

        Returns:
            Tuple of:
                - pixels: Nx2 array of (u, v)
                - depths: N-element array of Z values
        """
        points_camera = np.asarray(points_camera, dtype=np.float64).reshape(-1, 3)
        depths = points_camera[:, 2]
        # Keep the division finite for points exactly on the camera plane
        safe = np.where(np.abs(depths) < 1e-12, 1e-12, depths)

        u = self.focal_length * points_camera[:, 0] / safe + self.cx
        v = self.focal_length * points_camera[:, 1] / safe + self.cy
        return np.column_stack([u, v]), depths


def world_to_camera(rotation: np.ndarray, translation: np.ndarray, points_world: np.ndarray) -> np.ndarray:
    """Transform an Nx3 array of world points into the camera frame."""
    points_world = np.asarray(points_world, dtype=np.float64).reshape(-1, 3)
    return points_world @ np.asarray(rotation).T + np.asarray(translation).reshape(1, 3)


def project_world_points(
    rotation: np.ndarray,
    translation: np.ndarray,
    focal_length: float,
    principal_point: Tuple[float, float],
    points_world: np.ndarray,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Project world points through a full camera.

    Returns:
        Tuple of (Nx2 pixels, N depths)
    """
    points_camera = world_to_camera(rotation, translation, points_world)
    return PinholeCamera(focal_length, principal_point).project_points(points_camera)


def _frozen(array) -> np.ndarray:
    array = np.array(array, dtype=np.float64)
    array.setflags(write=False)
    return array


@dataclass(frozen=True)
class CameraPoseEstimate:
    """
    Immutable result of a pose solve.

    Attributes:
        rotation: 3x3 orthonormal world-to-camera rotation
        translation: Translation (3,) so that X_cam = R @ X_world + t
        focal_length: Focal length in pixels (square pixels)
        principal_point: (cx, cy) assumed during the solve
        residuals: Per-correspondence reprojection distance in pixels
        rms_error: Root-mean-square reprojection error in pixels
        converged: False only when an unconverged refinement was accepted explicitly
        iterations: Number of cost evaluations spent in refinement
    """
    rotation: np.ndarray
    translation: np.ndarray
    focal_length: float
    principal_point: Tuple[float, float]
    residuals: np.ndarray
    rms_error: float
    converged: bool
    iterations: int = 0

    def __post_init__(self):
        object.__setattr__(self, 'rotation', _frozen(self.rotation).reshape(3, 3))
        object.__setattr__(self, 'translation', _frozen(self.translation).reshape(3))
        object.__setattr__(self, 'residuals', _frozen(self.residuals).reshape(-1))
        object.__setattr__(
            self, 'principal_point', tuple(float(c) for c in self.principal_point)
        )

    @property
    def camera(self) -> PinholeCamera:
        return PinholeCamera(self.focal_length, self.principal_point)

    @property
    def camera_center(self) -> np.ndarray:
        """Camera position in world coordinates."""
        return camera_center(self.rotation, self.translation)

    @property
    def projection_matrix(self) -> np.ndarray:
        """3x4 matrix K [R | t]."""
        return self.camera.K @ np.hstack([self.rotation, self.translation.reshape(3, 1)])

    def to_dict(self) -> Dict[str, Any]:
        """Payload of a successful ``solvePose`` response."""
        return {
            'rotation': self.rotation.tolist(),
            'translation': self.translation.tolist(),
            'focalLength': float(self.focal_length),
            'principalPoint': list(self.principal_point),
            'residuals': self.residuals.tolist(),
            'rmsError': float(self.rms_error),
            'converged': bool(self.converged),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CameraPoseEstimate":
        """Inverse of to_dict (used for poses sent back by callers)."""
        return cls(
            rotation=np.asarray(data['rotation'], dtype=np.float64),
            translation=np.asarray(data['translation'], dtype=np.float64),
            focal_length=float(data['focalLength']),
            principal_point=tuple(data.get('principalPoint', (0.0, 0.0))),
            residuals=np.asarray(data.get('residuals', []), dtype=np.float64),
            rms_error=float(data.get('rmsError', 0.0)),
            converged=bool(data.get('converged', True)),
        )
