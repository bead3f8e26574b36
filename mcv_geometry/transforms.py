"""
Rotation utilities shared by the pose solver and its callers.

Camera frame convention (world → camera is X_cam = R @ X_world + t):
    - X: right
    - Y: down
    - Z: forward (viewing axis, positive depth in front of the camera)

Rotation Conventions:
    - All rotations use right-hand rule
    - Axis-angle vectors (rotation vectors) are used only as the minimal
      3-parameter form inside the optimizer; poses are reported as matrices
"""

import numpy as np
from scipy.spatial.transform import Rotation
from typing import Optional
import logging

logger = logging.getLogger(__name__)


def rotation_vector_to_matrix(rvec: np.ndarray) -> np.ndarray:
    """Convert an axis-angle vector (radians) to a 3x3 rotation matrix."""
    return Rotation.from_rotvec(np.asarray(rvec, dtype=np.float64)).as_matrix()


def rotation_matrix_to_vector(R: np.ndarray) -> np.ndarray:
    """Convert a 3x3 rotation matrix to an axis-angle vector (radians)."""
    return Rotation.from_matrix(np.asarray(R, dtype=np.float64)).as_rotvec()


def look_at_rotation(
    camera_center: np.ndarray,
    target: np.ndarray,
    up: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    World-to-camera rotation for a camera at ``camera_center`` looking at ``target``.

    The image Y axis (down) is aligned with the projection of ``-up``.

    Args:
        camera_center: Camera position in world coordinates
        target: Point the optical axis passes through
        up: World direction that should appear upward in the image (default +Z)

    Returns:
        3x3 rotation matrix R such that X_cam = R @ (X_world - camera_center)
    """
    forward = np.asarray(target, dtype=np.float64) - np.asarray(camera_center, dtype=np.float64)
    norm = np.linalg.norm(forward)
    if norm == 0:
        raise ValueError("Camera center and target coincide")
    z_axis = forward / norm

    if up is None:
        up = np.array([0.0, 0.0, 1.0])
    x_axis = np.cross(z_axis, np.asarray(up, dtype=np.float64))
    if np.linalg.norm(x_axis) < 1e-12:
        raise ValueError("Viewing direction is parallel to the up vector")
    x_axis /= np.linalg.norm(x_axis)
    y_axis = np.cross(z_axis, x_axis)

    return np.vstack([x_axis, y_axis, z_axis])


def camera_center(R: np.ndarray, t: np.ndarray) -> np.ndarray:
    """Camera position in world coordinates: C = -R^T t."""
    return -np.asarray(R).T @ np.asarray(t).reshape(3)


def validate_rotation_matrix(R: np.ndarray, tol: float = 1e-6) -> bool:
    """
    Validate that a matrix is a proper rotation matrix.

    A proper rotation matrix must:
        1. Be orthogonal: R @ R.T = I
        2. Have determinant = +1 (not a reflection)

    Args:
        R: 3x3 matrix to validate
        tol: Numerical tolerance

    Returns:
        True if R is a valid rotation matrix
    """
    R = np.asarray(R)
    if R.shape != (3, 3):
        return False

    # Check orthogonality
    should_be_identity = R @ R.T
    if not np.allclose(should_be_identity, np.eye(3), atol=tol):
        return False

    # Check determinant
    det = np.linalg.det(R)
    if not np.isclose(det, 1.0, atol=tol):
        return False

    return True


def rotation_angle_between(R_a: np.ndarray, R_b: np.ndarray) -> float:
    """Angle in radians of the relative rotation R_a^T R_b."""
    return float(np.linalg.norm(rotation_matrix_to_vector(np.asarray(R_a).T @ np.asarray(R_b))))
