"""
Linear-algebra primitives shared by the solvers.

    - Homogeneous least squares via SVD (smallest right singular vector)
    - RQ decomposition with a positive-diagonal triangular factor
    - Nearest orthonormal matrix (orthogonal Procrustes)
    - Isotropic point normalization for conditioning the DLT
    - Total-least-squares 2D line fit
"""

import numpy as np
import scipy.linalg
from dataclasses import dataclass
from typing import Tuple
import logging

logger = logging.getLogger(__name__)


def homogeneous_least_squares(A: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Solve A x = 0 subject to ||x|| = 1.

    Args:
        A: MxN design matrix (M >= N - 1)

    Returns:
        Tuple of (x, singular_values) where x is the right singular vector
        of the smallest singular value and singular_values are sorted in
        descending order.
    """
    _, s, Vt = np.linalg.svd(A, full_matrices=True)
    n = A.shape[1]
    if len(s) < n:
        # Fewer equations than unknowns: the missing singular values are zero
        s = np.concatenate([s, np.zeros(n - len(s))])
    return Vt[-1], s


def rq_decomposition(M: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Factor a square matrix as M = K @ Q.

    K is upper triangular with a non-negative diagonal and Q is orthogonal.
    Q may be a reflection (det -1) when det(M) < 0.

    Args:
        M: NxN matrix

    Returns:
        Tuple of (K, Q)
    """
    K, Q = scipy.linalg.rq(M)
    # Move the signs of K's diagonal into Q; D @ D = I keeps the product intact
    D = np.diag(np.where(np.diag(K) < 0, -1.0, 1.0))
    return K @ D, D @ Q


def nearest_orthonormal(M: np.ndarray) -> np.ndarray:
    """
    Closest orthonormal matrix to M in the Frobenius norm (U @ Vt of its SVD).

    The determinant of the result has the same sign as det(M).
    """
    U, _, Vt = np.linalg.svd(M)
    return U @ Vt


def normalization_transform(points: np.ndarray) -> np.ndarray:
    """
    Similarity transform moving the centroid to the origin and scaling the
    mean distance from it to sqrt(dim).

    Args:
        points: NxD array

    Returns:
        (D+1)x(D+1) homogeneous transform
    """
    points = np.asarray(points, dtype=np.float64)
    dim = points.shape[1]
    centroid = points.mean(axis=0)
    mean_dist = np.mean(np.linalg.norm(points - centroid, axis=1))
    scale = np.sqrt(dim) / mean_dist if mean_dist > 0 else 1.0

    T = np.eye(dim + 1)
    T[:dim, :dim] *= scale
    T[:dim, dim] = -scale * centroid
    return T


def to_homogeneous(points: np.ndarray) -> np.ndarray:
    """Append a column of ones to an NxD array."""
    points = np.asarray(points, dtype=np.float64)
    return np.hstack([points, np.ones((len(points), 1))])


def covariance_eigenvalues(points: np.ndarray) -> np.ndarray:
    """Eigenvalues (ascending) of the centred sample covariance of an NxD array."""
    points = np.asarray(points, dtype=np.float64)
    centered = points - points.mean(axis=0)
    cov = centered.T @ centered / len(points)
    return np.linalg.eigvalsh(cov)


@dataclass(frozen=True)
class Line2D:
    """
    Infinite 2D line in normal form: normal . p = offset.

    Attributes:
        point: Centroid of the fitted samples (a point on the line)
        direction: Unit direction vector
        normal: Unit normal vector (direction rotated by +90 degrees)
        offset: Signed distance of the line from the origin along the normal
    """
    point: np.ndarray
    direction: np.ndarray
    normal: np.ndarray
    offset: float

    def distances(self, points: np.ndarray) -> np.ndarray:
        """Signed perpendicular distances of an Nx2 array from the line."""
        return np.asarray(points, dtype=np.float64) @ self.normal - self.offset

    def arc_length(self, points: np.ndarray) -> np.ndarray:
        """Position of the orthogonal projection of each point along the line."""
        return (np.asarray(points, dtype=np.float64) - self.point) @ self.direction


def fit_line_tls(points: np.ndarray) -> Line2D:
    """
    Total-least-squares line fit (minimizes perpendicular distances).

    The direction is the eigenvector of the largest eigenvalue of the centred
    sample covariance, so vertical and horizontal lines are treated alike.

    Args:
        points: Nx2 array, N >= 2, not all identical

    Returns:
        Fitted Line2D
    """
    points = np.asarray(points, dtype=np.float64)
    if points.ndim != 2 or points.shape[1] != 2 or len(points) < 2:
        raise ValueError(f"Expected an Nx2 array with N >= 2, got shape {points.shape}")

    centroid = points.mean(axis=0)
    centered = points - centroid
    cov = centered.T @ centered
    eigenvalues, eigenvectors = np.linalg.eigh(cov)
    if eigenvalues[-1] <= 0:
        raise ValueError("Points do not span a line (all samples coincide)")

    direction = eigenvectors[:, -1]
    normal = np.array([-direction[1], direction[0]])
    return Line2D(
        point=centroid,
        direction=direction,
        normal=normal,
        offset=float(normal @ centroid),
    )


def intersect_lines(line_a: Line2D, line_b: Line2D) -> Tuple[np.ndarray, float]:
    """
    Intersect two lines given in normal form.

    Returns:
        Tuple of (intersection, determinant). The determinant equals the sine
        of the angle between the lines; the caller decides whether it is too
        small to trust. A zero determinant yields an intersection of NaNs.
    """
    A = np.vstack([line_a.normal, line_b.normal])
    b = np.array([line_a.offset, line_b.offset])
    det = float(np.linalg.det(A))
    if det == 0.0:
        return np.full(2, np.nan), det
    return np.linalg.solve(A, b), det
