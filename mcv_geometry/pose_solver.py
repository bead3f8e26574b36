"""
Camera pose and focal-length solver.

Pipeline:
    1. Recenter pixels around the assumed principal point
    2. DLT: homogeneous least squares for the 3x4 projection matrix on
       isotropically normalized points
    3. Decompose P = f-diag K @ [R | t] with an RQ factorization of its
       leading 3x3 block; the overall sign is chosen so that most points
       have positive depth
    4. Levenberg-Marquardt refinement of (left rotation increment,
       translation, focal length) on the total squared reprojection error

Assumes square pixels, zero skew and a principal point at the image centre.
"""

import numpy as np
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, Iterable, Optional, Tuple, Union
import logging

from .camera import CameraPoseEstimate
from .config import PoseSolverSettings
from .correspondences import (
    CorrespondenceRegistry,
    CorrespondenceSet,
    ValidationStatus,
    check_configuration,
)
from .errors import (
    DegenerateConfigurationError,
    InsufficientPointsError,
    NonConvergenceError,
    SolverError,
)
from .linalg import (
    homogeneous_least_squares,
    nearest_orthonormal,
    normalization_transform,
    rq_decomposition,
    to_homogeneous,
)
from .reprojection import compute_residuals
from .transforms import rotation_vector_to_matrix, validate_rotation_matrix

logger = logging.getLogger(__name__)

# Step layout: rotation increment (3), translation (3), focal length (1)
N_PARAMS = 7

INITIAL_DAMPING = 1e-3
MIN_DAMPING = 1e-12
MAX_DAMPING = 1e16
DAMPING_FACTOR = 10.0
STEP_TOLERANCE = 1e-12  # relative to max(1, |parameter|)


def _validated(
    correspondences: CorrespondenceSet,
    settings: PoseSolverSettings,
) -> None:
    status = check_configuration(
        correspondences.pixels, correspondences.world_points, settings
    )
    if status is ValidationStatus.INSUFFICIENT_POINTS:
        raise InsufficientPointsError(
            f"At least {settings.min_points} correspondences are required, "
            f"got {len(correspondences)}",
            details={'count': len(correspondences), 'required': settings.min_points},
        )
    if status is ValidationStatus.DEGENERATE_CONFIGURATION:
        raise DegenerateConfigurationError(
            "World points are coplanar and their projections collinear; "
            "add points off the plane or off the image line",
        )


def estimate_projection_matrix(
    pixels: np.ndarray,
    world: np.ndarray,
    settings: Optional[PoseSolverSettings] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Direct linear transform for the 3x4 projection matrix.

    Args:
        pixels: Nx2 pixel coordinates (already recentred)
        world: Nx3 world coordinates
        settings: Solver thresholds

    Returns:
        Tuple of (P, singular_values) with P defined up to scale

    Raises:
        DegenerateConfigurationError: the null space of the DLT system is
            not one-dimensional
    """
    settings = settings or PoseSolverSettings()
    pixels = np.asarray(pixels, dtype=np.float64)
    world = np.asarray(world, dtype=np.float64)

    T_img = normalization_transform(pixels)
    T_world = normalization_transform(world)
    x_n = to_homogeneous(pixels) @ T_img.T
    X_n = to_homogeneous(world) @ T_world.T

    n = len(world)
    A = np.zeros((2 * n, 12))
    for i in range(n):
        X = X_n[i]
        u, v = x_n[i, 0], x_n[i, 1]
        A[2 * i, 0:4] = X
        A[2 * i, 8:12] = -u * X
        A[2 * i + 1, 4:8] = X
        A[2 * i + 1, 8:12] = -v * X

    p, s = homogeneous_least_squares(A)
    logger.debug(f"DLT singular values: {s}")

    smallest, second = s[-1], s[-2]
    if second <= settings.dlt_rank_tolerance * s[0]:
        raise DegenerateConfigurationError(
            "DLT system has more than one null vector",
            details={'singular_values': s[-4:].tolist()},
        )
    # Near the minimum point count the smallest singular value follows the
    # pixel noise, so the gap only means something with redundant rows
    redundancy = A.shape[0] - A.shape[1]
    if (
        redundancy >= settings.dlt_separation_min_redundancy
        and second < settings.dlt_separation_ratio * smallest
    ):
        raise DegenerateConfigurationError(
            "Smallest DLT singular values are not well separated",
            details={'singular_values': s[-4:].tolist()},
        )

    P = np.linalg.inv(T_img) @ p.reshape(3, 4) @ T_world
    return P, s


def decompose_projection(
    P: np.ndarray,
    world: np.ndarray,
) -> Tuple[np.ndarray, np.ndarray, float]:
    """
    Split a projection matrix (for recentred pixels) into R, t and f.

    Args:
        P: 3x4 projection matrix, any scale or sign
        world: Nx3 world points used to resolve the sign ambiguity

    Returns:
        Tuple of (R, t, focal_length)
    """
    P = np.asarray(P, dtype=np.float64)
    depths = to_homogeneous(world) @ P[2]
    if np.sum(depths > 0) < np.sum(depths < 0):
        P = -P

    K, R = rq_decomposition(P[:, :3])
    if K[2, 2] <= 0:
        raise DegenerateConfigurationError("Projection matrix has no viewing axis")

    R = nearest_orthonormal(R)
    if not validate_rotation_matrix(R):
        raise DegenerateConfigurationError(
            "Correspondences imply a mirrored camera; check the pixel axis convention"
        )

    t = np.linalg.solve(K, P[:, 3])
    K = K / K[2, 2]
    focal_length = 0.5 * (K[0, 0] + K[1, 1])
    if focal_length <= 0:
        raise DegenerateConfigurationError("Decomposition produced a non-positive focal length")

    logger.debug(
        f"Decomposed K: fx={K[0, 0]:.4f} fy={K[1, 1]:.4f} skew={K[0, 1]:.4g} "
        f"offset=({K[0, 2]:.4g}, {K[1, 2]:.4g})"
    )
    return R, t, float(focal_length)


def _skew(vectors: np.ndarray) -> np.ndarray:
    """Batch of cross-product matrices [v]x, shape (N, 3, 3)."""
    S = np.zeros((len(vectors), 3, 3))
    S[:, 0, 1], S[:, 0, 2] = -vectors[:, 2], vectors[:, 1]
    S[:, 1, 0], S[:, 1, 2] = vectors[:, 2], -vectors[:, 0]
    S[:, 2, 0], S[:, 2, 1] = -vectors[:, 1], vectors[:, 0]
    return S


def _residuals_and_jacobian(
    R: np.ndarray,
    t: np.ndarray,
    focal_length: float,
    world: np.ndarray,
    pixels: np.ndarray,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Stacked (du, dv) residuals for recentred pixels and their 2N x 7 Jacobian.

    The rotation is perturbed on the left, R <- exp([w]x) R, so its three
    columns are the derivatives at w = 0.
    """
    rotated = world @ R.T
    cam = rotated + t
    z = cam[:, 2]
    z = np.where(np.abs(z) < 1e-12, 1e-12, z)
    projected = focal_length * cam[:, :2] / z[:, None]
    residuals = (projected - pixels).ravel()

    n = len(world)
    d_proj = np.zeros((n, 2, 3))
    d_proj[:, 0, 0] = focal_length / z
    d_proj[:, 0, 2] = -focal_length * cam[:, 0] / z ** 2
    d_proj[:, 1, 1] = focal_length / z
    d_proj[:, 1, 2] = -focal_length * cam[:, 1] / z ** 2

    J = np.zeros((n, 2, N_PARAMS))
    J[:, :, 0:3] = d_proj @ -_skew(rotated)
    J[:, :, 3:6] = d_proj
    J[:, :, 6] = cam[:, :2] / z[:, None]
    return residuals, J.reshape(2 * n, N_PARAMS)


def _apply_step(
    R: np.ndarray, t: np.ndarray, focal_length: float, step: np.ndarray
) -> Tuple[np.ndarray, np.ndarray, float]:
    return rotation_vector_to_matrix(step[0:3]) @ R, t + step[3:6], focal_length + float(step[6])


def refine_pose(
    R: np.ndarray,
    t: np.ndarray,
    focal_length: float,
    pixels: np.ndarray,
    world: np.ndarray,
    settings: Optional[PoseSolverSettings] = None,
) -> Tuple[np.ndarray, np.ndarray, float, bool, int]:
    """
    Minimize total squared reprojection error with Levenberg-Marquardt.

    One iteration is one Jacobian evaluation followed by damped trial steps
    until one lowers the cost. The solve converges when an accepted step
    lowers the cost by less than ``relative_cost_tolerance`` of its previous
    value, when the accepted step is negligible, or when no damped step
    lowers the cost at all.

    Args:
        R, t, focal_length: Initial estimate
        pixels: Nx2 recentred pixel coordinates
        world: Nx3 world coordinates
        settings: Solver thresholds

    Returns:
        Tuple of (R, t, focal_length, converged, iterations)
    """
    settings = settings or PoseSolverSettings()
    world = np.asarray(world, dtype=np.float64)
    pixels = np.asarray(pixels, dtype=np.float64)
    R = np.asarray(R, dtype=np.float64)
    t = np.asarray(t, dtype=np.float64).reshape(3)
    f = float(focal_length)

    residuals, J = _residuals_and_jacobian(R, t, f, world, pixels)
    cost = 0.5 * float(residuals @ residuals)
    initial_cost = cost
    damping = INITIAL_DAMPING
    converged = False
    iterations = 0

    while iterations < settings.max_iterations:
        iterations += 1
        JtJ = J.T @ J
        gradient = J.T @ residuals
        diagonal = np.diag(JtJ)
        # Marquardt scaling, floored so a flat parameter keeps the system solvable
        scale = np.diag(np.maximum(diagonal, np.finfo(float).eps * max(1.0, diagonal.max())))

        accepted = False
        while damping <= MAX_DAMPING:
            step = np.linalg.solve(JtJ + damping * scale, -gradient)
            R_new, t_new, f_new = _apply_step(R, t, f, step)
            residuals_new, J_new = _residuals_and_jacobian(R_new, t_new, f_new, world, pixels)
            cost_new = 0.5 * float(residuals_new @ residuals_new)
            if cost_new < cost:
                accepted = True
                break
            damping *= DAMPING_FACTOR

        if not accepted:
            # No descent direction left
            converged = True
            break

        decrease = cost - cost_new
        previous_cost = cost
        magnitudes = np.maximum(1.0, np.abs(np.concatenate([np.zeros(3), t, [f]])))
        negligible_step = bool(np.all(np.abs(step) <= STEP_TOLERANCE * magnitudes))
        R, t, f, residuals, J, cost = R_new, t_new, f_new, residuals_new, J_new, cost_new
        damping = max(damping / DAMPING_FACTOR, MIN_DAMPING)
        if decrease <= settings.relative_cost_tolerance * previous_cost or negligible_step:
            converged = True
            break

    logger.debug(
        f"LM finished after {iterations} iterations (converged={converged}), "
        f"cost {initial_cost:.6g} -> {cost:.6g}"
    )
    return R, t, f, converged, iterations


def _build_estimate(
    R: np.ndarray,
    t: np.ndarray,
    focal_length: float,
    principal_point: Tuple[float, float],
    correspondences: CorrespondenceSet,
    converged: bool,
    iterations: int,
) -> CameraPoseEstimate:
    draft = CameraPoseEstimate(
        rotation=R,
        translation=t,
        focal_length=focal_length,
        principal_point=principal_point,
        residuals=np.zeros(len(correspondences)),
        rms_error=0.0,
        converged=converged,
        iterations=iterations,
    )
    summary = compute_residuals(draft, correspondences)
    return CameraPoseEstimate(
        rotation=R,
        translation=t,
        focal_length=focal_length,
        principal_point=principal_point,
        residuals=summary.per_point,
        rms_error=summary.rms,
        converged=converged,
        iterations=iterations,
    )


def estimate_initial_pose(
    correspondences: CorrespondenceSet,
    principal_point: Tuple[float, float] = (0.0, 0.0),
    settings: Optional[PoseSolverSettings] = None,
) -> CameraPoseEstimate:
    """
    DLT-only estimate without iterative refinement.

    Reported with ``converged=False``; callers opt into it explicitly.
    """
    settings = settings or PoseSolverSettings()
    _validated(correspondences, settings)

    world = correspondences.world_points
    pixels = correspondences.pixels - np.asarray(principal_point, dtype=np.float64)
    P, _ = estimate_projection_matrix(pixels, world, settings)
    R, t, f = decompose_projection(P, world)
    return _build_estimate(R, t, f, principal_point, correspondences, False, 0)


def solve_pose(
    correspondences: CorrespondenceSet,
    principal_point: Tuple[float, float] = (0.0, 0.0),
    settings: Optional[PoseSolverSettings] = None,
) -> CameraPoseEstimate:
    """
    Estimate rotation, translation and focal length from correspondences.

    Args:
        correspondences: At least ``settings.min_points`` pixel/world pairs
        principal_point: Assumed principal point (image centre) in pixels
        settings: Solver thresholds

    Returns:
        CameraPoseEstimate

    Raises:
        InsufficientPointsError: too few correspondences
        DegenerateConfigurationError: configuration cannot constrain the camera
        NonConvergenceError: refinement hit the iteration cap (unless
            ``settings.allow_unconverged``)
    """
    settings = settings or PoseSolverSettings()
    _validated(correspondences, settings)

    world = correspondences.world_points
    pixels = correspondences.pixels - np.asarray(principal_point, dtype=np.float64)

    P, _ = estimate_projection_matrix(pixels, world, settings)
    R0, t0, f0 = decompose_projection(P, world)
    logger.debug(f"DLT initial focal length: {f0:.4f}")

    R, t, f, converged, iterations = refine_pose(R0, t0, f0, pixels, world, settings)

    if f <= 0:
        raise DegenerateConfigurationError(
            "Refinement drove the focal length to a non-positive value",
            details={'focal_length': f},
        )

    estimate = _build_estimate(R, t, f, principal_point, correspondences, converged, iterations)

    if not converged:
        if not settings.allow_unconverged:
            raise NonConvergenceError(
                f"Refinement did not converge within {settings.max_iterations} iterations",
                details={
                    'iterations': iterations,
                    'rmsError': estimate.rms_error,
                },
            )
        logger.warning(
            f"Accepting unconverged pose for image {correspondences.image_id} "
            f"(RMS {estimate.rms_error:.3f} px)"
        )

    logger.info(
        f"Solved image {correspondences.image_id}: f={f:.2f} px, "
        f"RMS={estimate.rms_error:.4f} px over {len(correspondences)} points"
    )
    return estimate


def solve_registry(
    registry: CorrespondenceRegistry,
    settings: Optional[PoseSolverSettings] = None,
) -> Optional[CameraPoseEstimate]:
    """
    Solve the registry's current labels and store the pose if still current.

    Returns:
        The pose, or None when the registry changed while solving
    """
    snapshot = registry.list()
    principal_point = (0.0, 0.0)
    if registry.image_size:
        width, height = registry.image_size
        principal_point = (width / 2.0, height / 2.0)

    pose = solve_pose(snapshot, principal_point, settings or registry.settings)
    if not registry.store_pose(snapshot.revision, pose):
        return None
    return pose


def solve_poses_parallel(
    correspondence_sets: Iterable[CorrespondenceSet],
    principal_point: Tuple[float, float] = (0.0, 0.0),
    settings: Optional[PoseSolverSettings] = None,
    max_workers: int = 4,
) -> Dict[str, Union[CameraPoseEstimate, SolverError]]:
    """
    Solve independent images concurrently.

    Each image's result is either its pose or the SolverError that its solve
    raised; one failing image does not affect the others.

    Returns:
        Mapping image_id -> CameraPoseEstimate | SolverError
    """
    sets = list(correspondence_sets)
    ids = [s.image_id for s in sets]
    if len(set(ids)) != len(ids):
        raise ValueError("Image ids must be unique for a parallel solve")

    results: Dict[str, Union[CameraPoseEstimate, SolverError]] = {}
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        future_to_id = {
            executor.submit(solve_pose, s, principal_point, settings): s.image_id
            for s in sets
        }
        for future in as_completed(future_to_id):
            image_id = future_to_id[future]
            try:
                results[image_id] = future.result()
            except SolverError as e:
                logger.warning(f"Image {image_id}: {e.code}: {e.message}")
                results[image_id] = e

    failed = sum(isinstance(r, SolverError) for r in results.values())
    if failed:
        logger.warning(f"Failed to solve {failed}/{len(sets)} images")
    return results
