"""
Reprojection and validation utilities.

Pure functions that reproject world points under a pose and measure the
pixel distance to the labeled observations. Used by the pose solver to
report residuals and independently by fixture regression checks.
"""

import csv
import json
import numpy as np
from typing import Dict, List, NamedTuple, Sequence, Union
from dataclasses import dataclass, field
import logging

from .camera import CameraPoseEstimate, project_world_points
from .correspondences import CorrespondenceSet, WorldPoint

logger = logging.getLogger(__name__)


class ResidualSummary(NamedTuple):
    """Per-point reprojection distances (pixels) and their RMS."""
    per_point: np.ndarray
    rms: float


def reproject(pose: CameraPoseEstimate, world_point: Union[WorldPoint, Sequence[float]]) -> np.ndarray:
    """
    Project one world point through a pose.

    Args:
        pose: Camera pose estimate
        world_point: WorldPoint or (x, y, z)

    Returns:
        (u, v) pixel coordinate as a 2-element array
    """
    if isinstance(world_point, WorldPoint):
        world_point = world_point.as_array()
    pixels, _ = reproject_many(pose, np.asarray(world_point, dtype=np.float64).reshape(1, 3))
    return pixels[0]


def reproject_many(pose: CameraPoseEstimate, points_world: np.ndarray):
    """Project an Nx3 array of world points; returns (Nx2 pixels, N depths)."""
    return project_world_points(
        pose.rotation,
        pose.translation,
        pose.focal_length,
        pose.principal_point,
        points_world,
    )


def residual_distances(projected: np.ndarray, observed: np.ndarray) -> np.ndarray:
    """Euclidean distance between corresponding rows of two Nx2 arrays."""
    return np.linalg.norm(np.asarray(projected) - np.asarray(observed), axis=1)


def rms(values: np.ndarray) -> float:
    values = np.asarray(values, dtype=np.float64)
    if values.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(values ** 2)))


def compute_residuals(pose: CameraPoseEstimate, correspondences: CorrespondenceSet) -> ResidualSummary:
    """
    Reprojection error of every correspondence under a pose.

    Args:
        pose: Camera pose estimate
        correspondences: Labeled pixel/world pairs

    Returns:
        ResidualSummary with per-point distances and RMS (pixels)
    """
    projected, _ = reproject_many(pose, correspondences.world_points)
    per_point = residual_distances(projected, correspondences.pixels)
    return ResidualSummary(per_point=per_point, rms=rms(per_point))


@dataclass
class ReprojectionResult:
    """Result of reprojecting a single correspondence."""
    point_id: str
    measured_u: float
    measured_v: float
    projected_u: float
    projected_v: float
    error: float  # Euclidean distance in pixels
    depth: float  # Z in camera frame
    in_front: bool  # True if the point lies in front of the camera


@dataclass
class ReprojectionReport:
    """Summary of the reprojection errors of one correspondence set."""
    image_id: str = ""
    total_points: int = 0
    points_behind_camera: int = 0

    # Error statistics (pixels)
    mean_error: float = 0.0
    std_error: float = 0.0
    min_error: float = 0.0
    max_error: float = 0.0
    median_error: float = 0.0
    rmse: float = 0.0

    # Thresholded results
    threshold: float = 1.0
    points_within_threshold: int = 0
    points_outside_threshold: int = 0
    pass_rate: float = 0.0

    results: List[ReprojectionResult] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.total_points > 0 and self.points_outside_threshold == 0


def build_report(
    pose: CameraPoseEstimate,
    correspondences: CorrespondenceSet,
    threshold: float = 1.0,
) -> ReprojectionReport:
    """
    Reproject every correspondence and collect error statistics.

    Args:
        pose: Camera pose estimate
        correspondences: Labeled pixel/world pairs
        threshold: Maximum acceptable per-point error in pixels

    Returns:
        ReprojectionReport
    """
    projected, depths = reproject_many(pose, correspondences.world_points)
    observed = correspondences.pixels
    errors = residual_distances(projected, observed)

    report = ReprojectionReport(image_id=correspondences.image_id, threshold=threshold)
    report.results = [
        ReprojectionResult(
            point_id=pid,
            measured_u=float(obs[0]),
            measured_v=float(obs[1]),
            projected_u=float(proj[0]),
            projected_v=float(proj[1]),
            error=float(err),
            depth=float(depth),
            in_front=bool(depth > 0),
        )
        for pid, obs, proj, err, depth in zip(
            correspondences.point_ids, observed, projected, errors, depths
        )
    ]
    report.total_points = len(report.results)
    report.points_behind_camera = int(np.sum(depths <= 0))

    if report.total_points == 0:
        return report

    report.mean_error = float(np.mean(errors))
    report.std_error = float(np.std(errors))
    report.min_error = float(np.min(errors))
    report.max_error = float(np.max(errors))
    report.median_error = float(np.median(errors))
    report.rmse = rms(errors)

    within_threshold = errors <= threshold
    report.points_within_threshold = int(np.sum(within_threshold))
    report.points_outside_threshold = report.total_points - report.points_within_threshold
    report.pass_rate = report.points_within_threshold / report.total_points

    if report.points_behind_camera:
        logger.warning(
            f"{report.points_behind_camera} point(s) of image {report.image_id} "
            f"project from behind the camera"
        )
    return report


def report_to_dict(report: ReprojectionReport, include_details: bool = True) -> Dict:
    data = {
        'image_id': report.image_id,
        'summary': {
            'total_points': report.total_points,
            'points_behind_camera': report.points_behind_camera,
            'threshold_pixels': report.threshold,
            'points_within_threshold': report.points_within_threshold,
            'points_outside_threshold': report.points_outside_threshold,
            'pass_rate': report.pass_rate,
        },
        'error_statistics': {
            'mean_error': report.mean_error,
            'std_error': report.std_error,
            'min_error': report.min_error,
            'max_error': report.max_error,
            'median_error': report.median_error,
            'rmse': report.rmse,
        },
    }
    if include_details:
        data['details'] = [
            {
                'point_id': r.point_id,
                'measured_u': r.measured_u,
                'measured_v': r.measured_v,
                'projected_u': r.projected_u,
                'projected_v': r.projected_v,
                'error': r.error,
                'depth': r.depth,
                'in_front': r.in_front,
            }
            for r in report.results
        ]
    return data


def save_report(report: ReprojectionReport, output_path: str, include_details: bool = True) -> None:
    """Save a reprojection report to a JSON file."""
    with open(output_path, 'w') as f:
        json.dump(report_to_dict(report, include_details), f, indent=2)

    logger.info(f"Report saved to {output_path}")


def save_residuals_csv(report: ReprojectionReport, output_path: str) -> None:
    """Save per-point residuals to CSV for further analysis."""
    with open(output_path, 'w', newline='') as f:
        writer = csv.writer(f)
        writer.writerow([
            'point_id',
            'measured_u', 'measured_v',
            'projected_u', 'projected_v',
            'residual_u', 'residual_v',
            'error', 'depth', 'in_front',
        ])

        for r in report.results:
            writer.writerow([
                r.point_id,
                r.measured_u, r.measured_v,
                r.projected_u, r.projected_v,
                r.projected_u - r.measured_u,
                r.projected_v - r.measured_v,
                r.error, r.depth, r.in_front,
            ])

    logger.info(f"Residuals saved to {output_path}")
