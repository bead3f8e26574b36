"""
Fixture regression: solve each labeled example and compare with its
documented ground truth.
"""

import numpy as np
from dataclasses import dataclass
from typing import Iterable, List, Optional
import logging

from .config import PoseSolverSettings
from .camera import CameraPoseEstimate
from .data_loader import PoseFixture
from .errors import SolverError
from .pose_solver import solve_pose
from .transforms import rotation_angle_between

logger = logging.getLogger(__name__)


@dataclass
class FixtureCheck:
    """Outcome of solving one fixture."""
    name: str
    passed: bool
    rms_error: float = float('nan')
    rotation_error_deg: float = float('nan')
    focal_error: float = float('nan')  # relative
    center_error: float = float('nan')  # world units
    pose: Optional[CameraPoseEstimate] = None
    error: Optional[SolverError] = None

    def summary(self) -> str:
        if self.error is not None:
            return f"{self.name}: FAILED ({self.error.code}: {self.error.message})"
        status = "ok" if self.passed else "FAILED"
        return (
            f"{self.name}: {status} rms={self.rms_error:.4f}px "
            f"rot={self.rotation_error_deg:.4f}deg focal={self.focal_error:.3%} "
            f"center={self.center_error:.4f}"
        )


def check_fixture(fixture: PoseFixture, settings: Optional[PoseSolverSettings] = None) -> FixtureCheck:
    """
    Solve a fixture and compare the pose with its documented ground truth.

    The RMS reprojection error must stay below ``fixture.tolerance_px``;
    rotation and focal length are compared only when the fixture states a
    tolerance for them.
    """
    try:
        pose = solve_pose(fixture.correspondences, fixture.principal_point, settings)
    except SolverError as e:
        logger.error(f"Fixture {fixture.name}: {e.code}: {e.message}")
        return FixtureCheck(name=fixture.name, passed=False, error=e)

    expected = fixture.expected_pose()
    rotation_error = np.degrees(rotation_angle_between(expected.rotation, pose.rotation))
    focal_error = abs(pose.focal_length - fixture.expected_focal_length) / fixture.expected_focal_length
    center_error = float(np.linalg.norm(pose.camera_center - expected.camera_center))

    passed = pose.rms_error < fixture.tolerance_px
    if fixture.rotation_tolerance_deg is not None:
        passed = passed and rotation_error <= fixture.rotation_tolerance_deg
    if fixture.focal_tolerance is not None:
        passed = passed and focal_error <= fixture.focal_tolerance

    check = FixtureCheck(
        name=fixture.name,
        passed=bool(passed),
        rms_error=pose.rms_error,
        rotation_error_deg=float(rotation_error),
        focal_error=float(focal_error),
        center_error=center_error,
        pose=pose,
    )
    log = logger.info if check.passed else logger.error
    log(check.summary())
    return check


def check_fixtures(
    fixtures: Iterable[PoseFixture],
    settings: Optional[PoseSolverSettings] = None,
) -> List[FixtureCheck]:
    return [check_fixture(f, settings) for f in fixtures]
