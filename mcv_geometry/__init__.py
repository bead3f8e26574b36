"""
MCV Geometry Package

Geometric estimation for manually labeled video frames:

    - Camera pose (rotation, translation) and unknown focal length from
      pixel ↔ surveyed world point correspondences (DLT initialization,
      Levenberg-Marquardt refinement)
    - Sub-frame tick boundary times and locations from trajectory samples
      on either side of an observed tick change

Conventions:
    - World to camera: X_cam = R @ X_world + t
    - Camera frame: X-right, Y-down, Z-forward
    - Square pixels, zero skew, principal point at the image centre

All solvers are pure functions of their inputs; failures are raised as
typed SolverError subclasses and reported through the request envelope in
``mcv_geometry.api``.
"""

__version__ = "0.3.0"

from .config import Config, CameraSettings, PoseSolverSettings, TickSolverSettings, BackendSettings
from .errors import (
    SolverError,
    InputError,
    DegeneracyError,
    NumericError,
    InsufficientPointsError,
    InsufficientSamplesError,
    DegenerateConfigurationError,
    ParallelLinesError,
    NonConvergenceError,
)
from .correspondences import (
    WorldPoint,
    ImageLabel,
    CorrespondenceSet,
    CorrespondenceRegistry,
    ValidationStatus,
    check_configuration,
)
from .camera import CameraPoseEstimate, PinholeCamera
from .reprojection import reproject, compute_residuals, build_report, ReprojectionReport
from .pose_solver import solve_pose, solve_registry, solve_poses_parallel, estimate_initial_pose
from .tick_solver import TrajectorySample, TickEvent, TickBoundaryEstimate, solve_tick_boundary
from .data_loader import PoseFixture, load_fixture, load_correspondences_csv, load_tick_segments
from .api import handle_request
from .backends import SolverBackend, LocalBackend, RemoteBackend, create_backend

__all__ = [
    "Config",
    "CameraSettings",
    "PoseSolverSettings",
    "TickSolverSettings",
    "BackendSettings",
    "SolverError",
    "InputError",
    "DegeneracyError",
    "NumericError",
    "InsufficientPointsError",
    "InsufficientSamplesError",
    "DegenerateConfigurationError",
    "ParallelLinesError",
    "NonConvergenceError",
    "WorldPoint",
    "ImageLabel",
    "CorrespondenceSet",
    "CorrespondenceRegistry",
    "ValidationStatus",
    "check_configuration",
    "CameraPoseEstimate",
    "PinholeCamera",
    "reproject",
    "compute_residuals",
    "build_report",
    "ReprojectionReport",
    "solve_pose",
    "solve_registry",
    "solve_poses_parallel",
    "estimate_initial_pose",
    "TrajectorySample",
    "TickEvent",
    "TickBoundaryEstimate",
    "solve_tick_boundary",
    "PoseFixture",
    "load_fixture",
    "load_correspondences_csv",
    "load_tick_segments",
    "handle_request",
    "SolverBackend",
    "LocalBackend",
    "RemoteBackend",
    "create_backend",
]
