"""
Configuration module for the geometry solvers.

Handles loading and saving of solver settings from YAML files.
"""

import yaml
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional, Tuple
import logging

logger = logging.getLogger(__name__)


@dataclass
class CameraSettings:
    """Image geometry shared by every correspondence set of a session."""
    image_width: int = 0  # Image width in pixels (0 = unknown)
    image_height: int = 0  # Image height in pixels (0 = unknown)

    @property
    def principal_point(self) -> Tuple[float, float]:
        """Image centre, or the origin when the image size is unknown."""
        if self.image_width > 0 and self.image_height > 0:
            return self.image_width / 2.0, self.image_height / 2.0
        return 0.0, 0.0


@dataclass
class PoseSolverSettings:
    """Thresholds for the pose and focal-length solver."""
    min_points: int = 6
    max_iterations: int = 100
    relative_cost_tolerance: float = 1e-9
    coplanarity_tolerance: float = 1e-6  # min/max eigenvalue of world covariance
    collinearity_tolerance: float = 1e-6  # min/max eigenvalue of pixel covariance
    dlt_rank_tolerance: float = 1e-9  # second-smallest / largest singular value
    dlt_separation_ratio: float = 2.0  # second-smallest / smallest singular value
    dlt_separation_min_redundancy: int = 4  # DLT rows beyond the 12 unknowns before the gap is tested
    allow_unconverged: bool = False


@dataclass
class TickSolverSettings:
    """Thresholds for the tick-boundary solver."""
    min_samples: int = 2
    parallel_tolerance: float = 1e-6  # |sin| of the angle between fitted lines


@dataclass
class BackendSettings:
    """
    Selects where solver requests are executed.

    mode 'local' dispatches in-process, 'remote' posts the request envelope
    to ``url`` over HTTP.
    """
    mode: str = 'local'
    url: str = 'http://127.0.0.1:8000'
    timeout: float = 30.0  # seconds
    max_retries: int = 3
    retry_delay: float = 0.5  # seconds, doubled after each failed attempt


@dataclass
class Config:
    """
    Main configuration class.

    Attributes:
        camera: Image geometry (principal point is assumed at the centre)
        pose_solver: Pose solver thresholds and iteration budget
        tick_solver: Tick solver thresholds
        backend: Local or remote execution settings
        validation_threshold: Maximum acceptable reprojection error in pixels
    """
    camera: CameraSettings = field(default_factory=CameraSettings)
    pose_solver: PoseSolverSettings = field(default_factory=PoseSolverSettings)
    tick_solver: TickSolverSettings = field(default_factory=TickSolverSettings)
    backend: BackendSettings = field(default_factory=BackendSettings)
    validation_threshold: float = 1.0  # pixels

    @classmethod
    def default(cls) -> "Config":
        return cls()

    @classmethod
    def from_yaml(cls, config_path: str) -> "Config":
        """
        Load configuration from a YAML file.

        Args:
            config_path: Path to the YAML configuration file

        Returns:
            Config object with loaded parameters

        Example YAML structure:
            camera:
              image_width: 1920
              image_height: 1080
            pose_solver:
              max_iterations: 100
              relative_cost_tolerance: 1.0e-9
              allow_unconverged: false
            tick_solver:
              parallel_tolerance: 1.0e-6
            backend:
              mode: remote
              url: "http://127.0.0.1:8000"
              timeout: 10
            validation_threshold: 1.0
        """
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}

        logger.info(f"Loading configuration from {config_path}")

        cam_data = data.get('camera', {})
        camera = CameraSettings(
            image_width=int(cam_data.get('image_width', 0)),
            image_height=int(cam_data.get('image_height', 0)),
        )

        pose_data = data.get('pose_solver', {})
        defaults = PoseSolverSettings()
        pose_solver = PoseSolverSettings(
            min_points=int(pose_data.get('min_points', defaults.min_points)),
            max_iterations=int(pose_data.get('max_iterations', defaults.max_iterations)),
            relative_cost_tolerance=float(
                pose_data.get('relative_cost_tolerance', defaults.relative_cost_tolerance)
            ),
            coplanarity_tolerance=float(
                pose_data.get('coplanarity_tolerance', defaults.coplanarity_tolerance)
            ),
            collinearity_tolerance=float(
                pose_data.get('collinearity_tolerance', defaults.collinearity_tolerance)
            ),
            dlt_rank_tolerance=float(
                pose_data.get('dlt_rank_tolerance', defaults.dlt_rank_tolerance)
            ),
            dlt_separation_ratio=float(
                pose_data.get('dlt_separation_ratio', defaults.dlt_separation_ratio)
            ),
            dlt_separation_min_redundancy=int(
                pose_data.get('dlt_separation_min_redundancy', defaults.dlt_separation_min_redundancy)
            ),
            allow_unconverged=bool(pose_data.get('allow_unconverged', False)),
        )
        if pose_solver.min_points < 6:
            raise ValueError(
                f"pose_solver.min_points must be at least 6, got {pose_solver.min_points}"
            )

        tick_data = data.get('tick_solver', {})
        tick_solver = TickSolverSettings(
            min_samples=int(tick_data.get('min_samples', 2)),
            parallel_tolerance=float(tick_data.get('parallel_tolerance', 1e-6)),
        )
        if tick_solver.min_samples < 2:
            raise ValueError(
                f"tick_solver.min_samples must be at least 2, got {tick_solver.min_samples}"
            )

        backend_data = data.get('backend', {})
        backend = BackendSettings(
            mode=str(backend_data.get('mode', 'local')).lower(),
            url=str(backend_data.get('url', BackendSettings.url)),
            timeout=float(backend_data.get('timeout', 30.0)),
            max_retries=int(backend_data.get('max_retries', 3)),
            retry_delay=float(backend_data.get('retry_delay', 0.5)),
        )
        if backend.mode not in ('local', 'remote'):
            raise ValueError(f"backend.mode must be 'local' or 'remote', got {backend.mode!r}")

        return cls(
            camera=camera,
            pose_solver=pose_solver,
            tick_solver=tick_solver,
            backend=backend,
            validation_threshold=float(data.get('validation_threshold', 1.0)),
        )

    def to_yaml(self, config_path: str) -> None:
        """Save configuration to a YAML file."""
        data = {
            'camera': {
                'image_width': self.camera.image_width,
                'image_height': self.camera.image_height,
            },
            'pose_solver': {
                'min_points': self.pose_solver.min_points,
                'max_iterations': self.pose_solver.max_iterations,
                'relative_cost_tolerance': self.pose_solver.relative_cost_tolerance,
                'coplanarity_tolerance': self.pose_solver.coplanarity_tolerance,
                'collinearity_tolerance': self.pose_solver.collinearity_tolerance,
                'dlt_rank_tolerance': self.pose_solver.dlt_rank_tolerance,
                'dlt_separation_ratio': self.pose_solver.dlt_separation_ratio,
                'dlt_separation_min_redundancy': self.pose_solver.dlt_separation_min_redundancy,
                'allow_unconverged': self.pose_solver.allow_unconverged,
            },
            'tick_solver': {
                'min_samples': self.tick_solver.min_samples,
                'parallel_tolerance': self.tick_solver.parallel_tolerance,
            },
            'backend': {
                'mode': self.backend.mode,
                'url': self.backend.url,
                'timeout': self.backend.timeout,
                'max_retries': self.backend.max_retries,
                'retry_delay': self.backend.retry_delay,
            },
            'validation_threshold': self.validation_threshold,
        }

        with open(config_path, 'w') as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

        logger.info(f"Configuration saved to {config_path}")
