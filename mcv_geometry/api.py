"""
Request/response envelope for the solver operations.

Request:
    {"op": "solvePose", "args": {...}}

Success response:
    {"ok": true, "data": {...}}

Failure response:
    {"ok": false, "error": {"code": "...", "message": "...", "details": ...}}

Operations:
    solvePose          args: [{pixel, world}, ...] or
                             {correspondences: [...], imageSize?: [w, h],
                              refine?: bool}
    solveTickBoundary  args: {segmentBefore: [...], segmentAfter: [...]}
    reproject          args: {pose: <solvePose data>, points: [[x, y, z], ...]}
    health             args: {}

The dispatcher never raises: every failure, including unexpected ones, is
returned as a failure response.
"""

import numpy as np
from typing import Any, Callable, Dict, Optional
import logging

from . import __version__
from .camera import CameraPoseEstimate
from .config import Config
from .data_loader import parse_correspondence_entries
from .errors import SolverError
from .pose_solver import estimate_initial_pose, solve_pose
from .reprojection import reproject_many
from .tick_solver import solve_tick_boundary

logger = logging.getLogger(__name__)

UNKNOWN_OP = "UNKNOWN_OP"
INVALID_ARGS = "INVALID_ARGS"
INTERNAL_ERROR = "INTERNAL_ERROR"


def success(data: Any) -> Dict[str, Any]:
    return {'ok': True, 'data': data}


def failure(code: str, message: str, details: Optional[Any] = None) -> Dict[str, Any]:
    error = {'code': code, 'message': message}
    if details is not None:
        error['details'] = details
    return {'ok': False, 'error': error}


def _principal_point(args: Dict[str, Any], config: Config):
    image_size = args.get('imageSize')
    if image_size is not None:
        if len(image_size) != 2:
            raise ValueError("imageSize must be [width, height]")
        return float(image_size[0]) / 2.0, float(image_size[1]) / 2.0
    return config.camera.principal_point


def handle_solve_pose(args: Any, config: Config) -> Dict[str, Any]:
    if isinstance(args, list):
        args = {'correspondences': args}
    if not isinstance(args, dict):
        raise ValueError("solvePose expects a list of correspondences or an object")

    correspondences = parse_correspondence_entries(
        args.get('correspondences', []),
        image_id=str(args.get('imageId', 'image')),
    )
    principal_point = _principal_point(args, config)

    if args.get('refine', True):
        pose = solve_pose(correspondences, principal_point, config.pose_solver)
    else:
        pose = estimate_initial_pose(correspondences, principal_point, config.pose_solver)
    return pose.to_dict()


def handle_solve_tick_boundary(args: Any, config: Config) -> Dict[str, Any]:
    if not isinstance(args, dict):
        raise ValueError("solveTickBoundary expects an object")
    estimate = solve_tick_boundary(
        args.get('segmentBefore', []),
        args.get('segmentAfter', []),
        config.tick_solver,
    )
    return estimate.to_dict()


def handle_reproject(args: Any, config: Config) -> Dict[str, Any]:
    if not isinstance(args, dict) or 'pose' not in args:
        raise ValueError("reproject expects {pose, points}")
    pose = CameraPoseEstimate.from_dict(args['pose'])
    points = np.asarray(args.get('points', []), dtype=np.float64).reshape(-1, 3)
    pixels, depths = reproject_many(pose, points)
    return {
        'pixels': pixels.tolist(),
        'inFront': (depths > 0).tolist(),
    }


def handle_health(args: Any, config: Config) -> Dict[str, Any]:
    return {'backend': 'python-numpy', 'version': __version__}


HANDLERS: Dict[str, Callable[[Any, Config], Dict[str, Any]]] = {
    'solvePose': handle_solve_pose,
    'solveTickBoundary': handle_solve_tick_boundary,
    'reproject': handle_reproject,
    'health': handle_health,
}


def handle_request(request: Any, config: Optional[Config] = None) -> Dict[str, Any]:
    """
    Dispatch one request envelope to its operation.

    Args:
        request: {"op": str, "args": object}
        config: Solver configuration (defaults if omitted)

    Returns:
        Success or failure response envelope
    """
    config = config or Config.default()

    if not isinstance(request, dict):
        return failure(INVALID_ARGS, "Request must be an object with 'op' and 'args'")

    op = request.get('op')
    handler = HANDLERS.get(op)
    if handler is None:
        return failure(UNKNOWN_OP, f"Unsupported operation: {op}")

    args = request.get('args')
    if args is None:
        args = {}

    try:
        return success(handler(args, config))
    except SolverError as e:
        logger.info(f"{op} failed: {e.code}: {e.message}")
        return {'ok': False, 'error': e.to_dict()}
    except (ValueError, TypeError, KeyError) as e:
        logger.info(f"{op} rejected malformed arguments: {e}")
        return failure(INVALID_ARGS, f"Invalid arguments for {op}: {e}")
    except Exception as e:
        logger.exception(f"Unexpected error in {op}")
        return failure(INTERNAL_ERROR, f"Unexpected error in {op}", details=str(e))
