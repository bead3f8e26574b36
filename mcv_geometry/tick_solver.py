"""
Sub-frame tick boundary estimation.

Between two simulation ticks a rendered object moves linearly, so the
samples on each side of a tick change lie on a straight line. Fitting both
lines and intersecting them locates the tick boundary in screen space; its
position along each line, measured against the frame indices of the nearest
samples, gives the fractional frame of the boundary.
"""

import numpy as np
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union
import logging

from .config import TickSolverSettings
from .errors import InsufficientSamplesError, ParallelLinesError
from .linalg import Line2D, fit_line_tls, intersect_lines

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrajectorySample:
    """Observed screen position of a tracked feature in one frame."""
    frame: float
    x: float
    y: float

    @property
    def pixel(self) -> Tuple[float, float]:
        return self.x, self.y


@dataclass(frozen=True)
class TickEvent:
    """
    A labeled tick change: a screen region and the two adjacent frames
    between which the change was observed.

    Attributes:
        region: (x, y, width, height) in pixels
        frame_before: Last frame showing the old state
        frame_after: First frame showing the new state (frame_before + 1)
    """
    region: Tuple[float, float, float, float]
    frame_before: int
    frame_after: int

    def __post_init__(self):
        if self.frame_after != self.frame_before + 1:
            raise ValueError(
                f"Tick frames must be adjacent, got {self.frame_before} and {self.frame_after}"
            )

    def contains_frame(self, frame: float) -> bool:
        return self.frame_before < frame < self.frame_after

    def contains_pixel(self, pixel: Sequence[float]) -> bool:
        x, y, w, h = self.region
        return x <= pixel[0] <= x + w and y <= pixel[1] <= y + h


@dataclass(frozen=True)
class TickBoundaryEstimate:
    """
    Result of a tick boundary solve.

    Attributes:
        intersection: (x, y) pixel where the two fitted lines meet
        fractional_frame: Frame index of the boundary
        residuals: Perpendicular distance of every sample (before, then after)
            from its fitted line, in pixels
        confidence: |sin| of the angle between the lines, in [0, 1]
        frame_before_estimate: Fractional frame from the segment before
        frame_after_estimate: Fractional frame from the segment after
    """
    intersection: Tuple[float, float]
    fractional_frame: float
    residuals: Tuple[float, ...]
    confidence: float
    frame_before_estimate: float
    frame_after_estimate: float

    @property
    def angle_degrees(self) -> float:
        return float(np.degrees(np.arcsin(min(1.0, self.confidence))))

    def to_dict(self) -> Dict[str, Any]:
        """Payload of a successful ``solveTickBoundary`` response."""
        return {
            'intersection': list(self.intersection),
            'fractionalFrame': self.fractional_frame,
            'residuals': list(self.residuals),
            'confidence': self.confidence,
        }


SampleInput = Union[TrajectorySample, Dict[str, Any]]


def _to_sample(item: SampleInput) -> TrajectorySample:
    if isinstance(item, TrajectorySample):
        return item
    pixel = item['pixel']
    return TrajectorySample(frame=float(item['frame']), x=float(pixel[0]), y=float(pixel[1]))


def _prepare(samples: Iterable[SampleInput], name: str, min_samples: int) -> Tuple[np.ndarray, np.ndarray]:
    ordered: List[TrajectorySample] = sorted((_to_sample(s) for s in samples), key=lambda s: s.frame)
    if len(ordered) < min_samples:
        raise InsufficientSamplesError(
            f"Segment {name} needs at least {min_samples} samples, got {len(ordered)}",
            details={'segment': name, 'count': len(ordered), 'required': min_samples},
        )
    frames = np.array([s.frame for s in ordered], dtype=np.float64)
    points = np.array([[s.x, s.y] for s in ordered], dtype=np.float64)
    return frames, points


def _fit(points: np.ndarray, name: str) -> Line2D:
    try:
        return fit_line_tls(points)
    except ValueError as e:
        raise InsufficientSamplesError(
            f"Segment {name} does not move: {e}",
            details={'segment': name},
        ) from e


def frame_at(line: Line2D, frames: np.ndarray, points: np.ndarray, target: np.ndarray) -> float:
    """
    Fractional frame at which the motion along ``line`` reaches ``target``.

    Uses the two samples nearest to the target along the line and inter- or
    extrapolates linearly in arc length. Falls back to a least-squares fit of
    frame against arc length when those two samples share a position.
    """
    s = line.arc_length(points)
    s_target = float(line.arc_length(np.asarray(target).reshape(1, 2))[0])

    order = np.argsort(np.abs(s - s_target), kind='stable')
    first = order[0]
    for second in order[1:]:
        ds = s[second] - s[first]
        if abs(ds) > 1e-12 * max(1.0, float(np.ptp(s))):
            slope = (frames[second] - frames[first]) / ds
            return float(frames[first] + (s_target - s[first]) * slope)

    A = np.column_stack([s, np.ones_like(s)])
    slope, intercept = np.linalg.lstsq(A, frames, rcond=None)[0]
    return float(slope * s_target + intercept)


def solve_tick_boundary(
    segment_before: Iterable[SampleInput],
    segment_after: Iterable[SampleInput],
    settings: Optional[TickSolverSettings] = None,
    event: Optional[TickEvent] = None,
) -> TickBoundaryEstimate:
    """
    Locate a tick boundary from samples on either side of it.

    Args:
        segment_before: Samples before the tick (TrajectorySample or
            {'frame': f, 'pixel': [x, y]})
        segment_after: Samples after the tick
        settings: Solver thresholds
        event: Optional labeled tick; a boundary outside its frame interval
            or region is logged

    Returns:
        TickBoundaryEstimate

    Raises:
        InsufficientSamplesError: a segment has too few (or motionless) samples
        ParallelLinesError: fitted lines are parallel within tolerance
    """
    settings = settings or TickSolverSettings()

    frames_b, points_b = _prepare(segment_before, 'before', settings.min_samples)
    frames_a, points_a = _prepare(segment_after, 'after', settings.min_samples)

    line_b = _fit(points_b, 'before')
    line_a = _fit(points_a, 'after')

    intersection, det = intersect_lines(line_b, line_a)
    confidence = abs(det)
    if confidence < settings.parallel_tolerance:
        raise ParallelLinesError(
            "Fitted lines are parallel; the tick boundary cannot be located",
            details={'sin_angle': confidence, 'tolerance': settings.parallel_tolerance},
        )

    frame_b = frame_at(line_b, frames_b, points_b, intersection)
    frame_a = frame_at(line_a, frames_a, points_a, intersection)
    fractional_frame = 0.5 * (frame_b + frame_a)

    residuals = np.concatenate([
        np.abs(line_b.distances(points_b)),
        np.abs(line_a.distances(points_a)),
    ])

    logger.debug(
        f"Tick boundary at ({intersection[0]:.3f}, {intersection[1]:.3f}), "
        f"frames {frame_b:.4f} / {frame_a:.4f}, sin(angle)={confidence:.4f}"
    )

    if event is not None:
        if not event.contains_frame(fractional_frame):
            logger.warning(
                f"Boundary frame {fractional_frame:.3f} outside labeled interval "
                f"({event.frame_before}, {event.frame_after})"
            )
        if not event.contains_pixel(intersection):
            logger.warning(
                f"Boundary pixel ({intersection[0]:.1f}, {intersection[1]:.1f}) "
                f"outside labeled region {event.region}"
            )

    return TickBoundaryEstimate(
        intersection=(float(intersection[0]), float(intersection[1])),
        fractional_frame=float(fractional_frame),
        residuals=tuple(float(r) for r in residuals),
        confidence=float(confidence),
        frame_before_estimate=frame_b,
        frame_after_estimate=frame_a,
    )
