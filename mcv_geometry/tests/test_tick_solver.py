"""
Tests for the tick boundary solver.
"""

import logging

import pytest
import numpy as np
from numpy.testing import assert_allclose

from mcv_geometry.config import TickSolverSettings
from mcv_geometry.errors import InsufficientSamplesError, ParallelLinesError
from mcv_geometry.tick_solver import (
    TickEvent,
    TrajectorySample,
    solve_tick_boundary,
)


def trail(start_frame, start, velocity, count):
    """Samples of uniform motion starting at ``start`` in ``start_frame``."""
    return [
        TrajectorySample(
            frame=start_frame + i,
            x=start[0] + velocity[0] * i,
            y=start[1] + velocity[1] * i,
        )
        for i in range(count)
    ]


@pytest.fixture
def segments():
    """Trail that turns at (500, 300) halfway between frames 10 and 11."""
    before = trail(6, (446.0, 282.0), (12.0, 4.0), 5)
    after = trail(11, (502.0, 294.5), (4.0, -11.0), 4)
    return before, after


class TestSolveTickBoundary:

    def test_exact_boundary(self, segments):
        before, after = segments

        estimate = solve_tick_boundary(before, after)

        assert_allclose(estimate.intersection, (500.0, 300.0), atol=1e-9)
        assert estimate.fractional_frame == pytest.approx(10.5, abs=1e-3)
        assert estimate.frame_before_estimate == pytest.approx(10.5, abs=1e-9)
        assert estimate.frame_after_estimate == pytest.approx(10.5, abs=1e-9)
        assert estimate.confidence > 0.9
        assert len(estimate.residuals) == 9
        assert_allclose(estimate.residuals, 0, atol=1e-9)

    def test_dict_samples(self, segments):
        before, after = segments
        as_dicts = [{'frame': s.frame, 'pixel': [s.x, s.y]} for s in before]

        estimate = solve_tick_boundary(as_dicts, after)

        assert estimate.fractional_frame == pytest.approx(10.5, abs=1e-3)

    def test_sample_order_does_not_matter(self, segments):
        before, after = segments
        estimate = solve_tick_boundary(list(reversed(before)), after[::-1])
        assert estimate.fractional_frame == pytest.approx(10.5, abs=1e-3)

    def test_two_samples_per_segment(self, segments):
        before, after = segments
        estimate = solve_tick_boundary(before[-2:], after[:2])
        assert_allclose(estimate.intersection, (500.0, 300.0), atol=1e-9)
        assert estimate.fractional_frame == pytest.approx(10.5, abs=1e-3)

    def test_vertical_and_horizontal_segments(self):
        """Straight down, then straight right: the TLS fit needs no slope."""
        before = trail(0, (100.0, 0.0), (0.0, 10.0), 4)
        after = trail(4, (105.0, 35.0), (10.0, 0.0), 4)

        estimate = solve_tick_boundary(before, after)

        assert_allclose(estimate.intersection, (100.0, 35.0), atol=1e-9)
        assert estimate.fractional_frame == pytest.approx(3.5, abs=1e-3)
        assert estimate.confidence == pytest.approx(1.0)

    def test_noisy_samples_report_residuals(self, segments):
        before, after = segments
        rng = np.random.default_rng(0)
        noisy_before = [
            TrajectorySample(s.frame, s.x + rng.normal(0, 0.3), s.y + rng.normal(0, 0.3))
            for s in before
        ]

        estimate = solve_tick_boundary(noisy_before, after)

        assert max(estimate.residuals[:5]) > 0
        assert max(estimate.residuals[5:]) < 1e-9
        assert estimate.fractional_frame == pytest.approx(10.5, abs=0.1)

    def test_confidence_falls_with_angle(self):
        before = trail(0, (0.0, 0.0), (10.0, 0.0), 4)
        steep = trail(4, (40.0, -10.0), (10.0, -10.0), 4)
        shallow = trail(4, (40.0, -1.0), (10.0, -1.0), 4)

        steep_estimate = solve_tick_boundary(before, steep)
        shallow_estimate = solve_tick_boundary(before, shallow)

        assert shallow_estimate.confidence < steep_estimate.confidence
        assert steep_estimate.angle_degrees == pytest.approx(45.0)

    def test_collinear_segments(self):
        before = trail(0, (0.0, 0.0), (1.0, 1.0), 3)
        after = trail(3, (3.0, 3.0), (1.0, 1.0), 2)

        with pytest.raises(ParallelLinesError) as excinfo:
            solve_tick_boundary(before, after)
        assert excinfo.value.code == "PARALLEL_LINES"

    def test_parallel_offset_segments(self):
        before = trail(0, (0.0, 0.0), (5.0, 0.0), 3)
        after = trail(3, (15.0, 10.0), (5.0, 0.0), 3)

        with pytest.raises(ParallelLinesError):
            solve_tick_boundary(before, after)

    def test_tolerance_is_configurable(self):
        before = trail(0, (0.0, 0.0), (10.0, 0.0), 4)
        after = trail(4, (40.0, -1.0), (10.0, -1.0), 4)

        with pytest.raises(ParallelLinesError):
            solve_tick_boundary(before, after, TickSolverSettings(parallel_tolerance=0.5))

    def test_single_sample_segment(self, segments):
        before, after = segments
        with pytest.raises(InsufficientSamplesError) as excinfo:
            solve_tick_boundary(before[:1], after)
        assert excinfo.value.code == "INSUFFICIENT_SAMPLES"
        assert excinfo.value.details['segment'] == 'before'

    def test_empty_segment(self, segments):
        before, _ = segments
        with pytest.raises(InsufficientSamplesError):
            solve_tick_boundary(before, [])

    def test_motionless_segment(self, segments):
        before, _ = segments
        still = [TrajectorySample(11, 500.0, 300.0), TrajectorySample(12, 500.0, 300.0)]
        with pytest.raises(InsufficientSamplesError):
            solve_tick_boundary(before, still)

    def test_result_dict(self, segments):
        data = solve_tick_boundary(*segments).to_dict()
        assert set(data) == {'intersection', 'fractionalFrame', 'residuals', 'confidence'}
        assert data['fractionalFrame'] == pytest.approx(10.5, abs=1e-3)


class TestTickEvent:

    def test_frames_must_be_adjacent(self):
        with pytest.raises(ValueError):
            TickEvent(region=(0, 0, 10, 10), frame_before=3, frame_after=5)

    def test_contains(self):
        event = TickEvent(region=(480, 280, 40, 40), frame_before=10, frame_after=11)
        assert event.contains_frame(10.5)
        assert not event.contains_frame(11.2)
        assert event.contains_pixel((500, 300))
        assert not event.contains_pixel((400, 300))

    def test_boundary_outside_event_is_logged(self, segments, caplog):
        event = TickEvent(region=(0, 0, 10, 10), frame_before=12, frame_after=13)

        with caplog.at_level(logging.WARNING, logger="mcv_geometry.tick_solver"):
            estimate = solve_tick_boundary(*segments, event=event)

        assert estimate.fractional_frame == pytest.approx(10.5, abs=1e-3)
        assert "outside labeled interval" in caplog.text
        assert "outside labeled region" in caplog.text


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
