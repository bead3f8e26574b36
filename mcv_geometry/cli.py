"""
Command-line interface for the geometry solvers.

Usage:
    mcv-solve pose CORRESPONDENCES [--image-size W H] [-o OUTPUT_DIR]
    mcv-solve tick SEGMENTS
    mcv-solve check-fixtures [FIXTURE ...]
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from .backends import create_backend
from .config import Config
from .correspondences import CorrespondenceSet
from .camera import CameraPoseEstimate
from .data_loader import (
    bundled_fixture_paths,
    load_correspondences_csv,
    load_fixture,
    load_tick_segments,
)
from .regression import check_fixtures
from .reprojection import build_report, save_report, save_residuals_csv


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


def _load_correspondences(path: str):
    """Returns (CorrespondenceSet, image_size or None)."""
    if Path(path).suffix.lower() in ('.yaml', '.yml'):
        fixture = load_fixture(path)
        return fixture.correspondences, fixture.image_size
    return load_correspondences_csv(path), None


def _entries(correspondences: CorrespondenceSet):
    return [
        {
            'id': label.point.point_id,
            'pixel': [label.u, label.v],
            'world': [label.point.x, label.point.y, label.point.z],
        }
        for label in correspondences
    ]


def _print_error(response) -> None:
    error = response['error']
    print(f"\nFAILED: {error['code']}: {error['message']}")


def run_pose(args, config: Config) -> int:
    logger = logging.getLogger(__name__)
    correspondences, image_size = _load_correspondences(args.correspondences)
    if args.image_size:
        image_size = tuple(args.image_size)

    backend = create_backend(config)
    response = backend.solve_pose(_entries(correspondences), image_size=image_size)
    if not response['ok']:
        _print_error(response)
        return 1

    pose = CameraPoseEstimate.from_dict(response['data'])
    report = build_report(pose, correspondences, config.validation_threshold)

    print("\n" + "=" * 60)
    print("POSE SUMMARY")
    print("=" * 60)
    print(f"Correspondences:        {len(correspondences)}")
    print(f"Focal length (px):      {pose.focal_length:.3f}")
    print(f"Camera center:          {pose.camera_center.round(4).tolist()}")
    print(f"RMS error (px):         {pose.rms_error:.4f}")
    print(f"Max error (px):         {report.max_error:.4f}")
    print(f"Within {report.threshold} px:          {report.points_within_threshold}/{report.total_points}")
    print("=" * 60)

    if args.output_dir:
        output_dir = Path(args.output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        with open(output_dir / 'pose.json', 'w') as f:
            json.dump(response['data'], f, indent=2)
        save_report(report, str(output_dir / 'reprojection_report.json'))
        save_residuals_csv(report, str(output_dir / 'residuals.csv'))
        logger.info(f"Results written to {output_dir}")

    return 0


def run_tick(args, config: Config) -> int:
    segments = load_tick_segments(args.segments)
    backend = create_backend(config)

    def as_entries(samples):
        return [{'frame': s.frame, 'pixel': [s.x, s.y]} for s in samples]

    response = backend.solve_tick_boundary(
        as_entries(segments.segment_before),
        as_entries(segments.segment_after),
    )
    if not response['ok']:
        _print_error(response)
        return 1

    data = response['data']
    print(f"Intersection (px):      ({data['intersection'][0]:.3f}, {data['intersection'][1]:.3f})")
    print(f"Fractional frame:       {data['fractionalFrame']:.4f}")
    print(f"Confidence:             {data['confidence']:.4f}")
    if segments.event is not None and not segments.event.contains_frame(data['fractionalFrame']):
        print(
            f"WARNING: boundary lies outside the labeled frames "
            f"{segments.event.frame_before}-{segments.event.frame_after}"
        )
    return 0


def run_check_fixtures(args, config: Config) -> int:
    paths = [Path(p) for p in args.fixtures] or bundled_fixture_paths()
    if not paths:
        print("No fixtures found")
        return 1

    results = check_fixtures((load_fixture(str(p)) for p in paths), config.pose_solver)
    for result in results:
        print(result.summary())

    failed = [r for r in results if not r.passed]
    print(f"\n{len(results) - len(failed)}/{len(results)} fixtures passed")
    return 1 if failed else 0


def main(argv=None) -> int:
    """Main entry point for CLI."""
    parser = argparse.ArgumentParser(
        description='Camera pose / focal length and tick boundary solvers',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Examples:
    # Solve a pose from labeled correspondences
    mcv-solve pose labels.csv --image-size 1920 1080

    # Locate a tick boundary
    mcv-solve tick segments.yaml

    # Run the bundled fixture regression
    mcv-solve check-fixtures -v
'''
    )
    parser.add_argument(
        '--config', '-c',
        type=str,
        default=None,
        help='Path to YAML configuration file (default: built-in settings)'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose output'
    )

    subparsers = parser.add_subparsers(dest='command', required=True)

    pose_parser = subparsers.add_parser('pose', help='Solve camera pose and focal length')
    pose_parser.add_argument('correspondences', help='Correspondence CSV or fixture YAML')
    pose_parser.add_argument(
        '--image-size',
        type=int,
        nargs=2,
        metavar=('WIDTH', 'HEIGHT'),
        default=None,
        help='Image size; the principal point is its centre'
    )
    pose_parser.add_argument(
        '--output-dir', '-o',
        type=str,
        default=None,
        help='Directory for pose.json, report and residuals'
    )

    tick_parser = subparsers.add_parser('tick', help='Locate a sub-frame tick boundary')
    tick_parser.add_argument('segments', help='YAML file with segmentBefore/segmentAfter')

    fixture_parser = subparsers.add_parser('check-fixtures', help='Run fixture regression')
    fixture_parser.add_argument(
        'fixtures',
        nargs='*',
        help='Fixture YAML files (default: bundled fixtures)'
    )

    args = parser.parse_args(argv)

    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    try:
        config = Config.from_yaml(args.config) if args.config else Config.default()

        if args.command == 'pose':
            return run_pose(args, config)
        if args.command == 'tick':
            return run_tick(args, config)
        return run_check_fixtures(args, config)

    except FileNotFoundError as e:
        logger.error(f"File not found: {e}")
        return 1
    except ValueError as e:
        logger.error(f"Input error: {e}")
        return 1
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
