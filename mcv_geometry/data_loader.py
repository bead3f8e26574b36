"""
Data loader module for persisted solver inputs.

Supports:
    - Ground-truth fixture files (YAML)
    - Correspondence CSV files
    - Tick segment files (YAML)

Fixture Format:
    name: crate_exact
    image_size: [1920, 1080]
    tolerance_px: 1.0
    rotation_tolerance_deg: 0.5      (optional)
    focal_tolerance: 0.02            (optional, relative)
    expected:
      rotation: [[...], [...], [...]]
      translation: [x, y, z]
      focal_length: 1200.0
    correspondences:
      - {id: A1, pixel: [u, v], world: [x, y, z]}

Correspondence CSV Format:
    point_id, u, v, x, y, z

Tick Segment Format:
    event: {region: [x, y, w, h], frame_before: 10, frame_after: 11}  (optional)
    segmentBefore: [{frame: 6, pixel: [x, y]}, ...]
    segmentAfter: [{frame: 11, pixel: [x, y]}, ...]
"""

import csv
import numpy as np
import yaml
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from dataclasses import dataclass
import logging

from .camera import CameraPoseEstimate
from .correspondences import CorrespondenceSet
from .tick_solver import TickEvent, TrajectorySample
from .transforms import validate_rotation_matrix

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).parent / 'data'


@dataclass
class PoseFixture:
    """A labeled image with its documented ground-truth camera."""
    name: str
    correspondences: CorrespondenceSet
    image_size: Tuple[int, int]
    expected_rotation: np.ndarray
    expected_translation: np.ndarray
    expected_focal_length: float
    tolerance_px: float = 1.0
    rotation_tolerance_deg: Optional[float] = None
    focal_tolerance: Optional[float] = None

    @property
    def principal_point(self) -> Tuple[float, float]:
        width, height = self.image_size
        return width / 2.0, height / 2.0

    def expected_pose(self) -> CameraPoseEstimate:
        """Ground truth as a pose estimate (residuals left empty)."""
        return CameraPoseEstimate(
            rotation=self.expected_rotation,
            translation=self.expected_translation,
            focal_length=self.expected_focal_length,
            principal_point=self.principal_point,
            residuals=np.zeros(0),
            rms_error=0.0,
            converged=True,
        )


@dataclass
class TickSegments:
    """Samples on either side of a labeled tick change."""
    segment_before: List[TrajectorySample]
    segment_after: List[TrajectorySample]
    event: Optional[TickEvent] = None


def _load_yaml(path: Path) -> Dict:
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    with open(path, 'r') as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a mapping at the top level of {path}")
    return data


def parse_correspondence_entries(entries: List[Dict], image_id: str = "image") -> CorrespondenceSet:
    """
    Build a CorrespondenceSet from ``{id?, pixel: [u, v], world: [x, y, z]}`` entries.
    """
    if not isinstance(entries, list):
        raise ValueError("Correspondences must be a list")

    pixels, world, ids = [], [], []
    for i, entry in enumerate(entries):
        if not isinstance(entry, dict) or 'pixel' not in entry or 'world' not in entry:
            raise ValueError(f"Correspondence {i} needs 'pixel' and 'world' fields")
        pixel = [float(c) for c in entry['pixel']]
        point = [float(c) for c in entry['world']]
        if len(pixel) != 2 or len(point) != 3:
            raise ValueError(
                f"Correspondence {i}: pixel needs 2 and world needs 3 coordinates"
            )
        pixels.append(pixel)
        world.append(point)
        ids.append(str(entry.get('id', f"P{i + 1}")))

    return CorrespondenceSet.from_arrays(
        np.array(pixels).reshape(-1, 2),
        np.array(world).reshape(-1, 3),
        ids,
        image_id=image_id,
    )


def load_fixture(fixture_path: str) -> PoseFixture:
    """
    Load a ground-truth fixture file.

    Args:
        fixture_path: Path to the fixture YAML

    Returns:
        PoseFixture
    """
    path = Path(fixture_path)
    data = _load_yaml(path)

    name = str(data.get('name', path.stem))
    expected = data.get('expected')
    if not expected:
        raise ValueError(f"Fixture {path} has no 'expected' pose")

    rotation = np.array(expected['rotation'], dtype=np.float64)
    translation = np.array(expected['translation'], dtype=np.float64)
    if rotation.shape != (3, 3) or translation.shape != (3,):
        raise ValueError(f"Fixture {path}: rotation must be 3x3 and translation 3-vector")
    if not validate_rotation_matrix(rotation):
        raise ValueError(f"Fixture {path}: expected rotation is not a proper rotation matrix")

    image_size = data.get('image_size')
    if not image_size or len(image_size) != 2:
        raise ValueError(f"Fixture {path} needs image_size: [width, height]")

    fixture = PoseFixture(
        name=name,
        correspondences=parse_correspondence_entries(data.get('correspondences', []), image_id=name),
        image_size=(int(image_size[0]), int(image_size[1])),
        expected_rotation=rotation,
        expected_translation=translation,
        expected_focal_length=float(expected['focal_length']),
        tolerance_px=float(data.get('tolerance_px', 1.0)),
        rotation_tolerance_deg=data.get('rotation_tolerance_deg'),
        focal_tolerance=data.get('focal_tolerance'),
    )
    logger.info(f"Loaded fixture {name} with {len(fixture.correspondences)} correspondences")
    return fixture


def bundled_fixture_paths() -> List[Path]:
    """Fixture files shipped with the package, sorted by name."""
    return sorted(
        p for p in DATA_DIR.glob('*.yaml')
        if 'correspondences' in _load_yaml(p)
    )


def load_correspondences_csv(csv_path: str, image_id: Optional[str] = None) -> CorrespondenceSet:
    """
    Load correspondences from CSV.

    Expected columns: point_id, u, v, x, y, z
    """
    path = Path(csv_path)
    if not path.exists():
        raise FileNotFoundError(f"Correspondence file not found: {path}")

    pixels, world, ids = [], [], []
    with open(path, 'r', newline='') as f:
        reader = csv.DictReader(f)

        required = {'point_id', 'u', 'v', 'x', 'y', 'z'}
        if not required.issubset(reader.fieldnames or []):
            raise ValueError(
                f"Missing required columns in {path}. "
                f"Required: {required}, Found: {reader.fieldnames}"
            )

        for row in reader:
            ids.append(row['point_id'].strip())
            pixels.append([float(row['u']), float(row['v'])])
            world.append([float(row['x']), float(row['y']), float(row['z'])])

    logger.info(f"Loaded {len(ids)} correspondences from {path}")
    return CorrespondenceSet.from_arrays(
        np.array(pixels).reshape(-1, 2),
        np.array(world).reshape(-1, 3),
        ids,
        image_id=image_id or path.stem,
    )


def save_correspondences_csv(correspondences: CorrespondenceSet, csv_path: str) -> None:
    """Write correspondences in the CSV format read by load_correspondences_csv."""
    with open(csv_path, 'w', newline='') as f:
        writer = csv.writer(f)
        writer.writerow(['point_id', 'u', 'v', 'x', 'y', 'z'])
        for label in correspondences:
            p = label.point
            writer.writerow([p.point_id, label.u, label.v, p.x, p.y, p.z])


def _parse_samples(entries, name: str) -> List[TrajectorySample]:
    if not isinstance(entries, list):
        raise ValueError(f"{name} must be a list of {{frame, pixel}} entries")
    samples = []
    for entry in entries:
        pixel = entry['pixel']
        samples.append(TrajectorySample(frame=float(entry['frame']), x=float(pixel[0]), y=float(pixel[1])))
    return samples


def load_tick_segments(segments_path: str) -> TickSegments:
    """Load the samples around one tick change from YAML."""
    path = Path(segments_path)
    data = _load_yaml(path)

    event = None
    if data.get('event'):
        ev = data['event']
        event = TickEvent(
            region=tuple(float(c) for c in ev['region']),
            frame_before=int(ev['frame_before']),
            frame_after=int(ev['frame_after']),
        )

    return TickSegments(
        segment_before=_parse_samples(data.get('segmentBefore', []), 'segmentBefore'),
        segment_after=_parse_samples(data.get('segmentAfter', []), 'segmentAfter'),
        event=event,
    )
