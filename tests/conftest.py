"""
Shared fixtures: a synthetic head digitized in a rotated, shifted scanner frame.

Electrodes are generated directly in Waveguard coordinates with the anchors of
the duke0Z montage placed so the true frame is the identity; the scanner
coordinates are that layout under a known rigid motion.
"""
from pathlib import Path
import sys

import matplotlib
import numpy as np
import pytest
from scipy.spatial.transform import Rotation

matplotlib.use("Agg")

PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT))

from fastscan.utils.montages import load_montage_table  # noqa: E402

HEAD_RADIUS = 90.0
TRUE_LANDMARKS = np.array([
    [0.0, -70.0, -35.0],  # rpa
    [95.0, 0.0, -25.0],   # nasion
    [0.0, 70.0, -35.0],   # lpa
])
SCANNER_ROTATION = Rotation.from_euler("zyx", [35.0, -20.0, 12.0], degrees=True).as_matrix()
SCANNER_OFFSET = np.array([152.0, -41.0, 310.0])


def to_scanner(points):
    return np.asarray(points) @ SCANNER_ROTATION.T + SCANNER_OFFSET


def make_true_electrodes(montage, seed=0):
    """Electrodes on the upper half of a sphere, anchors placed exactly."""
    rng = np.random.default_rng(seed)
    n = montage.n_electrodes
    theta = rng.uniform(0, 2 * np.pi, n)
    phi = rng.uniform(0.1, np.pi / 2, n)
    xyz = HEAD_RADIUS * np.column_stack([
        np.sin(phi) * np.cos(theta),
        np.sin(phi) * np.sin(theta),
        np.cos(phi),
    ])
    rows = montage.anchor_rows()
    # Equilateral triads centred on +/-Y so Lmid/Rmid sit on the Y axis
    triad = 12.0 * np.array([
        [1.0, 0.0, 0.0],
        [-0.5, 0.0, np.sqrt(3) / 2],
        [-0.5, 0.0, -np.sqrt(3) / 2],
    ])
    triad -= triad.mean(axis=0)
    lmid = np.array([0.0, 80.0, 0.0])
    for row, offset in zip(rows["left"], triad):
        xyz[row] = lmid + offset
    for row, offset in zip(rows["right"], triad):
        xyz[row] = -lmid + offset
    vertex = np.array([0.0, 0.0, HEAD_RADIUS])
    if len(rows["vertex"]) == 1:
        xyz[rows["vertex"][0]] = vertex
    else:
        xyz[rows["vertex"][0]] = vertex + [8.0, 0.0, 0.0]
        xyz[rows["vertex"][1]] = vertex - [8.0, 0.0, 0.0]
    return xyz


@pytest.fixture
def montage_table():
    return load_montage_table(PROJECT_ROOT / "configs" / "montages.yaml")


@pytest.fixture
def duke0z(montage_table):
    return montage_table["duke0Z"]


@pytest.fixture
def true_electrodes(duke0z):
    return make_true_electrodes(duke0z)


@pytest.fixture
def scanner_points(true_electrodes):
    """(landmarks, electrodes) in scanner coordinates."""
    return to_scanner(TRUE_LANDMARKS), to_scanner(true_electrodes)


@pytest.fixture
def markers_first(scanner_points):
    landmarks, electrodes = scanner_points
    return np.vstack([landmarks, electrodes])


@pytest.fixture
def duke0z_with_template(duke0z, true_electrodes):
    """duke0Z with a template whose canonical order reverses the marking order."""
    n = duke0z.n_electrodes
    order_labels = [f"E{ii:02d}" for ii in range(1, n + 1)]
    template_labels = order_labels[::-1]
    template_positions = true_electrodes[::-1]
    return duke0z.with_template(template_labels, template_positions, order_labels)


def write_marker_txt(path, markers):
    """Write markers in the FastScanII fixed-width export layout."""
    lines = ["FastSCAN Markers", "Units: mm", "X         Y         Z"]
    for x, y, z in np.asarray(markers):
        lines.append(f"{x:10.4f}{y:10.4f}{z:10.4f}")
    path = Path(path)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path
