"""
Head-centred Waveguard coordinate frame.

The frame is derived from montage anchor electrodes:

- Lmid / Rmid are the centroids of the left / right anchor electrodes and the
  origin is their midpoint; +Y points towards Lmid.
- +Z points from the origin towards the vertex electrode (or the midpoint of a
  vertex pair).
- +X is normal to the Y-Z plane and points towards the nose, so midline
  electrodes anterior to the vertex get positive X.

Points are re-expressed as ``(P - origin) @ [X | Y | Z]``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, asdict
from typing import Dict

import numpy as np

from fastscan.utils.errors import (
    ChannelCountMismatchError,
    DistancePreservationError,
    HandednessError,
    OrthogonalityError,
)
from fastscan.utils.montages import MontageSpec

log = logging.getLogger(__name__)

DEFAULT_ANGLE_TOL = 2.0
DEFAULT_DISTANCE_TOL = 0.2

# Keeps the cross product in the same magnitude range as the input units
NOSE_POINT_SCALE = 100.0

# Landmark rows (rpa, nasion, lpa) used for the distance gate
RPA_ROW = 0
LPA_ROW = 2


@dataclass(frozen=True)
class Frame:
    """Origin plus three unit axes, all in native scanner coordinates."""

    origin: np.ndarray
    unit_x: np.ndarray
    unit_y: np.ndarray
    unit_z: np.ndarray

    @property
    def rotation(self) -> np.ndarray:
        """3x3 matrix whose columns are the unit axes."""
        return np.column_stack([self.unit_x, self.unit_y, self.unit_z])

    @property
    def determinant(self) -> float:
        return float(np.linalg.det(self.rotation))

    def transform(self, points) -> np.ndarray:
        """Express native points in this frame."""
        points = as_point_array(points)
        return (points - self.origin) @ self.rotation

    def inverse_transform(self, points) -> np.ndarray:
        """Map frame coordinates back into native scanner coordinates."""
        points = as_point_array(points)
        return points @ self.rotation.T + self.origin


@dataclass
class FrameDiagnostics:
    """Values checked while building a frame (advisory output)."""

    xy_off_deg: float
    yz_off_deg: float
    zx_off_deg: float
    determinant: float
    lmid: np.ndarray
    rmid: np.ndarray
    vertex: np.ndarray

    @property
    def max_off_deg(self) -> float:
        return max(self.xy_off_deg, self.yz_off_deg, self.zx_off_deg)

    def to_dict(self) -> Dict:
        out = asdict(self)
        for key in ("lmid", "rmid", "vertex"):
            out[key] = np.asarray(out[key]).tolist()
        out["max_off_deg"] = self.max_off_deg
        return out


def as_point_array(points) -> np.ndarray:
    """Coerce to a float64 (N, 3) array; a single point becomes (1, 3)."""
    arr = np.asarray(points, dtype=float)
    if arr.ndim == 1:
        arr = arr.reshape(1, -1)
    if arr.ndim != 2 or arr.shape[1] != 3:
        raise ValueError(f"Expected an (N, 3) array of points, got shape {arr.shape}")
    return arr


def angle_between_deg(u, v) -> float:
    """Angle between two vectors in degrees, stable over 0-180."""
    u = np.asarray(u, dtype=float)
    v = np.asarray(v, dtype=float)
    return float(np.degrees(np.arctan2(np.linalg.norm(np.cross(u, v)), np.dot(u, v))))


def orthogonality_deviation_deg(u, v) -> float:
    return abs(90.0 - angle_between_deg(u, v))


def _unit(vec: np.ndarray, axis_name: str) -> np.ndarray:
    norm = np.linalg.norm(vec)
    if not np.isfinite(norm) or np.isclose(norm, 0.0):
        raise OrthogonalityError(
            f"Cannot define the {axis_name} axis: its direction vector has zero length. "
            "The anchor electrodes are likely misidentified.",
            {"axis": axis_name, "norm": float(norm)},
        )
    return vec / norm


def anchor_points(electrodes, montage: MontageSpec) -> Dict[str, np.ndarray]:
    """Lmid, Rmid and vertex from the montage anchors."""
    electrodes = as_point_array(electrodes)
    rows = montage.anchor_rows()
    needed = max(int(r.max()) for r in rows.values()) + 1
    if electrodes.shape[0] < needed:
        raise ChannelCountMismatchError(
            f"Montage '{montage.name}' anchors need at least {needed} electrodes.",
            {"expected": montage.n_electrodes, "found": electrodes.shape[0]},
        )
    return {
        "lmid": electrodes[rows["left"]].mean(axis=0),
        "rmid": electrodes[rows["right"]].mean(axis=0),
        "vertex": electrodes[rows["vertex"]].mean(axis=0),
    }


def frame_from_points(lmid, rmid, vertex) -> Frame:
    """Build the (unvalidated) frame from Lmid, Rmid and the vertex point."""
    lmid = np.asarray(lmid, dtype=float)
    rmid = np.asarray(rmid, dtype=float)
    vertex = np.asarray(vertex, dtype=float)

    origin = (lmid + rmid) / 2.0
    nose_point = np.cross(lmid - origin, vertex - origin) / NOSE_POINT_SCALE + origin

    return Frame(
        origin=origin,
        unit_x=_unit(nose_point - origin, "X"),
        unit_y=_unit(lmid - origin, "Y"),
        unit_z=_unit(vertex - origin, "Z"),
    )


def check_orthogonality(frame: Frame, angle_tol: float = DEFAULT_ANGLE_TOL):
    """Return (xy, yz, zx) deviations from 90 degrees; raise if any reaches angle_tol."""
    xy_off = orthogonality_deviation_deg(frame.unit_x, frame.unit_y)
    yz_off = orthogonality_deviation_deg(frame.unit_y, frame.unit_z)
    zx_off = orthogonality_deviation_deg(frame.unit_z, frame.unit_x)
    offs = {"xy_off_deg": xy_off, "yz_off_deg": yz_off, "zx_off_deg": zx_off}
    if not all(off < angle_tol for off in offs.values()):
        for key, value in offs.items():
            log.error(f"{key[:2]} angle off: {value:.4f}deg")
        raise OrthogonalityError(
            f"New coordinate direction vectors are not orthogonal enough "
            f"(off angle >= {angle_tol} deg). This is usually due to an erroneous "
            f"definition of Lmid or Rmid.",
            {**offs, "angle_tol": angle_tol},
        )
    return xy_off, yz_off, zx_off


def check_handedness(frame: Frame) -> float:
    """Reject improper rotations, which would mirror left and right."""
    det = frame.determinant
    if not det > 0:
        log.error(f"Frame determinant: {det:.6f}")
        raise HandednessError(
            "New coordinate frame is left-handed (reflection); left and right would be swapped.",
            {"determinant": det},
        )
    return det


def check_distance_preservation(
    native_landmarks,
    transformed_landmarks,
    distance_tol: float = DEFAULT_DISTANCE_TOL,
) -> float:
    """Gate on the preauricular distance; return the absolute change."""
    native = as_point_array(native_landmarks)
    transformed = as_point_array(transformed_landmarks)
    before = float(np.linalg.norm(native[RPA_ROW] - native[LPA_ROW]))
    after = float(np.linalg.norm(transformed[RPA_ROW] - transformed[LPA_ROW]))
    change = abs(after - before)
    if change > distance_tol:
        log.error(f"Preauricular point distance changed by: {change:.4f}")
        raise DistancePreservationError(
            f"Distance between PA points significantly changed during coordinate "
            f"transformation (off > {distance_tol}).",
            {"native": before, "transformed": after, "change": change,
             "distance_tol": distance_tol},
        )
    return change


def build_frame(
    electrodes,
    montage: MontageSpec,
    angle_tol: float = DEFAULT_ANGLE_TOL,
):
    """Derive and validate the Waveguard frame for one subject.

    Parameters
    ----------
    electrodes : array-like, shape (n_electrodes, 3)
        Native electrode coordinates in FastScan marking order.
    montage : MontageSpec
        Supplies the anchor electrode indices.
    angle_tol : float
        Maximum tolerated deviation from 90 degrees for any axis pair.

    Returns
    -------
    (Frame, FrameDiagnostics)

    Raises
    ------
    OrthogonalityError
        If an axis has zero length or any pair deviates by ``angle_tol`` or more.
    HandednessError
        If the axes form a reflection rather than a rotation.
    ChannelCountMismatchError
        If the electrode array is too short for the configured anchors.
    """
    anchors = anchor_points(electrodes, montage)
    frame = frame_from_points(anchors["lmid"], anchors["rmid"], anchors["vertex"])
    xy_off, yz_off, zx_off = check_orthogonality(frame, angle_tol)
    det = check_handedness(frame)
    diagnostics = FrameDiagnostics(
        xy_off_deg=xy_off,
        yz_off_deg=yz_off,
        zx_off_deg=zx_off,
        determinant=det,
        lmid=anchors["lmid"],
        rmid=anchors["rmid"],
        vertex=anchors["vertex"],
    )
    return frame, diagnostics
