"""
File adapters for Polhemus FastScanII exports and digitization results.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import numpy as np
import pandas as pd
import scipy.io

from fastscan.utils.channel_layout import ChannelLayout
from fastscan.utils.digitization import FastscanResult
from fastscan.utils.geometry import Frame, FrameDiagnostics, as_point_array

log = logging.getLogger(__name__)

# Marker export: three header rows then fixed-width X (10), Y (10), Z (rest)
MARKER_HEADER_ROWS = 3
MARKER_COLSPECS = [(0, 10), (10, 20), (20, None)]

DIG_SUFFIX = "_dig"


def is_pipeline_output(path: str | Path) -> bool:
    """True for files the pipeline writes (``<id>_dig.*``, ``<id>_dig_report.txt``, ...)."""
    stem = Path(path).stem
    return stem.endswith(DIG_SUFFIX) or f"{DIG_SUFFIX}_" in stem


def read_fastscan_markers(path: str | Path) -> np.ndarray:
    """Read the marker ``.txt`` exported from FastScanII.

    Returns
    -------
    np.ndarray, shape (n_markers, 3)
        Markers in the order they were placed.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Marker file not found at {path}")
    df = pd.read_fwf(
        path,
        colspecs=MARKER_COLSPECS,
        skiprows=MARKER_HEADER_ROWS,
        header=None,
        names=["X", "Y", "Z"],
    )
    df = df.apply(pd.to_numeric, errors="coerce").dropna(how="all")
    if df.isna().any().any():
        raise ValueError(f"Marker file {path} has incomplete coordinate rows.")
    markers = df.to_numpy(dtype=float)
    log.info(f"Read {markers.shape[0]} markers from {path.name}")
    return markers


def read_fastscan_point_cloud(path: str | Path, variable: str = "Points") -> np.ndarray:
    """Read the head-surface "Cloud of Points" ``.mat`` export as (M, 3)."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Point cloud file not found at {path}")
    mat = scipy.io.loadmat(str(path))
    if variable not in mat:
        raise KeyError(f"Variable '{variable}' not found in {path.name}")
    points = np.asarray(mat[variable], dtype=float)
    # FastScan stores coordinates as rows (3 x M)
    if points.ndim == 2 and points.shape[0] == 3 and points.shape[1] != 3:
        points = points.T
    return as_point_array(points)


def default_dig_path(point_cloud_path: str | Path) -> Path:
    """``<stem>_dig.mat`` next to the point cloud export."""
    point_cloud_path = Path(point_cloud_path)
    return point_cloud_path.with_name(f"{point_cloud_path.stem}{DIG_SUFFIX}.mat")


def write_digitization_csv(result: FastscanResult, path: str | Path, space: str = "native") -> Path:
    """Write labels and XYZ (landmarks first, then electrodes) to CSV."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    result.to_dataframe(space).to_csv(path, index=False)
    log.info(f"Labels and XYZ values saved to .csv file: {path}")
    return path


def _cell(values) -> np.ndarray:
    return np.array(list(values), dtype=object)


def save_fastscan_result(result: FastscanResult, path: str | Path) -> Path:
    """Serialize a result to a ``.mat`` file under the variable ``fastscan``."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    diag = result.diagnostics
    fastscan = {
        "montage": result.montage,
        "landmark_placement": result.landmark_placement,
        "electrode": result.electrode,
        "landmark": result.landmark,
        "electrode_waveguard_xyz": result.electrode_waveguard_xyz,
        "landmark_waveguard_xyz": result.landmark_waveguard_xyz,
        "elc_labels": _cell(result.elc_labels),
        "landmark_labels": _cell(result.landmark_labels),
        "preauricular_change": result.preauricular_change,
        "origin": result.frame.origin,
        "unit_x": result.frame.unit_x,
        "unit_y": result.frame.unit_y,
        "unit_z": result.frame.unit_z,
        "xy_off_deg": diag.xy_off_deg,
        "yz_off_deg": diag.yz_off_deg,
        "zx_off_deg": diag.zx_off_deg,
        "determinant": diag.determinant,
        "lmid": diag.lmid,
        "rmid": diag.rmid,
        "vertex": diag.vertex,
        "template_idx": np.asarray(result.layout.template_idx if result.layout else [], dtype=float),
    }
    if result.head is not None:
        fastscan["head"] = result.head
    scipy.io.savemat(str(path), {"fastscan": fastscan})
    log.info(f"FastScan digitization saved to: {path}")
    return path


def _str_tuple(value) -> tuple:
    return tuple(str(v).strip() for v in np.atleast_1d(value))


def _vec(value) -> np.ndarray:
    return np.asarray(value, dtype=float).reshape(3)


def load_fastscan_result(path: str | Path) -> FastscanResult:
    """Load a result written by :func:`save_fastscan_result`."""
    path = Path(path)
    mat = scipy.io.loadmat(str(path), squeeze_me=True, struct_as_record=False)
    fs = mat["fastscan"]
    fields = set(fs._fieldnames)

    frame = Frame(
        origin=_vec(fs.origin),
        unit_x=_vec(fs.unit_x),
        unit_y=_vec(fs.unit_y),
        unit_z=_vec(fs.unit_z),
    )
    diagnostics = FrameDiagnostics(
        xy_off_deg=float(fs.xy_off_deg),
        yz_off_deg=float(fs.yz_off_deg),
        zx_off_deg=float(fs.zx_off_deg),
        determinant=float(fs.determinant),
        lmid=_vec(fs.lmid),
        rmid=_vec(fs.rmid),
        vertex=_vec(fs.vertex),
    )
    elc_labels = _str_tuple(fs.elc_labels) if np.size(fs.elc_labels) else ()
    template_idx = tuple(int(i) for i in np.atleast_1d(fs.template_idx))
    layout = None
    if template_idx and elc_labels:
        layout = ChannelLayout(montage=str(fs.montage), labels=elc_labels, template_idx=template_idx)

    return FastscanResult(
        montage=str(fs.montage),
        electrode=as_point_array(fs.electrode),
        landmark=as_point_array(fs.landmark),
        electrode_waveguard_xyz=as_point_array(fs.electrode_waveguard_xyz),
        landmark_waveguard_xyz=as_point_array(fs.landmark_waveguard_xyz),
        frame=frame,
        diagnostics=diagnostics,
        preauricular_change=float(fs.preauricular_change),
        landmark_placement=str(fs.landmark_placement),
        elc_labels=elc_labels,
        landmark_labels=_str_tuple(fs.landmark_labels),
        layout=layout,
        head=as_point_array(fs.head) if "head" in fields else None,
    )


@dataclass
class FastscanSession:
    """One subject's pair of FastScanII exports."""

    subject: str
    marker_path: Path
    point_cloud_path: Optional[Path]

    @property
    def dig_path(self) -> Path:
        base = self.point_cloud_path or self.marker_path
        return default_dig_path(base)


def find_fastscan_sessions(input_dir: str | Path, marker_glob: str = "**/*.txt") -> List[FastscanSession]:
    """Pair every marker ``.txt`` with the ``.mat`` point cloud of the same stem."""
    input_dir = Path(input_dir)
    if not input_dir.is_dir():
        raise NotADirectoryError(f"Input path {input_dir} is not a directory")
    sessions = []
    for marker_path in sorted(input_dir.glob(marker_glob)):
        if is_pipeline_output(marker_path):
            continue
        cloud = marker_path.with_suffix(".mat")
        if not cloud.exists():
            log.warning(f"No point cloud found for {marker_path.name}; head points will be empty.")
            cloud = None
        sessions.append(FastscanSession(subject=marker_path.stem, marker_path=marker_path, point_cloud_path=cloud))
    log.info(f"Found {len(sessions)} FastScan marker files in {input_dir}")
    return sessions
