"""
FastScan Digitization Reporting Utilities
"""
import json as _json
import logging
from pathlib import Path
from typing import Optional

import numpy as np
import pandas as pd

from fastscan.utils.channel_layout import template_distance_table
from fastscan.utils.config_utils import Tolerances
from fastscan.utils.digitization import FastscanResult
from fastscan.utils.montages import MontageSpec

log = logging.getLogger()


def _fmt_vec(vec) -> str:
    return "(" + ", ".join(f"{v:9.4f}" for v in np.asarray(vec, dtype=float)) + ")"


def generate_report(
    result: FastscanResult,
    montage: MontageSpec,
    tolerances: Tolerances,
    output_dir: Path,
    file_id: str,
    n_worst: int = 5,
) -> Path:
    """Write ``<file_id>_report.txt`` and ``<file_id>_summary.json``."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    report_path = output_dir / f"{file_id}_report.txt"
    diag = result.diagnostics

    distances: Optional[pd.DataFrame] = None
    if result.layout is not None and montage.template_positions is not None:
        distances = template_distance_table(result.layout, result.electrode_waveguard_xyz, montage)

    with open(report_path, 'w', encoding='utf-8') as f:
        f.write("=" * 80 + "\n")
        f.write(f"FastScan Digitization Report: {file_id}\n")
        f.write("=" * 80 + "\n\n")

        f.write("Parameters:\n")
        f.write("-" * 20 + "\n")
        f.write(f"Montage: {montage.name}")
        if montage.description:
            f.write(f" ({montage.description})")
        f.write("\n")
        f.write(f"Electrodes: {result.n_electrodes}\n")
        f.write(f"Landmarks taken from the {result.landmark_placement} three markers\n")
        f.write(f"Angle tolerance: {tolerances.angle_tol} deg\n")
        f.write(f"Distance tolerance: {tolerances.distance_tol}\n")
        for side in ("left", "right", "vertex"):
            names = montage.anchor_names.get(side)
            if names:
                f.write(f"  {side.capitalize()} anchors: {', '.join(names)}\n")
        f.write("\n")

        f.write("Coordinate Frame (native coordinates):\n")
        f.write("-" * 20 + "\n")
        f.write(f"Lmid:   {_fmt_vec(diag.lmid)}\n")
        f.write(f"Rmid:   {_fmt_vec(diag.rmid)}\n")
        f.write(f"Vertex: {_fmt_vec(diag.vertex)}\n")
        f.write(f"Origin: {_fmt_vec(result.frame.origin)}\n")
        f.write(f"unit X: {_fmt_vec(result.frame.unit_x)}\n")
        f.write(f"unit Y: {_fmt_vec(result.frame.unit_y)}\n")
        f.write(f"unit Z: {_fmt_vec(result.frame.unit_z)}\n")
        f.write(f"Determinant: {diag.determinant:.6f}\n\n")

        f.write("Validation:\n")
        f.write("-" * 20 + "\n")
        f.write(f"xy angle off: {diag.xy_off_deg:.4f} deg\n")
        f.write(f"yz angle off: {diag.yz_off_deg:.4f} deg\n")
        f.write(f"zx angle off: {diag.zx_off_deg:.4f} deg\n")
        f.write(f"Preauricular distance change: {result.preauricular_change:.6f}\n\n")

        f.write("Landmarks (Waveguard coordinates):\n")
        f.write("-" * 20 + "\n")
        for label, point in zip(result.landmark_labels, result.landmark_waveguard_xyz):
            f.write(f"{label:>7}: {_fmt_vec(point)}\n")
        f.write("\n")

        if distances is not None:
            f.write("Distance from Template (advisory):\n")
            f.write("-" * 20 + "\n")
            f.write(f"Mean: {distances['distance'].mean():.3f}  Max: {distances['distance'].max():.3f}\n")
            worst = distances.nlargest(n_worst, "distance")
            for _, row in worst.iterrows():
                f.write(f"  #{int(row['fastscan_idx']):>3} {row['label']:>6}: {row['distance']:.3f}\n")
        else:
            f.write("No template attached; channel labels not reconciled.\n")

    summary_path = output_dir / f"{file_id}_summary.json"
    with open(summary_path, 'w', encoding='utf-8') as f:
        _json.dump(result.summary(), f, indent=2)

    log.info(f"Report saved to {report_path}")
    return report_path
