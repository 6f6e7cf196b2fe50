"""
Quality-control figures for FastScan digitizations.

These replace the interactive checkpoints of the scanner workflow with saved
figures an operator can review after the run. They never influence results.
"""
import logging
from pathlib import Path
from typing import Optional

import matplotlib.pyplot as plt
import numpy as np

from fastscan.utils.digitization import FastscanResult
from fastscan.utils.montages import MontageSpec

log = logging.getLogger()

LANDMARK_COLORS = {"rpa": "r", "nasion": "g", "lpa": "b"}
AXIS_LENGTH = 100.0


def azimuthal_projection(xyz) -> np.ndarray:
    """Project head-frame points to 2D, nose up, vertex at the centre.

    The radius is the polar angle from +Z (radians), as in EEGLAB topoplots.
    """
    xyz = np.asarray(xyz, dtype=float)
    radius = np.linalg.norm(xyz, axis=1)
    radius[radius == 0] = np.nan
    polar = np.arccos(np.clip(xyz[:, 2] / radius, -1.0, 1.0))
    azimuth = np.arctan2(xyz[:, 1], xyz[:, 0])
    # +X (nose) maps to screen up, +Y (left) to screen left
    return np.column_stack([-polar * np.sin(azimuth), polar * np.cos(azimuth)])


def plot_landmark_check(result: FastscanResult, output_path: Path, title: Optional[str] = None) -> Path:
    """Top-down view of electrodes and landmarks in Waveguard coordinates."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    elc = result.electrode_waveguard_xyz
    lmk = result.landmark_waveguard_xyz

    fig, ax = plt.subplots(figsize=(8, 8))
    # Viewed from above with the nose up: screen x = -Y, screen y = X
    ax.scatter(-elc[:, 1], elc[:, 0], s=60, c="k", label="Electrodes")
    for label, point in zip(result.landmark_labels, lmk):
        ax.scatter(-point[1], point[0], s=120, c=LANDMARK_COLORS.get(label, "m"), label=label)
    ax.arrow(0, 0, 0, AXIS_LENGTH, color="r", width=1.0, length_includes_head=True)
    ax.arrow(0, 0, -AXIS_LENGTH, 0, color="g", width=1.0, length_includes_head=True)
    ax.text(0, AXIS_LENGTH * 1.05, "X", color="r", ha="center")
    ax.text(-AXIS_LENGTH * 1.05, 0, "Y", color="g", va="center", ha="right")
    ax.set_aspect("equal")
    ax.legend(loc="upper right")
    ax.set_title(title or f"Landmarks in Waveguard Coordinates ({result.montage})")
    ax.set_xlabel("-Y")
    ax.set_ylabel("X")
    fig.tight_layout()
    fig.savefig(output_path, dpi=100)
    plt.close(fig)
    log.info(f"Landmark check figure saved to {output_path}")
    return output_path


def _numbered_topo(ax, xyz, color, title):
    xy = azimuthal_projection(xyz)
    ax.scatter(xy[:, 0], xy[:, 1], s=15, c="k")
    for ii, (px, py) in enumerate(xy, start=1):
        ax.text(px, py, str(ii), fontsize=7, color=color, ha="center", va="bottom")
    ax.add_patch(plt.Circle((0, 0), np.pi / 2, fill=False, color="0.5"))
    ax.set_aspect("equal")
    ax.axis("off")
    ax.set_title(title, color=color)


def plot_electrode_order_check(
    result: FastscanResult,
    montage: MontageSpec,
    output_path: Path,
    file_id: str = "",
) -> Path:
    """Template and subject electrodes numbered in marking order, side by side.

    Matching numbers at matching places means no electrode was marked out of
    order. Without a channel layout only the subject panel is drawn.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    has_template = result.layout is not None and montage.template_positions is not None
    n_panels = 2 if has_template else 1
    fig, axes = plt.subplots(1, n_panels, figsize=(8 * n_panels, 8), squeeze=False)
    axes = axes[0]

    if has_template:
        idx = np.asarray(result.layout.template_idx) - 1
        _numbered_topo(axes[0], montage.template_positions[idx], "k", f"{file_id} Template Positions".strip())
    _numbered_topo(axes[-1], result.electrode_waveguard_xyz, "b", f"{file_id} Digitization Positions".strip())

    fig.tight_layout()
    fig.savefig(output_path, dpi=100)
    plt.close(fig)
    log.info(f"Electrode order check figure saved to {output_path}")
    return output_path
