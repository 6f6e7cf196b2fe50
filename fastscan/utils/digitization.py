"""
FastScan digitization → Waveguard coordinates.

Composes the landmark separator, the frame builder and channel label
reconciliation into one pure step per subject. Nothing here touches the disk
or waits for an operator: landmark confirmation arrives as a placement string
or a confirm callback.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

import numpy as np
import pandas as pd

from fastscan.utils.channel_layout import (
    ChannelLayout,
    build_channel_layout,
    check_electrode_count,
)
from fastscan.utils.config_utils import Tolerances
from fastscan.utils.errors import FastscanError
from fastscan.utils.geometry import (
    Frame,
    FrameDiagnostics,
    as_point_array,
    build_frame,
    check_distance_preservation,
)
from fastscan.utils.landmarks import (
    LANDMARK_LABELS,
    ConfirmFn,
    resolve_landmark_placement,
    separate_landmarks,
)
from fastscan.utils.montages import MontageSpec

log = logging.getLogger(__name__)


@dataclass
class FastscanResult:
    """Digitization of one subject in native and Waveguard coordinates."""

    montage: str
    electrode: np.ndarray
    landmark: np.ndarray
    electrode_waveguard_xyz: np.ndarray
    landmark_waveguard_xyz: np.ndarray
    frame: Frame
    diagnostics: FrameDiagnostics
    preauricular_change: float
    landmark_placement: str
    elc_labels: Tuple[str, ...] = ()
    landmark_labels: Tuple[str, ...] = LANDMARK_LABELS
    layout: Optional[ChannelLayout] = None
    head: Optional[np.ndarray] = field(default=None, repr=False)

    @property
    def n_electrodes(self) -> int:
        return int(self.electrode.shape[0])

    def electrode_labels(self) -> Tuple[str, ...]:
        """Channel labels, or 1-based marking numbers when no template is attached."""
        if self.elc_labels:
            return tuple(self.elc_labels)
        return tuple(str(ii) for ii in range(1, self.n_electrodes + 1))

    def electrode_waveguard_canonical(self) -> np.ndarray:
        """Waveguard electrode coordinates re-sorted into template order."""
        if self.layout is None:
            raise FastscanError("No channel layout available for canonical ordering.")
        return self.layout.to_canonical(self.electrode_waveguard_xyz)

    def to_dataframe(self, space: str = "native") -> pd.DataFrame:
        """Landmarks then electrodes with columns labels, X, Y, Z."""
        if space == "native":
            landmark, electrode = self.landmark, self.electrode
        elif space == "waveguard":
            landmark, electrode = self.landmark_waveguard_xyz, self.electrode_waveguard_xyz
        else:
            raise ValueError(f"Unknown coordinate space '{space}' (use 'native' or 'waveguard').")
        xyz = np.vstack([landmark, electrode])
        return pd.DataFrame({
            "labels": list(self.landmark_labels) + list(self.electrode_labels()),
            "X": xyz[:, 0],
            "Y": xyz[:, 1],
            "Z": xyz[:, 2],
        })

    def summary(self) -> Dict:
        out = {
            "montage": self.montage,
            "n_electrodes": self.n_electrodes,
            "landmark_placement": self.landmark_placement,
            "preauricular_change": self.preauricular_change,
        }
        out.update(self.diagnostics.to_dict())
        out["origin"] = self.frame.origin.tolist()
        return out


def transform_digitization(
    landmarks,
    electrodes,
    montage: MontageSpec,
    tolerances: Tolerances = Tolerances(),
) -> Tuple[Frame, FrameDiagnostics, np.ndarray, np.ndarray, float]:
    """Build the frame from ``electrodes`` and apply it to both point sets.

    Returns (frame, diagnostics, electrodes_waveguard, landmarks_waveguard,
    preauricular_change).
    """
    landmarks = as_point_array(landmarks)
    electrodes = as_point_array(electrodes)

    frame, diagnostics = build_frame(electrodes, montage, tolerances.angle_tol)
    new_electrodes = frame.transform(electrodes)
    new_landmarks = frame.transform(landmarks)
    change = check_distance_preservation(landmarks, new_landmarks, tolerances.distance_tol)
    return frame, diagnostics, new_electrodes, new_landmarks, change


def process_fastscan(
    markers,
    montage: MontageSpec,
    *,
    placement: Optional[str] = None,
    confirm: Optional[ConfirmFn] = None,
    tolerances: Tolerances = Tolerances(),
    head=None,
    reconcile_labels: Optional[bool] = None,
    verbose: bool = False,
) -> FastscanResult:
    """Run the full digitization transform for one subject.

    Parameters
    ----------
    markers : array-like, shape (n_markers, 3)
        Markers in FastScan marking order: three landmarks (rpa, nasion, lpa)
        at the start or the end, electrodes otherwise.
    montage : MontageSpec
        Cap layout supplying anchors, electrode count and (optionally) labels.
    placement : {'first', 'last'}, optional
        Pre-resolved landmark position. Exactly one of ``placement`` and
        ``confirm`` must be given.
    confirm : callable, optional
        ``confirm(candidate_landmarks, placement) -> bool`` asked for the first
        and then the last three markers.
    tolerances : Tolerances
        Angle (degrees) and preauricular distance tolerances.
    head : array-like, optional
        Head-surface points; passed through untouched.
    reconcile_labels : bool, optional
        Build the channel layout. Defaults to True when the montage has a
        template attached.
    verbose : bool
        Log frame diagnostics at INFO instead of DEBUG.

    Returns
    -------
    FastscanResult

    Raises
    ------
    FastscanError
        Any data-quality gate failing; see ``fastscan.utils.errors``.
    """
    if (placement is None) == (confirm is None):
        raise ValueError("Provide exactly one of 'placement' or 'confirm'.")
    markers = as_point_array(markers)

    if confirm is not None:
        placement = resolve_landmark_placement(markers, confirm)
    landmarks, electrodes = separate_landmarks(markers, placement)
    check_electrode_count(electrodes.shape[0], montage)

    if reconcile_labels is None:
        reconcile_labels = montage.has_template
    layout = build_channel_layout(electrodes.shape[0], montage) if reconcile_labels else None

    frame, diagnostics, new_electrodes, new_landmarks, change = transform_digitization(
        landmarks, electrodes, montage, tolerances
    )

    level = logging.INFO if verbose else logging.DEBUG
    log.log(level, f"xy angle off: {diagnostics.xy_off_deg:.4f}deg")
    log.log(level, f"yz angle off: {diagnostics.yz_off_deg:.4f}deg")
    log.log(level, f"zx angle off: {diagnostics.zx_off_deg:.4f}deg")
    log.log(level, f"Preauricular point distance changed by: {change:.6f}")

    return FastscanResult(
        montage=montage.name,
        electrode=electrodes,
        landmark=landmarks,
        electrode_waveguard_xyz=new_electrodes,
        landmark_waveguard_xyz=new_landmarks,
        frame=frame,
        diagnostics=diagnostics,
        preauricular_change=change,
        landmark_placement=placement,
        elc_labels=layout.labels if layout is not None else (),
        layout=layout,
        head=None if head is None else as_point_array(head),
    )
