"""
MNE-Python export of FastScan digitizations.

The native-space montage is what ``mne.gui.coregistration`` expects: MNE
builds its own head frame from the three fiducials, so the raw scanner
coordinates are handed over unchanged apart from the unit conversion.
"""
from __future__ import annotations

import logging

import mne
import numpy as np

from fastscan.utils.digitization import FastscanResult

log = logging.getLogger(__name__)

UNIT_SCALE = {"m": 1.0, "cm": 1e-2, "mm": 1e-3}


def to_dig_montage(result: FastscanResult, space: str = "native", units: str = "mm") -> mne.channels.DigMontage:
    """Build an ``mne.channels.DigMontage`` from a digitization result.

    Parameters
    ----------
    result : FastscanResult
        Output of ``process_fastscan``.
    space : {'native', 'waveguard'}
        Coordinates to export.
    units : {'mm', 'cm', 'm'}
        Units of the digitization; MNE works in metres.
    """
    if units not in UNIT_SCALE:
        raise ValueError(f"Unsupported units '{units}'; choose from {sorted(UNIT_SCALE)}")
    scale = UNIT_SCALE[units]

    df = result.to_dataframe(space)
    xyz = df[["X", "Y", "Z"]].to_numpy(dtype=float) * scale
    fiducials = dict(zip(result.landmark_labels, xyz[:3]))
    ch_pos = {label: np.asarray(pos) for label, pos in zip(df["labels"].iloc[3:], xyz[3:])}

    montage = mne.channels.make_dig_montage(
        ch_pos=ch_pos,
        nasion=fiducials["nasion"],
        lpa=fiducials["lpa"],
        rpa=fiducials["rpa"],
        coord_frame="unknown",
    )
    log.info(f"Created DigMontage with {len(ch_pos)} channels ({space} space).")
    return montage
