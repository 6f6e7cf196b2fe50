"""Separate the three anatomical landmarks from the electrode markers."""
from __future__ import annotations

import logging
from typing import Callable, Optional, Tuple

import numpy as np

from fastscan.utils.errors import LandmarkOrderingError
from fastscan.utils.geometry import as_point_array

log = logging.getLogger(__name__)

LANDMARK_LABELS = ("rpa", "nasion", "lpa")
PLACEMENTS = ("first", "last")

# confirm(candidate_landmarks, placement) -> True if these are the landmarks
ConfirmFn = Callable[[np.ndarray, str], bool]


def landmark_rows(n_markers: int, placement: Optional[str]) -> np.ndarray:
    """Zero-based marker rows holding the landmarks for a placement."""
    if n_markers < 3:
        raise LandmarkOrderingError(
            "At least three markers are needed to hold the anatomical landmarks.",
            {"n_markers": n_markers},
        )
    if placement == "first":
        return np.arange(3)
    if placement == "last":
        return np.arange(n_markers - 3, n_markers)
    raise LandmarkOrderingError(
        "Landmark placement is unresolved; marker ordering must be fixed by the operator.",
        {"placement": placement, "allowed": "/".join(PLACEMENTS)},
    )


def separate_landmarks(markers, placement: Optional[str]) -> Tuple[np.ndarray, np.ndarray]:
    """Split markers into (landmarks, electrodes).

    Landmarks keep the marking order rpa, nasion, lpa; electrodes keep their
    original order. No coordinates are inspected.
    """
    markers = as_point_array(markers)
    rows = landmark_rows(markers.shape[0], placement)
    keep = np.ones(markers.shape[0], dtype=bool)
    keep[rows] = False
    return markers[rows].copy(), markers[keep].copy()


def resolve_landmark_placement(markers, confirm: ConfirmFn) -> str:
    """Ask ``confirm`` about the first three, then the last three markers.

    Raises LandmarkOrderingError when both candidates are rejected.
    """
    markers = as_point_array(markers)
    for placement in PLACEMENTS:
        rows = landmark_rows(markers.shape[0], placement)
        if confirm(markers[rows].copy(), placement):
            log.info(f"Anatomical landmarks confirmed as the {placement} three markers.")
            return placement
        log.info(f"Operator rejected the {placement} three markers as landmarks.")
    raise LandmarkOrderingError(
        "Neither the first nor the last three markers were confirmed as landmarks. "
        "The marker ordering is broken; please debug.",
        {"n_markers": markers.shape[0]},
    )
