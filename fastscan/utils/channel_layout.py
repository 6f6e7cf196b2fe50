"""
Reconcile acquisition-order electrodes with the canonical template order.

Electrodes are marked in the FastScan order of the cap protocol, which is not
the order of the Waveguard template (nor of the recorded EEG channels). The
montage supplies the label of every acquisition position; looking each label
up in the template gives its 1-based template index.
"""
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Tuple

import numpy as np
import pandas as pd

from fastscan.utils.errors import ChannelCountMismatchError, LabelMappingError
from fastscan.utils.geometry import as_point_array
from fastscan.utils.montages import MontageSpec


@dataclass(frozen=True)
class ChannelLayout:
    """Acquisition-order labels with their 1-based template indices."""

    montage: str
    labels: Tuple[str, ...]
    template_idx: Tuple[int, ...]

    @property
    def permutation(self) -> np.ndarray:
        """Row order that sorts acquisition-order arrays into template order."""
        return np.argsort(np.asarray(self.template_idx))

    def to_canonical(self, xyz) -> np.ndarray:
        xyz = as_point_array(xyz)
        if xyz.shape[0] != len(self.labels):
            raise ChannelCountMismatchError(
                "Coordinate rows do not match the channel layout.",
                {"expected": len(self.labels), "found": xyz.shape[0]},
            )
        return xyz[self.permutation]

    def canonical_labels(self) -> Tuple[str, ...]:
        return tuple(self.labels[i] for i in self.permutation)

    def to_frame(self, xyz=None) -> pd.DataFrame:
        """Acquisition-order table, optionally with coordinates."""
        df = pd.DataFrame({
            "fastscan_idx": np.arange(1, len(self.labels) + 1),
            "label": list(self.labels),
            "template_idx": list(self.template_idx),
        })
        if xyz is not None:
            xyz = as_point_array(xyz)
            for jj, axis in enumerate(("X", "Y", "Z")):
                df[axis] = xyz[:, jj]
        return df


def check_electrode_count(n_electrodes: int, montage: MontageSpec):
    if n_electrodes != montage.n_electrodes:
        raise ChannelCountMismatchError(
            f"Number of electrodes does not match montage '{montage.name}'.",
            {"expected": montage.n_electrodes, "found": n_electrodes},
        )


def build_channel_layout(n_electrodes: int, montage: MontageSpec) -> ChannelLayout:
    """Map every acquisition position onto the template of ``montage``.

    Raises
    ------
    ChannelCountMismatchError
        If ``n_electrodes`` differs from the montage's expected count.
    LabelMappingError
        If the montage has no template, a label repeats, is missing from the
        template, or the mapping is not one-to-one.
    """
    check_electrode_count(n_electrodes, montage)
    if not montage.has_template:
        raise LabelMappingError(
            f"Montage '{montage.name}' has no template labels attached.",
            {"montage": montage.name},
        )

    order_labels = montage.fastscan_order_labels
    template_labels = montage.template_labels
    n_template = len(template_labels)

    repeats = sorted(lab for lab, count in Counter(order_labels).items() if count > 1)
    if repeats:
        raise LabelMappingError(
            "Labels appear more than once in the acquisition order.",
            {"labels": ", ".join(repeats)},
        )
    template_repeats = sorted(lab for lab, count in Counter(template_labels).items() if count > 1)
    if template_repeats:
        raise LabelMappingError(
            "Labels appear more than once in the template.",
            {"labels": ", ".join(template_repeats)},
        )
    if n_template != len(order_labels):
        raise LabelMappingError(
            "Template and acquisition order differ in size; the mapping cannot be one-to-one.",
            {"template_count": n_template, "acquisition_count": len(order_labels)},
        )

    lookup = {lab: ii + 1 for ii, lab in enumerate(template_labels)}
    missing = [lab for lab in order_labels if lab not in lookup]
    if missing:
        raise LabelMappingError(
            "Acquisition labels not found in the template.",
            {"labels": ", ".join(missing)},
        )
    template_idx = tuple(lookup[lab] for lab in order_labels)
    out_of_range = [i for i in template_idx if i < 1 or i > n_template]
    if out_of_range:
        raise LabelMappingError(
            "Template indices outside the template range.",
            {"indices": out_of_range, "template_count": n_template},
        )

    return ChannelLayout(montage=montage.name, labels=tuple(order_labels), template_idx=template_idx)


def template_distance_table(layout: ChannelLayout, electrodes_waveguard, montage: MontageSpec) -> pd.DataFrame:
    """Distance of each subject electrode from its template position.

    Advisory only: large values point at electrodes that were marked out of
    order. Template and subject are assumed to share units.
    """
    df = layout.to_frame(electrodes_waveguard)
    template = np.asarray(montage.template_positions)[np.asarray(layout.template_idx) - 1]
    for jj, axis in enumerate(("X", "Y", "Z")):
        df[f"template_{axis}"] = template[:, jj]
    df["distance"] = np.linalg.norm(df[["X", "Y", "Z"]].to_numpy() - template, axis=1)
    return df
