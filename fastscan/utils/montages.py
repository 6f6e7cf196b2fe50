"""
Waveguard montage reference table.

Anchor electrodes are configured per montage in ``configs/montages.yaml``, so a
new cap is a data entry rather than a code change. Template electrode
positions (canonical Waveguard order) and the acquisition-order label list
come from the external template file exported alongside the EEGLAB montage
templates (``ANT_montage_templates.mat``) or from equivalent CSV files.

Anchor indices in the YAML table are 1-based positions in the FastScan
marking order (the numbering operators see in the FastScanII software).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import scipy.io
import yaml

from fastscan.utils.errors import LabelMappingError, UnknownMontageError

log = logging.getLogger(__name__)

DEFAULT_MONTAGE_TABLE = Path(__file__).resolve().parents[2] / "configs" / "montages.yaml"


@dataclass(frozen=True)
class MontageSpec:
    """Immutable description of one Waveguard cap layout."""

    name: str
    n_electrodes: int
    left_anchors: Tuple[int, ...]
    right_anchors: Tuple[int, ...]
    vertex_anchors: Tuple[int, ...]
    anchor_names: Mapping[str, Tuple[str, ...]] = field(default_factory=dict, compare=False)
    description: str = ""
    template_labels: Tuple[str, ...] = ()
    template_positions: Optional[np.ndarray] = field(default=None, compare=False, repr=False)
    fastscan_order_labels: Tuple[str, ...] = ()

    def __post_init__(self):
        if self.n_electrodes < 1:
            raise ValueError(f"Montage '{self.name}': n_electrodes must be positive.")
        for side, anchors in (("left", self.left_anchors), ("right", self.right_anchors)):
            if len(anchors) < 1:
                raise ValueError(f"Montage '{self.name}': no {side} anchors configured.")
        if len(self.vertex_anchors) not in (1, 2):
            raise ValueError(
                f"Montage '{self.name}': vertex must be one point or a pair, "
                f"got {len(self.vertex_anchors)}."
            )
        all_anchors = self.left_anchors + self.right_anchors + self.vertex_anchors
        bad = [i for i in all_anchors if i < 1 or i > self.n_electrodes]
        if bad:
            raise ValueError(
                f"Montage '{self.name}': anchor indices {bad} outside 1..{self.n_electrodes}."
            )
        object.__setattr__(
            self,
            "anchor_names",
            MappingProxyType({k: tuple(v) for k, v in dict(self.anchor_names).items()}),
        )
        if self.template_positions is not None:
            positions = np.array(self.template_positions, dtype=float)
            positions.setflags(write=False)
            object.__setattr__(self, "template_positions", positions)

    # mappingproxy does not pickle; the batch pool ships specs to workers
    def __getstate__(self):
        state = dict(self.__dict__)
        state["anchor_names"] = dict(state["anchor_names"])
        return state

    def __setstate__(self, state):
        state = dict(state)
        state["anchor_names"] = MappingProxyType(state["anchor_names"])
        if state.get("template_positions") is not None:
            state["template_positions"].setflags(write=False)
        self.__dict__.update(state)

    @property
    def has_template(self) -> bool:
        return bool(self.template_labels) and bool(self.fastscan_order_labels)

    def anchor_rows(self) -> Dict[str, np.ndarray]:
        """Zero-based row indices of the anchors into an electrode array."""
        return {
            "left": np.asarray(self.left_anchors, dtype=int) - 1,
            "right": np.asarray(self.right_anchors, dtype=int) - 1,
            "vertex": np.asarray(self.vertex_anchors, dtype=int) - 1,
        }

    def with_template(
        self,
        template_labels: Sequence[str],
        template_positions,
        fastscan_order_labels: Sequence[str],
    ) -> "MontageSpec":
        """Return a copy carrying template labels/positions and the acquisition order."""
        labels = tuple(str(lab).strip() for lab in template_labels)
        positions = np.asarray(template_positions, dtype=float)
        if positions.shape != (len(labels), 3):
            raise LabelMappingError(
                f"Template positions for '{self.name}' do not match its labels.",
                {"n_labels": len(labels), "positions_shape": positions.shape},
            )
        order = tuple(str(lab).strip() for lab in fastscan_order_labels)
        if len(order) != self.n_electrodes:
            raise LabelMappingError(
                f"Acquisition-order label list for '{self.name}' has the wrong length.",
                {"expected": self.n_electrodes, "found": len(order)},
            )
        return replace(
            self,
            template_labels=labels,
            template_positions=positions,
            fastscan_order_labels=order,
        )


def _montage_from_entry(name: str, entry: dict) -> MontageSpec:
    anchors = entry.get("anchors") or {}
    names = {}
    indices = {}
    for side in ("left", "right", "vertex"):
        side_cfg = anchors.get(side)
        if side_cfg is None:
            raise ValueError(f"Montage '{name}' is missing '{side}' anchors.")
        if isinstance(side_cfg, dict):
            indices[side] = tuple(int(i) for i in side_cfg.get("index", []))
            names[side] = tuple(str(n) for n in side_cfg.get("names", []))
        else:
            indices[side] = tuple(int(i) for i in side_cfg)
    return MontageSpec(
        name=name,
        n_electrodes=int(entry["n_electrodes"]),
        left_anchors=indices["left"],
        right_anchors=indices["right"],
        vertex_anchors=indices["vertex"],
        anchor_names=names,
        description=str(entry.get("description", "")),
    )


def load_montage_table(path: str | Path | None = None) -> Mapping[str, MontageSpec]:
    """Load the montage anchor table from YAML.

    Parameters
    ----------
    path : str | Path | None
        YAML file with a top-level ``montages`` mapping. Defaults to
        ``configs/montages.yaml`` in the project root.

    Returns
    -------
    Mapping[str, MontageSpec]
        Read-only mapping keyed by montage name.
    """
    path = Path(path) if path is not None else DEFAULT_MONTAGE_TABLE
    if not path.exists():
        # configs/ ships with the source tree, not with a wheel
        raise FileNotFoundError(
            f"Montage table not found at {path}. Run from a source checkout or an "
            f"editable install (pip install -e .), or set paths.montage_table."
        )
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    entries = raw.get("montages") or {}
    if not entries:
        raise ValueError(f"No montages defined in {path}")
    table = {name: _montage_from_entry(name, entry or {}) for name, entry in entries.items()}
    log.info(f"Loaded {len(table)} montage definitions from: {path}")
    return MappingProxyType(table)


def get_montage(table: Mapping[str, MontageSpec], name: str) -> MontageSpec:
    """Look up a montage by name, raising UnknownMontageError if absent."""
    try:
        return table[name]
    except KeyError:
        raise UnknownMontageError(
            f"Unknown montage '{name}'.",
            {"known": ", ".join(sorted(table))},
        ) from None


def _chanlocs_to_arrays(chanlocs) -> Tuple[Tuple[str, ...], np.ndarray]:
    """Flatten an EEGLAB chanlocs struct array loaded by scipy.io."""
    chanlocs = np.atleast_1d(chanlocs)
    labels = []
    xyz = np.zeros((len(chanlocs), 3))
    for ii, ch in enumerate(chanlocs):
        labels.append(str(ch.labels).strip())
        for jj, axis in enumerate(("X", "Y", "Z")):
            value = getattr(ch, axis)
            xyz[ii, jj] = float(value) if np.size(value) else np.nan
    return tuple(labels), xyz


def load_montage_templates(
    path: str | Path,
    table: Mapping[str, MontageSpec],
) -> Mapping[str, MontageSpec]:
    """Attach template electrodes from ``ANT_montage_templates.mat``.

    The file holds, per montage, ``chanlocs_<name>`` (canonical template order)
    and ``chanlocs_<name>_fastscan_order`` (same electrodes in marking order).
    Montages without template variables in the file are kept unchanged.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Montage template file not found at {path}")
    mat = scipy.io.loadmat(str(path), squeeze_me=True, struct_as_record=False)

    updated = dict(table)
    for name, spec in table.items():
        template_key = f"chanlocs_{name}"
        order_key = f"chanlocs_{name}_fastscan_order"
        if template_key not in mat or order_key not in mat:
            log.warning(f"No template for montage '{name}' in {path.name}; skipping.")
            continue
        labels, positions = _chanlocs_to_arrays(mat[template_key])
        order_labels, _ = _chanlocs_to_arrays(mat[order_key])
        updated[name] = spec.with_template(labels, positions, order_labels)
        log.info(f"Attached {len(labels)}-channel template to montage '{name}'.")
    return MappingProxyType(updated)


def load_template_csv(
    spec: MontageSpec,
    template_csv: str | Path,
    fastscan_order_csv: str | Path,
) -> MontageSpec:
    """Attach a template from CSV files with columns ``label,x,y,z``.

    ``fastscan_order_csv`` needs only a ``label`` column, in marking order.
    """
    template = pd.read_csv(template_csv)
    order = pd.read_csv(fastscan_order_csv)
    missing = {"label", "x", "y", "z"} - set(template.columns)
    if missing:
        raise ValueError(f"Template CSV {template_csv} is missing columns: {sorted(missing)}")
    return spec.with_template(
        template["label"].astype(str).tolist(),
        template[["x", "y", "z"]].to_numpy(dtype=float),
        order["label"].astype(str).tolist(),
    )
