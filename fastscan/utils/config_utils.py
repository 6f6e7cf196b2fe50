"""
Lightweight configuration helpers that avoid heavy dependencies.

These functions are imported both by pipeline code and unit tests.
"""
from __future__ import annotations

import logging
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Any, Optional

import yaml

from fastscan.utils.geometry import DEFAULT_ANGLE_TOL, DEFAULT_DISTANCE_TOL

log = logging.getLogger(__name__)

MERGED_SECTIONS = ("fastscan", "paths", "batch")


@dataclass(frozen=True)
class Tolerances:
    angle_tol: float = DEFAULT_ANGLE_TOL
    distance_tol: float = DEFAULT_DISTANCE_TOL


def load_common_defaults(project_root: str | Path = ".") -> Dict[str, Any]:
    """Load configs/common.yaml if it exists, else return {}."""
    project_root = Path(project_root)
    common_path = project_root / "configs" / "common.yaml"
    if not common_path.exists():
        return {}
    with open(common_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def merge_common_into_config(
    common: Dict[str, Any],
    run_cfg: Dict[str, Any],
    *,
    overwrite: bool = False,
) -> Dict[str, Any]:
    """Merge defaults from `common` into `run_cfg` (non-destructive).

    Rules:
    - Keys already set in the run config's fastscan/paths/batch sections win
      unless ``overwrite`` is True
    - Resolved defaults are attached under run_cfg['_resolved_defaults'] for
      traceability
    """
    merged = dict(run_cfg)  # shallow copy
    resolved_defaults: Dict[str, Any] = {}

    for section in MERGED_SECTIONS:
        section_common = (common or {}).get(section) or {}
        if not section_common:
            continue
        target = dict(merged.get(section) or {})
        for key, value in section_common.items():
            if overwrite or key not in target:
                target[key] = deepcopy(value)
        merged[section] = target
        resolved_defaults[section] = section_common

    if resolved_defaults:
        merged.setdefault("_resolved_defaults", {}).update(resolved_defaults)

    return merged


def _deep_merge(base: dict, overrides: dict) -> dict:
    """Return a deep copy of *base* updated with *overrides* (overrides win)."""
    if not isinstance(overrides, dict):
        return deepcopy(base)
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = deepcopy(value)
    return merged


def load_config(config_path: str | Path | None, project_root: str | Path = ".") -> Dict[str, Any]:
    """Load a run YAML (optional) on top of configs/common.yaml.

    Explicit run-level values are reapplied last so they always win.
    """
    run_cfg: Dict[str, Any] = {}
    if config_path is not None:
        config_path = Path(config_path)
        log.info(f"Loading configuration from: {config_path}")
        with open(config_path, "r", encoding="utf-8") as f:
            run_cfg = yaml.safe_load(f) or {}

    common = load_common_defaults(project_root)
    cfg = merge_common_into_config(common, run_cfg)
    cfg = _deep_merge(cfg, run_cfg)
    return cfg


def resolve_tolerances(cfg: Dict[str, Any]) -> Tolerances:
    """Read angle/distance tolerances from the fastscan section."""
    section = (cfg or {}).get("fastscan") or {}
    values = {}
    for key, default in (("angle_tol", DEFAULT_ANGLE_TOL), ("distance_tol", DEFAULT_DISTANCE_TOL)):
        raw = section.get(key, default)
        try:
            value = float(raw)
        except (TypeError, ValueError):
            raise ValueError(f"fastscan.{key} must be a number, got {raw!r}") from None
        if not value > 0:
            raise ValueError(f"fastscan.{key} must be positive, got {value}")
        values[key] = value
    return Tolerances(**values)


def resolve_project_path(project_root: str | Path, value: Optional[str | Path]) -> Optional[Path]:
    """Resolve a config path relative to the project root (None passes through)."""
    if value in (None, ""):
        return None
    path = Path(value)
    if not path.is_absolute():
        path = Path(project_root) / path
    return path


def landmark_placement_for(cfg: Dict[str, Any], subject: Optional[str] = None) -> str:
    """Pre-resolved landmark placement, honouring per-subject overrides."""
    section = (cfg or {}).get("fastscan") or {}
    overrides = section.get("landmark_placement_overrides") or {}
    if subject is not None and subject in overrides:
        return str(overrides[subject])
    return str(section.get("landmark_placement", "first"))
