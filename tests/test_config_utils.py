from pathlib import Path

import pytest

from fastscan.utils.config_utils import (
    Tolerances,
    landmark_placement_for,
    load_common_defaults,
    load_config,
    merge_common_into_config,
    resolve_project_path,
    resolve_tolerances,
)


COMMON_YAML = """
fastscan:
  montage: dukeZ3
  angle_tol: 2.0
  distance_tol: 0.2
  landmark_placement: first
paths:
  montage_table: configs/montages.yaml
batch:
  n_jobs: 1
"""


def _write_common(project: Path, text: str = COMMON_YAML) -> None:
    (project / "configs").mkdir(parents=True, exist_ok=True)
    (project / "configs" / "common.yaml").write_text(text, encoding="utf-8")


def test_merge_common_baseline_applied(tmp_path: Path):
    _write_common(tmp_path)

    run_cfg = {"fastscan": {"montage": "duke0Z"}}
    merged = merge_common_into_config(load_common_defaults(tmp_path), run_cfg)

    assert merged["fastscan"]["angle_tol"] == 2.0
    assert merged["batch"]["n_jobs"] == 1
    assert "fastscan" in merged["_resolved_defaults"]


def test_merge_common_does_not_overwrite_run_values(tmp_path: Path):
    _write_common(tmp_path)

    run_cfg = {"fastscan": {"montage": "duke0Z", "angle_tol": 3.0}}
    merged = merge_common_into_config(load_common_defaults(tmp_path), run_cfg)

    assert merged["fastscan"]["montage"] == "duke0Z"
    assert merged["fastscan"]["angle_tol"] == 3.0
    # Input config is left untouched
    assert "distance_tol" not in run_cfg["fastscan"]


def test_merge_common_overwrite(tmp_path: Path):
    _write_common(tmp_path)

    merged = merge_common_into_config(
        load_common_defaults(tmp_path), {"fastscan": {"angle_tol": 3.0}}, overwrite=True
    )
    assert merged["fastscan"]["angle_tol"] == 2.0


def test_missing_common_yaml_is_empty(tmp_path: Path):
    assert load_common_defaults(tmp_path) == {}


def test_load_config_run_yaml_wins(tmp_path: Path):
    _write_common(tmp_path)
    run_yaml = tmp_path / "subject.yaml"
    run_yaml.write_text(
        """
fastscan:
  montage: netZ7
  landmark_placement_overrides:
    sub-07: last
""",
        encoding="utf-8",
    )

    cfg = load_config(run_yaml, tmp_path)

    assert cfg["fastscan"]["montage"] == "netZ7"
    assert cfg["fastscan"]["distance_tol"] == 0.2
    assert landmark_placement_for(cfg, "sub-07") == "last"
    assert landmark_placement_for(cfg, "sub-01") == "first"


def test_load_config_without_run_yaml(tmp_path: Path):
    _write_common(tmp_path)
    cfg = load_config(None, tmp_path)
    assert cfg["fastscan"]["montage"] == "dukeZ3"


def test_resolve_tolerances_defaults():
    assert resolve_tolerances({}) == Tolerances(angle_tol=2.0, distance_tol=0.2)


def test_resolve_tolerances_from_config():
    tol = resolve_tolerances({"fastscan": {"angle_tol": "2.5", "distance_tol": 0.5}})
    assert tol.angle_tol == 2.5
    assert tol.distance_tol == 0.5


@pytest.mark.parametrize("value", [0, -1.0, "wide", None])
def test_resolve_tolerances_rejects_bad_values(value):
    with pytest.raises(ValueError):
        resolve_tolerances({"fastscan": {"angle_tol": value}})


def test_resolve_project_path(tmp_path: Path):
    assert resolve_project_path(tmp_path, "configs/montages.yaml") == tmp_path / "configs" / "montages.yaml"
    absolute = tmp_path / "elsewhere.mat"
    assert resolve_project_path(Path("/unused"), absolute) == absolute
    assert resolve_project_path(tmp_path, None) is None
    assert resolve_project_path(tmp_path, "") is None
