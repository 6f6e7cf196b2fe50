"""
Tests for the FastScanII export readers and result persistence.
"""
from pathlib import Path

import numpy as np
import pandas as pd
import pytest
import scipy.io

from conftest import write_marker_txt

from fastscan.utils.digitization import process_fastscan
from fastscan.utils.fastscan_io import (
    default_dig_path,
    find_fastscan_sessions,
    is_pipeline_output,
    load_fastscan_result,
    read_fastscan_markers,
    read_fastscan_point_cloud,
    save_fastscan_result,
    write_digitization_csv,
)


class TestReaders:
    """Marker and point-cloud exports."""

    def test_read_markers(self, markers_first, tmp_path):
        path = write_marker_txt(tmp_path / "sub-01.txt", markers_first)

        markers = read_fastscan_markers(path)

        assert markers.shape == markers_first.shape
        np.testing.assert_allclose(markers, markers_first, atol=1e-4)

    def test_read_markers_incomplete_row(self, tmp_path):
        path = tmp_path / "broken.txt"
        path.write_text("h1\nh2\nh3\n   1.0000    2.0000    3.0000\n   4.0000\n", encoding="utf-8")
        with pytest.raises(ValueError):
            read_fastscan_markers(path)

    def test_read_markers_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            read_fastscan_markers(tmp_path / "nope.txt")

    def test_point_cloud_rows_are_coordinates(self, tmp_path):
        points = np.random.default_rng(0).normal(size=(200, 3))
        scipy.io.savemat(str(tmp_path / "sub-01.mat"), {"Points": points.T})

        cloud = read_fastscan_point_cloud(tmp_path / "sub-01.mat")

        np.testing.assert_allclose(cloud, points)

    def test_point_cloud_missing_variable(self, tmp_path):
        scipy.io.savemat(str(tmp_path / "sub-01.mat"), {"Other": np.zeros((3, 5))})
        with pytest.raises(KeyError):
            read_fastscan_point_cloud(tmp_path / "sub-01.mat")

    def test_default_dig_path(self):
        assert default_dig_path(Path("/data/sub-01.mat")) == Path("/data/sub-01_dig.mat")


class TestPersistence:
    """CSV export and the saved .mat digitization."""

    def test_csv_native_landmarks_first(self, markers_first, duke0z, tmp_path):
        result = process_fastscan(markers_first, duke0z, placement="first")

        df = pd.read_csv(write_digitization_csv(result, tmp_path / "sub-01.csv"), dtype={"labels": str})

        assert df["labels"].tolist()[:4] == ["rpa", "nasion", "lpa", "1"]
        np.testing.assert_allclose(df[["X", "Y", "Z"]].to_numpy(), markers_first)

    def test_save_and_load_result(self, markers_first, duke0z_with_template, tmp_path):
        head = np.random.default_rng(3).normal(size=(50, 3))
        result = process_fastscan(markers_first, duke0z_with_template, placement="first", head=head)

        loaded = load_fastscan_result(save_fastscan_result(result, tmp_path / "sub-01_dig.mat"))

        assert loaded.montage == "duke0Z"
        assert loaded.landmark_placement == "first"
        assert loaded.elc_labels == result.elc_labels
        assert loaded.landmark_labels == ("rpa", "nasion", "lpa")
        assert loaded.layout.template_idx == result.layout.template_idx
        np.testing.assert_allclose(loaded.electrode_waveguard_xyz, result.electrode_waveguard_xyz)
        np.testing.assert_allclose(loaded.frame.rotation, result.frame.rotation)
        np.testing.assert_allclose(loaded.head, head)
        assert loaded.diagnostics.determinant == pytest.approx(result.diagnostics.determinant)

    def test_save_and_load_without_template(self, markers_first, duke0z, tmp_path):
        result = process_fastscan(markers_first, duke0z, placement="first")

        loaded = load_fastscan_result(save_fastscan_result(result, tmp_path / "sub-01_dig.mat"))

        assert loaded.elc_labels == ()
        assert loaded.layout is None
        assert loaded.head is None


def test_find_sessions_pairs_exports(tmp_path):
    (tmp_path / "sub-01.txt").write_text("", encoding="utf-8")
    scipy.io.savemat(str(tmp_path / "sub-01.mat"), {"Points": np.zeros((3, 4))})
    (tmp_path / "nested").mkdir()
    (tmp_path / "nested" / "sub-02.txt").write_text("", encoding="utf-8")

    sessions = find_fastscan_sessions(tmp_path)

    by_subject = {s.subject: s for s in sessions}
    assert set(by_subject) == {"sub-01", "sub-02"}
    assert by_subject["sub-01"].point_cloud_path == tmp_path / "sub-01.mat"
    assert by_subject["sub-02"].point_cloud_path is None
    assert by_subject["sub-01"].dig_path == tmp_path / "sub-01_dig.mat"


def test_find_sessions_requires_directory(tmp_path):
    with pytest.raises(NotADirectoryError):
        find_fastscan_sessions(tmp_path / "missing")


@pytest.mark.parametrize("name, expected", [
    ("sub-01.txt", False),
    ("sub-01_dig.mat", True),
    ("sub-01_dig_report.txt", True),
    ("sub-01_dig_summary.json", True),
    ("digit_span.txt", False),
])
def test_is_pipeline_output(name, expected):
    assert is_pipeline_output(Path(name)) is expected


def test_find_sessions_skips_written_reports(tmp_path):
    (tmp_path / "sub-01.txt").write_text("", encoding="utf-8")
    (tmp_path / "sub-01_dig_report.txt").write_text("", encoding="utf-8")

    sessions = find_fastscan_sessions(tmp_path)

    assert [s.subject for s in sessions] == ["sub-01"]
