"""
End-to-end tests for process_fastscan on a synthetic scanner digitization.
"""
import numpy as np
import pytest

from conftest import TRUE_LANDMARKS, to_scanner

from fastscan.utils.config_utils import Tolerances
from fastscan.utils.digitization import process_fastscan, transform_digitization
from fastscan.utils.errors import (
    ChannelCountMismatchError,
    FastscanError,
    LandmarkOrderingError,
    OrthogonalityError,
)


class TestProcessFastscan:
    """Separation, frame building, transform and label reconciliation."""

    def test_first_placement(self, markers_first, duke0z, true_electrodes):
        result = process_fastscan(markers_first, duke0z, placement="first")

        assert result.n_electrodes == 64
        assert result.landmark_placement == "first"
        np.testing.assert_allclose(result.electrode_waveguard_xyz, true_electrodes, atol=1e-9)
        np.testing.assert_allclose(result.landmark_waveguard_xyz, TRUE_LANDMARKS, atol=1e-9)
        np.testing.assert_array_equal(result.landmark, markers_first[:3])
        assert result.preauricular_change == pytest.approx(0.0, abs=1e-9)

    def test_last_placement(self, scanner_points, duke0z, true_electrodes):
        landmarks, electrodes = scanner_points
        markers = np.vstack([electrodes, landmarks])

        result = process_fastscan(markers, duke0z, placement="last")

        np.testing.assert_allclose(result.electrode_waveguard_xyz, true_electrodes, atol=1e-9)

    def test_confirm_callback(self, scanner_points, duke0z):
        landmarks, electrodes = scanner_points
        markers = np.vstack([electrodes, landmarks])

        def confirm(candidates, placement):
            return np.allclose(candidates, landmarks)

        result = process_fastscan(markers, duke0z, confirm=confirm)
        assert result.landmark_placement == "last"

    def test_rejected_landmarks_halt(self, markers_first, duke0z):
        with pytest.raises(LandmarkOrderingError):
            process_fastscan(markers_first, duke0z, confirm=lambda c, p: False)

    def test_placement_and_confirm_are_exclusive(self, markers_first, duke0z):
        with pytest.raises(ValueError):
            process_fastscan(markers_first, duke0z)
        with pytest.raises(ValueError):
            process_fastscan(markers_first, duke0z, placement="first", confirm=lambda c, p: True)

    def test_sixty_electrodes_for_64_channel_montage(self, markers_first, duke0z):
        with pytest.raises(ChannelCountMismatchError) as excinfo:
            process_fastscan(markers_first[:63], duke0z, placement="first")
        assert excinfo.value.diagnostics["expected"] == 64
        assert excinfo.value.diagnostics["found"] == 60

    def test_tolerance_passed_through(self, duke0z, true_electrodes):
        xyz = true_electrodes.copy()
        tilt = np.radians(3.0)
        vertex = 90.0 * np.array([0.0, np.sin(tilt), np.cos(tilt)])
        rows = duke0z.anchor_rows()["vertex"]
        xyz[rows[0]] = vertex + [8.0, 0.0, 0.0]
        xyz[rows[1]] = vertex - [8.0, 0.0, 0.0]
        markers = np.vstack([to_scanner(TRUE_LANDMARKS), to_scanner(xyz)])

        with pytest.raises(OrthogonalityError):
            process_fastscan(markers, duke0z, placement="first")
        result = process_fastscan(markers, duke0z, placement="first", tolerances=Tolerances(angle_tol=4.0))
        assert result.diagnostics.yz_off_deg == pytest.approx(3.0, abs=1e-6)

    def test_head_points_passed_through(self, markers_first, duke0z):
        head = np.random.default_rng(1).normal(size=(500, 3))
        result = process_fastscan(markers_first, duke0z, placement="first", head=head)
        np.testing.assert_array_equal(result.head, head)

    def test_repeat_runs_identical(self, markers_first, duke0z):
        a = process_fastscan(markers_first, duke0z, placement="first")
        b = process_fastscan(markers_first.copy(), duke0z, placement="first")

        np.testing.assert_array_equal(a.electrode_waveguard_xyz, b.electrode_waveguard_xyz)
        np.testing.assert_array_equal(a.landmark_waveguard_xyz, b.landmark_waveguard_xyz)


class TestResultWithTemplate:
    """Results carrying a reconciled channel layout."""

    def test_labels_and_canonical_order(self, markers_first, duke0z_with_template):
        result = process_fastscan(markers_first, duke0z_with_template, placement="first")

        assert result.elc_labels[:2] == ("E01", "E02")
        np.testing.assert_allclose(
            result.electrode_waveguard_canonical(),
            duke0z_with_template.template_positions,
            atol=1e-9,
        )

    def test_skip_reconciliation(self, markers_first, duke0z_with_template):
        result = process_fastscan(
            markers_first, duke0z_with_template, placement="first", reconcile_labels=False
        )
        assert result.layout is None
        with pytest.raises(FastscanError):
            result.electrode_waveguard_canonical()

    def test_dataframe_rows(self, markers_first, duke0z_with_template):
        result = process_fastscan(markers_first, duke0z_with_template, placement="first")

        native = result.to_dataframe("native")
        waveguard = result.to_dataframe("waveguard")

        assert native["labels"].tolist()[:4] == ["rpa", "nasion", "lpa", "E01"]
        assert len(native) == 67
        np.testing.assert_allclose(native[["X", "Y", "Z"]].to_numpy()[:3], markers_first[:3])
        np.testing.assert_allclose(waveguard[["X", "Y", "Z"]].to_numpy()[:3], TRUE_LANDMARKS, atol=1e-9)
        with pytest.raises(ValueError):
            result.to_dataframe("mni")

    def test_unlabelled_result_uses_marking_numbers(self, markers_first, duke0z):
        result = process_fastscan(markers_first, duke0z, placement="first")
        assert result.electrode_labels()[:3] == ("1", "2", "3")

    def test_summary_is_plain_data(self, markers_first, duke0z):
        summary = process_fastscan(markers_first, duke0z, placement="first").summary()

        assert summary["montage"] == "duke0Z"
        assert summary["max_off_deg"] == pytest.approx(0.0, abs=1e-9)
        assert isinstance(summary["lmid"], list)


def test_transform_digitization_returns_change(scanner_points, duke0z):
    landmarks, electrodes = scanner_points
    frame, diagnostics, new_elc, new_lmk, change = transform_digitization(landmarks, electrodes, duke0z)

    assert new_elc.shape == electrodes.shape
    assert change == pytest.approx(0.0, abs=1e-9)
    assert diagnostics.determinant > 0
