"""
FastScan Digitization Pipeline

Entry point for one subject: reads the FastScanII marker and point-cloud
exports, separates the anatomical landmarks, transforms everything into the
Waveguard head frame, and writes the result (.mat), the native-space CSV for
MNE, QC figures and a text report.
"""
import argparse
import logging
from pathlib import Path
from typing import Mapping, Optional

import matplotlib

# Ensure headless rendering regardless of environment
matplotlib.use("Agg")

import numpy as np

from fastscan.utils import config_utils, fastscan_io, plotting, reporter
from fastscan.utils.config_utils import Tolerances
from fastscan.utils.digitization import FastscanResult, process_fastscan
from fastscan.utils.errors import FastscanError
from fastscan.utils.landmarks import ConfirmFn, LANDMARK_LABELS
from fastscan.utils.logging_utils import configure_console_logging, run_log
from fastscan.utils.montages import (
    MontageSpec,
    get_montage,
    load_montage_table,
    load_montage_templates,
)

log = logging.getLogger()

PROJECT_ROOT = Path(__file__).resolve().parents[1]


def load_configured_montages(cfg: dict, project_root: Path = PROJECT_ROOT) -> Mapping[str, MontageSpec]:
    """Montage table from the configured YAML, with templates when configured."""
    paths = cfg.get("paths") or {}
    table_path = config_utils.resolve_project_path(project_root, paths.get("montage_table"))
    table = load_montage_table(table_path)
    templates = config_utils.resolve_project_path(project_root, paths.get("templates"))
    if templates is not None:
        table = load_montage_templates(templates, table)
    return table


def console_confirm(candidates: np.ndarray, placement: str) -> bool:
    """Ask the operator whether the candidate markers are rpa, nasion, lpa."""
    print(f"\nCandidate landmarks ({placement} three markers):")
    for label, point in zip(LANDMARK_LABELS, candidates):
        print(f"  {label:>7}: {point[0]:10.3f} {point[1]:10.3f} {point[2]:10.3f}")
    answer = input("Are these the anatomical landmarks? (y/n): ")
    return answer.strip().lower() != "n"


def run_subject(
    marker_path: Path,
    montage: MontageSpec,
    *,
    point_cloud_path: Optional[Path] = None,
    output_dir: Optional[Path] = None,
    placement: Optional[str] = None,
    confirm: Optional[ConfirmFn] = None,
    tolerances: Tolerances = Tolerances(),
    force: bool = False,
    figures: bool = True,
    verbose: bool = False,
) -> FastscanResult:
    """Process one subject's exports and write all outputs.

    An existing ``<id>_dig.mat`` is reused unless ``force`` is set.
    """
    marker_path = Path(marker_path)
    base = Path(point_cloud_path) if point_cloud_path else marker_path
    output_dir = Path(output_dir) if output_dir else base.parent
    dig_path = output_dir / fastscan_io.default_dig_path(base).name
    file_id = dig_path.stem

    if dig_path.exists() and not force:
        log.info(f"{dig_path.name} is already on disk. Loading from: {dig_path}")
        result = fastscan_io.load_fastscan_result(dig_path)
        if result.montage != montage.name:
            raise FastscanError(
                "Saved digitization was built with a different montage; rerun with --force.",
                {"saved": result.montage, "requested": montage.name},
            )
    else:
        log.info(f"{dig_path.name} is not created yet. Creating it from the FastScanII exports...")
        markers = fastscan_io.read_fastscan_markers(marker_path)
        head = fastscan_io.read_fastscan_point_cloud(point_cloud_path) if point_cloud_path else None
        result = process_fastscan(
            markers,
            montage,
            placement=placement,
            confirm=confirm,
            tolerances=tolerances,
            head=head,
            verbose=verbose,
        )
        if figures:
            plotting.plot_landmark_check(result, output_dir / f"{file_id}_landmark_check.png")
            plotting.plot_electrode_order_check(
                result, montage, output_dir / f"{file_id}_elcorder_check.png", file_id=file_id
            )
        fastscan_io.save_fastscan_result(result, dig_path)

    fastscan_io.write_digitization_csv(result, output_dir / f"{file_id}.csv")
    reporter.generate_report(result, montage, tolerances, output_dir, file_id)
    return result


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Transform a FastScan digitization into Waveguard coordinates")
    parser.add_argument("--markers", type=str, required=True,
                        help="Marker .txt exported from FastScanII.")
    parser.add_argument("--point-cloud", type=str, default=None,
                        help="Head surface 'Cloud of Points' .mat exported from FastScanII.")
    parser.add_argument("--config", type=str, default=None,
                        help="Optional run YAML merged over configs/common.yaml.")
    parser.add_argument("--montage", type=str, default=None,
                        help="Waveguard montage name (overrides config).")
    landmark_group = parser.add_mutually_exclusive_group()
    landmark_group.add_argument("--landmarks", type=str, choices=["first", "last"], default=None,
                                help="Which three markers are the anatomical landmarks (overrides config).")
    landmark_group.add_argument("--interactive", action="store_true",
                                help="Ask on the console which markers are the landmarks.")
    parser.add_argument("--angle-tol", type=float, default=None, help="Angle tolerance in degrees.")
    parser.add_argument("--distance-tol", type=float, default=None, help="Preauricular distance tolerance.")
    parser.add_argument("--output-dir", type=str, default=None,
                        help="Where to write outputs (default: next to the exports).")
    parser.add_argument("--force", action="store_true", help="Recompute even if a _dig.mat exists.")
    parser.add_argument("--no-figures", action="store_true", help="Skip QC figures.")
    parser.add_argument("--verbose", action="store_true", help="Log frame diagnostics.")
    return parser


def main(argv=None):
    """Run the single-subject pipeline; returns the result or None on failure."""
    args = build_parser().parse_args(argv)

    cfg = config_utils.load_config(args.config, PROJECT_ROOT)
    fs_cfg = cfg.setdefault("fastscan", {})
    for key, value in (("montage", args.montage), ("angle_tol", args.angle_tol),
                       ("distance_tol", args.distance_tol), ("landmark_placement", args.landmarks)):
        if value is not None:
            fs_cfg[key] = value
    verbose = args.verbose or bool(fs_cfg.get("verbose", False))
    configure_console_logging(verbose)

    marker_path = Path(args.markers)
    output_dir = Path(args.output_dir) if args.output_dir else marker_path.parent

    with run_log(output_dir / f"{marker_path.stem}_fastscan.log"):
        try:
            tolerances = config_utils.resolve_tolerances(cfg)
            montage = get_montage(load_configured_montages(cfg), fs_cfg.get("montage", "dukeZ3"))
            result = run_subject(
                marker_path,
                montage,
                point_cloud_path=Path(args.point_cloud) if args.point_cloud else None,
                output_dir=output_dir,
                placement=None if args.interactive else config_utils.landmark_placement_for(cfg, marker_path.stem),
                confirm=console_confirm if args.interactive else None,
                tolerances=tolerances,
                force=args.force,
                figures=not args.no_figures,
                verbose=verbose,
            )
        except FastscanError as exc:
            log.error(f"{type(exc).__name__}: {exc}")
            log.error("Digitization halted; fix the marker file or labels and rerun.")
            return None

        log.info("-" * 80)
        log.info(f"FastScan digitization finished for '{marker_path.stem}'.")
        log.info(f"All outputs are saved in: {output_dir}")
        log.info("-" * 80)
    return result


if __name__ == "__main__":
    main()
