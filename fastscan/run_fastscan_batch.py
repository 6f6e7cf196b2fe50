"""
FastScan Batch Validation Sweep

Runs the digitization pipeline over every FastScanII marker export below a
directory. Subjects are independent, so they are processed in a process pool;
a data-quality failure is recorded for that subject and the sweep continues.
"""
import argparse
import concurrent.futures
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Dict, List

import pandas as pd
from tqdm import tqdm

from fastscan.run_fastscan_pipeline import PROJECT_ROOT, load_configured_montages, run_subject
from fastscan.utils import config_utils
from fastscan.utils.config_utils import Tolerances
from fastscan.utils.errors import FastscanError
from fastscan.utils.fastscan_io import FastscanSession, find_fastscan_sessions
from fastscan.utils.logging_utils import configure_console_logging, run_log
from fastscan.utils.montages import MontageSpec, get_montage

log = logging.getLogger()

SUMMARY_COLUMNS = [
    "subject", "status", "error_type", "message", "n_electrodes",
    "xy_off_deg", "yz_off_deg", "zx_off_deg", "preauricular_change", "marker_path",
]

# Error diagnostics stored under a different summary column
DIAGNOSTIC_COLUMNS = {"change": "preauricular_change"}


def process_session(
    session: FastscanSession,
    montage: MontageSpec,
    placement: str,
    tolerances: Tolerances,
    output_root: Path,
    force: bool = False,
    figures: bool = True,
) -> Dict:
    """Process one session and return its summary row."""
    row = {col: None for col in SUMMARY_COLUMNS}
    row.update(subject=session.subject, marker_path=str(session.marker_path))
    try:
        result = run_subject(
            session.marker_path,
            montage,
            point_cloud_path=session.point_cloud_path,
            output_dir=Path(output_root) / session.subject,
            placement=placement,
            tolerances=tolerances,
            force=force,
            figures=figures,
        )
    except FastscanError as exc:
        row.update(status="failed", error_type=type(exc).__name__, message=str(exc))
        for key, value in exc.diagnostics.items():
            column = DIAGNOSTIC_COLUMNS.get(key, key)
            if column in SUMMARY_COLUMNS:
                row[column] = value
        return row
    except (OSError, ValueError, KeyError) as exc:
        row.update(status="unreadable", error_type=type(exc).__name__, message=str(exc))
        return row

    diag = result.diagnostics
    row.update(
        status="ok",
        n_electrodes=result.n_electrodes,
        xy_off_deg=diag.xy_off_deg,
        yz_off_deg=diag.yz_off_deg,
        zx_off_deg=diag.zx_off_deg,
        preauricular_change=result.preauricular_change,
    )
    return row


def run_batch(
    sessions: List[FastscanSession],
    montage: MontageSpec,
    cfg: dict,
    output_root: Path,
    n_jobs: int = 1,
    force: bool = False,
    figures: bool = True,
) -> pd.DataFrame:
    """Process all sessions; returns one summary row per subject."""
    tolerances = config_utils.resolve_tolerances(cfg)
    jobs = [
        (session, montage, config_utils.landmark_placement_for(cfg, session.subject),
         tolerances, output_root, force, figures)
        for session in sessions
    ]

    rows = []
    if n_jobs == 1:
        for job in tqdm(jobs, desc="Processing subjects (fastscan)"):
            rows.append(process_session(*job))
    else:
        with concurrent.futures.ProcessPoolExecutor(max_workers=n_jobs) as executor:
            futures = [executor.submit(process_session, *job) for job in jobs]
            for future in tqdm(concurrent.futures.as_completed(futures), total=len(futures),
                               desc="Processing subjects (fastscan)"):
                rows.append(future.result())

    summary = pd.DataFrame(rows, columns=SUMMARY_COLUMNS)
    return summary.sort_values("subject").reset_index(drop=True)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Run the FastScan pipeline over a directory of exports")
    parser.add_argument("--input-dir", type=str, required=True,
                        help="Directory searched for FastScanII marker .txt files.")
    parser.add_argument("--config", type=str, default=None,
                        help="Optional run YAML merged over configs/common.yaml.")
    parser.add_argument("--montage", type=str, default=None, help="Montage name (overrides config).")
    parser.add_argument("--n-jobs", type=int, default=None, help="Worker processes (default from config).")
    parser.add_argument("--output-dir", type=str, default=None, help="Output root (default from config).")
    parser.add_argument("--force", action="store_true", help="Recompute existing _dig.mat files.")
    parser.add_argument("--no-figures", action="store_true", help="Skip QC figures.")
    args = parser.parse_args(argv)

    configure_console_logging()
    cfg = config_utils.load_config(args.config, PROJECT_ROOT)
    fs_cfg = cfg.setdefault("fastscan", {})
    if args.montage:
        fs_cfg["montage"] = args.montage
    batch_cfg = cfg.get("batch") or {}
    n_jobs = args.n_jobs or int(batch_cfg.get("n_jobs", 1))
    if n_jobs < 1:
        n_jobs = os.cpu_count() or 1

    derivatives_root = Path(os.environ.get(
        "DERIVATIVES_ROOT", (cfg.get("paths") or {}).get("derivatives_root", "derivatives/fastscan")
    ))
    run_timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    output_root = Path(args.output_dir) if args.output_dir else derivatives_root / f"{run_timestamp}-batch"
    output_root.mkdir(parents=True, exist_ok=True)

    with run_log(output_root / f"{run_timestamp}-batch.log") as log_path:
        log.info(f"File logging enabled: {log_path}")
        return _sweep(args, cfg, output_root, n_jobs)


def _sweep(args, cfg: dict, output_root: Path, n_jobs: int):
    fs_cfg = cfg.get("fastscan") or {}
    batch_cfg = cfg.get("batch") or {}
    montage = get_montage(load_configured_montages(cfg), fs_cfg.get("montage", "dukeZ3"))
    sessions = find_fastscan_sessions(args.input_dir, batch_cfg.get("marker_glob", "**/*.txt"))
    if not sessions:
        log.error("No FastScan marker files found. Exiting.")
        return None

    summary = run_batch(
        sessions, montage, cfg, output_root,
        n_jobs=n_jobs, force=args.force, figures=not args.no_figures,
    )
    summary_path = output_root / "fastscan_batch_summary.csv"
    summary.to_csv(summary_path, index=False)

    n_ok = int((summary["status"] == "ok").sum())
    log.info("-" * 80)
    log.info(f"Processed {len(summary)} subjects: {n_ok} ok, {len(summary) - n_ok} failed.")
    for _, row in summary[summary["status"] != "ok"].iterrows():
        log.warning(f"{row['subject']}: {row['error_type']}: {row['message']}")
    log.info(f"Summary saved to: {summary_path}")
    log.info("-" * 80)
    return summary


if __name__ == "__main__":
    main()
