import logging

from fastscan.utils.logging_utils import _run_handlers, attach_run_log, release_run_log, run_log


def test_run_log_captures_block_and_detaches(tmp_path):
    log_path = tmp_path / "logs" / "run.log"
    n_handlers = len(logging.getLogger().handlers)

    with run_log(log_path) as path:
        logging.getLogger("fastscan.utils.geometry").warning("frame check failed")
        assert len(logging.getLogger().handlers) == n_handlers + 1
    logging.getLogger("fastscan.utils.geometry").warning("after the run")

    text = path.read_text(encoding="utf-8")
    assert "fastscan.utils.geometry - frame check failed" in text
    assert "after the run" not in text
    assert len(logging.getLogger().handlers) == n_handlers


def test_attach_same_file_once(tmp_path):
    log_path = tmp_path / "run.log"

    first = attach_run_log(log_path)
    second = attach_run_log(tmp_path / "." / "run.log")
    try:
        assert first == second
        assert list(_run_handlers) == [first]
    finally:
        release_run_log(log_path)
    assert not _run_handlers


def test_release_unknown_path_is_noop(tmp_path):
    release_run_log(tmp_path / "never_attached.log")
