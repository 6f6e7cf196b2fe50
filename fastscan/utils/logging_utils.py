"""Console and per-run file logging for the FastScan entry points."""
import logging
from contextlib import contextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, Iterator

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
# Run files also name the emitting module so gate failures can be traced
RUN_LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"
RUN_LOG_MAX_BYTES = 10 * 1024 * 1024
RUN_LOG_BACKUPS = 3

# One handler per run file, keyed by resolved path
_run_handlers: Dict[Path, RotatingFileHandler] = {}


def configure_console_logging(verbose: bool = False) -> None:
    """Console logging for the entry points; DEBUG when verbose."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format=LOG_FORMAT)


def attach_run_log(log_path: Path, level: int = logging.INFO) -> Path:
    """Send root logger output to a rotating ``log_path`` as well.

    Attaching the same file twice is a no-op. Returns the resolved path.
    """
    log_path = Path(log_path).resolve()
    if log_path in _run_handlers:
        return log_path

    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        filename=str(log_path),
        maxBytes=RUN_LOG_MAX_BYTES,
        backupCount=RUN_LOG_BACKUPS,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(RUN_LOG_FORMAT))
    handler.setLevel(level)
    logging.getLogger().addHandler(handler)
    _run_handlers[log_path] = handler
    return log_path


def release_run_log(log_path: Path) -> None:
    handler = _run_handlers.pop(Path(log_path).resolve(), None)
    if handler is not None:
        logging.getLogger().removeHandler(handler)
        handler.close()


@contextmanager
def run_log(log_path: Path, level: int = logging.INFO) -> Iterator[Path]:
    """Capture everything logged inside the block in ``log_path``.

    The file handler is removed on exit, so repeated runs in one process
    (tests, notebooks) never write into each other's logs.
    """
    path = attach_run_log(log_path, level)
    try:
        yield path
    finally:
        release_run_log(path)
