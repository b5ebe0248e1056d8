"""AutoPrime: workshop management for a small auto repair shop.

Importing the package configures the shared ``autoprime`` logger. Log files
go to ``.logs/`` beside the source tree, or to ``AUTOPRIME_LOG_DIR`` when
that variable is set (useful once the package is installed and the source
tree is read-only).
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

__version__ = "0.1.0"

PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR = Path(os.environ.get("AUTOPRIME_LOG_DIR") or PROJECT_ROOT / ".logs")
LOG_FILE = LOG_DIR / "autoprime.log"
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"


def _build_file_handler(formatter: logging.Formatter) -> RotatingFileHandler | None:
    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(LOG_FILE, maxBytes=1_000_000, backupCount=5, encoding="utf-8")
    except OSError as exc:
        print(f"Warning: unable to initialize log file at '{LOG_FILE}': {exc}", file=sys.stderr)
        return None
    handler.setLevel(logging.INFO)
    handler.setFormatter(formatter)
    return handler


def _configure_logging() -> logging.Logger:
    """Attach the rotating file and stderr handlers once per process."""

    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    logger.setLevel(logging.INFO)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    file_handler = _build_file_handler(formatter)
    if file_handler is not None:
        logger.addHandler(file_handler)

    # Command output goes to stdout; keep diagnostics on stderr.
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


log = _configure_logging()
log.debug("Logger initialized for autoprime %s", __version__)
