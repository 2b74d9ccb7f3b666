"""Retail ledger transaction engine.

Importing the package configures the shared ``log`` used by every module:
records go to stderr and to a rotating ``retail_ledger.log``. The file lives
in ``.logs/`` under the project root unless ``RETAIL_LEDGER_LOG_DIR`` points
somewhere else, which is how a deployed ``ledger-cli`` keeps its log next to
the workbook instead of inside site-packages.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR_ENV = "RETAIL_LEDGER_LOG_DIR"
LOG_FILE_NAME = "retail_ledger.log"
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"


def resolve_log_file() -> Path:
    """Return the log file path, honouring ``RETAIL_LEDGER_LOG_DIR``."""

    override = os.environ.get(LOG_DIR_ENV)
    log_dir = Path(override).expanduser() if override else PROJECT_ROOT / ".logs"
    return log_dir / LOG_FILE_NAME


def _configure_logging() -> logging.Logger:
    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    logger.setLevel(logging.INFO)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    log_file = resolve_log_file()
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        ledger_file = RotatingFileHandler(log_file, maxBytes=1_000_000, backupCount=5, encoding="utf-8")
    except OSError as exc:
        # the engine still works without a log file
        print(f"retail_ledger: not writing a log file at '{log_file}': {exc}", file=sys.stderr)
    else:
        ledger_file.setFormatter(formatter)
        logger.addHandler(ledger_file)

    stderr = logging.StreamHandler(sys.stderr)
    stderr.setFormatter(formatter)
    logger.addHandler(stderr)
    return logger


log = _configure_logging()
log.debug("retail_ledger logging to %s", resolve_log_file())
