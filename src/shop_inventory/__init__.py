"""Shop inventory toolkit.

Importing the package configures the ``shop_inventory`` logger shared by every
module: a rotating log file under ``.logs/`` plus a stderr stream. Set
``SHOP_INVENTORY_LOG_DIR`` to keep the log file somewhere else.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional


PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR = Path(os.environ.get("SHOP_INVENTORY_LOG_DIR", PROJECT_ROOT / ".logs"))
LOG_FILE = LOG_DIR / "shop_inventory.log"
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_MAX_BYTES = 1_000_000
LOG_BACKUP_COUNT = 5


def _build_file_handler() -> Optional[logging.Handler]:
    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        return RotatingFileHandler(
            LOG_FILE,
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
    except OSError as exc:
        print(f"Warning: unable to open log file '{LOG_FILE}': {exc}", file=sys.stderr)
        return None


def _configure_logging(level: int = logging.INFO) -> logging.Logger:
    """Attach the file and stderr handlers once per interpreter."""

    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    logger.setLevel(level)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    for handler in (_build_file_handler(), logging.StreamHandler(sys.stderr)):
        if handler is None:
            continue
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    return logger


log = _configure_logging()
log.debug("Logger initialized for the '%s' package.", __name__)
