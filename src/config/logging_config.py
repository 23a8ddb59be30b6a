# src/config/logging_config.py

"""Per-run logging for chango.

Every launch writes to its own ``logs/run_YYYYmmdd_HHMMSS.log`` file.
The ``chango`` logger tree is the only one configured here; cart
write-through failures and provider fallbacks land in that file with
their tracebacks, while the console only shows warnings and above.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path

from src.config.settings import Settings

_FILE_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(name)s | "
    "%(funcName)s:%(lineno)d | %(message)s"
)
_CONSOLE_FORMAT = "%(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Third-party loggers that are chatty at DEBUG
_QUIET_LOGGERS: tuple[str, ...] = ("curl_cffi", "asyncio")


def setup_logging(
    log_dir: Path | None = None,
    console_level: int = logging.WARNING,
) -> Path:
    """Attach file + console handlers to the ``chango`` logger.

    Repeated calls reuse the handlers that are already attached and
    only hand back a fresh log path.

    Returns:
        Path of the log file for this run.
    """
    directory = log_dir or Settings.LOGS_DIR
    directory.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = directory / f"run_{stamp}.log"

    root_logger = logging.getLogger("chango")
    root_logger.setLevel(logging.DEBUG)
    if root_logger.handlers:
        return log_file

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(
        logging.Formatter(_FILE_FORMAT, datefmt=_DATE_FORMAT)
    )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(
        logging.Formatter(_CONSOLE_FORMAT, datefmt=_DATE_FORMAT)
    )

    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root_logger.info("Logging to %s", log_file)
    return log_file
