from __future__ import annotations

"""quorumcall.logging_cfg - root logger setup for the scripts.

Library modules only create ``logging.getLogger(__name__)`` loggers; the
scripts call :func:`setup_from_env` once at start-up.
"""

import logging
import os
from datetime import datetime
from pathlib import Path

FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATEFMT = "%H:%M:%S"


def setup_logging(level: str | int = "INFO", log_dir: str | None = None) -> Path | None:
    """Log to stderr, and to ``<log_dir>/quorumcall_<timestamp>.log`` if given.

    Returns the log file path, or None when only the console is used.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    log_path = None
    if log_dir:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        log_path = Path(log_dir) / f"quorumcall_{datetime.now():%Y%m%d_%H%M%S}.log"
        handlers.append(logging.FileHandler(log_path))
    logging.basicConfig(level=level, format=FORMAT, datefmt=DATEFMT, handlers=handlers, force=True)
    return log_path


def setup_from_env() -> Path | None:
    """Apply ``QUORUMCALL_LOG_LEVEL`` / ``QUORUMCALL_LOG_DIR`` from the environment."""
    return setup_logging(
        level=os.getenv("QUORUMCALL_LOG_LEVEL", "INFO"),
        log_dir=os.getenv("QUORUMCALL_LOG_DIR") or None,
    )
