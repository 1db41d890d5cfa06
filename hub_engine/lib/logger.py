"""
Logging for Revenue Signal Hub.

Every module gets its logger from setup_logger(). Output goes to stdout and,
when LOG_TO_FILE=true, to a per-day file under logs/. LOG_LEVEL sets the
threshold (default INFO).

Usage:
    from hub_engine.lib.logger import setup_logger
    logger = setup_logger(__name__)
    logger.info("Resolving quota for %d reps", len(rep_ids))
"""
import logging
import os
import sys
from datetime import date
from pathlib import Path

LOG_DIR = Path(__file__).resolve().parent.parent.parent / "logs"

FORMATTER = logging.Formatter(
    fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)


def _daily_file_handler(log_dir: Path) -> logging.Handler:
    log_dir.mkdir(parents=True, exist_ok=True)
    path = log_dir / f"{date.today():%Y%m%d}_signal_hub.log"
    return logging.FileHandler(path, encoding="utf-8")


def setup_logger(
    name: str,
    level: str = None,
    log_to_file: bool = None,
    log_dir: Path = None,
) -> logging.Logger:
    """
    Return the named logger, attaching handlers on first use only.

    Args:
        name: Usually the calling module's __name__.
        level: Overrides LOG_LEVEL.
        log_to_file: Overrides LOG_TO_FILE.
        log_dir: Overrides the project logs/ directory.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logger.setLevel(getattr(logging, level, logging.INFO))

    if log_to_file is None:
        log_to_file = os.getenv("LOG_TO_FILE", "false").lower() == "true"

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_to_file:
        handlers.append(_daily_file_handler(Path(log_dir) if log_dir else LOG_DIR))

    for handler in handlers:
        handler.setFormatter(FORMATTER)
        logger.addHandler(handler)
    return logger
