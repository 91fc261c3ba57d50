"""Logging helpers for build runs."""

from __future__ import annotations

import logging
import os

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(message)s"


def setup_build_logger(log_dir: str | None, run_id: str) -> tuple[logging.Logger, str | None]:
    """
    Configure a per-run logger for traceability.
    Logs go to stderr and, when `log_dir` is given, to a UTF-8 file inside it.
    """

    logger = logging.getLogger(f"assembler.run.{run_id}")
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT)

    log_file = None
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        log_file = os.path.join(log_dir, f"{run_id}_build.log")
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(logging.INFO)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)
    logger.propagate = False

    logger.debug("Build logging initialized for run %s", run_id)
    if log_file:
        logger.debug("Build log file: %s", log_file)

    return logger, log_file
