"""Logging configuration for the CLI and the web API."""
from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(
    level: Optional[str] = None,
    log_file: Optional[Path] = None,
    debug: bool = False,
) -> None:
    """Send log records to stderr, and to ``log_file`` when one is given.

    ``LOG_LEVEL`` in the environment applies when no level is passed; ``debug``
    overrides both.
    """

    if debug:
        log_level = logging.DEBUG
    else:
        name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
        log_level = getattr(logging, name, logging.INFO)

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(
        level=log_level,
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        handlers=handlers,
        force=True,
    )
    # msal and urllib3 are chatty at DEBUG.
    for noisy in ("msal", "urllib3"):
        logging.getLogger(noisy).setLevel(max(log_level, logging.WARNING))


__all__ = ["setup_logging"]
