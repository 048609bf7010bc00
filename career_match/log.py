"""Console logging setup for scripts and services embedding the pipeline."""
from __future__ import annotations

import logging
import os
import sys

_FORMAT = "%(asctime)s  %(levelname)-8s  %(name)s  %(message)s"
_DATE_FMT = "%Y-%m-%d %H:%M:%S"
_configured = False


def configure_logging(level: str | None = None) -> None:
    """Attach a stdout handler to the root logger once.

    The level comes from the argument, else CAREER_MATCH_LOG_LEVEL, else INFO.
    Library modules only call logging.getLogger(__name__); nothing is
    configured on import.
    """
    global _configured
    if _configured:
        return
    _configured = True

    level_name = (level or os.environ.get("CAREER_MATCH_LOG_LEVEL", "INFO")).upper()
    resolved = getattr(logging, level_name, logging.INFO)

    root = logging.getLogger()
    root.setLevel(resolved)
    if root.handlers:
        return

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(resolved)
    console.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATE_FMT))
    root.addHandler(console)
