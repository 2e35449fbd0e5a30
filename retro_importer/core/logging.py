"""Simple logging setup for the command line tool."""

from __future__ import annotations

import logging
import os


def setup_logging(level: str | None = None, *, debug: bool = False) -> None:
    if logging.getLogger().handlers:
        if debug:
            logging.getLogger().setLevel(logging.DEBUG)
        return

    level_name = "DEBUG" if debug else (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=level_name,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    # Per-request lines come from our own client at DEBUG level.
    logging.getLogger("httpx").setLevel(logging.WARNING)
