"""
Central logging configuration for the router process.

- One format across all modules.
- Level from RouterConfig.log_level (or an explicit override).
- httpx and asyncpg kept quiet unless asked (TANDA_NOISY_LOG_LEVEL).
"""

from __future__ import annotations

import logging
import os
from typing import Optional

NOISY_LOGGERS = ("httpx", "httpcore", "asyncpg")


def setup_logging(
    *,
    debug: bool = False,
    level: Optional[int | str] = None,
) -> None:
    """
    Configure root logging for the process.

    Parameters
    ----------
    debug:
        If True, default log level becomes DEBUG, otherwise INFO.
    level:
        Optional explicit level (int or name such as "WARNING"); overrides debug.

    Idempotent: calling it again adjusts levels (root, its handlers and the
    noisy third-party loggers) without adding handlers.
    """
    if level is not None:
        base_level = logging.getLevelName(level) if isinstance(level, str) else level
    else:
        base_level = logging.DEBUG if debug else logging.INFO

    fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"

    noisy_level = os.getenv("TANDA_NOISY_LOG_LEVEL", "WARNING")
    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(noisy_level)

    root = logging.getLogger()
    if root.handlers:
        root.setLevel(base_level)
        for h in root.handlers:
            h.setLevel(base_level)
        return

    logging.basicConfig(level=base_level, format=fmt, datefmt=datefmt)
