"""lodestar_rag.common.logger

Process-wide logging setup.

``configure_logging`` is called once by the command-line entry point. Library
modules never configure handlers themselves; they log through
``logging.getLogger(__name__)``.
"""

from __future__ import annotations

import logging
import os
import sys

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%H:%M:%S"
NOISY_LOGGERS = ("urllib3", "httpx", "httpcore", "openai")


def configure_logging(level: str | None = None) -> None:
    """Configure the root logger with a single stderr handler.

    Parameters
    ----------
    level : str or None, optional
        Level name such as ``"debug"`` or ``"WARNING"``. Falls back to the
        ``LODESTAR_LOG_LEVEL`` environment variable, then ``INFO``.
    """
    name = (level or os.environ.get("LODESTAR_LOG_LEVEL") or "INFO").upper()
    resolved = logging.getLevelName(name)
    if not isinstance(resolved, int):
        resolved = logging.INFO

    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    root.addHandler(handler)
    root.setLevel(resolved)

    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)
