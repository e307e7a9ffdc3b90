"""
Centralised logging configuration for Transaction Analyzer.

Every module obtains its logger via ``get_logger(<module>)``; both the
short form (``"cache"``) and ``__name__`` resolve to the same logger.
Pipelines call ``configure_logging`` at construction.  Handlers are
installed once per process; a later call only changes the level, so the
most recently built pipeline decides how verbose the package is.
"""

from __future__ import annotations

import logging
import sys
from typing import List, Optional


ROOT_LOGGER_NAME = "transaction_analyzer"

LOG_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(name)-30s | %(message)s"
)
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_handlers: List[logging.Handler] = []


def _make_handler(handler: logging.Handler, level: int) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    return handler


def configure_logging(
    level: int = logging.INFO,
    log_file: Optional[str] = None,
) -> None:
    """Set up the ``transaction_analyzer`` logger tree.

    Parameters
    ----------
    level:
        Minimum severity to emit.  Applied to the package logger and every
        handler installed here, also on repeated calls.
    log_file:
        If provided on the first call, a ``FileHandler`` is added alongside
        the console handler.
    """
    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level)

    if _handlers:
        for handler in _handlers:
            handler.setLevel(level)
        return

    root.propagate = False
    _handlers.append(_make_handler(logging.StreamHandler(sys.stdout), level))
    if log_file:
        _handlers.append(
            _make_handler(logging.FileHandler(log_file, encoding="utf-8"), level)
        )
    for handler in _handlers:
        root.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    """Return a child logger under the ``transaction_analyzer`` namespace.

    ``name`` may be a bare component (``"pipeline"``) or a full module
    path such as ``__name__``.
    """
    prefix = ROOT_LOGGER_NAME + "."
    if name.startswith(prefix):
        name = name[len(prefix):]
    return logging.getLogger(prefix + name)
