"""Logging utilities for fitmesh.

Provides a consistent logger hierarchy and formatting without modifying the
process root logger. All fitmesh code should obtain loggers via get_logger().
"""
from __future__ import annotations

import logging
import sys
from typing import Optional, Union

_FORMAT = logging.Formatter('%(levelname)s %(name)s: %(message)s')
_ROOT_NAME = 'fitmesh'


def _ensure_fitmesh_root() -> logging.Logger:
    """Ensure the 'fitmesh' logger has a single stream handler and is isolated
    from the process root logger. Returns the 'fitmesh' logger.
    """
    root = logging.getLogger(_ROOT_NAME)
    # Replace the NullHandler installed by the package __init__ with a real handler
    for h in list(root.handlers):
        if isinstance(h, logging.NullHandler):
            root.removeHandler(h)
    if not root.handlers:
        handler = logging.StreamHandler(stream=sys.stdout)
        handler.setFormatter(_FORMAT)
        root.addHandler(handler)
    root.propagate = False
    return root


def _to_level(level: Union[str, int, None], default: int = logging.INFO) -> int:
    if level is None:
        return default
    if isinstance(level, int):
        return level
    value = getattr(logging, str(level).upper(), None)
    return value if isinstance(value, int) else default


def configure_logging(level: Union[str, int] = 'INFO', mute_external: bool = True) -> None:
    """Configure the 'fitmesh' logger family level and optional external noise suppression.

    This does NOT modify the process root logger.
    """
    root = _ensure_fitmesh_root()
    lvl = _to_level(level)
    root.setLevel(lvl)
    # matplotlib is very chatty at DEBUG
    if mute_external and lvl <= logging.DEBUG:
        for noisy in ('matplotlib', 'matplotlib.font_manager'):
            logging.getLogger(noisy).setLevel(logging.INFO)


def get_logger(name: str, level: Optional[Union[str, int]] = None) -> logging.Logger:
    """Return a logger under the 'fitmesh' namespace.

    If a level is provided it is set on the logger; otherwise the logger is set
    to NOTSET so it inherits from the 'fitmesh' parent configured via
    configure_logging().
    """
    _ensure_fitmesh_root()
    log = logging.getLogger(name)
    log.setLevel(_to_level(level) if level is not None else logging.NOTSET)
    return log


__all__ = ['get_logger', 'configure_logging']
