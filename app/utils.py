"""
Shared helpers.
"""
import logging
import sys

from app.core import config


_configured = False


def _configure_root() -> None:
    global _configured
    if _configured:
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(config.LOG_LEVEL)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """
    Return a module logger, configuring the root handler on first use.

    Usage:
        log = get_logger(__name__)
        log.info("Role %s created", role.id)
    """
    _configure_root()
    return logging.getLogger(name)
