"""
Shared helpers.
"""
import logging
import re
import sys

from confapp.core import config


_configured = False


def _configure_root() -> None:
    global _configured
    if _configured:
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
    root = logging.getLogger("confapp")
    root.addHandler(handler)
    root.setLevel(config.LOG_LEVEL.upper())
    root.propagate = False
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """
    Get a module logger under the ``confapp`` namespace.

    Usage:
        log = get_logger(__name__)
    """
    _configure_root()
    if not name.startswith("confapp"):
        name = f"confapp.{name}"
    return logging.getLogger(name)


def slugify(value: str) -> str:
    """Lowercase, drop punctuation and join words with dashes."""
    value = re.sub(r"[^\w\s-]", "", value.lower().strip())
    return re.sub(r"\s+", "-", value)
