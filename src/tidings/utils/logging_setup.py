"""Process-wide logging configuration."""

import logging
import os

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"

_LEVELS = {
    "trace": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


def resolve_level(config_level: str | None) -> int:
    """TIDINGS_LOG overrides the configured level; unknown names mean INFO."""
    name = os.environ.get("TIDINGS_LOG") or config_level or "info"
    return _LEVELS.get(name.strip().lower(), logging.INFO)


def configure_logging(config_level: str | None = None):
    logging.basicConfig(level=resolve_level(config_level), format=LOG_FORMAT)


def apply_level(config_level: str | None):
    """Re-apply the level after a config reload."""
    if os.environ.get("TIDINGS_LOG"):
        return
    logging.getLogger().setLevel(resolve_level(config_level))
