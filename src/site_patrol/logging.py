"""Logging setup for the patrol CLI."""

from __future__ import annotations

import logging

PACKAGE_LOGGER = "site_patrol"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(debug: bool = False) -> None:
    """Route package logs to stderr; ``debug`` also shows per-step engine detail."""
    logging.basicConfig(level=logging.WARNING, format=LOG_FORMAT)
    logging.getLogger(PACKAGE_LOGGER).setLevel(logging.DEBUG if debug else logging.INFO)
    # httpx logs every request line at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)
