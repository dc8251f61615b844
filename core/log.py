"""
core/log.py -- Process-wide logging setup.

Every module creates its own hierarchical logger ("gatehouse.<layer>") and
never configures handlers itself. The entry point calls configure_logging()
exactly once, before the app starts serving.
"""

import logging

LOG_FORMAT = "%(asctime)s %(levelname)-5s %(name)s %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: str = "INFO") -> None:
    """Install the root handler with the shared Gatehouse format."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
    )
