"""Console logging setup for the CLI.

Library modules only call ``logging.getLogger(__name__)``; handlers are
installed here, once, by the entrypoint.
"""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def setup_logging(verbose: bool = False) -> logging.Logger:
    logger = logging.getLogger("scholarize")
    if logger.handlers:
        return logger

    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%H:%M:%S"))
    logger.addHandler(console)
    logger.propagate = False
    return logger
