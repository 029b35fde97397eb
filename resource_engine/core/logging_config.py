from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def setup_logging(level: str = "INFO") -> None:
    root_logger = logging.getLogger()
    resolved = getattr(logging, str(level).upper(), logging.INFO)
    if root_logger.handlers:
        root_logger.setLevel(resolved)
        return

    logging.basicConfig(level=resolved, format=LOG_FORMAT)
