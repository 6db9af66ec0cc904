from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def configure_logging(debug: bool = False) -> None:
    level = logging.DEBUG if debug else logging.INFO
    root_logger = logging.getLogger()

    # basicConfig() is a no-op once uvicorn has installed its handlers.
    if not root_logger.handlers:
        logging.basicConfig(level=level, format=LOG_FORMAT)

    root_logger.setLevel(level)
    logging.getLogger("backend").setLevel(level)
    # Text edits arrive once per keystroke; keep their access lines out of normal runs.
    logging.getLogger("uvicorn.access").setLevel(level if debug else logging.WARNING)
