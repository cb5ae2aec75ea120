from __future__ import annotations

import logging
import sys

from .settings import Settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


# PUBLIC_INTERFACE
def configure_logging(settings: Settings) -> None:
    """
    Configure the root logger once at startup.

    Every module logs through ``logging.getLogger(__name__)``; this only sets
    level, format and the stdout handler.
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format=LOG_FORMAT,
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # Per-request access lines are noise outside development.
    if settings.is_production:
        logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
