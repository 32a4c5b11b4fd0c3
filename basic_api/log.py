"""Process-wide logging setup"""
import logging
import os
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
HANDLER_NAME = "basic_api"


def init_logging(level: Optional[str] = None) -> bool:
    """
    Attach the service's stderr handler to the root logger.

    Call once from the process entry point. Returns True when the handler was
    already installed, in which case nothing changes.
    """
    root = logging.getLogger()
    if any(handler.get_name() == HANDLER_NAME for handler in root.handlers):
        return True

    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(HANDLER_NAME)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)

    level = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    try:
        root.setLevel(level)
    except ValueError:
        root.setLevel(logging.INFO)
        logging.getLogger(__name__).warning("Unknown log level %r, using INFO", level)
    return False
