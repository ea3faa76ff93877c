"""Root logger setup shared by the API process and tests."""

import logging
import sys


LOG_FORMAT = "[%(asctime)s.%(msecs)03d] [%(levelname)-5s] [%(name)-20s] %(message)s"


def _has_stdout_handler(logger: logging.Logger) -> bool:
    for handler in logger.handlers:
        if isinstance(handler, logging.StreamHandler) and getattr(handler, "stream", None) is sys.stdout:
            return True
    return False


def configure_logging(log_level: str = "INFO") -> int:
    level = getattr(logging, (log_level or "INFO").upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)

    if not _has_stdout_handler(root):
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        root.addHandler(handler)

    # motor/pymongo are chatty at debug level
    logging.getLogger("pymongo").setLevel(max(level, logging.INFO))
    return level
