import logging
import os
from datetime import datetime

_LOGGER_NAME = "workstore"


def setup_logger(log_dir: str, level: str = "INFO") -> logging.Logger:
    """Attach a timestamped file handler to the ``workstore`` logger.

    Safe to call more than once: a second call only adjusts the level.
    """
    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    if any(getattr(h, "_workstore_handler", False) for h in logger.handlers):
        return logger

    os.makedirs(log_dir, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = os.path.join(log_dir, f"workstore_{timestamp}.log")

    fh = logging.FileHandler(log_file, encoding="utf-8")
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s", datefmt="%H:%M:%S"
    ))
    fh._workstore_handler = True  # type: ignore[attr-defined]
    logger.addHandler(fh)

    return logger
