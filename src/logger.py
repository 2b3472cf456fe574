import logging
import os
from pathlib import Path

__all__ = ["get_logger", "logger"]

LOG_DIR = Path(os.getenv("FOCUS_SENSE_LOG_DIR", "./log"))

logger = logging.getLogger("focus_sense")
if not logger.handlers:
    logger.setLevel(logging.INFO)
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    _fh = logging.FileHandler(LOG_DIR / "sensing.log", encoding="utf-8")
    _fh.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    logger.addHandler(_fh)


def get_logger(name: str) -> logging.Logger:
    """Return a child of the ``focus_sense`` logger."""
    return logger.getChild(name)
