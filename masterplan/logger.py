# masterplan/logger.py
import logging
import sys
from pathlib import Path

logger = logging.getLogger("masterplan")
logger.setLevel(logging.INFO)

# Prevent duplicate handlers if imported multiple times
if not logger.handlers:
    # Stream handler (stdout -> container logs)
    stream_handler = logging.StreamHandler(sys.stdout)
    stream_formatter = logging.Formatter("[%(levelname)s] %(message)s")
    stream_handler.setFormatter(stream_formatter)
    logger.addHandler(stream_handler)


def configure_logging(level: str = "INFO", log_file: str | Path | None = None) -> None:
    """Apply the logging section of the planning configuration.

    Args:
        level: Level name (DEBUG, INFO, WARNING, ...).
        log_file: Optional path for an additional file handler.
    """
    logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))

    if log_file is None:
        return

    log_path = Path(log_file)
    for handler in logger.handlers:
        if isinstance(handler, logging.FileHandler) and Path(handler.baseFilename) == log_path.resolve():
            return

    log_path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_formatter = logging.Formatter(
        "%(asctime)s - %(levelname)s - %(name)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    file_handler.setFormatter(file_formatter)
    logger.addHandler(file_handler)
