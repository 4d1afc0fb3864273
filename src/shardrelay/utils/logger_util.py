import logging
import os
from pathlib import Path


def _default_level() -> int:
    name = os.environ.get("SHARDRELAY_LOG_LEVEL", "INFO").strip().upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def get_logger(name: str, level: int | None = None) -> logging.Logger:
    """Get a named logger with standard formatting.

    Example:
        logger = get_logger(__name__)
        logger.info("This is an info message.")

    The level defaults to SHARDRELAY_LOG_LEVEL (INFO when unset). Records are
    also written to ``<SHARDRELAY_LOG_DIR>/<name>.log`` unless the variable is
    set to an empty string.

    Returns:
        logging.Logger: Configured logger instance.
    """
    if level is None:
        level = _default_level()
    logger = logging.getLogger(name)

    # avoid adding duplicate handlers if called repeatedly (common in tests)
    if logger.handlers:
        logger.setLevel(level)
        return logger

    logs_dir = None
    raw_dir = os.environ.get("SHARDRELAY_LOG_DIR", "log")
    if raw_dir.strip():
        logs_dir = Path(raw_dir)
        try:
            logs_dir.mkdir(parents=True, exist_ok=True)
        except OSError:
            # read-only filesystems fall back to streaming only
            logs_dir = None

    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    if logs_dir is not None:
        filehandler = logging.FileHandler(str(logs_dir / f"{name}.log"), encoding="utf-8")
        filehandler.setFormatter(formatter)
        logger.addHandler(filehandler)

    logger.setLevel(level)
    # stop passing records to the root logger (avoid duplicated messages)
    logger.propagate = False

    logger.debug("'%s' initialized with level %s", name, logging.getLevelName(level))
    return logger
