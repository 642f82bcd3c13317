"""Logging configuration."""

import logging
import os
import sys
from pathlib import Path

from pydantic import BaseModel

# Provider SDKs and the HTTP stack log every request at INFO
QUIET_LOGGERS = ("anthropic", "httpx", "httpcore", "uvicorn.access")


class LogConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    date_format: str = "%Y-%m-%d %H:%M:%S"
    # Optional log file kept next to the conversation data
    log_file: Path | None = None

    @classmethod
    def from_env(cls) -> "LogConfig":
        """Read LOG_LEVEL and SANDCODER_LOG_FILE."""
        log_file = os.getenv("SANDCODER_LOG_FILE")
        return cls(level=os.getenv("LOG_LEVEL", "INFO"), log_file=Path(log_file) if log_file else None)


def setup_logging(config: LogConfig | None = None) -> None:
    """Configure the root logger to write to stderr and, optionally, a file.

    The sidecar's stdout belongs to the process that launched it, so log
    records always go to stderr.
    """
    if config is None:
        config = LogConfig.from_env()

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if config.log_file is not None:
        config.log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(config.log_file, encoding="utf-8"))

    logging.basicConfig(
        level=getattr(logging, config.level.upper()),
        format=config.format,
        datefmt=config.date_format,
        handlers=handlers,
        force=True,
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str, level: str | None = None) -> logging.Logger:
    """Get a logger for a specific module.

    Args:
        name: Module name (typically __name__)
        level: Explicit level, otherwise LOG_LEVEL from the environment

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel((level or os.getenv("LOG_LEVEL", "INFO")).upper())
    return logger
