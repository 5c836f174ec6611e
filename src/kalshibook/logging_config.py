"""
Logging setup for kalshibook.
Console gets INFO, a rotating file per logger gets DEBUG.
"""
import logging
import logging.handlers
from pathlib import Path
from typing import Optional

import orjson


class LogConfig:
    """Centralized logging configuration."""

    LOG_DIR = Path("./logs")

    # Log levels
    CONSOLE_LEVEL = logging.INFO
    FILE_LEVEL = logging.DEBUG

    # Log formats
    DETAILED_FORMAT = '%(asctime)s | %(name)-30s | %(levelname)-8s | %(message)s'
    SIMPLE_FORMAT = '%(levelname)-8s | %(message)s'
    DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

    @classmethod
    def setup_logger(cls, name: str, log_file: Optional[str] = None, to_file: bool = True) -> logging.Logger:
        """
        Set up a logger with console and file handlers.

        Args:
            name: Logger name (typically __name__, or "kalshibook" for the whole package)
            log_file: Optional specific log file name. If None, uses the logger name.
            to_file: Skip the rotating file handler when False.

        Returns:
            Configured logger instance
        """
        logger = logging.getLogger(name)
        logger.setLevel(logging.DEBUG)

        # Avoid duplicate handlers
        if logger.handlers:
            return logger

        console_handler = logging.StreamHandler()
        console_handler.setLevel(cls.CONSOLE_LEVEL)
        console_handler.setFormatter(logging.Formatter(cls.SIMPLE_FORMAT, datefmt=cls.DATE_FORMAT))
        logger.addHandler(console_handler)

        if to_file:
            cls.LOG_DIR.mkdir(parents=True, exist_ok=True)
            if log_file is None:
                log_file = f"{name.replace('.', '_')}.log"
            file_handler = logging.handlers.RotatingFileHandler(
                cls.LOG_DIR / log_file,
                maxBytes=10 * 1024 * 1024,  # 10MB per file
                backupCount=10,
            )
            file_handler.setLevel(cls.FILE_LEVEL)
            file_handler.setFormatter(logging.Formatter(cls.DETAILED_FORMAT, datefmt=cls.DATE_FORMAT))
            logger.addHandler(file_handler)

        return logger


def setup_logging(level: str = "INFO", log_dir: Optional[str] = None, to_file: bool = True) -> logging.Logger:
    """Configure the package logger for the command line entry point."""
    if log_dir:
        LogConfig.LOG_DIR = Path(log_dir)
    LogConfig.CONSOLE_LEVEL = logging.getLevelName(level.upper()) if isinstance(level, str) else level
    if not isinstance(LogConfig.CONSOLE_LEVEL, int):
        LogConfig.CONSOLE_LEVEL = logging.INFO
    return LogConfig.setup_logger("kalshibook", log_file="kalshibook.log", to_file=to_file)


def json_msg(d: dict) -> str:
    return orjson.dumps(d, default=str).decode("utf-8")
