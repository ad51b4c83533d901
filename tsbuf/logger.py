"""
Centralized logging configuration for tsbuf.
Every component logs through a named logger that shares one file handler.
"""

import logging
import sys
from pathlib import Path
from datetime import datetime
from typing import Optional


LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL
}


class BufferLogger:
    """Centralized logger for buffer pipeline components."""

    _loggers = {}
    _initialized = False
    _log_file: Optional[Path] = None

    @classmethod
    def setup(cls, log_dir: str = "./logs", log_level: str = "INFO", console_output: bool = False):
        """Setup logging configuration for all tsbuf components."""
        if cls._initialized:
            return

        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        level = LEVEL_MAP.get(log_level.upper(), logging.INFO)

        detailed_formatter = logging.Formatter(
            '%(asctime)s | %(name)s | %(levelname)s | %(funcName)s:%(lineno)d | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        simple_formatter = logging.Formatter(
            '%(asctime)s | %(levelname)s | %(message)s',
            datefmt='%H:%M:%S'
        )

        # Handlers hang off the package logger so host applications keep their root config
        package_logger = logging.getLogger("tsbuf")
        package_logger.setLevel(level)
        package_logger.handlers.clear()

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_file = log_path / f"tsbuf_{timestamp}.log"
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(detailed_formatter)
        package_logger.addHandler(file_handler)

        if console_output:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(logging.WARNING)  # Only warnings/errors to console
            console_handler.setFormatter(simple_formatter)
            package_logger.addHandler(console_handler)

        cls._log_file = log_file
        cls._initialized = True

        init_logger = cls.get_logger("BufferLogger")
        init_logger.info(f"Logging initialized - Level: {log_level}, File: {log_file}")
        if console_output:
            init_logger.info("Console output enabled for WARNING+ messages")

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        """Get a logger for a specific component."""
        if not cls._initialized:
            cls.setup()

        if name not in cls._loggers:
            # Level and handlers come from the package logger
            cls._loggers[name] = logging.getLogger(f"tsbuf.{name}")

        return cls._loggers[name]

    @classmethod
    def get_log_file(cls) -> Optional[Path]:
        """File written by the handler installed in setup(), or None before setup."""
        return cls._log_file


def get_logger(name: str) -> logging.Logger:
    """Convenience function to get a logger."""
    return BufferLogger.get_logger(name)
