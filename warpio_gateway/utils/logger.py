# warpio_gateway/utils/logger.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3
import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

LOG_DIR_ENV = "WARPIO_LOG_DIR"


class DailyFileHandler(logging.Handler):
    """Write logs to files split by date: <logger-name>-YYYY-MM-DD.log."""

    def __init__(self, log_dir: Path, logger_name: str, encoding: str = "utf-8"):
        super().__init__()
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.logger_name = logger_name
        self.encoding = encoding
        self._stream = None
        self._opened_for = None

    def _target_path(self, day) -> Path:
        return self.log_dir / f"{self.logger_name}-{day:%Y-%m-%d}.log"

    def _ensure_stream(self):
        current_day = datetime.now().date()
        if self._stream and self._opened_for == current_day:
            return
        if self._stream:
            self._stream.close()
            self._stream = None
        self._stream = open(self._target_path(current_day), "a", encoding=self.encoding)
        self._opened_for = current_day

    def emit(self, record):
        try:
            msg = self.format(record)
            self._ensure_stream()
            self._stream.write(msg + "\n")
            self._stream.flush()
        except Exception:
            self.handleError(record)

    def close(self):
        try:
            if self._stream:
                self._stream.close()
        finally:
            self._stream = None
            self._opened_for = None
            super().close()


def _build_formatter() -> logging.Formatter:
    return logging.Formatter(
        fmt="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _resolve_log_dir(log_dir: Optional[str]) -> Optional[Path]:
    value = log_dir if log_dir is not None else os.getenv(LOG_DIR_ENV, "logs")
    # An empty value disables file output (console only).
    return Path(value) if value else None


def setup_logger(
    name: str,
    *,
    with_console: bool = True,
    level: int | str = logging.INFO,
    log_dir: Optional[str] = None,
) -> logging.Logger:
    """Create a configured logger using daily log files."""
    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.propagate = False

    if logger.hasHandlers():
        for handler in list(logger.handlers):
            handler.close()
        logger.handlers.clear()

    formatter = _build_formatter()

    if with_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    target_dir = _resolve_log_dir(log_dir)
    if target_dir is not None:
        file_handler = DailyFileHandler(target_dir, logger_name=name)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    return logger


def get_logger(name: str) -> logging.Logger:
    """Return a child of the gateway logger; handlers live on the root 'warpio_gateway' logger."""
    if name == "warpio_gateway" or name.startswith("warpio_gateway."):
        return logging.getLogger(name)
    return logging.getLogger(f"warpio_gateway.{name}")
