"""
Logging setup for the PiWifi processes.

Log lines carry the time elapsed since process start next to the wall-clock
timestamp, which makes the reconnect backoff and poll cadence easy to read
off a log.
"""

import logging
import sys
import time
from pathlib import Path
from typing import Optional

DEFAULT_FORMAT = "%(asctime)s - %(uptime)s - %(name)s - %(levelname)s - %(message)s"

# Third-party loggers that are too chatty at INFO
NOISY_LOGGERS = ("uvicorn", "uvicorn.access", "fastapi", "httpx")

_process_start: Optional[float] = None


def get_process_start() -> float:
    global _process_start
    if _process_start is None:
        _process_start = time.time()
    return _process_start


def set_process_start(start_time: float) -> None:
    global _process_start
    _process_start = start_time


class UptimeFormatter(logging.Formatter):
    """Formatter that adds ``%(uptime)s``, the elapsed time as ``hh:mm:ss.mmm``."""

    def __init__(self, fmt: Optional[str] = None, datefmt: Optional[str] = None, start_time: Optional[float] = None):
        super().__init__(fmt or DEFAULT_FORMAT, datefmt)
        self.start_time = start_time if start_time is not None else get_process_start()

    def format(self, record):
        elapsed = max(0.0, record.created - self.start_time)
        hours, remainder = divmod(elapsed, 3600)
        minutes, seconds = divmod(remainder, 60)
        record.uptime = f"{int(hours):02d}:{int(minutes):02d}:{seconds:06.3f}"
        return super().format(record)


def setup_logging(debug: bool = False, log_file: Optional[Path] = None) -> None:
    """Configure the root logger with a console handler and an optional file handler.

    Args:
        debug: Log at DEBUG instead of INFO
        log_file: Also append log lines to this file
    """
    formatter = UptimeFormatter()

    root_logger = logging.getLogger()
    root_logger.handlers = []
    root_logger.setLevel(logging.DEBUG if debug else logging.INFO)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file is not None:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file, mode="a")
        except OSError as e:
            root_logger.warning(f"Cannot write log file {log_file}: {e}")
        else:
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
