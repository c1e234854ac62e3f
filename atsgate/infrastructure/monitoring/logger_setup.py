"""Logging configuration for atsgate commands.

Routes every record to stdout, optionally to a size-rotated log file, and
optionally into an EventRecorder so health reports can count log errors.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional, Union

from atsgate.infrastructure.monitoring.event_recorder import EventRecorder, RecorderLogHandler

DEFAULT_LOG_LEVEL = logging.INFO
DEFAULT_LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_FILE_MAX_BYTES = 5 * 1024 * 1024
LOG_FILE_BACKUPS = 3

# SDK transport loggers log every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "openai")

def parse_log_level(level: Union[str, int, None], default: int = DEFAULT_LOG_LEVEL) -> int:
    """Accepts 'debug', 'INFO', 20 and the like; unknown names give `default`."""
    if isinstance(level, int):
        return level
    if not level:
        return default
    resolved = logging.getLevelName(str(level).upper())
    return resolved if isinstance(resolved, int) else default

def setup_logging(
    log_level: int = DEFAULT_LOG_LEVEL,
    log_format: str = DEFAULT_LOG_FORMAT,
    log_file: Optional[str] = None,
    recorder: Optional[EventRecorder] = None,
) -> None:
    """Replaces the root logger's handlers.

    Args:
        log_level: Minimum level for the root logger and its handlers.
        log_format: Format string shared by the stream and file handlers.
        log_file: Optional path; written through a RotatingFileHandler.
        recorder: Optional EventRecorder mirrored as `log_<level>` events (INFO and up).
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    formatter = logging.Formatter(log_format)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        try:
            file_handler = RotatingFileHandler(
                log_file, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUPS, encoding='utf-8'
            )
            file_handler.setLevel(log_level)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)
            logging.info(f"Logging to file: {log_file}")
        except OSError as e:
            logging.error(f"Failed to set up file logging to {log_file}: {e}", exc_info=True)

    if recorder is not None:
        root_logger.addHandler(RecorderLogHandler(recorder, level=max(log_level, logging.INFO)))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    logging.info(f"Logging configured. Level={logging.getLevelName(log_level)}")
