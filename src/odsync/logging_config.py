#!/usr/bin/env python3
"""Logging setup for hosts embedding odsync.

The library itself only creates module loggers (``logging.getLogger(__name__)``)
under the ``odsync`` namespace. Hosts that have no logging of their own call
``setup_logging`` once at startup.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional

LOG_LEVEL_ENV = 'ODSYNC_LOG_LEVEL'
DEFAULT_LEVEL = 'INFO'

# Worker threads log concurrently, so the detailed format names the thread
DETAILED_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - [%(threadName)s %(filename)s:%(lineno)d] - %(message)s'
SIMPLE_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'

LOG_FILE_MAX_BYTES = 5 * 1024 * 1024
LOG_FILE_BACKUPS = 3

NOISY_LOGGERS = ('urllib3', 'requests')


def resolve_level(level: Optional[str] = None) -> int:
    """Turn a level name into a logging level number.

    Args:
        level: Level name; None falls back to ODSYNC_LOG_LEVEL, then INFO

    Returns:
        Numeric level; unknown names map to INFO
    """
    name = (level or os.environ.get(LOG_LEVEL_ENV) or DEFAULT_LEVEL).upper()
    value = logging.getLevelName(name)
    return value if isinstance(value, int) else logging.INFO


def _build_handlers(numeric_level: int, log_file: Optional[Path]) -> List[logging.Handler]:
    detailed = logging.Formatter(fmt=DETAILED_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')
    simple = logging.Formatter(fmt=SIMPLE_FORMAT, datefmt='%H:%M:%S')

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(numeric_level)
    console.setFormatter(detailed if numeric_level <= logging.DEBUG else simple)
    handlers: List[logging.Handler] = [console]

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUPS, encoding='utf-8',
        )
        # The file keeps per-item transfer detail whatever the console shows
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(detailed)
        handlers.append(file_handler)

    return handlers


def setup_logging(level: Optional[str] = None, log_file: Optional[Path] = None) -> None:
    """Configure the root logger for an odsync host.

    Existing root handlers are replaced, so calling this again (e.g. after a
    log level change in the config) does not duplicate output.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
               If None, reads from ODSYNC_LOG_LEVEL env var, defaults to INFO
        log_file: Optional path to a rotating log file that always records DEBUG
    """
    numeric_level = resolve_level(level)
    handlers = _build_handlers(numeric_level, log_file)

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in handlers:
        root_logger.addHandler(handler)
    root_logger.setLevel(min(h.level for h in handlers))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info(f"odsync logging initialized at {logging.getLevelName(numeric_level)} level")
    if log_file:
        logger.info(f"Logging to file: {log_file}")
