#!/usr/bin/env python3
"""Tests for host logging setup."""

import logging
from logging.handlers import RotatingFileHandler

import pytest

from odsync.logging_config import LOG_LEVEL_ENV, resolve_level, setup_logging


@pytest.fixture
def root_logger():
    """Restore the root logger after setup_logging replaced its handlers."""
    root = logging.getLogger()
    saved_handlers = root.handlers[:]
    saved_level = root.level
    yield root
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        if handler not in saved_handlers:
            handler.close()
    for handler in saved_handlers:
        root.addHandler(handler)
    root.setLevel(saved_level)


def test_resolve_level_from_argument():
    assert resolve_level('debug') == logging.DEBUG
    assert resolve_level('WARNING') == logging.WARNING


def test_resolve_level_from_environment(monkeypatch):
    monkeypatch.setenv(LOG_LEVEL_ENV, 'error')
    assert resolve_level() == logging.ERROR


def test_resolve_level_defaults_to_info(monkeypatch):
    monkeypatch.delenv(LOG_LEVEL_ENV, raising=False)
    assert resolve_level() == logging.INFO
    assert resolve_level('chatty') == logging.INFO


def test_console_only(root_logger):
    setup_logging('WARNING')

    assert len(root_logger.handlers) == 1
    assert root_logger.handlers[0].level == logging.WARNING
    assert root_logger.level == logging.WARNING
    assert logging.getLogger('urllib3').level == logging.WARNING


def test_file_handler_records_debug(root_logger, tmp_path):
    log_file = tmp_path / 'logs' / 'odsync.log'

    setup_logging('INFO', log_file)
    logging.getLogger('odsync.test').debug('per-item detail')
    for handler in root_logger.handlers:
        handler.flush()

    file_handlers = [h for h in root_logger.handlers if isinstance(h, RotatingFileHandler)]
    assert len(file_handlers) == 1
    assert root_logger.level == logging.DEBUG
    assert 'per-item detail' in log_file.read_text()


def test_repeated_setup_does_not_duplicate_handlers(root_logger):
    setup_logging('INFO')
    setup_logging('DEBUG')

    assert len(root_logger.handlers) == 1
    assert root_logger.handlers[0].level == logging.DEBUG
