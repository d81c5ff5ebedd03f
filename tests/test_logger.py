from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

import pytest

from dtx_scraper.logger import LOGGER_NAME, setup_logger


@pytest.fixture(autouse=True)
def clean_logger():
    yield
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def test_setup_logger_once(tmp_path: Path):
    logger = setup_logger(str(tmp_path / "logs"), "debug")

    assert logger.level == logging.DEBUG
    assert len(logger.handlers) == 2
    assert any(isinstance(h, RotatingFileHandler) for h in logger.handlers)
    assert logging.getLogger("httpx").level == logging.WARNING

    again = setup_logger(str(tmp_path / "logs"), logging.WARNING)
    assert again is logger
    assert len(logger.handlers) == 2
    assert all(h.level == logging.WARNING for h in logger.handlers)


def test_messages_reach_log_file(tmp_path: Path):
    logger = setup_logger(str(tmp_path), "INFO")
    logging.getLogger(LOGGER_NAME).info("[approved-dtx] Page 1: 7 charts")
    for handler in logger.handlers:
        handler.flush()

    text = (tmp_path / "scraper.log").read_text(encoding="utf-8")
    assert "[INFO] dtx_scraper: [approved-dtx] Page 1: 7 charts" in text


def test_unknown_level_name_falls_back_to_info(tmp_path: Path):
    assert setup_logger(str(tmp_path), "chatty").level == logging.INFO
