from __future__ import annotations

import logging
import sys
from collections.abc import Iterator

import pytest
from loguru import logger

from hatchway.launcher.log import setup_logging


@pytest.fixture(autouse=True)
def _restore_loguru() -> Iterator[None]:
    yield
    logger.remove()
    logger.add(sys.__stderr__)


def test_library_levels_follow_launcher_level() -> None:
    setup_logging("DEBUG")
    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger("kubernetes_asyncio").level == logging.INFO

    setup_logging("error")
    assert logging.getLogger("httpx").level == logging.ERROR
    assert logging.getLogger("kubernetes_asyncio").level == logging.ERROR


def test_user_context_and_stdlib_bridge(capsys: pytest.CaptureFixture[str]) -> None:
    setup_logging("INFO")

    logger.info("outside")
    with logger.contextualize(user="alice@example.org"):
        logging.getLogger("hatchway.test").warning("bridged %s", "record")

    err = capsys.readouterr().err
    assert "| - |" in err
    assert "alice@example.org" in err
    assert "bridged record" in err
