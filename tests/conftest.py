"""Shared fixtures for the modhub test-suite."""

from __future__ import annotations

import logging

import pytest

from modhub.network.session import reset_server_session


@pytest.fixture(autouse=True)
def restore_modhub_logger():
    """Undo configure_logging() so caplog keeps seeing modhub records."""
    yield
    logger = logging.getLogger("modhub")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


@pytest.fixture(autouse=True)
def fresh_server_session():
    reset_server_session()
    yield
    reset_server_session()
