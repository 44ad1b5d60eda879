"""Shared fixtures for integration tests."""

import logging

import pytest


@pytest.fixture
def restore_root_logger():
    """Undo handler changes made by CLI logging setup."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)
