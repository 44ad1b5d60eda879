"""Utilities module for docsync.

This module contains shared utility components for logging, errors, clocks
and asynchronous operations.
"""

from docsync.utils import async_utils, clock, exceptions, logging_utils

__all__ = [
    "async_utils",
    "clock",
    "exceptions",
    "logging_utils",
]
