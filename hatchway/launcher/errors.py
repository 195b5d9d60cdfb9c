"""Domain exception roots.

Managers and drivers raise these (or subclasses defined next to them);
routers translate them to HTTP responses.
"""

from __future__ import annotations


class HatchwayError(Exception):
    """Base class for launcher errors."""


class ConfigError(HatchwayError, ValueError):
    """Raised when the launcher config file is missing or invalid."""


class BackendError(HatchwayError, RuntimeError):
    """Raised when a cloud or cluster call fails.

    The message carries the underlying error text so the API can report it.
    """
