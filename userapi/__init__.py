"""Core package for the users HTTP service."""

from __future__ import annotations

from typing import Any

from .database import PersistenceError, UserStore


def create_app(*args: Any, **kwargs: Any):
    """Factory function that returns the users API application."""

    from .service import create_app as _create_app

    return _create_app(*args, **kwargs)


__all__ = [
    "PersistenceError",
    "UserStore",
    "create_app",
]
