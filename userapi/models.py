"""Domain models for the users service."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class User:
    """Represents a user row stored in the ``users`` table."""

    id: int
    name: str


__all__ = ["User"]
