"""Typed response envelopes shared by every endpoint."""
from __future__ import annotations

from typing import List, Union

from fastapi import status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .models import User


class UserPayload(BaseModel):
    id: int
    name: str


class UsersEnvelope(BaseModel):
    status: int = status.HTTP_200_OK
    users: List[UserPayload]


class MessageEnvelope(BaseModel):
    status: int
    message: str


class ErrorEnvelope(BaseModel):
    status: int
    error: str


Envelope = Union[UsersEnvelope, MessageEnvelope, ErrorEnvelope]


def users_envelope(users: List[User]) -> UsersEnvelope:
    return UsersEnvelope(users=[UserPayload(id=user.id, name=user.name) for user in users])


def error_envelope(message: str, status_code: int) -> ErrorEnvelope:
    return ErrorEnvelope(status=status_code, error=message)


def write_envelope(envelope: Envelope, *, headers: dict | None = None) -> JSONResponse:
    """Serialize an envelope using its ``status`` as the HTTP status code."""

    return JSONResponse(
        status_code=envelope.status,
        content=envelope.model_dump(),
        headers=headers,
    )


__all__ = [
    "Envelope",
    "ErrorEnvelope",
    "MessageEnvelope",
    "UserPayload",
    "UsersEnvelope",
    "error_envelope",
    "users_envelope",
    "write_envelope",
]
