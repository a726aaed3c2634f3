"""HTTP API for listing and creating users."""

from __future__ import annotations

import logging

import anyio
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.datastructures import FormData
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.formparsers import MultiPartException

from .database import PersistenceError, UserStore
from .responses import MessageEnvelope, error_envelope, users_envelope, write_envelope

logger = logging.getLogger("userapi.service")

USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 20

_ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def validate_username(name: str) -> str | None:
    """Return an error message for an unacceptable username, else ``None``."""

    if not name:
        return "Username is required"
    if not USERNAME_MIN_LENGTH <= len(name) <= USERNAME_MAX_LENGTH:
        return (
            f"Username must be between {USERNAME_MIN_LENGTH} and "
            f"{USERNAME_MAX_LENGTH} characters"
        )
    return None


def _form_value(form: FormData, request: Request, key: str) -> str:
    # Body fields win over the query string; uploaded files are ignored.
    value = form.get(key)
    if isinstance(value, str):
        return value
    return request.query_params.get(key, "")


def _persistence_failure(exc: PersistenceError) -> JSONResponse:
    logger.error("%s: %s", exc, exc.__cause__ or exc)
    return write_envelope(error_envelope(str(exc), status.HTTP_500_INTERNAL_SERVER_ERROR))


def create_app(*, store: UserStore) -> FastAPI:
    app = FastAPI(
        title="Users API",
        description="List and create users stored in a relational database",
        version="1.0.0",
    )
    app.state.store = store

    @app.api_route("/users", methods=["GET", "HEAD"])
    async def list_users() -> JSONResponse:
        try:
            users = await anyio.to_thread.run_sync(store.list_users)
        except PersistenceError as exc:
            return _persistence_failure(exc)
        return write_envelope(users_envelope(users))

    @app.api_route("/create", methods=_ALL_METHODS)
    async def create_user(request: Request) -> JSONResponse:
        if request.method != "POST":
            return write_envelope(
                error_envelope(
                    "Invalid request method. Only POST is allowed",
                    status.HTTP_405_METHOD_NOT_ALLOWED,
                ),
                headers={"Allow": "POST"},
            )

        try:
            form = await request.form()
        except (StarletteHTTPException, MultiPartException, ValueError) as exc:
            logger.debug("Rejected unparsable form body: %s", exc)
            return write_envelope(
                error_envelope("Failed to parse form data", status.HTTP_400_BAD_REQUEST)
            )

        username = _form_value(form, request, "name")
        problem = validate_username(username)
        if problem is not None:
            return write_envelope(error_envelope(problem, status.HTTP_400_BAD_REQUEST))

        try:
            exists = await anyio.to_thread.run_sync(store.username_exists, username)
        except PersistenceError as exc:
            return _persistence_failure(exc)
        if exists:
            return write_envelope(
                error_envelope("Username already exists", status.HTTP_409_CONFLICT)
            )

        # The existence check and the insert are separate statements, so two
        # concurrent requests for the same name can both succeed.
        try:
            await anyio.to_thread.run_sync(store.create_user, username)
        except PersistenceError as exc:
            return _persistence_failure(exc)

        logger.info("Created user %s", username)
        return write_envelope(
            MessageEnvelope(
                status=status.HTTP_201_CREATED,
                message=f"User {username} created successfully",
            )
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(_: Request, exc: StarletteHTTPException) -> JSONResponse:
        return write_envelope(
            error_envelope(str(exc.detail), exc.status_code),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(_: Request, exc: RequestValidationError) -> JSONResponse:
        logger.debug("Request validation failed: %s", exc.errors())
        return write_envelope(error_envelope("Invalid request", status.HTTP_400_BAD_REQUEST))

    @app.exception_handler(Exception)
    async def handle_unexpected_error(_: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error while serving request", exc_info=exc)
        return write_envelope(
            error_envelope("Internal server error", status.HTTP_500_INTERNAL_SERVER_ERROR)
        )

    return app


__all__ = ["USERNAME_MAX_LENGTH", "USERNAME_MIN_LENGTH", "create_app", "validate_username"]
