"""Pooled relational persistence for user records."""
from __future__ import annotations

import logging
from typing import List

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import QueuePool

from .config import PoolSettings
from .models import User

logger = logging.getLogger("userapi.database")

_LIST_USERS = text("SELECT id, name FROM users")
_USERNAME_EXISTS = text("SELECT EXISTS(SELECT 1 FROM users WHERE name = :name)")
_INSERT_USER = text("INSERT INTO users (name) VALUES (:name)")


class PersistenceError(RuntimeError):
    """Raised when the database rejects or fails a query.

    The message is safe to show to clients; the driver error is chained as
    ``__cause__``.
    """


def _pool_arguments(pool: PoolSettings) -> dict:
    pool_size = min(pool.max_idle, pool.max_open)
    return {
        "poolclass": QueuePool,
        "pool_size": pool_size,
        "max_overflow": pool.max_open - pool_size,
        "pool_recycle": pool.max_lifetime,
        "pool_timeout": pool.timeout,
    }


class UserStore:
    """Query interface over the ``users`` table backed by a bounded pool."""

    def __init__(self, database_url: str, *, pool: PoolSettings | None = None) -> None:
        if pool is None:
            pool = PoolSettings()
        try:
            url = make_url(database_url)
            connect_args = {}
            if url.get_backend_name() == "sqlite":
                connect_args["check_same_thread"] = False
            self._display_url = url.render_as_string(hide_password=True)
            self._engine: Engine = create_engine(
                url,
                connect_args=connect_args,
                **_pool_arguments(pool),
            )
        except (SQLAlchemyError, ImportError) as exc:
            # ImportError covers a configured driver that is not installed.
            raise PersistenceError("Failed to open the database pool") from exc

    @property
    def display_url(self) -> str:
        return self._display_url

    def ping(self) -> None:
        """Open a pooled connection and run a trivial query."""

        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            raise PersistenceError("Failed to connect to the database") from exc

    def close(self) -> None:
        """Dispose of the pool, closing every checked-in connection."""

        self._engine.dispose()
        logger.info("Database pool closed for %s", self._display_url)

    def __enter__(self) -> "UserStore":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------
    def list_users(self) -> List[User]:
        """Return every stored user in storage order.

        A failure while reading rows discards everything read so far.
        """

        try:
            conn = self._engine.connect()
        except SQLAlchemyError as exc:
            raise PersistenceError("Failed to query users") from exc

        with conn:
            try:
                result = conn.execute(_LIST_USERS)
            except SQLAlchemyError as exc:
                raise PersistenceError("Failed to query users") from exc

            try:
                return [self._row_to_user(row) for row in result]
            except (SQLAlchemyError, TypeError, ValueError) as exc:
                raise PersistenceError("Error iterating users") from exc

    def username_exists(self, name: str) -> bool:
        try:
            with self._engine.connect() as conn:
                found = conn.execute(_USERNAME_EXISTS, {"name": name}).scalar()
        except SQLAlchemyError as exc:
            raise PersistenceError("Error checking username") from exc
        return bool(found)

    def create_user(self, name: str) -> None:
        """Insert a user row; the database assigns the id."""

        try:
            with self._engine.begin() as conn:
                conn.execute(_INSERT_USER, {"name": name})
        except SQLAlchemyError as exc:
            raise PersistenceError("Failed to create user") from exc

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _row_to_user(self, row) -> User:
        if row.id is None or row.name is None:
            raise ValueError("users row holds a NULL id or name")
        return User(id=int(row.id), name=str(row.name))


__all__ = ["PersistenceError", "UserStore"]
