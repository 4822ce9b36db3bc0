"""
Database engine and session management.
"""
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from listing_scout.logger import logger


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""

    pass


class Database:
    """Engine plus session factory for one database URL.

    ``session()`` is transactional: it commits when the block exits cleanly
    and rolls back when it raises.
    """

    def __init__(self, url: str, echo: bool = False) -> None:
        self.url = url
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        self.engine: Engine = create_engine(url, echo=echo, future=True, connect_args=connect_args)
        if url.startswith("sqlite"):
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)
        self._session_factory = sessionmaker(self.engine, expire_on_commit=False)
        logger.debug("Database engine created for %s", self.engine.url.render_as_string(hide_password=True))

    def create_all(self) -> None:
        # models must be imported so their tables are registered on Base.metadata
        from listing_scout.db import models  # noqa: F401

        Base.metadata.create_all(self.engine)

    @contextmanager
    def session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()


def _enable_sqlite_foreign_keys(dbapi_connection, _record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


__all__ = ["Base", "Database"]
