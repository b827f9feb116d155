"""Storage backend selection and transaction helpers.

The application talks to the database exclusively through the Flask-SQLAlchemy
session and :func:`atomic`.  Which concrete store sits underneath is decided
once, from configuration, by :func:`select_backend`:

* no ``DATABASE_URL`` -> :class:`LocalFileBackend` (SQLite file under
  ``instance/``, or in-memory for tests)
* ``DATABASE_URL`` present -> :class:`ManagedServerBackend` (PostgreSQL)
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from .extensions import db

LOGGER = logging.getLogger(__name__)


class StorageBackend:
    """Describe how the SQLAlchemy engine is prepared for one kind of store."""

    name = "base"

    def __init__(self, database_uri: str) -> None:
        self.database_uri = database_uri

    def engine_options(self) -> Dict[str, Any]:
        return {}

    def prepare_engine(self, engine: Engine) -> None:
        """Hook invoked once the engine exists, before the first connection."""

    def __repr__(self) -> str:  # pragma: no cover
        return f"<{type(self).__name__} {self.name}>"


class LocalFileBackend(StorageBackend):
    name = "sqlite"

    @property
    def in_memory(self) -> bool:
        return ":memory:" in self.database_uri or self.database_uri.rstrip("/") == "sqlite:"

    def prepare_engine(self, engine: Engine) -> None:
        use_wal = not self.in_memory

        @event.listens_for(engine, "connect")
        def _set_sqlite_pragmas(dbapi_connection, _connection_record):  # pragma: no cover - driver hook
            cursor = dbapi_connection.cursor()
            # SQLite ignores ON DELETE clauses unless foreign keys are switched on per connection.
            cursor.execute("PRAGMA foreign_keys=ON")
            if use_wal:
                cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()


class ManagedServerBackend(StorageBackend):
    name = "postgresql"

    def __init__(self, database_uri: str) -> None:
        super().__init__(normalize_database_url(database_uri))

    def engine_options(self) -> Dict[str, Any]:
        return {"pool_pre_ping": True, "pool_recycle": 300}


def normalize_database_url(url: str) -> str:
    # Hosted providers still hand out the pre-SQLAlchemy-1.4 scheme.
    if url.startswith("postgres://"):
        return "postgresql://" + url[len("postgres://"):]
    return url


def select_backend(database_url: Optional[str], default_uri: Optional[str] = None) -> StorageBackend:
    """Pick the storage backend from the presence of a connection string."""

    if database_url:
        return ManagedServerBackend(database_url)
    return LocalFileBackend(default_uri or "sqlite:///:memory:")


@contextmanager
def atomic() -> Iterator[Session]:
    """Run a block of writes as one transaction.

    The session is committed when the block exits normally. Any exception rolls
    back everything written inside the block and is re-raised.
    """

    session = db.session
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
