"""Database helper utilities for ensuring schema consistency."""
from __future__ import annotations

from flask import current_app
from sqlalchemy import inspect

from .extensions import db


def ensure_database_schema() -> None:
    """Create any tables missing from the database.

    Light-weight enough to run on every application start.  Column changes to
    existing tables go through Flask-Migrate.
    """

    existing = set(inspect(db.engine).get_table_names())
    missing = set(db.metadata.tables).difference(existing)
    if missing:
        current_app.logger.info("Creating missing tables: %s", ", ".join(sorted(missing)))
        db.create_all()
