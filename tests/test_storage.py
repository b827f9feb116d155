import pytest

from sqlalchemy import inspect

from inkwell.db_utils import ensure_database_schema
from inkwell.extensions import db
from inkwell.models import Project, WorldRule
from inkwell.storage import (
    LocalFileBackend,
    ManagedServerBackend,
    atomic,
    normalize_database_url,
    select_backend,
)


def test_select_backend_uses_local_file_without_url():
    backend = select_backend(None, "sqlite:///instance/inkwell.db")

    assert isinstance(backend, LocalFileBackend)
    assert backend.database_uri == "sqlite:///instance/inkwell.db"
    assert not backend.in_memory
    assert backend.engine_options() == {}


def test_select_backend_uses_managed_server_with_url():
    backend = select_backend("postgres://user:pw@db.example.com:5432/inkwell")

    assert isinstance(backend, ManagedServerBackend)
    assert backend.database_uri == "postgresql://user:pw@db.example.com:5432/inkwell"
    assert backend.engine_options()["pool_pre_ping"] is True


def test_normalize_database_url_keeps_other_schemes():
    assert normalize_database_url("postgresql://host/db") == "postgresql://host/db"


def test_in_memory_backend_detected():
    assert select_backend(None, "sqlite:///:memory:").in_memory


def test_atomic_rolls_back_on_error(user):
    with pytest.raises(RuntimeError):
        with atomic() as session:
            session.add(Project(owner=user, title="Doomed"))
            session.flush()
            raise RuntimeError("crash between steps")

    assert Project.query.count() == 0


def test_atomic_commits(user):
    with atomic() as session:
        session.add(Project(owner=user, title="Kept"))

    db.session.expire_all()
    assert Project.query.count() == 1


def test_foreign_keys_enforced(app_instance):
    assert db.session.execute(db.text("PRAGMA foreign_keys")).scalar() == 1


def test_schema_check_recreates_missing_tables(app_instance):
    WorldRule.__table__.drop(db.engine)
    assert "world_rules" not in inspect(db.engine).get_table_names()

    ensure_database_schema()

    assert "world_rules" in inspect(db.engine).get_table_names()
