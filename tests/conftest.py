"""Pytest bootstrap configuration.

Environment variables must be set before test collection imports any
module that reads application settings or builds the database engine.
"""
import os
import tempfile
from pathlib import Path

import pytest

_DB_PATH = Path(tempfile.mkdtemp(prefix="appearance-tests-")) / "test.db"

os.environ["DEBUG"] = "false"
os.environ["DATABASE__URL"] = f"sqlite+aiosqlite:///{_DB_PATH}"
os.environ["REALTIME_BROKER"] = "inmemory"
os.environ["REALTIME_WS_IDLE_PING_INTERVAL_S"] = "0"
os.environ["LOG_REQUEST_BODY_ENABLE_BY_DEFAULT"] = "false"
os.environ.pop("REDIS__URL", None)

from sqlalchemy import create_engine, delete  # noqa: E402

from infrastructure.models import Base, UserModel  # noqa: E402


@pytest.fixture(scope="session")
def sync_engine():
    """Synchronous engine on the same SQLite file, used only for seeding."""
    engine = create_engine(f"sqlite:///{_DB_PATH}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def seed_users(sync_engine):
    """Reset the users table and insert the given rows."""

    def _seed(*rows: dict) -> None:
        with sync_engine.begin() as conn:
            conn.execute(delete(UserModel.__table__))
            if rows:
                conn.execute(UserModel.__table__.insert(), list(rows))

    _seed()
    return _seed


@pytest.fixture
def fetch_user(sync_engine):
    def _fetch(user_id: int) -> dict:
        with sync_engine.connect() as conn:
            row = conn.execute(
                UserModel.__table__.select().where(UserModel.__table__.c.id == user_id)
            ).mappings().one()
            return dict(row)

    return _fetch


@pytest.fixture
def client(seed_users):
    from fastapi.testclient import TestClient
    from main import app

    with TestClient(app) as c:
        yield c
