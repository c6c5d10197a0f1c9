import os
import tempfile

_default_test_secret = "test-jwt-secret-for-pytest-only-0000000000000000"
if len(os.environ.get("JWT_SECRET", "")) < 32:
    os.environ["JWT_SECRET"] = _default_test_secret

os.environ.setdefault("ENV", "test")

import subprocess
import uuid
from pathlib import Path

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.engine import make_url

# Postgres when DATABASE_URL points at one; a throwaway SQLite file otherwise.
TEST_DATABASE_URL = os.getenv(
    "DATABASE_URL",
    "sqlite:///" + os.path.join(tempfile.gettempdir(), "forkliftops_test.db"),
)
os.environ["DATABASE_URL"] = TEST_DATABASE_URL

from forkliftops import database  # noqa: E402
from forkliftops import models  # noqa: E402,F401
from forkliftops.models.forklift import Forklift  # noqa: E402
from forkliftops.services import job_service  # noqa: E402


def _is_postgres_url(database_url: str) -> bool:
    return make_url(database_url).drivername.startswith("postgresql")


def _ensure_database_exists(database_url: str) -> None:
    url = make_url(database_url)

    if not url.drivername.startswith("postgresql"):
        return

    db_name = url.database
    admin_url = url.set(database="postgres")
    admin_engine = create_engine(admin_url, isolation_level="AUTOCOMMIT")

    try:
        with admin_engine.connect() as conn:
            exists = conn.execute(
                text("SELECT 1 FROM pg_database WHERE datname = :name"),
                {"name": db_name},
            ).scalar()
            if not exists:
                safe_db_name = db_name.replace('"', '""')
                conn.execute(text(f'CREATE DATABASE "{safe_db_name}"'))
    finally:
        admin_engine.dispose()


@pytest.fixture(scope="session", autouse=True)
def _prepare_test_database() -> None:
    database.configure_database()

    if _is_postgres_url(TEST_DATABASE_URL):
        _ensure_database_exists(TEST_DATABASE_URL)

        env = os.environ.copy()
        env["DATABASE_URL"] = TEST_DATABASE_URL

        subprocess.run(
            ["alembic", "upgrade", "head"],
            check=True,
            cwd=Path(__file__).resolve().parents[2],
            env=env,
        )
    else:
        database.Base.metadata.drop_all(bind=database.engine)
        database.Base.metadata.create_all(bind=database.engine)


def _clear_tables() -> None:
    if _is_postgres_url(TEST_DATABASE_URL):
        with database.engine.begin() as conn:
            rows = conn.execute(
                text(
                    """
                    SELECT tablename
                    FROM pg_tables
                    WHERE schemaname = 'public'
                      AND tablename <> 'alembic_version'
                    """
                )
            ).fetchall()

            table_names = [row[0] for row in rows]
            if table_names:
                quoted = ", ".join([f'"public"."{name}"' for name in table_names])
                conn.execute(text(f"TRUNCATE TABLE {quoted} RESTART IDENTITY CASCADE"))
        return

    with database.engine.begin() as conn:
        for table in reversed(database.Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture(scope="function", autouse=True)
def _truncate_tables_between_tests():
    _clear_tables()
    yield
    _clear_tables()


@pytest.fixture
def forklift_factory():
    def _make(**overrides) -> Forklift:
        values = {
            "id": f"fl-{uuid.uuid4().hex[:8]}",
            "customer_id": "cust-1",
            "serial_number": "SN-1001",
            "make": "Toyota",
            "model": "8FBN25",
            "average_daily_usage": 8.0,
        }
        values.update(overrides)

        db = database.SessionLocal()
        try:
            row = Forklift(**values)
            db.add(row)
            db.commit()
            db.refresh(row)
            return row
        finally:
            db.close()

    return _make


@pytest.fixture
def job_factory():
    def _make(**overrides):
        values = {
            "customer_id": "cust-1",
            "job_type": "Repair",
            "actor_id": "dispatcher-1",
            "actor_role": "admin",
            "title": "Hydraulic leak",
        }
        values.update(overrides)
        return job_service.create_job(**values)

    return _make
