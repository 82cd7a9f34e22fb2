"""
Shared test fixtures.

Sets up an isolated SQLite database so tests never touch the real
one. Each test gets fresh tables and a session that rolls back
afterwards. In-process state (undo history, pending writes) is reset
between tests too, since user ids repeat once the tables are dropped.
"""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from gull_ledger.main import app
from gull_ledger.api.dependencies import pending_writes, reset_histories
from gull_ledger.models.base import Base, enable_sqlite_savepoints, get_db


TEST_DATABASE_URL = "sqlite:///./test.db"

engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
)
enable_sqlite_savepoints(engine)

TestSessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
)


@pytest.fixture(autouse=True)
def setup_database():
    """Create all tables before each test, drop them after."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def reset_process_state():
    reset_histories()
    pending_writes.clear()
    yield
    reset_histories()
    pending_writes.clear()


@pytest.fixture
def db_session():
    """Provide a database session for direct service testing."""
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def client(db_session):
    """
    Provide a test client bound to the test database.

    get_db is overridden so the app uses the test session.
    """
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()
