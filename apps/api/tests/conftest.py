from __future__ import annotations

from typing import Generator
from uuid import UUID, uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from crm.main import app
from crm.common.models import (
    Base,
    Batch,
    CallList,
    Course,
    Group,
    Student,
    StudentPhone,
)
from crm.imports.matching import normalize_phone

# Use in-memory SQLite for tests (faster than Postgres for unit tests)
TEST_DB_URL = "sqlite:///:memory:"
engine = create_engine(
    TEST_DB_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# pysqlite does not emit BEGIN itself, which breaks SAVEPOINT; let
# SQLAlchemy own transaction boundaries instead
@event.listens_for(engine, "connect")
def _disable_pysqlite_transactions(dbapi_connection, connection_record):
    dbapi_connection.isolation_level = None


@event.listens_for(engine, "begin")
def _emit_begin(conn):
    conn.exec_driver_sql("BEGIN")


TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """
    Create a fresh database for each test.

    Tables are dropped and recreated after every test (in-memory, so this
    is fast).
    """
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def workspace_id() -> str:
    """Return a valid UUID string for testing."""
    return "12345678-1234-5678-1234-567812345678"


@pytest.fixture
def user_id() -> UUID:
    return UUID("87654321-4321-8765-4321-876543218765")


@pytest.fixture
def client(db: Session, workspace_id: str, monkeypatch) -> Generator[TestClient, None, None]:
    """Create a test client with dependency overrides."""
    from crm.core.config import settings

    monkeypatch.setattr(settings, "workspace_id", workspace_id)

    def get_test_db():
        yield db

    from crm.common.db import get_db

    app.dependency_overrides[get_db] = get_test_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def access_token(user_id: UUID) -> str:
    from crm.auth.utils import create_access_token

    return create_access_token({"sub": str(user_id), "user_id": str(user_id)})


@pytest.fixture
def auth_headers(access_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {access_token}"}


@pytest.fixture
def batch(db: Session, workspace_id: str) -> Batch:
    batch = Batch(id=uuid4(), workspace_id=UUID(workspace_id), name="Spring 2026")
    db.add(batch)
    db.commit()
    db.refresh(batch)
    return batch


@pytest.fixture
def group(db: Session, workspace_id: str, batch: Batch) -> Group:
    group = Group(
        id=uuid4(),
        workspace_id=UUID(workspace_id),
        name="Evening Cohort",
        batch_id=batch.id,
    )
    db.add(group)
    db.commit()
    db.refresh(group)
    return group


@pytest.fixture
def course(db: Session, workspace_id: str) -> Course:
    course = Course(id=uuid4(), workspace_id=UUID(workspace_id), name="Data Analytics")
    db.add(course)
    db.commit()
    db.refresh(course)
    return course


@pytest.fixture
def call_list(db: Session, workspace_id: str) -> CallList:
    """A call list without group or batch."""
    call_list = CallList(
        id=uuid4(),
        workspace_id=UUID(workspace_id),
        name="Follow-ups",
    )
    db.add(call_list)
    db.commit()
    db.refresh(call_list)
    return call_list


@pytest.fixture
def make_student(db: Session, workspace_id: str):
    """Factory for existing students with optional phones."""

    def _make(name: str, email: str | None = None, phones: list[str] | None = None) -> Student:
        student = Student(
            id=uuid4(),
            workspace_id=UUID(workspace_id),
            name=name,
            email=email,
            tags=[],
        )
        for i, phone in enumerate(phones or []):
            student.phones.append(
                StudentPhone(
                    workspace_id=UUID(workspace_id),
                    phone=phone,
                    normalized_phone=normalize_phone(phone),
                    is_primary=(i == 0),
                )
            )
        db.add(student)
        db.commit()
        db.refresh(student)
        return student

    return _make
