"""Pytest configuration and fixtures."""

import os
from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from governance_api.db.base import Base
from governance_api.db.session import get_db
from governance_api.main import app
from governance_api.models import Job, JobDocument, JobRiskScore, MitigationItem

# Use test database URL from environment or default to SQLite in-memory
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")

ORG_ID = "org-test"
OTHER_ORG_ID = "org-other"
ADMIN_ID = "user-admin"
CREATOR_ID = "user-creator"
MEMBER_ID = "user-member"

SIGNATURE_SVG = '<svg viewBox="0 0 400 100"><path d="M10 50 L120 20 L200 70 L390 40"/></svg>'


@pytest.fixture(scope="function")
def engine():
    if TEST_DATABASE_URL.startswith("sqlite"):
        # SQLite in-memory for fast unit tests
        engine = create_engine(
            TEST_DATABASE_URL,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        # PostgreSQL for integration tests
        engine = create_engine(TEST_DATABASE_URL)

    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture(scope="function")
def db(engine):
    """Create a test database session."""
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(db: Session):
    """TestClient sharing the test session."""

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_db, None)


def actor_headers(user_id: str = CREATOR_ID, organization_id: str = ORG_ID, role: str = "member") -> dict:
    return {"x-user-id": user_id, "x-organization-id": organization_id, "x-user-role": role}


@pytest.fixture
def admin_headers() -> dict:
    return actor_headers(ADMIN_ID, role="admin")


@pytest.fixture
def creator_headers() -> dict:
    return actor_headers(CREATOR_ID)


def make_job(db: Session, job_id: str = "job-1", organization_id: str = ORG_ID, created_by: str = CREATOR_ID) -> Job:
    job = Job(
        id=job_id,
        organization_id=organization_id,
        client_name="Acme Facilities",
        location="41 Dock St",
        job_type="electrical",
        status="in_progress",
        description="Panel replacement",
        start_date=date(2026, 5, 4),
        end_date=date(2026, 5, 8),
        created_by=created_by,
    )
    db.add(job)
    db.flush()
    db.add(
        JobRiskScore(
            job_id=job.id,
            overall_score=64.25,
            risk_level="high",
            factors=[{"code": "LIVE_WORK", "name": "Live electrical work", "severity": "high", "weight": 25}],
        )
    )
    db.add_all(
        [
            MitigationItem(job_id=job.id, title="Lockout/tagout"),
            MitigationItem(job_id=job.id, title="Arc flash PPE", done=True),
        ]
    )
    db.add(JobDocument(job_id=job.id, name="panel.jpg", doc_type="photo", sha256="ab" * 32))
    db.commit()
    return job


@pytest.fixture
def job(db: Session) -> Job:
    return make_job(db)


def signature_payload(role: str, name: str = "Pat Signer", **overrides) -> dict:
    payload = {
        "signer_name": name,
        "signer_title": "Site Supervisor",
        "signature_role": role,
        "signature_svg": SIGNATURE_SVG,
        "attestation_text": "I attest that this report is accurate.",
    }
    payload.update(overrides)
    return payload
