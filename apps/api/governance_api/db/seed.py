"""Seed data for development and testing."""

from datetime import date

from sqlalchemy.orm import Session

from governance_api.ledger.store import EventDraft, LedgerStore
from governance_api.models import Job, JobDocument, JobRiskScore, MitigationItem

DEMO_ORGANIZATION_ID = "org-demo"
DEMO_JOB_ID = "job-demo-001"
DEMO_USER_ID = "user-demo-admin"


def seed_jobs(db: Session):
    """Seed a demo job with a risk score, controls and evidence."""
    job = db.query(Job).filter(Job.id == DEMO_JOB_ID).first()
    if job:
        print(f"✓ Demo job already exists: {job.id}")
        return job

    job = Job(
        id=DEMO_JOB_ID,
        organization_id=DEMO_ORGANIZATION_ID,
        client_name="Harbor Point Property Management",
        location="1200 Wharf Rd, Building C",
        job_type="roof_repair",
        status="in_progress",
        description="Replace damaged membrane on the north section of the roof.",
        start_date=date(2026, 3, 2),
        end_date=date(2026, 3, 6),
        created_by=DEMO_USER_ID,
    )
    db.add(job)
    db.flush()

    db.add(
        JobRiskScore(
            job_id=job.id,
            overall_score=72.5,
            risk_level="high",
            factors=[
                {"code": "FALL_HEIGHT", "name": "Work at height", "severity": "high", "weight": 30},
                {"code": "WEATHER", "name": "Wind exposure", "severity": "medium", "weight": 15},
            ],
        )
    )
    db.add_all(
        [
            MitigationItem(job_id=job.id, title="Install guardrails on open edges"),
            MitigationItem(job_id=job.id, title="Harness inspection before each shift"),
            MitigationItem(job_id=job.id, title="Check forecast for gusts above 25 mph"),
        ]
    )
    db.add(
        JobDocument(
            job_id=job.id,
            name="north-roof-before.jpg",
            doc_type="photo",
            storage_path=f"{DEMO_ORGANIZATION_ID}/{job.id}/north-roof-before.jpg",
        )
    )
    db.commit()
    print(f"✓ Created demo job: {job.id} (organization {DEMO_ORGANIZATION_ID})")
    return job


def seed_ledger(db: Session, job: Job):
    """Record the demo job's first governance event."""
    LedgerStore(db).append(
        DEMO_ORGANIZATION_ID,
        EventDraft(
            event_type="assignment.created",
            actor_id=DEMO_USER_ID,
            target_type="job",
            target_id=job.id,
            metadata={"assignee_id": "user-demo-crew-lead", "role": "crew_lead"},
            idempotency_key=f"seed:assignment:{job.id}",
        ),
    )
    print("✓ Ledger seeded")


def seed_all(db: Session):
    """Seed all data."""
    print("Seeding database...")
    job = seed_jobs(db)
    seed_ledger(db, job)
    print("✓ Seeding complete!")
