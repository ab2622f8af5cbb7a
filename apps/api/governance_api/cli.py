"""CLI commands for the Governance API."""

import json

import click

from governance_api.db.seed import seed_all
from governance_api.db.session import SessionLocal
from governance_api.errors import GovernanceError
from governance_api.ledger.store import LedgerStore
from governance_api.ledger.verifier import ERROR, LedgerIntegrityService
from governance_api.reports.tokens import get_print_token_signer


@click.group()
def cli():
    """Governance API CLI."""
    pass


@cli.command()
def seed():
    """Seed initial data."""
    click.echo("Seeding initial data...")
    db = SessionLocal()
    try:
        seed_all(db)
        click.echo("✓ Seed data created.")
    except GovernanceError as e:
        click.echo(f"✗ Error seeding data: {e}", err=True)
        db.rollback()
    finally:
        db.close()


@cli.command("verify-ledger")
@click.argument("organization_id")
@click.option("--full", is_flag=True, help="Re-verify from genesis instead of the stored checkpoint.")
def verify_ledger(organization_id, full):
    """Verify an organization's hash chain."""
    db = SessionLocal()
    try:
        result = LedgerIntegrityService(db).check(organization_id, resume=not full)
    finally:
        db.close()

    click.echo(json.dumps(result.to_dict(), indent=2, sort_keys=True))
    if result.status == ERROR:
        raise SystemExit(1)


@cli.command("list-events")
@click.argument("organization_id")
@click.option("--cursor", default=0, show_default=True, help="Start after this sequence.")
@click.option("--limit", default=50, show_default=True)
def list_events(organization_id, cursor, limit):
    """Print ledger events in chain order."""
    db = SessionLocal()
    try:
        for i, event in enumerate(LedgerStore(db).list_since(organization_id, cursor=cursor)):
            if i >= limit:
                break
            click.echo(f"{event.sequence:>6}  {event.created_at.isoformat()}  {event.event_type:<28} {event.hash[:16]}")
    finally:
        db.close()


@cli.command("issue-print-token")
@click.argument("organization_id")
@click.argument("job_id")
@click.option("--run-id", default=None, help="Scope the token to one report run.")
@click.option("--ttl", default=None, type=int, help="Lifetime in seconds.")
def issue_print_token(organization_id, job_id, run_id, ttl):
    """Issue a print token for the headless renderer."""
    click.echo(get_print_token_signer().issue(job_id, organization_id, report_run_id=run_id, ttl=ttl))


if __name__ == "__main__":
    cli()
