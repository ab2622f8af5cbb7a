"""Tests for report and ledger exports."""

import csv
import io
import json

import pytest
from reportlab.graphics.shapes import PolyLine
from sqlalchemy.orm import Session

from conftest import ADMIN_ID, CREATOR_ID, ORG_ID, signature_payload
from governance_api.auth import Actor
from governance_api.ledger.hashing import hash_bytes
from governance_api.ledger.store import EventDraft, LedgerStore
from governance_api.reports.exports import (
    CSV_COLUMNS,
    ledger_events_csv,
    parse_path,
    parse_signature_strokes,
    render_print_html,
    report_run_json,
    report_run_pdf,
    signature_drawing,
)
from governance_api.reports.runs import ReportRunService
from governance_api.reports.signatures import SignatureBinder, SignatureRequest


@pytest.fixture
def run(db: Session, job):
    run, _ = ReportRunService(db).create_run(ORG_ID, job.id, "insurance", CREATOR_ID, status="ready_for_signatures")
    return run


def test_json_export_is_the_hashed_payload(run):
    body = report_run_json(run)
    assert hash_bytes(body) == run.data_hash
    assert json.loads(body)["meta"]["packet_type"] == "insurance"


def test_ledger_csv_has_header_and_chain_order(db: Session):
    store = LedgerStore(db)
    for n in range(3):
        store.append(ORG_ID, EventDraft(event_type="job.flagged_for_review", actor_id=f"user-{n}", target_type="job", target_id="job-1"))

    rows = list(csv.reader(io.StringIO(ledger_events_csv(store.list_since(ORG_ID)))))
    assert tuple(rows[0]) == CSV_COLUMNS
    assert [row[1] for row in rows[1:]] == ["1", "2", "3"]
    assert rows[2][CSV_COLUMNS.index("previous_hash")] == rows[1][CSV_COLUMNS.index("hash")]


def test_pdf_export_renders(db: Session, run):
    SignatureBinder(db).sign(
        run.id,
        SignatureRequest(**signature_payload("approved_by")),
        Actor(user_id=ADMIN_ID, organization_id=ORG_ID, role="admin"),
    )
    signatures = SignatureBinder(db).list_signatures(ORG_ID, run.id)

    content = report_run_pdf(run, signatures)
    assert content.startswith(b"%PDF")
    assert len(content) > 1000


@pytest.mark.parametrize(
    "d, expected",
    [
        ("M10 50 L120 20 L200 70", [[(10.0, 50.0), (120.0, 20.0), (200.0, 70.0)]]),
        ("M10,50 120,20", [[(10.0, 50.0), (120.0, 20.0)]]),
        ("m10 10 20 0 0 20 z", [[(10.0, 10.0), (30.0, 10.0), (30.0, 30.0), (10.0, 10.0)]]),
        ("M0 0 H10 V5 h-4 v-2", [[(0.0, 0.0), (10.0, 0.0), (10.0, 5.0), (6.0, 5.0), (6.0, 3.0)]]),
        ("M0 0 L1 1 M5 5 L6 6", [[(0.0, 0.0), (1.0, 1.0)], [(5.0, 5.0), (6.0, 6.0)]]),
        ("M0 0 C1 1 2 2 3 3", [[(0.0, 0.0), (3.0, 3.0)]]),
        ("M5 5", []),
        ("", []),
    ],
)
def test_parse_path(d, expected):
    assert parse_path(d) == expected


def test_parse_signature_strokes_reads_paths_and_polylines():
    svg = '<svg><path d="M0 0 L5 5"/><polyline points="1,1 2,2 3,1"/></svg>'
    assert parse_signature_strokes(svg) == [
        [(0.0, 0.0), (5.0, 5.0)],
        [(1.0, 1.0), (2.0, 2.0), (3.0, 1.0)],
    ]


def test_signature_drawing_flips_y_axis():
    drawing = signature_drawing('<svg viewBox="0 0 10 10"><path d="M0 0 L10 10"/></svg>', width=100, height=100)
    lines = [shape for shape in drawing.contents if isinstance(shape, PolyLine)]
    assert len(lines) == 1
    # Top-left in SVG space is top-left on the page, bottom-right stays bottom-right.
    assert lines[0].points == [0.0, 100.0, 100.0, 0.0]


def test_print_html_escapes_payload_and_embeds_signatures(db: Session, run):
    SignatureBinder(db).sign(
        run.id,
        SignatureRequest(**signature_payload("approved_by", name="<b>Pat</b>")),
        Actor(user_id=ADMIN_ID, organization_id=ORG_ID, role="admin"),
    )
    html = render_print_html(run, SignatureBinder(db).list_signatures(ORG_ID, run.id))

    assert "Insurance Packet" in html
    assert run.data_hash in html
    assert '<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 400 100">' in html
    assert 'd="M10 50 L120 20 L200 70 L390 40"' in html
    assert "&lt;b&gt;Pat&lt;/b&gt;" in html
    assert "<b>Pat</b>" not in html


def test_print_html_without_signatures(run):
    html = render_print_html(run, [])
    assert "No signatures recorded." in html
