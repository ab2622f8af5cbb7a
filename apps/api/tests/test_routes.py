"""API tests for the ledger, report and print routes."""

import csv
import hashlib
import inspect
import io

from fastapi.routing import APIRoute
from fastapi.testclient import TestClient

from conftest import ADMIN_ID, MEMBER_ID, OTHER_ORG_ID, actor_headers, signature_payload
from governance_api.main import app

MEMBER_HEADERS = actor_headers(MEMBER_ID)


def _create_run(client: TestClient, headers: dict, job_id: str = "job-1", status: str = "ready_for_signatures") -> dict:
    response = client.post("/v1/reports/runs", json={"job_id": job_id, "status": status}, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["data"]


def _sign_all(client: TestClient, run_id: str, creator_headers: dict, admin_headers: dict):
    for role, headers in (
        ("prepared_by", creator_headers),
        ("reviewed_by", MEMBER_HEADERS),
        ("approved_by", admin_headers),
    ):
        response = client.post(f"/v1/reports/runs/{run_id}/signatures", json=signature_payload(role), headers=headers)
        assert response.status_code == 201, response.text


# Identity and errors


def test_missing_identity_headers_is_401(client: TestClient):
    assert client.get("/v1/ledger/events").status_code == 401
    assert client.get("/v1/reports/runs", headers={"x-user-id": "u"}).status_code == 401


def test_domain_errors_carry_code_and_request_id(client: TestClient, creator_headers):
    response = client.get(
        "/v1/reports/runs/does-not-exist",
        headers={**creator_headers, "x-request-id": "req-123"},
    )
    assert response.status_code == 404
    body = response.json()
    assert body["code"] == "REPORT_RUN_NOT_FOUND"
    assert body["request_id"] == "req-123"
    assert response.headers["x-request-id"] == "req-123"


def test_request_id_is_generated(client: TestClient):
    response = client.get("/health")
    assert response.headers["x-request-id"]


def test_ledger_writing_endpoints_run_in_the_threadpool():
    # Appends can sleep between retries; async handlers would block the event loop.
    writers = {
        ("POST", "/v1/ledger/events"),
        ("POST", "/v1/reports/runs"),
        ("POST", "/v1/reports/runs/active"),
        ("POST", "/v1/reports/runs/{run_id}/ready"),
        ("POST", "/v1/reports/runs/{run_id}/finalize"),
        ("POST", "/v1/reports/runs/{run_id}/signatures"),
        ("POST", "/v1/reports/runs/{run_id}/signatures/{signature_id}/revoke"),
    }
    endpoints = {
        (method, route.path): route.endpoint
        for route in app.routes
        if isinstance(route, APIRoute)
        for method in route.methods
    }

    assert writers <= endpoints.keys()
    for key in writers:
        assert not inspect.iscoroutinefunction(endpoints[key]), key


# Ledger


def test_append_and_list_events(client: TestClient, creator_headers):
    for n in range(3):
        response = client.post(
            "/v1/ledger/events",
            json={"event_type": "job.flagged_for_review", "target_type": "job", "target_id": f"job-{n}"},
            headers=creator_headers,
        )
        assert response.status_code == 201
    body = response.json()
    assert body["sequence"] == 3
    assert body["category"] == "governance"
    assert body["actor_id"] == creator_headers["x-user-id"]

    page = client.get("/v1/ledger/events?limit=2", headers=creator_headers).json()
    assert [e["sequence"] for e in page["events"]] == [1, 2]
    assert page["next_cursor"] == 2
    assert page["events"][1]["previous_hash"] == page["events"][0]["hash"]

    rest = client.get(f"/v1/ledger/events?cursor={page['next_cursor']}&limit=2", headers=creator_headers).json()
    assert [e["sequence"] for e in rest["events"]] == [3]
    assert rest["next_cursor"] is None


def test_append_is_idempotent_with_header(client: TestClient, creator_headers):
    request = {"event_type": "job.flagged_for_review", "target_type": "job", "target_id": "job-1"}
    headers = {**creator_headers, "Idempotency-Key": "flag-job-1"}
    first = client.post("/v1/ledger/events", json=request, headers=headers).json()
    second = client.post("/v1/ledger/events", json=request, headers=headers).json()
    assert first["id"] == second["id"]
    assert len(client.get("/v1/ledger/events", headers=creator_headers).json()["events"]) == 1


def test_append_rejects_unknown_and_service_event_types(client: TestClient, creator_headers):
    unknown = client.post("/v1/ledger/events", json={"event_type": "job.teleported"}, headers=creator_headers)
    assert unknown.status_code == 422
    assert unknown.json()["code"] == "UNKNOWN_EVENT_TYPE"

    reserved = client.post("/v1/ledger/events", json={"event_type": "report_run.finalized"}, headers=creator_headers)
    assert reserved.status_code == 403


def test_events_are_scoped_to_the_organization(client: TestClient, creator_headers):
    client.post("/v1/ledger/events", json={"event_type": "job.flagged_for_review"}, headers=creator_headers)
    other = client.get("/v1/ledger/events", headers=actor_headers(organization_id=OTHER_ORG_ID)).json()
    assert other["events"] == []


def test_integrity_endpoint(client: TestClient, creator_headers):
    empty = client.get("/v1/ledger/integrity", headers=creator_headers).json()
    assert empty["ledger_integrity"] == "not_verified"

    client.post("/v1/ledger/events", json={"event_type": "job.flagged_for_review"}, headers=creator_headers)
    verified = client.get("/v1/ledger/integrity?full=true", headers=creator_headers).json()
    assert verified["ledger_integrity"] == "verified"
    assert verified["organization_id"] == creator_headers["x-organization-id"]


def test_taxonomy_lists_event_types(client: TestClient):
    taxonomy = client.get("/v1/ledger/taxonomy").json()
    assert taxonomy["report_run.finalized"]["category"] == "operations"
    assert "signature.added" in taxonomy


def test_ledger_csv_export(client: TestClient, creator_headers):
    for _ in range(2):
        client.post("/v1/ledger/events", json={"event_type": "job.flagged_for_review"}, headers=creator_headers)

    response = client.get("/v1/ledger/export.csv", headers=creator_headers)
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    rows = list(csv.reader(io.StringIO(response.text)))
    assert len(rows) == 3
    assert response.headers["x-ledger-tail-hash"] == rows[-1][-1]


# Report runs


def test_report_run_lifecycle(client: TestClient, db, job, creator_headers, admin_headers):
    run = _create_run(client, creator_headers, status="draft")
    assert run["status"] == "draft"

    ready = client.post(f"/v1/reports/runs/{run['id']}/ready", headers=creator_headers)
    assert ready.json()["status"] == "ready_for_signatures"

    _sign_all(client, run["id"], creator_headers, admin_headers)

    report = client.get(f"/v1/reports/runs/{run['id']}/verify", headers=creator_headers).json()
    assert report["missing_roles"] == []
    assert report["can_finalize"] is True

    finalized = client.post(f"/v1/reports/runs/{run['id']}/finalize", headers=creator_headers)
    assert finalized.status_code == 200
    assert finalized.json()["status"] == "complete"

    late = client.post(
        f"/v1/reports/runs/{run['id']}/signatures", json=signature_payload("other"), headers=admin_headers
    )
    assert late.status_code == 409
    assert late.json()["code"] == "STALE_SIGNATURE_TARGET"


def test_create_run_for_missing_job_is_404(client: TestClient, creator_headers):
    response = client.post("/v1/reports/runs", json={"job_id": "nope"}, headers=creator_headers)
    assert response.status_code == 404
    assert response.json()["code"] == "JOB_NOT_FOUND"


def test_create_run_with_bad_packet_type_is_422(client: TestClient, job, creator_headers):
    response = client.post(
        "/v1/reports/runs", json={"job_id": job.id, "packet_type": "brochure"}, headers=creator_headers
    )
    assert response.status_code == 422
    assert response.json()["code"] == "INVALID_PACKET_TYPE"


def test_duplicate_signature_is_409(client: TestClient, job, creator_headers, admin_headers):
    run = _create_run(client, creator_headers)
    url = f"/v1/reports/runs/{run['id']}/signatures"
    assert client.post(url, json=signature_payload("reviewed_by"), headers=MEMBER_HEADERS).status_code == 201

    duplicate = client.post(url, json=signature_payload("reviewed_by"), headers=admin_headers)
    assert duplicate.status_code == 409
    assert duplicate.json()["code"] == "DUPLICATE_SIGNATURE"


def test_revoke_and_list_signatures(client: TestClient, job, creator_headers, admin_headers):
    run = _create_run(client, creator_headers)
    url = f"/v1/reports/runs/{run['id']}/signatures"
    signature = client.post(url, json=signature_payload("approved_by"), headers=admin_headers).json()
    assert "signature_svg" not in signature

    forbidden = client.post(f"{url}/{signature['id']}/revoke", json={}, headers=creator_headers)
    assert forbidden.status_code == 403

    revoked = client.post(f"{url}/{signature['id']}/revoke", json={"reason": "typo"}, headers=admin_headers)
    assert revoked.status_code == 200
    assert revoked.json()["revoked_reason"] == "typo"

    assert len(client.get(url, headers=creator_headers).json()) == 1
    assert client.get(f"{url}?include_revoked=false", headers=creator_headers).json() == []


def test_finalize_with_missing_roles_is_409(client: TestClient, job, creator_headers):
    run = _create_run(client, creator_headers)
    response = client.post(f"/v1/reports/runs/{run['id']}/finalize", headers=creator_headers)
    assert response.status_code == 409
    body = response.json()
    assert body["code"] == "MISSING_SIGNATURES"
    assert body["missing_roles"] == ["prepared_by", "reviewed_by", "approved_by"]


def test_finalize_after_job_change_is_hash_mismatch(client: TestClient, db, job, creator_headers, admin_headers):
    run = _create_run(client, creator_headers)
    _sign_all(client, run["id"], creator_headers, admin_headers)
    client.post(
        "/v1/ledger/events",
        json={"event_type": "job.flagged_for_review", "target_type": "job", "target_id": job.id},
        headers=creator_headers,
    )

    response = client.post(f"/v1/reports/runs/{run['id']}/finalize", headers=creator_headers)
    assert response.status_code == 409
    assert response.json()["code"] == "HASH_MISMATCH"


def test_active_run_endpoint_reuses_open_run(client: TestClient, job, creator_headers):
    first = client.post("/v1/reports/runs/active", json={"job_id": job.id}, headers=creator_headers).json()
    second = client.post("/v1/reports/runs/active", json={"job_id": job.id}, headers=MEMBER_HEADERS).json()
    assert first["created"] is True
    assert second["created"] is False
    assert second["data"]["id"] == first["data"]["id"]


def test_list_runs_by_status(client: TestClient, job, creator_headers):
    run = _create_run(client, creator_headers, status="draft")
    drafts = client.get("/v1/reports/runs?status=draft", headers=creator_headers).json()
    assert [r["id"] for r in drafts] == [run["id"]]
    assert client.get("/v1/reports/runs?status=complete", headers=creator_headers).json() == []


def test_runs_are_invisible_to_other_organizations(client: TestClient, job, creator_headers):
    run = _create_run(client, creator_headers)
    response = client.get(f"/v1/reports/runs/{run['id']}", headers=actor_headers(ADMIN_ID, OTHER_ORG_ID, "admin"))
    assert response.status_code == 404


# Exports and print


def test_json_export_hashes_to_data_hash(client: TestClient, job, creator_headers):
    run = _create_run(client, creator_headers)
    response = client.get(f"/v1/reports/runs/{run['id']}/export?format=json", headers=creator_headers)
    assert response.status_code == 200
    assert response.headers["x-data-hash"] == run["data_hash"]
    assert hashlib.sha256(response.content).hexdigest() == run["data_hash"]


def test_pdf_export(client: TestClient, job, creator_headers):
    run = _create_run(client, creator_headers)
    response = client.get(f"/v1/reports/runs/{run['id']}/export?format=pdf", headers=creator_headers)
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert response.content.startswith(b"%PDF")


def test_unknown_export_format_is_422(client: TestClient, job, creator_headers):
    run = _create_run(client, creator_headers)
    response = client.get(f"/v1/reports/runs/{run['id']}/export?format=docx", headers=creator_headers)
    assert response.status_code == 422


def test_print_token_grants_print_page(client: TestClient, job, creator_headers):
    run = _create_run(client, creator_headers)
    issued = client.post(f"/v1/reports/runs/{run['id']}/print-token", headers=creator_headers).json()
    assert issued["print_url"].endswith(f"/print/{run['id']}?token={issued['token']}")

    page = client.get(f"/print/{run['id']}", params={"token": issued["token"]})
    assert page.status_code == 200
    assert run["data_hash"] in page.text


def test_print_page_rejects_bad_or_missing_token(client: TestClient, job, creator_headers):
    run = _create_run(client, creator_headers)
    for params in ({"token": "not-a-token"}, {}):
        response = client.get(f"/print/{run['id']}", params=params)
        assert response.status_code == 401
        assert response.json()["code"] == "TOKEN_EXPIRED_OR_INVALID"


def test_print_token_is_bound_to_its_run(client: TestClient, job, creator_headers):
    first = _create_run(client, creator_headers, status="draft")
    second = client.post("/v1/reports/runs", json={"job_id": job.id, "packet_type": "audit"}, headers=creator_headers)
    token = client.post(f"/v1/reports/runs/{first['id']}/print-token", headers=creator_headers).json()["token"]

    response = client.get(f"/print/{second.json()['data']['id']}", params={"token": token})
    assert response.status_code == 401
