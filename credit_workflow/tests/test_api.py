import uuid

import pytest
from fastapi.testclient import TestClient

from ..core.config import Settings, get_settings
from ..core.db import get_engine, set_engine
from ..main import app


CRON_SECRET = "s3cret"


@pytest.fixture
def client(engine) -> TestClient:
    original_engine = get_engine()
    set_engine(engine)
    app.dependency_overrides[get_settings] = lambda: Settings(cron_secret=CRON_SECRET)

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    set_engine(original_engine)


def as_user(user_id) -> dict[str, str]:
    return {"X-User-Id": str(user_id)}


def submit(client: TestClient, world, credits: int):
    return client.post(
        "/requests",
        json={
            "company_id": str(world.company_id),
            "team_id": str(world.team_id),
            "request_type": "analyst_qa",
            "title": "Analyst Q&A",
            "estimated_credits": credits,
        },
        headers=as_user(world.requester_id),
    )


def spend(
    client: TestClient,
    user_id,
    amount: int,
    key: str,
    transaction_type: str = "spend",
    reference_id=None,
):
    return client.post(
        "/credits/spend",
        json={
            "amount": amount,
            "transaction_type": transaction_type,
            "reference_type": "request",
            "reference_id": str(reference_id or uuid.uuid4()),
            "description": "Report upgrade",
            "idempotency_key": key,
        },
        headers=as_user(user_id),
    )


def test_health(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_balance_for_caller(client: TestClient, world) -> None:
    response = client.get("/credits/balance", headers=as_user(world.requester_id))

    assert response.status_code == 200
    body = response.json()
    assert body["available_credits"] == 12000
    assert body["account_id"] == str(world.account_id)


def test_balance_requires_caller_header(client: TestClient) -> None:
    assert client.get("/credits/balance").status_code == 422


def test_caller_without_account(client: TestClient) -> None:
    response = client.get("/credits/balance", headers=as_user(uuid.uuid4()))
    assert response.status_code == 404


def test_spend_and_transactions(client: TestClient, world) -> None:
    reference_id = uuid.uuid4()
    first = spend(client, world.requester_id, 200, "spend-1", reference_id=reference_id)
    assert first.status_code == 201
    assert first.json()["available_credits"] == 11800

    replay = spend(client, world.requester_id, 200, "spend-1", reference_id=reference_id)
    assert replay.status_code == 201
    assert replay.json()["ledger_entry_id"] == first.json()["ledger_entry_id"]

    other_reference = spend(client, world.requester_id, 200, "spend-1")
    assert other_reference.status_code == 409

    spend(client, world.requester_id, 300, "spend-2", transaction_type="adjustment")

    page = client.get(
        "/credits/transactions",
        params={"limit": 1},
        headers=as_user(world.requester_id),
    ).json()
    assert page["total"] == 2
    assert page["has_more"] is True
    assert page["entries"][0]["amount"] == 300

    filtered = client.get(
        "/credits/transactions",
        params={"type": "spend"},
        headers=as_user(world.requester_id),
    ).json()
    assert [entry["amount"] for entry in filtered["entries"]] == [200]


def test_oversell_reports_available_and_required(client: TestClient, world) -> None:
    response = spend(client, world.requester_id, 20000, "too-much")

    assert response.status_code == 409
    body = response.json()
    assert body["available"] == 12000
    assert body["required"] == 20000


def test_spend_with_credit_type_is_rejected(client: TestClient, world) -> None:
    response = spend(client, world.requester_id, 10, "refund", transaction_type="refund")
    assert response.status_code == 400


def test_spend_key_reuse_conflicts(client: TestClient, world) -> None:
    spend(client, world.requester_id, 10, "same")
    response = spend(client, world.requester_id, 11, "same")
    assert response.status_code == 409


def test_hold_lifecycle(client: TestClient, world) -> None:
    headers = as_user(world.requester_id)
    payload = {"request_id": str(uuid.uuid4()), "amount": 500, "idempotency_key": "hold-1"}

    created = client.post("/credits/hold", json=payload, headers=headers)
    assert created.status_code == 201
    assert created.json()["available_credits"] == 11500

    repeated = client.post("/credits/hold", json=payload, headers=headers)
    assert repeated.status_code == 200
    assert repeated.json()["created"] is False
    hold_id = created.json()["hold_id"]

    holds = client.get("/credits/holds", headers=headers).json()
    assert [hold["id"] for hold in holds] == [hold_id]

    converted = client.post(f"/credits/hold/{hold_id}/convert", headers=headers)
    assert converted.status_code == 200
    assert converted.json()["available_credits"] == 11500

    again = client.post(f"/credits/hold/{hold_id}/convert", headers=headers)
    assert again.json()["ledger_entry_id"] == converted.json()["ledger_entry_id"]

    release = client.post(f"/credits/hold/{hold_id}/release", headers=headers)
    assert release.status_code == 400
    assert release.json()["detail"] == "Cannot release hold with status: converted"


def test_hold_of_another_company_is_hidden(client: TestClient, seed, world) -> None:
    other_company = seed.company("Rival")
    other_team = seed.team(other_company)
    outsider = seed.member(other_team)
    seed.account(other_company)

    hold_id = client.post(
        "/credits/hold",
        json={"request_id": str(uuid.uuid4()), "amount": 100},
        headers=as_user(world.requester_id),
    ).json()["hold_id"]

    response = client.post(f"/credits/hold/{hold_id}/release", headers=as_user(outsider))
    assert response.status_code == 404


def test_hold_of_pending_request_is_settled_by_the_workflow(client: TestClient, world) -> None:
    headers = as_user(world.requester_id)
    request_id = submit(client, world, 1000).json()["request"]["id"]
    hold_id = client.get("/credits/holds", headers=headers).json()[0]["id"]

    for action in ("release", "convert"):
        response = client.post(f"/credits/hold/{hold_id}/{action}", headers=headers)
        assert response.status_code == 400
        assert response.json()["detail"] == (
            f"Hold {hold_id} belongs to pending request {request_id}"
        )

    approved = client.post(
        f"/requests/{request_id}/approve", headers=as_user(world.approver_id)
    )
    assert approved.status_code == 200
    balance = client.get("/credits/balance", headers=headers).json()
    assert balance["available_credits"] == 11000
    assert client.get("/credits/holds", headers=headers).json() == []


def test_hold_amount_must_be_positive(client: TestClient, world) -> None:
    response = client.post(
        "/credits/hold",
        json={"request_id": str(uuid.uuid4()), "amount": 0},
        headers=as_user(world.requester_id),
    )
    assert response.status_code == 422


def test_auto_approved_submission(client: TestClient, world) -> None:
    response = submit(client, world, 300)

    assert response.status_code == 201
    body = response.json()
    assert body["auto_approved"] is True
    assert body["status"] == "approved"


def test_request_approval_flow(client: TestClient, world) -> None:
    submitted = submit(client, world, 1000)
    assert submitted.status_code == 201
    request_id = submitted.json()["request"]["id"]

    queue = client.get("/requests/queue", headers=as_user(world.approver_id)).json()
    assert queue["total_pending"] == 1

    forbidden = client.post(
        f"/requests/{request_id}/approve", headers=as_user(world.requester_id)
    )
    assert forbidden.status_code == 403

    approved = client.post(
        f"/requests/{request_id}/approve",
        json={"reason": "within budget"},
        headers=as_user(world.approver_id),
    )
    assert approved.status_code == 200
    assert approved.json()["status"] == "approved"

    fulfilled = client.post(
        f"/requests/{request_id}/fulfill",
        json={"actual_credits": 900},
        headers=as_user(world.approver_id),
    )
    assert fulfilled.status_code == 200
    assert fulfilled.json()["actual_credits"] == 900

    detail = client.get(f"/requests/{request_id}", headers=as_user(world.requester_id)).json()
    assert [event["event_type"] for event in detail["events"]] == [
        "submitted",
        "approved",
        "fulfilled",
    ]
    assert detail["events"][-1]["metadata"]["variance"] == -100

    again = client.post(f"/requests/{request_id}/approve", headers=as_user(world.approver_id))
    assert again.status_code == 400


def test_deny_requires_reason_body(client: TestClient, world) -> None:
    request_id = submit(client, world, 1000).json()["request"]["id"]

    missing = client.post(
        f"/requests/{request_id}/deny", json={}, headers=as_user(world.approver_id)
    )
    assert missing.status_code == 422

    denied = client.post(
        f"/requests/{request_id}/deny",
        json={"reason": "out of budget"},
        headers=as_user(world.approver_id),
    )
    assert denied.status_code == 200
    assert denied.json()["status"] == "denied"

    balance = client.get("/credits/balance", headers=as_user(world.requester_id)).json()
    assert balance["available_credits"] == 12000


def test_cancel_by_requester(client: TestClient, world) -> None:
    request_id = submit(client, world, 1000).json()["request"]["id"]

    response = client.post(f"/requests/{request_id}/cancel", headers=as_user(world.requester_id))

    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"


def test_list_requests_with_status_filter(client: TestClient, world) -> None:
    submit(client, world, 300)
    submit(client, world, 1000)
    headers = as_user(world.requester_id)

    pending = client.get("/requests", params={"status": "pending"}, headers=headers).json()
    assert pending["total"] == 1

    both = client.get(
        "/requests", params={"status": "pending,approved"}, headers=headers
    ).json()
    assert both["total"] == 2

    bad = client.get("/requests", params={"status": "bogus"}, headers=headers)
    assert bad.status_code == 400


def test_unknown_request_is_404(client: TestClient, world) -> None:
    response = client.get(f"/requests/{uuid.uuid4()}", headers=as_user(world.requester_id))
    assert response.status_code == 404


def test_insufficient_submission_is_409(client: TestClient, world) -> None:
    response = submit(client, world, 50000)
    assert response.status_code == 409
    assert response.json()["required"] == 50000


def test_jobs_require_cron_secret(client: TestClient, world) -> None:
    assert client.post("/jobs/expirations").status_code == 403
    assert (
        client.post("/jobs/escalations", headers={"X-Cron-Secret": "wrong"}).status_code == 403
    )

    response = client.post("/jobs/expirations", headers={"X-Cron-Secret": CRON_SECRET})
    assert response.status_code == 200
    assert response.json() == {"success": True, "expired_count": 0, "expired_ids": []}

    response = client.post("/jobs/escalations", headers={"X-Cron-Secret": CRON_SECRET})
    assert response.status_code == 200
    assert response.json()["escalated_count"] == 0
