from decimal import Decimal
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session
from incentive_engine.models.db import Award, Operator
from incentive_engine.models.db.enums import AwardStatus, OperatorRole, RecipientType, RewardType
from incentive_engine.services import award_ledger
from incentive_engine.utils import StorageConflictError


def _campaign_with_rule(client: TestClient, dev_headers: dict, *, budget: str = "1000.00", reward: str = "200.00") -> tuple[int, int]:
    r = client.post(
        "/api/v1/campaigns/",
        json={"project_id": "PRJ-1", "name": "Doc upload bonus", "budget_total": budget},
        headers=dev_headers,
    )
    assert r.status_code == 201, r.text
    campaign_id = r.json()["id"]
    r = client.post(f"/api/v1/campaigns/{campaign_id}/activate", headers=dev_headers)
    assert r.status_code == 200, r.text
    r = client.post(
        "/api/v1/rules/",
        json={
            "campaign_id": campaign_id,
            "trigger": "DOCS_COMPLETE_CONFIRMED",
            "recipient_type": "BUYER",
            "reward_type": "VOUCHER",
            "reward_amount": reward,
        },
        headers=dev_headers,
    )
    assert r.status_code == 201, r.text
    return campaign_id, r.json()["id"]


def test_admin_creates_operators(client: TestClient, operator_factory, auth_headers):
    admin = operator_factory(OperatorRole.ADMIN)
    payload = {"name": "Finance Desk", "email": "finance.desk@example.com", "role": "FINANCE"}

    r = client.post("/api/v1/operators/", json=payload, headers=auth_headers(admin))
    assert r.status_code == 201, r.text
    body = r.json()
    assert body["role"] == "FINANCE"
    assert len(body["api_key"]) == 32

    dup = client.post("/api/v1/operators/", json=payload, headers=auth_headers(admin))
    assert dup.status_code == 409

    me = client.get("/api/v1/operators/me", headers={"Authorization": f"Bearer {body['api_key']}"})
    assert me.status_code == 200
    assert me.json()["email"] == "finance.desk@example.com"
    assert "api_key" not in me.json()


def test_developer_operator_needs_developer_id(client: TestClient, operator_factory, auth_headers):
    admin = operator_factory(OperatorRole.ADMIN)
    r = client.post(
        "/api/v1/operators/",
        json={"name": "Dev", "email": "dev@example.com", "role": "DEVELOPER"},
        headers=auth_headers(admin),
    )
    assert r.status_code == 422
    assert r.json()["error_code"] == "VALIDATION_ERROR"


def test_non_admin_cannot_create_operators(client: TestClient, operator_factory, auth_headers):
    ops = operator_factory(OperatorRole.OPERATIONS)
    r = client.post(
        "/api/v1/operators/",
        json={"name": "X", "email": "x@example.com", "role": "FINANCE"},
        headers=auth_headers(ops),
    )
    assert r.status_code == 403


def test_unauthenticated_and_unknown_key(client: TestClient):
    assert client.get("/api/v1/campaigns/").status_code in (401, 403)
    r = client.get("/api/v1/campaigns/", headers={"Authorization": "Bearer not-a-key"})
    assert r.status_code == 401


def test_developer_scope_enforced(client: TestClient, operator_factory, auth_headers):
    dev1 = operator_factory(OperatorRole.DEVELOPER, developer_id="DEV-1")
    dev2 = operator_factory(OperatorRole.DEVELOPER, developer_id="DEV-2")
    campaign_id, _ = _campaign_with_rule(client, auth_headers(dev1))

    assert client.post(f"/api/v1/campaigns/{campaign_id}/pause", headers=auth_headers(dev2)).status_code == 403
    assert client.get(f"/api/v1/campaigns/{campaign_id}", headers=auth_headers(dev2)).status_code == 403
    r = client.post(
        "/api/v1/campaigns/",
        json={"project_id": "P", "name": "n", "budget_total": "10", "developer_id": "DEV-1"},
        headers=auth_headers(dev2),
    )
    assert r.status_code == 403


def test_forbidden_trigger_rule_refused(client: TestClient, operator_factory, auth_headers, campaign_factory):
    dev = operator_factory(OperatorRole.DEVELOPER)
    campaign = campaign_factory()
    r = client.post(
        "/api/v1/rules/",
        json={
            "campaign_id": campaign.id,
            "trigger": "loan_approved",
            "recipient_type": "BUYER",
            "reward_type": "CASH",
            "reward_amount": "100",
        },
        headers=auth_headers(dev),
    )
    assert r.status_code == 403
    assert r.json()["error_code"] == "FORBIDDEN_TRIGGER"
    assert r.json()["success"] is False

    unknown = client.post(
        "/api/v1/rules/",
        json={
            "campaign_id": campaign.id,
            "trigger": "BUYER_SMILED",
            "recipient_type": "BUYER",
            "reward_type": "CASH",
            "reward_amount": "100",
        },
        headers=auth_headers(dev),
    )
    assert unknown.status_code == 400
    assert unknown.json()["error_code"] == "INVALID_TRIGGER"


def test_forbidden_trigger_evaluation_is_blocked(client: TestClient, operator_factory, auth_headers):
    workflow = operator_factory(OperatorRole.WORKFLOW)
    r = client.post(
        "/api/v1/milestones/evaluate",
        json={"case_id": "CASE-1", "trigger": "APPROVED", "proof_event_id": "evt-1"},
        headers=auth_headers(workflow),
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["evaluated"] is False
    assert body["blocked"]["forbidden_trigger"] == "APPROVED"
    assert body["awards_issued"] == []


def test_milestone_to_payout_flow(client: TestClient, db_session: Session, operator_factory, auth_headers):
    dev = auth_headers(operator_factory(OperatorRole.DEVELOPER))
    workflow = auth_headers(operator_factory(OperatorRole.WORKFLOW))
    ops = auth_headers(operator_factory(OperatorRole.OPERATIONS))
    finance_a = auth_headers(operator_factory(OperatorRole.FINANCE))
    finance_b = auth_headers(operator_factory(OperatorRole.FINANCE))
    campaign_id, rule_id = _campaign_with_rule(client, dev)

    r = client.post(
        "/api/v1/milestones/evaluate",
        json={"case_id": "CASE-7", "trigger": "DOCS_COMPLETE_CONFIRMED", "proof_event_id": "evt-7"},
        headers=workflow,
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["triggered_rule_ids"] == [rule_id]
    award_id = body["awards_issued"][0]["id"]
    assert body["awards_issued"][0]["status"] == "PENDING"

    # workflow role cannot review awards
    assert client.post(f"/api/v1/awards/{award_id}/verify", headers=workflow).status_code == 403
    # approve before verify is an invalid transition
    assert client.post(f"/api/v1/awards/{award_id}/approve", headers=finance_a).status_code == 409
    assert client.post(f"/api/v1/awards/{award_id}/verify", headers=ops).json()["status"] == "VERIFIED"
    assert client.post(f"/api/v1/awards/{award_id}/approve", headers=finance_a).json()["status"] == "APPROVED"

    stats = client.get(f"/api/v1/campaigns/{campaign_id}/stats", headers=dev).json()
    assert Decimal(stats["budget_remaining"]) == Decimal("800.00")

    repeat = client.post(
        "/api/v1/milestones/evaluate",
        json={"case_id": "CASE-7", "trigger": "DOCS_COMPLETE_CONFIRMED", "proof_event_id": "evt-8"},
        headers=workflow,
    ).json()
    assert repeat["awards_issued"] == []
    assert repeat["skipped_rules"][0]["rule_id"] == rule_id

    r = client.post(
        "/api/v1/payouts/",
        json={"award_id": award_id, "payment_method": "BANK_TRANSFER"},
        headers=finance_a,
    )
    assert r.status_code == 400
    assert r.json()["error_code"] == "MISSING_DESTINATION"

    r = client.post(
        "/api/v1/payouts/",
        json={"award_id": award_id, "payment_method": "BANK_TRANSFER", "bank_account_ref": "MBB-5142"},
        headers=finance_a,
    )
    assert r.status_code == 201, r.text
    payout_id = r.json()["id"]
    dup = client.post(
        "/api/v1/payouts/",
        json={"award_id": award_id, "payment_method": "CHEQUE"},
        headers=finance_b,
    )
    assert dup.status_code == 409
    assert dup.json()["error_code"] == "DUPLICATE_PAYOUT"

    same = client.post(f"/api/v1/payouts/{payout_id}/approve", headers=finance_a)
    assert same.status_code == 403
    assert same.json()["error_code"] == "FOUR_EYES_VIOLATION"

    short = client.post(f"/api/v1/payouts/{payout_id}/reject", json={"reason": "no"}, headers=finance_b)
    assert short.status_code == 400
    assert short.json()["error_code"] == "REASON_TOO_SHORT"

    assert client.post(f"/api/v1/payouts/{payout_id}/approve", json={"notes": "checked"}, headers=finance_b).status_code == 200
    processing = client.post(f"/api/v1/payouts/{payout_id}/process", headers=finance_b).json()
    assert processing["status"] == "PROCESSING"
    done = client.post(f"/api/v1/payouts/{payout_id}/complete", json={"bank_ref": "BANK-1"}, headers=finance_b)
    assert done.status_code == 200, done.text
    assert done.json()["status"] == "COMPLETED"

    award = client.get(f"/api/v1/awards/{award_id}", headers=ops).json()
    assert award["status"] == "PAID"
    assert award["payout_reference"] == processing["transaction_ref"]

    clawback = client.post(f"/api/v1/awards/{award_id}/clawback", json={"reason": "buyer withdrew"}, headers=finance_a)
    assert clawback.json()["status"] == "CLAWBACK"
    stats = client.get(f"/api/v1/campaigns/{campaign_id}/stats", headers=dev).json()
    assert Decimal(stats["budget_remaining"]) == Decimal("1000.00")


def test_payout_retries_exhaust_over_http(client: TestClient, db_session: Session, operator_factory, auth_headers,
                                          campaign_factory, rule_factory):
    finance_a = auth_headers(operator_factory(OperatorRole.FINANCE))
    finance_b = auth_headers(operator_factory(OperatorRole.FINANCE))
    rule = rule_factory(campaign_factory())
    award = Award(
        rule_id=rule.id, campaign_id=rule.campaign_id, case_id="CASE-1", recipient_type=RecipientType.BUYER,
        recipient_id="BUYER-CASE-1", reward_type=RewardType.CASH, reward_amount=Decimal("200.00"),
        status=AwardStatus.APPROVED, triggered_by=rule.trigger,
    )
    db_session.add(award)
    db_session.commit()

    payout_id = client.post(
        "/api/v1/payouts/", json={"award_id": award.id, "payment_method": "CHEQUE"}, headers=finance_a
    ).json()["id"]
    client.post(f"/api/v1/payouts/{payout_id}/approve", headers=finance_b)
    client.post(f"/api/v1/payouts/{payout_id}/process", headers=finance_b)
    for _ in range(3):
        assert client.post(f"/api/v1/payouts/{payout_id}/fail", json={"reason": "timeout"}, headers=finance_b).status_code == 200
        assert client.post(f"/api/v1/payouts/{payout_id}/process", headers=finance_b).status_code == 200
    client.post(f"/api/v1/payouts/{payout_id}/fail", json={"reason": "timeout"}, headers=finance_b)

    r = client.post(f"/api/v1/payouts/{payout_id}/process", headers=finance_b)
    assert r.status_code == 409
    assert r.json()["error_code"] == "MAX_RETRIES_EXCEEDED"


def test_referral_validation_and_self_referral_over_http(client: TestClient, operator_factory, auth_headers):
    ops = auth_headers(operator_factory(OperatorRole.OPERATIONS))
    workflow = auth_headers(operator_factory(OperatorRole.WORKFLOW))
    r = client.post("/api/v1/referrers/", json={"name": "Ahmad Faizal", "phone": "0123456789"}, headers=ops)
    assert r.status_code == 201, r.text
    referrer = r.json()
    assert referrer["status"] == "PENDING"
    assert client.post(f"/api/v1/referrers/{referrer['id']}/verify", headers=ops).json()["status"] == "ACTIVE"

    dup = client.post("/api/v1/referrers/", json={"name": "Other", "phone": "+60123456789"}, headers=ops)
    assert dup.status_code == 409
    assert dup.json()["error_code"] == "DUPLICATE_PHONE"

    ok = client.post(
        "/api/v1/referrers/validate",
        json={"buyer_phone": "0139998888", "referral_code": referrer["referral_code"], "case_id": "CASE-1"},
        headers=workflow,
    )
    assert ok.status_code == 200
    assert ok.json()["valid"] is True

    self_ref = client.post(
        "/api/v1/referrers/validate",
        json={"buyer_phone": "012-345 6789", "referral_code": referrer["referral_code"]},
        headers=workflow,
    )
    assert self_ref.status_code == 200
    assert self_ref.json()["valid"] is False

    stored = client.get(f"/api/v1/referrers/{referrer['id']}", headers=ops).json()
    assert stored["status"] == "BLOCKED"
    flags = client.get(f"/api/v1/referrers/{referrer['id']}/flags", headers=ops).json()
    assert [f["flag_type"] for f in flags] == ["SELF_REFERRAL"]


def test_lawyer_assignment_over_http(client: TestClient, operator_factory, auth_headers):
    ops = auth_headers(operator_factory(OperatorRole.OPERATIONS))
    r = client.post(
        "/api/v1/lawyers/", json={"name": "Siti Rahman", "email": "Siti@Firm.my", "firm_name": "Rahman & Co"}, headers=ops
    )
    assert r.status_code == 201, r.text
    lawyer_id = r.json()["id"]
    assigned = client.post(f"/api/v1/lawyers/{lawyer_id}/assign", json={"case_id": "CASE-1"}, headers=ops)
    assert assigned.status_code == 200
    assert assigned.json()["status"] == "ACTIVE"
    assert assigned.json()["total_cases"] == 1


def test_storage_conflict_maps_to_retryable_409(client: TestClient, db_session: Session, operator_factory,
                                                auth_headers, campaign_factory, rule_factory, monkeypatch):
    ops = auth_headers(operator_factory(OperatorRole.OPERATIONS))
    rule = rule_factory(campaign_factory())
    award = Award(
        rule_id=rule.id, campaign_id=rule.campaign_id, case_id="CASE-1", recipient_type=RecipientType.BUYER,
        recipient_id="BUYER-CASE-1", reward_type=RewardType.CASH, reward_amount=Decimal("200.00"),
        status=AwardStatus.PENDING, triggered_by=rule.trigger,
    )
    db_session.add(award)
    db_session.commit()

    def conflicting_commit(session, *, operation, **context):
        session.rollback()
        raise StorageConflictError(operation)

    monkeypatch.setattr(award_ledger, "commit_or_conflict", conflicting_commit)
    r = client.post(f"/api/v1/awards/{award.id}/verify", headers={**ops, "X-Request-ID": "req-conflict-1"})

    assert r.status_code == 409
    body = r.json()
    assert body["error_code"] == "STORAGE_CONFLICT"
    assert body["retry"] is True
    assert body["request_id"] == "req-conflict-1"
    assert r.headers["Retry-After"] == "1"

    db_session.expire_all()
    assert db_session.get(Award, award.id).status == AwardStatus.PENDING


def test_request_id_echo_and_validation_envelope(client: TestClient, operator_factory, auth_headers):
    dev = auth_headers(operator_factory(OperatorRole.DEVELOPER))
    r = client.post(
        "/api/v1/campaigns/",
        json={"project_id": "PRJ-1", "name": "x", "budget_total": "-5"},
        headers={**dev, "X-Request-ID": "req-abc"},
    )
    assert r.status_code == 422
    assert r.headers["X-Request-ID"] == "req-abc"
    body = r.json()
    assert body["error_code"] == "VALIDATION_ERROR"
    assert body["request_id"] == "req-abc"

    assert client.get("/api/v1/campaigns/?limit=0", headers=dev).status_code == 400


def test_health_and_root(client: TestClient):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["service"] == "incentive-engine"
    assert "X-Request-ID" in r.headers
    assert client.get("/").json()["api_base"] == "/api/v1"
    assert client.get("/health/detailed").status_code == 200


def test_bootstrap_admin_seeds_empty_table(db_session: Session, monkeypatch):
    from incentive_engine import main

    monkeypatch.setenv("BOOTSTRAP_ADMIN_API_KEY", "bootstrap-key-123")
    monkeypatch.setattr(main, "SessionLocal", lambda: type(db_session)(bind=db_session.get_bind()))
    main.bootstrap_admin()
    main.bootstrap_admin()

    admins = db_session.query(Operator).filter(Operator.role == OperatorRole.ADMIN).all()
    assert [a.api_key for a in admins] == ["bootstrap-key-123"]
