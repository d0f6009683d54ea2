from datetime import timedelta
import pytest
from sqlalchemy.orm import Session
from incentive_engine.models.db import CaseRecipient, Lawyer, Referrer
from incentive_engine.models.db.enums import (
    FraudFlagType,
    LawyerStatus,
    LawyerVerificationMethod,
    RecipientType,
    ReferrerStatus,
)
from incentive_engine.services import recipient_registry as registry
from incentive_engine.services.results import ErrorCode
from incentive_engine.utils.time import utc_now


def test_register_referrer_generates_code(db_session: Session):
    result = registry.register_referrer(db_session, name="Ahmad Faizal", phone="+60 12-888 7777")
    assert result.success, result.error
    referrer = result.data
    assert referrer.status == ReferrerStatus.PENDING
    assert referrer.phone_normalized == "0128887777"
    assert referrer.referral_code.startswith("REF-AHMAD-FAIZ-")
    assert len(referrer.referral_code.rsplit("-", 1)[1]) == 4
    assert registry.get_referrer_by_code(db_session, referrer.referral_code.lower()).id == referrer.id


def test_register_referrer_duplicate_phone(db_session: Session):
    registry.register_referrer(db_session, name="A", phone="0128887777")
    dup = registry.register_referrer(db_session, name="B", phone="60128887777")
    assert dup.error_code == ErrorCode.DUPLICATE_PHONE
    assert registry.register_referrer(db_session, name="C", phone="  ").error_code == ErrorCode.VALIDATION_ERROR


def test_referrer_status_transitions(db_session: Session, referrer_factory):
    referrer = referrer_factory(status=ReferrerStatus.PENDING)
    assert registry.reinstate_referrer(db_session, referrer.id).error_code == ErrorCode.INVALID_STATUS

    verified = registry.verify_referrer(db_session, referrer.id)
    assert verified.data.status == ReferrerStatus.ACTIVE
    assert verified.data.verified_at is not None
    assert registry.verify_referrer(db_session, referrer.id).error_code == ErrorCode.INVALID_STATUS

    assert registry.suspend_referrer(db_session, referrer.id, reason="review").data.status == ReferrerStatus.SUSPENDED
    assert registry.reinstate_referrer(db_session, referrer.id).data.status == ReferrerStatus.ACTIVE
    assert registry.block_referrer(db_session, referrer.id, reason="abuse").data.status == ReferrerStatus.BLOCKED
    assert registry.suspend_referrer(db_session, referrer.id).error_code == ErrorCode.INVALID_STATUS
    assert registry.block_referrer(db_session, referrer.id).error_code == ErrorCode.INVALID_STATUS
    assert registry.reinstate_referrer(db_session, referrer.id).data.status == ReferrerStatus.ACTIVE
    assert registry.verify_referrer(db_session, 999999).error_code == ErrorCode.NOT_FOUND


def test_reinstate_waits_for_blocking_flags(db_session: Session, referrer_factory):
    referrer = referrer_factory()
    raised = registry.raise_fraud_flag(
        db_session, referrer.id, FraudFlagType.SELF_REFERRAL, details={"note": "manual"}, actor_id="operator:ops"
    )
    assert raised.success
    db_session.expire_all()
    assert db_session.get(Referrer, referrer.id).status == ReferrerStatus.BLOCKED

    assert registry.reinstate_referrer(db_session, referrer.id).error_code == ErrorCode.INVALID_STATUS

    resolved = registry.resolve_fraud_flag(db_session, raised.data.id, resolved_by="operator:ops", notes="family phone")
    assert resolved.success
    db_session.expire_all()
    stored = db_session.get(Referrer, referrer.id)
    assert stored.status == ReferrerStatus.BLOCKED
    assert stored.risk_score == 0

    again = registry.resolve_fraud_flag(db_session, raised.data.id, resolved_by="operator:ops")
    assert again.error_code == ErrorCode.INVALID_STATUS
    assert registry.reinstate_referrer(db_session, referrer.id).data.status == ReferrerStatus.ACTIVE


def test_flag_listing(db_session: Session, referrer_factory):
    referrer = referrer_factory()
    first = registry.raise_fraud_flag(db_session, referrer.id, FraudFlagType.SUSPICIOUS_PATTERN).data
    registry.raise_fraud_flag(db_session, referrer.id, FraudFlagType.BANK_MISMATCH)
    registry.resolve_fraud_flag(db_session, first.id, resolved_by="operator:ops")

    assert len(registry.list_fraud_flags(db_session, referrer.id)) == 2
    open_flags = registry.list_fraud_flags(db_session, referrer.id, include_resolved=False)
    assert [f.flag_type for f in open_flags] == [FraudFlagType.BANK_MISMATCH]
    assert registry.raise_fraud_flag(db_session, 999999, FraudFlagType.BANK_MISMATCH).error_code == ErrorCode.NOT_FOUND


@pytest.mark.parametrize(
    "holder, mismatch",
    [("AHMAD FAIZAL", False), ("ahmad  faizal.", False), ("Zainal Abidin", True)],
)
def test_bank_details_name_check(db_session: Session, referrer_factory, holder, mismatch):
    referrer = referrer_factory(name="Ahmad Faizal")
    result = registry.update_referrer_bank_details(
        db_session, referrer.id, bank_name="Maybank", bank_account_number="5142-0000-1111", bank_account_name=holder
    )
    assert result.success
    flags = registry.list_fraud_flags(db_session, referrer.id)
    assert [f.flag_type for f in flags] == ([FraudFlagType.BANK_MISMATCH] if mismatch else [])
    db_session.expire_all()
    stored = db_session.get(Referrer, referrer.id)
    assert stored.bank_account_name == holder
    assert stored.status == ReferrerStatus.ACTIVE


def test_register_lawyer_lowercases_email(db_session: Session):
    first = registry.register_lawyer(db_session, name="Siti", email="Siti@Firm.MY", firm_name="Rahman & Co")
    assert first.success
    assert first.data.email == "siti@firm.my"
    assert first.data.status == LawyerStatus.PENDING
    dup = registry.register_lawyer(db_session, name="Siti 2", email=" SITI@firm.my ")
    assert dup.error_code == ErrorCode.DUPLICATE_EMAIL


def test_verify_lawyer_only_from_pending(db_session: Session, lawyer_factory):
    lawyer = lawyer_factory()
    verified = registry.verify_lawyer(db_session, lawyer.id, verified_by="operator:ops")
    assert verified.data.status == LawyerStatus.VERIFIED
    assert verified.data.verified_method == LawyerVerificationMethod.OTP
    assert registry.verify_lawyer(db_session, lawyer.id, verified_by="operator:ops").error_code == ErrorCode.INVALID_STATUS


def test_assign_pending_lawyer_verifies_by_assignment(db_session: Session, lawyer_factory):
    lawyer = lawyer_factory()
    result = registry.assign_lawyer_to_case(db_session, lawyer.id, "CASE-1", assigned_by="operator:ops")
    assert result.success
    registry.assign_lawyer_to_case(db_session, lawyer.id, "CASE-2", assigned_by="operator:ops")

    db_session.expire_all()
    stored = db_session.get(Lawyer, lawyer.id)
    assert stored.status == LawyerStatus.ACTIVE
    assert stored.verified_method == LawyerVerificationMethod.AGENT_ASSIGN
    assert stored.total_cases == 2
    assignment = db_session.query(CaseRecipient).filter_by(case_id="CASE-1", recipient_type=RecipientType.LAWYER).one()
    assert assignment.recipient_id == f"lawyer:{lawyer.id}"
    assert assignment.recipient_name == lawyer.name


def test_reassigning_case_replaces_lawyer(db_session: Session, lawyer_factory):
    first = lawyer_factory("First")
    second = lawyer_factory("Second")
    registry.assign_lawyer_to_case(db_session, first.id, "CASE-1", assigned_by="operator:ops")
    registry.assign_lawyer_to_case(db_session, second.id, "CASE-1", assigned_by="operator:ops")
    assignments = db_session.query(CaseRecipient).filter_by(case_id="CASE-1").all()
    assert [a.recipient_id for a in assignments] == [f"lawyer:{second.id}"]


def test_inactive_lawyer_cannot_be_assigned(db_session: Session, lawyer_factory):
    lawyer = lawyer_factory(status=LawyerStatus.ACTIVE)
    assert registry.deactivate_lawyer(db_session, lawyer.id).data.status == LawyerStatus.INACTIVE
    assert registry.deactivate_lawyer(db_session, lawyer.id).error_code == ErrorCode.INVALID_STATUS
    refused = registry.assign_lawyer_to_case(db_session, lawyer.id, "CASE-1", assigned_by="operator:ops")
    assert refused.error_code == ErrorCode.INVALID_STATUS


def test_referral_link_lifecycle(db_session: Session, referrer_factory):
    referrer = referrer_factory()
    link = registry.create_referral_link(db_session, referrer.id, project_id="PRJ-1").data
    assert link.code == referrer.referral_code
    assert link.full_url.endswith(f"/{referrer.referral_code}")

    registry.record_link_click(db_session, link.id)
    registry.record_link_click(db_session, link.id)
    converted = registry.record_link_conversion(db_session, link.id)
    assert converted.data.click_count == 2
    assert converted.data.conversion_count == 1
    assert [l.id for l in registry.list_referral_links(db_session, referrer.id)] == [link.id]


def test_expired_link_and_blocked_referrer(db_session: Session, referrer_factory):
    referrer = referrer_factory()
    expired = registry.create_referral_link(db_session, referrer.id, expires_at=utc_now() - timedelta(hours=1)).data
    assert registry.record_link_click(db_session, expired.id).error_code == ErrorCode.INVALID_STATUS
    assert registry.record_link_click(db_session, 999999).error_code == ErrorCode.NOT_FOUND

    blocked = referrer_factory(status=ReferrerStatus.BLOCKED)
    assert registry.create_referral_link(db_session, blocked.id).error_code == ErrorCode.INVALID_STATUS


@pytest.mark.parametrize(
    "name, name_part",
    [("Nur 'Aina'", "NUR-AINA"), ("Dr. K. Ravi", "DR-K-RAVI"), ("Ahmad Abu Bakar", "AHMAD-ABU"), ("Siti Nor Azlina", "SITI-NOR-A")],
)
def test_referral_code_strips_punctuation(name, name_part):
    code = registry.generate_referral_code(name)
    prefix, middle, suffix = code[:4], code[4:-5], code[-5:]
    assert prefix == "REF-"
    assert middle == name_part
    assert suffix[0] == "-" and suffix[1:].isalnum()
