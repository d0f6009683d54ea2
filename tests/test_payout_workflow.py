from decimal import Decimal
import pytest
from sqlalchemy.orm import Session
from incentive_engine.models.db import Award, PayoutRequest
from incentive_engine.models.db.enums import AwardStatus, PaymentMethod, PayoutStatus, RecipientType, RewardType
from incentive_engine.services import payout_workflow
from incentive_engine.services.results import ErrorCode

REQUESTER = "operator:1"
APPROVER = "operator:2"


@pytest.fixture()
def approved_award(db_session: Session, campaign_factory, rule_factory):
    def _create(status: AwardStatus = AwardStatus.APPROVED, case_id: str = "CASE-1") -> Award:
        rule = rule_factory(campaign_factory(), reward_amount="250.00")
        award = Award(
            rule_id=rule.id,
            campaign_id=rule.campaign_id,
            case_id=case_id,
            recipient_type=RecipientType.BUYER,
            recipient_id=f"BUYER-{case_id}",
            recipient_name="Nur Aina",
            reward_type=RewardType.CASH,
            reward_amount=Decimal("250.00"),
            currency="MYR",
            status=status,
            triggered_by=rule.trigger,
        )
        db_session.add(award)
        db_session.commit()
        db_session.refresh(award)
        return award
    return _create


def _request(db_session: Session, award_id: int, method: PaymentMethod = PaymentMethod.BANK_TRANSFER, **kwargs):
    if method == PaymentMethod.BANK_TRANSFER:
        kwargs.setdefault("bank_account_ref", "MBB-5142")
    return payout_workflow.create_payout_request(
        db_session, award_id, requested_by=REQUESTER, payment_method=method, **kwargs
    )


def test_create_copies_award_and_starts_pending(db_session: Session, approved_award):
    award = approved_award()
    result = _request(db_session, award.id)
    assert result.success, result.error
    payout = result.data
    assert payout.status == PayoutStatus.PENDING
    assert payout.amount == Decimal("250.00")
    assert payout.recipient_id == award.recipient_id
    assert payout.retry_count == 0
    assert payout.max_retries == 3


def test_only_approved_awards_can_be_paid_out(db_session: Session, approved_award):
    award = approved_award(AwardStatus.VERIFIED)
    assert _request(db_session, award.id).error_code == ErrorCode.INVALID_STATUS
    assert _request(db_session, 999999).error_code == ErrorCode.NOT_FOUND


def test_one_payout_per_award(db_session: Session, approved_award):
    award = approved_award()
    first = _request(db_session, award.id)
    assert first.success
    payout_workflow.reject_payout(db_session, first.data.id, rejected_by=APPROVER, reason="wrong bank account")

    again = _request(db_session, award.id)
    assert again.error_code == ErrorCode.DUPLICATE_PAYOUT
    assert db_session.query(PayoutRequest).count() == 1


def test_destination_required_per_method(db_session: Session, approved_award):
    award = approved_award()
    assert _request(db_session, award.id, bank_account_ref=None).error_code == ErrorCode.MISSING_DESTINATION
    assert _request(db_session, award.id, PaymentMethod.EWALLET).error_code == ErrorCode.MISSING_DESTINATION
    assert _request(db_session, award.id, PaymentMethod.EWALLET, ewallet_ref="TNG-0123").success


def test_four_eyes_on_approval(db_session: Session, approved_award):
    payout = _request(db_session, approved_award().id).data

    refused = payout_workflow.approve_payout(db_session, payout.id, approved_by=REQUESTER)
    assert refused.error_code == ErrorCode.FOUR_EYES_VIOLATION
    db_session.expire_all()
    assert db_session.get(PayoutRequest, payout.id).status == PayoutStatus.PENDING

    approved = payout_workflow.approve_payout(db_session, payout.id, approved_by=APPROVER, notes="ok")
    assert approved.success
    assert approved.data.approved_by == APPROVER


def test_rejection_reason_minimum_length(db_session: Session, approved_award):
    payout = _request(db_session, approved_award().id).data

    short = payout_workflow.reject_payout(db_session, payout.id, rejected_by=APPROVER, reason="bad acct")
    assert short.error_code == ErrorCode.REASON_TOO_SHORT

    ok = payout_workflow.reject_payout(db_session, payout.id, rejected_by=APPROVER, reason="account holder mismatch")
    assert ok.success
    assert ok.data.status == PayoutStatus.REJECTED
    assert ok.data.rejection_reason == "account holder mismatch"


def test_complete_marks_award_paid(db_session: Session, approved_award):
    award = approved_award()
    payout = _request(db_session, award.id).data
    payout_workflow.approve_payout(db_session, payout.id, approved_by=APPROVER)
    processing = payout_workflow.process_payout(db_session, payout.id, processed_by=APPROVER)
    assert processing.success
    txn = processing.data.transaction_ref
    assert txn.startswith("TXN")
    assert len(txn) == len("TXN") + 8 + 6

    completed = payout_workflow.complete_payout(db_session, payout.id, bank_ref="BANK-778899", actor_id=APPROVER)
    assert completed.success
    db_session.expire_all()
    stored_award = db_session.get(Award, award.id)
    assert db_session.get(PayoutRequest, payout.id).status == PayoutStatus.COMPLETED
    assert stored_award.status == AwardStatus.PAID
    assert stored_award.payout_reference == txn
    assert stored_award.payout_method == PaymentMethod.BANK_TRANSFER.value


def test_complete_refused_when_award_no_longer_approved(db_session: Session, approved_award):
    award = approved_award()
    payout = _request(db_session, award.id).data
    payout_workflow.approve_payout(db_session, payout.id, approved_by=APPROVER)
    payout_workflow.process_payout(db_session, payout.id, processed_by=APPROVER)

    stored = db_session.get(Award, award.id)
    stored.status = AwardStatus.REJECTED
    db_session.commit()

    refused = payout_workflow.complete_payout(db_session, payout.id, bank_ref="BANK-1")
    assert refused.error_code == ErrorCode.INVALID_STATUS
    db_session.expire_all()
    assert db_session.get(PayoutRequest, payout.id).status == PayoutStatus.PROCESSING


def test_retries_are_bounded(db_session: Session, approved_award):
    payout = _request(db_session, approved_award().id).data
    payout_workflow.approve_payout(db_session, payout.id, approved_by=APPROVER)
    assert payout_workflow.process_payout(db_session, payout.id, processed_by=APPROVER).data.retry_count == 0

    for attempt in range(1, 4):
        assert payout_workflow.fail_payout(db_session, payout.id, reason="bank timeout").success
        retried = payout_workflow.process_payout(db_session, payout.id, processed_by=APPROVER)
        assert retried.success
        assert retried.data.retry_count == attempt

    payout_workflow.fail_payout(db_session, payout.id, reason="bank timeout")
    exhausted = payout_workflow.process_payout(db_session, payout.id, processed_by=APPROVER)
    assert exhausted.error_code == ErrorCode.MAX_RETRIES_EXCEEDED

    db_session.expire_all()
    stored = db_session.get(PayoutRequest, payout.id)
    assert stored.status == PayoutStatus.FAILED
    assert stored.retry_count == 3

    assert payout_workflow.cancel_payout(db_session, payout.id, cancelled_by=APPROVER, reason="manual").success


def test_fail_requires_reason(db_session: Session, approved_award):
    payout = _request(db_session, approved_award().id).data
    assert payout_workflow.fail_payout(db_session, payout.id, reason=" ").error_code == ErrorCode.VALIDATION_ERROR


def _move(db_session: Session, payout_id: int, target: PayoutStatus):
    if target == PayoutStatus.APPROVED:
        return payout_workflow.approve_payout(db_session, payout_id, approved_by=APPROVER)
    if target == PayoutStatus.REJECTED:
        return payout_workflow.reject_payout(db_session, payout_id, rejected_by=APPROVER, reason="documents incomplete")
    if target == PayoutStatus.CANCELLED:
        return payout_workflow.cancel_payout(db_session, payout_id, cancelled_by=APPROVER)
    if target == PayoutStatus.PROCESSING:
        return payout_workflow.process_payout(db_session, payout_id, processed_by=APPROVER)
    if target == PayoutStatus.COMPLETED:
        return payout_workflow.complete_payout(db_session, payout_id, bank_ref="BANK-1")
    return payout_workflow.fail_payout(db_session, payout_id, reason="bank timeout")


@pytest.mark.parametrize("current", list(PayoutStatus))
@pytest.mark.parametrize("target", [s for s in PayoutStatus if s != PayoutStatus.PENDING])
def test_payout_transitions_follow_the_table(db_session: Session, approved_award, current, target):
    payout = _request(db_session, approved_award().id).data
    stored = db_session.get(PayoutRequest, payout.id)
    stored.status = current
    db_session.commit()

    result = _move(db_session, payout.id, target)

    db_session.expire_all()
    after = db_session.get(PayoutRequest, payout.id)
    if target in payout_workflow.ALLOWED_TRANSITIONS[current]:
        assert result.success, result.error
        assert after.status == target
    else:
        assert result.error_code == ErrorCode.INVALID_STATUS
        assert after.status == current


def test_payout_stats(db_session: Session, approved_award):
    first = _request(db_session, approved_award(case_id="CASE-1").id).data
    _request(db_session, approved_award(case_id="CASE-2").id)
    payout_workflow.cancel_payout(db_session, first.id, cancelled_by=APPROVER)

    stats = payout_workflow.get_payout_stats(db_session)
    assert stats["total_requests"] == 2
    assert stats["counts"]["CANCELLED"] == 1
    assert stats["counts"]["PENDING"] == 1
    assert stats["total_pending_amount"] == Decimal("250.00")
    assert stats["total_completed_amount"] == Decimal("0.00")
