"""Award lifecycle (state machine) and its budget effects.

    PENDING -> VERIFIED -> APPROVED -> PAID -> CLAWBACK
       |          |           |
       +----------+-----------+--> REJECTED

* approve debits the campaign (re-checked under lock) and may exhaust it.
* reject of an APPROVED award credits the amount back; PENDING/VERIFIED
  rejections never touch the budget. Reject is refused while a payout for
  the award is PROCESSING or COMPLETED.
* clawback credits the campaign and reopens an EXHAUSTED campaign.

Every unlisted transition returns ``INVALID_STATUS`` and leaves the award
untouched.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from incentive_engine.models.db.awards import Award
from incentive_engine.models.db.enums import AwardStatus, CampaignStatus, PayoutStatus, RecipientType
from incentive_engine.models.db.payouts import PayoutRequest
from incentive_engine.models.db.recipients import Lawyer, Referrer
from incentive_engine.services.campaign_store import credit_budget, debit_budget, lock_campaign
from incentive_engine.services.results import ErrorCode, ServiceResult
from incentive_engine.utils import commit_or_conflict, get_logger, log_business_event
from incentive_engine.utils.money import ZERO, to_money
from incentive_engine.utils.time import utc_now

logger = get_logger(__name__)

ALLOWED_TRANSITIONS: dict[AwardStatus, frozenset[AwardStatus]] = {
    AwardStatus.PENDING: frozenset({AwardStatus.VERIFIED, AwardStatus.REJECTED}),
    AwardStatus.VERIFIED: frozenset({AwardStatus.APPROVED, AwardStatus.REJECTED}),
    AwardStatus.APPROVED: frozenset({AwardStatus.PAID, AwardStatus.REJECTED}),
    AwardStatus.PAID: frozenset({AwardStatus.CLAWBACK}),
    AwardStatus.REJECTED: frozenset(),
    AwardStatus.CLAWBACK: frozenset(),
}

OPEN_PAYOUT_STATUSES = (PayoutStatus.PENDING, PayoutStatus.APPROVED, PayoutStatus.FAILED)
IN_FLIGHT_PAYOUT_STATUSES = (PayoutStatus.PROCESSING, PayoutStatus.COMPLETED)


def can_transition(current: AwardStatus, target: AwardStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def lock_award(session: Session, award_id: int) -> Optional[Award]:
    return (
        session.query(Award)
        .filter(Award.id == award_id)
        .populate_existing()
        .with_for_update()
        .one_or_none()
    )


def _invalid(award: Award, target: AwardStatus) -> ServiceResult[Award]:
    logger.info(
        "Award transition refused",
        award_id=award.id,
        current_status=award.status.value,
        target_status=target.value,
    )
    return ServiceResult.fail(
        ErrorCode.INVALID_STATUS,
        f"Cannot move award from {award.status.value} to {target.value}",
    )


def _adjust_recipient_earnings(session: Session, award: Award, delta: Decimal, *, count_delta: int = 0) -> None:
    """Apply an earnings change to a registered referrer / lawyer, if the award targets one.

    Recipients are registered under ``referrer:<id>`` / ``lawyer:<id>``; derived
    per-case ids (``BUYER-<case>``) have no registry row.
    """
    prefix, _, raw_id = award.recipient_id.partition(":")
    if not raw_id.isdigit():
        return
    if award.recipient_type == RecipientType.REFERRER and prefix == "referrer":
        referrer = session.get(Referrer, int(raw_id))
        if referrer is not None:
            referrer.total_earned = max(ZERO, to_money(referrer.total_earned) + delta)
            referrer.successful_referrals = max(0, referrer.successful_referrals + count_delta)
    elif award.recipient_type == RecipientType.LAWYER and prefix == "lawyer":
        lawyer = session.get(Lawyer, int(raw_id))
        if lawyer is not None:
            lawyer.total_earned = max(ZERO, to_money(lawyer.total_earned) + delta)
            lawyer.completed_cases = max(0, lawyer.completed_cases + count_delta)


def _apply(
    session: Session,
    award_id: int,
    target: AwardStatus,
    *,
    operation: str,
    actor_id: str | None,
    mutate: Callable[[Award, datetime], Optional[ServiceResult[Award]]],
    event_details: dict | None = None,
) -> ServiceResult[Award]:
    award = lock_award(session, award_id)
    if award is None:
        return ServiceResult.fail(ErrorCode.NOT_FOUND, f"Award {award_id} not found")
    if not can_transition(award.status, target):
        return _invalid(award, target)

    previous = award.status
    now = utc_now()
    failure = mutate(award, now)
    if failure is not None:
        return failure
    award.status = target
    commit_or_conflict(session, operation=operation, award_id=award_id)

    log_business_event(
        event_type=f"AWARD_{target.value}",
        details={
            "award_id": award_id,
            "campaign_id": award.campaign_id,
            "case_id": award.case_id,
            "from_status": previous.value,
            "reward_amount": award.reward_amount,
            **(event_details or {}),
        },
        actor_id=actor_id,
    )
    return ServiceResult.ok(award)


def verify_award(session: Session, award_id: int, verified_by: str) -> ServiceResult[Award]:
    def mutate(award: Award, now: datetime):
        award.verified_at = now
        award.verified_by = verified_by
        return None

    return _apply(session, award_id, AwardStatus.VERIFIED, operation="verify_award", actor_id=verified_by, mutate=mutate)


def approve_award(session: Session, award_id: int, approved_by: str) -> ServiceResult[Award]:
    """VERIFIED -> APPROVED with a budget re-check and debit in one transaction."""
    exhausted: list[bool] = []

    def mutate(award: Award, now: datetime):
        campaign = lock_campaign(session, award.campaign_id)
        amount = to_money(award.reward_amount)
        if campaign is None or to_money(campaign.budget_remaining) < amount:
            logger.warning(
                "Award approval refused: insufficient campaign budget",
                award_id=award.id,
                campaign_id=award.campaign_id,
                reward_amount=amount,
                budget_remaining=campaign.budget_remaining if campaign is not None else None,
            )
            return ServiceResult.fail(ErrorCode.BUDGET_EXHAUSTED, "Campaign budget cannot cover this award")
        exhausted.append(debit_budget(campaign, amount))
        award.approved_at = now
        award.approved_by = approved_by
        return None

    result = _apply(session, award_id, AwardStatus.APPROVED, operation="approve_award", actor_id=approved_by, mutate=mutate)
    if result.success and exhausted and exhausted[0]:
        log_business_event(
            event_type="CAMPAIGN_EXHAUSTED",
            details={"campaign_id": result.data.campaign_id, "award_id": award_id},
            actor_id=approved_by,
        )
    return result


def mark_award_paid(
    session: Session,
    award_id: int,
    payout_reference: str,
    payout_method: str,
    *,
    actor_id: str | None = None,
    commit: bool = True,
) -> ServiceResult[Award]:
    """APPROVED -> PAID. With ``commit=False`` the caller owns the transaction."""
    award = lock_award(session, award_id)
    if award is None:
        return ServiceResult.fail(ErrorCode.NOT_FOUND, f"Award {award_id} not found")
    if not can_transition(award.status, AwardStatus.PAID):
        return _invalid(award, AwardStatus.PAID)
    award.status = AwardStatus.PAID
    award.paid_at = utc_now()
    award.payout_reference = payout_reference
    award.payout_method = payout_method
    _adjust_recipient_earnings(session, award, to_money(award.reward_amount), count_delta=1)
    if commit:
        commit_or_conflict(session, operation="mark_award_paid", award_id=award_id)
    log_business_event(
        event_type="AWARD_PAID",
        details={
            "award_id": award_id,
            "campaign_id": award.campaign_id,
            "payout_reference": payout_reference,
            "payout_method": payout_method,
            "reward_amount": award.reward_amount,
        },
        actor_id=actor_id,
    )
    return ServiceResult.ok(award)


def reject_award(session: Session, award_id: int, reason: str, *, rejected_by: str | None = None) -> ServiceResult[Award]:
    if not reason or not reason.strip():
        return ServiceResult.fail(ErrorCode.VALIDATION_ERROR, "A rejection reason is required")
    credited: list[bool] = []

    def mutate(award: Award, now: datetime):
        in_flight = (
            session.query(PayoutRequest)
            .filter(PayoutRequest.award_id == award.id, PayoutRequest.status.in_(IN_FLIGHT_PAYOUT_STATUSES))
            .first()
        )
        if in_flight is not None:
            logger.info(
                "Award rejection refused: payout already with the bank",
                award_id=award.id,
                payout_id=in_flight.id,
                payout_status=in_flight.status.value,
            )
            return ServiceResult.fail(
                ErrorCode.INVALID_STATUS,
                f"Award {award.id} has a {in_flight.status.value} payout; fail or complete it first",
            )
        if award.status == AwardStatus.APPROVED:
            # approved amount goes back to the campaign (DESIGN.md: rejecting an APPROVED award)
            campaign = lock_campaign(session, award.campaign_id)
            if campaign is not None:
                credited.append(credit_budget(campaign, to_money(award.reward_amount), now))
        open_payouts = (
            session.query(PayoutRequest)
            .filter(PayoutRequest.award_id == award.id, PayoutRequest.status.in_(OPEN_PAYOUT_STATUSES))
            .all()
        )
        for payout in open_payouts:
            payout.status = PayoutStatus.CANCELLED
            payout.cancelled_at = now
            payout.cancelled_by = rejected_by
        award.status_reason = reason.strip()
        award.rejected_at = now
        return None

    return _apply(
        session,
        award_id,
        AwardStatus.REJECTED,
        operation="reject_award",
        actor_id=rejected_by,
        mutate=mutate,
        event_details={"reason": reason.strip(), "budget_credited": bool(credited)},
    )


def clawback_award(session: Session, award_id: int, reason: str, *, actor_id: str | None = None) -> ServiceResult[Award]:
    if not reason or not reason.strip():
        return ServiceResult.fail(ErrorCode.VALIDATION_ERROR, "A clawback reason is required")
    reopened: list[bool] = []

    def mutate(award: Award, now: datetime):
        campaign = lock_campaign(session, award.campaign_id)
        if campaign is not None:
            reopened.append(credit_budget(campaign, to_money(award.reward_amount), now))
        _adjust_recipient_earnings(session, award, -to_money(award.reward_amount), count_delta=-1)
        award.status_reason = reason.strip()
        award.clawback_at = now
        return None

    result = _apply(
        session,
        award_id,
        AwardStatus.CLAWBACK,
        operation="clawback_award",
        actor_id=actor_id,
        mutate=mutate,
        event_details={"reason": reason.strip()},
    )
    if result.success and reopened and reopened[0]:
        campaign = result.data.campaign
        log_business_event(
            event_type="CAMPAIGN_REACTIVATED" if campaign.status == CampaignStatus.ACTIVE else "CAMPAIGN_EXPIRED",
            details={"campaign_id": campaign.id, "award_id": award_id, "source": "clawback"},
            actor_id=actor_id,
        )
    return result


def get_award(session: Session, award_id: int) -> ServiceResult[Award]:
    award = session.get(Award, award_id)
    if award is None:
        return ServiceResult.fail(ErrorCode.NOT_FOUND, f"Award {award_id} not found")
    return ServiceResult.ok(award)


def list_awards(
    session: Session,
    *,
    case_id: str | None = None,
    recipient_id: str | None = None,
    campaign_id: int | None = None,
    status: AwardStatus | None = None,
    limit: int = 100,
    offset: int = 0,
) -> List[Award]:
    query = session.query(Award)
    if case_id:
        query = query.filter(Award.case_id == case_id)
    if recipient_id:
        query = query.filter(Award.recipient_id == recipient_id)
    if campaign_id:
        query = query.filter(Award.campaign_id == campaign_id)
    if status:
        query = query.filter(Award.status == status)
    return query.order_by(Award.id).offset(offset).limit(limit).all()


def get_pending_awards(session: Session, *, campaign_id: int | None = None) -> List[Award]:
    return list_awards(session, campaign_id=campaign_id, status=AwardStatus.PENDING, limit=1000)


__all__ = [
    "ALLOWED_TRANSITIONS",
    "can_transition",
    "lock_award",
    "verify_award",
    "approve_award",
    "mark_award_paid",
    "reject_award",
    "clawback_award",
    "get_award",
    "list_awards",
    "get_pending_awards",
]
