"""Payout workflow for APPROVED awards.

    PENDING -> APPROVED -> PROCESSING -> COMPLETED
       |          |            |
       |          |            +--> FAILED -> PROCESSING (retry, bounded)
       +--> REJECTED           |               |
       +----------+------------+---------------+--> CANCELLED
             (PENDING / APPROVED / FAILED only)

Rules:
* one payout per award (unique ``award_id``), amount copied from the award;
* approver must differ from requester (four-eyes);
* rejection needs a reason of at least ``min_rejection_reason_length``;
* a FAILED payout can be re-processed until ``retry_count`` reaches
  ``max_retries``;
* completion marks the award PAID in the same transaction.
"""
from __future__ import annotations

import secrets
import string
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from incentive_engine.config import PAYOUT_SETTINGS
from incentive_engine.models.db.enums import AwardStatus, PaymentMethod, PayoutStatus
from incentive_engine.models.db.payouts import PayoutRequest
from incentive_engine.services.award_ledger import lock_award, mark_award_paid
from incentive_engine.services.results import ErrorCode, ServiceResult
from incentive_engine.utils import commit_or_conflict, get_logger, log_business_event
from incentive_engine.utils.money import ZERO, to_money
from incentive_engine.utils.time import utc_now, yyyymmdd

logger = get_logger(__name__)

ALLOWED_TRANSITIONS: dict[PayoutStatus, frozenset[PayoutStatus]] = {
    PayoutStatus.PENDING: frozenset({PayoutStatus.APPROVED, PayoutStatus.REJECTED, PayoutStatus.CANCELLED}),
    PayoutStatus.APPROVED: frozenset({PayoutStatus.PROCESSING, PayoutStatus.CANCELLED}),
    PayoutStatus.PROCESSING: frozenset({PayoutStatus.COMPLETED, PayoutStatus.FAILED}),
    PayoutStatus.FAILED: frozenset({PayoutStatus.PROCESSING, PayoutStatus.CANCELLED}),
    PayoutStatus.COMPLETED: frozenset(),
    PayoutStatus.REJECTED: frozenset(),
    PayoutStatus.CANCELLED: frozenset(),
}

_TXN_ALPHABET = string.ascii_uppercase + string.digits


def generate_transaction_ref() -> str:
    length = int(PAYOUT_SETTINGS["transaction_ref_random_length"])  # type: ignore[arg-type]
    suffix = "".join(secrets.choice(_TXN_ALPHABET) for _ in range(length))
    return f"{PAYOUT_SETTINGS['transaction_ref_prefix']}{yyyymmdd()}{suffix}"


def lock_payout(session: Session, payout_id: int) -> Optional[PayoutRequest]:
    return (
        session.query(PayoutRequest)
        .filter(PayoutRequest.id == payout_id)
        .populate_existing()
        .with_for_update()
        .one_or_none()
    )


def _load_for_transition(
    session: Session, payout_id: int, target: PayoutStatus
) -> tuple[Optional[PayoutRequest], Optional[ServiceResult[PayoutRequest]]]:
    payout = lock_payout(session, payout_id)
    if payout is None:
        return None, ServiceResult.fail(ErrorCode.NOT_FOUND, f"Payout {payout_id} not found")
    if target not in ALLOWED_TRANSITIONS[payout.status]:
        logger.info(
            "Payout transition refused",
            payout_id=payout_id,
            current_status=payout.status.value,
            target_status=target.value,
        )
        return payout, ServiceResult.fail(
            ErrorCode.INVALID_STATUS,
            f"Cannot move payout from {payout.status.value} to {target.value}",
        )
    return payout, None


def _log_transition(payout: PayoutRequest, previous: PayoutStatus, actor_id: str | None, **details: Any) -> None:
    log_business_event(
        event_type=f"PAYOUT_{payout.status.value}",
        details={
            "payout_id": payout.id,
            "award_id": payout.award_id,
            "from_status": previous.value,
            "amount": payout.amount,
            **details,
        },
        actor_id=actor_id,
    )


def create_payout_request(
    session: Session,
    award_id: int,
    *,
    requested_by: str,
    payment_method: PaymentMethod,
    bank_account_ref: str | None = None,
    ewallet_ref: str | None = None,
    recipient_phone: str | None = None,
    recipient_email: str | None = None,
) -> ServiceResult[PayoutRequest]:
    award = lock_award(session, award_id)
    if award is None:
        return ServiceResult.fail(ErrorCode.NOT_FOUND, f"Award {award_id} not found")
    if award.status != AwardStatus.APPROVED:
        return ServiceResult.fail(
            ErrorCode.INVALID_STATUS, f"Only APPROVED awards can be paid out (award is {award.status.value})"
        )
    if session.query(PayoutRequest).filter(PayoutRequest.award_id == award_id).first():
        return ServiceResult.fail(ErrorCode.DUPLICATE_PAYOUT, f"A payout already exists for award {award_id}")
    if payment_method == PaymentMethod.BANK_TRANSFER and not bank_account_ref:
        return ServiceResult.fail(ErrorCode.MISSING_DESTINATION, "bank_account_ref is required for bank transfers")
    if payment_method == PaymentMethod.EWALLET and not ewallet_ref:
        return ServiceResult.fail(ErrorCode.MISSING_DESTINATION, "ewallet_ref is required for e-wallet payouts")
    amount = to_money(award.reward_amount)
    if amount <= ZERO:
        return ServiceResult.fail(ErrorCode.VALIDATION_ERROR, "Payout amount must be greater than 0")

    payout = PayoutRequest(
        award_id=award.id,
        campaign_id=award.campaign_id,
        case_id=award.case_id,
        recipient_type=award.recipient_type,
        recipient_id=award.recipient_id,
        recipient_name=award.recipient_name,
        recipient_phone=recipient_phone,
        recipient_email=recipient_email,
        amount=amount,
        currency=award.currency,
        reward_trigger=award.triggered_by,
        payment_method=payment_method,
        bank_account_ref=bank_account_ref,
        ewallet_ref=ewallet_ref,
        status=PayoutStatus.PENDING,
        requested_by=requested_by,
        requested_at=utc_now(),
        retry_count=0,
        max_retries=int(PAYOUT_SETTINGS["max_retries"]),  # type: ignore[arg-type]
    )
    session.add(payout)
    # unique(award_id) turns a concurrent duplicate into a StorageConflictError
    commit_or_conflict(session, operation="create_payout_request", award_id=award_id)
    session.refresh(payout)
    log_business_event(
        event_type="PAYOUT_REQUESTED",
        details={
            "payout_id": payout.id,
            "award_id": award_id,
            "amount": amount,
            "payment_method": payment_method.value,
        },
        actor_id=requested_by,
    )
    return ServiceResult.ok(payout)


def approve_payout(
    session: Session, payout_id: int, *, approved_by: str, notes: str | None = None
) -> ServiceResult[PayoutRequest]:
    payout, failure = _load_for_transition(session, payout_id, PayoutStatus.APPROVED)
    if failure is not None:
        return failure
    if payout.requested_by == approved_by:
        logger.warning("Four-eyes violation on payout approval", payout_id=payout_id, actor_id=approved_by)
        return ServiceResult.fail(
            ErrorCode.FOUR_EYES_VIOLATION, "Payout cannot be approved by the operator who requested it"
        )
    previous = payout.status
    payout.status = PayoutStatus.APPROVED
    payout.approved_by = approved_by
    payout.approved_at = utc_now()
    payout.approval_notes = notes
    commit_or_conflict(session, operation="approve_payout", payout_id=payout_id)
    _log_transition(payout, previous, approved_by)
    return ServiceResult.ok(payout)


def reject_payout(session: Session, payout_id: int, *, rejected_by: str, reason: str) -> ServiceResult[PayoutRequest]:
    min_length = int(PAYOUT_SETTINGS["min_rejection_reason_length"])  # type: ignore[arg-type]
    if not reason or len(reason.strip()) < min_length:
        return ServiceResult.fail(
            ErrorCode.REASON_TOO_SHORT, f"Rejection reason must be at least {min_length} characters"
        )
    payout, failure = _load_for_transition(session, payout_id, PayoutStatus.REJECTED)
    if failure is not None:
        return failure
    previous = payout.status
    payout.status = PayoutStatus.REJECTED
    payout.rejected_by = rejected_by
    payout.rejected_at = utc_now()
    payout.rejection_reason = reason.strip()
    commit_or_conflict(session, operation="reject_payout", payout_id=payout_id)
    _log_transition(payout, previous, rejected_by, reason=reason.strip())
    return ServiceResult.ok(payout)


def cancel_payout(
    session: Session, payout_id: int, *, cancelled_by: str, reason: str | None = None
) -> ServiceResult[PayoutRequest]:
    payout, failure = _load_for_transition(session, payout_id, PayoutStatus.CANCELLED)
    if failure is not None:
        return failure
    previous = payout.status
    payout.status = PayoutStatus.CANCELLED
    payout.cancelled_by = cancelled_by
    payout.cancelled_at = utc_now()
    if reason:
        payout.failure_reason = reason.strip()
    commit_or_conflict(session, operation="cancel_payout", payout_id=payout_id)
    _log_transition(payout, previous, cancelled_by, reason=reason)
    return ServiceResult.ok(payout)


def process_payout(session: Session, payout_id: int, *, processed_by: str) -> ServiceResult[PayoutRequest]:
    """APPROVED -> PROCESSING, or a bounded retry from FAILED."""
    payout, failure = _load_for_transition(session, payout_id, PayoutStatus.PROCESSING)
    if failure is not None:
        return failure
    previous = payout.status
    if previous == PayoutStatus.FAILED:
        if payout.retry_count >= payout.max_retries:
            logger.warning(
                "Payout retry refused: maximum retries reached",
                payout_id=payout_id,
                retry_count=payout.retry_count,
                max_retries=payout.max_retries,
            )
            return ServiceResult.fail(
                ErrorCode.MAX_RETRIES_EXCEEDED,
                f"Maximum retry attempts ({payout.max_retries}) reached; manual intervention required",
            )
        payout.retry_count += 1
    payout.status = PayoutStatus.PROCESSING
    payout.processed_by = processed_by
    payout.processed_at = utc_now()
    payout.transaction_ref = generate_transaction_ref()
    payout.failure_reason = None
    commit_or_conflict(session, operation="process_payout", payout_id=payout_id)
    _log_transition(
        payout, previous, processed_by, transaction_ref=payout.transaction_ref, retry_count=payout.retry_count
    )
    return ServiceResult.ok(payout)


def complete_payout(
    session: Session, payout_id: int, *, bank_ref: str, actor_id: str | None = None
) -> ServiceResult[PayoutRequest]:
    """PROCESSING -> COMPLETED and the award APPROVED -> PAID, atomically."""
    payout, failure = _load_for_transition(session, payout_id, PayoutStatus.COMPLETED)
    if failure is not None:
        return failure
    paid = mark_award_paid(
        session,
        payout.award_id,
        payout_reference=payout.transaction_ref or bank_ref,
        payout_method=payout.payment_method.value,
        actor_id=actor_id,
        commit=False,
    )
    if not paid.success:
        session.rollback()
        logger.error(
            "Payout completion refused: award cannot be marked paid",
            payout_id=payout_id,
            award_id=payout.award_id,
            error=paid.error,
        )
        return ServiceResult.fail(paid.error_code or ErrorCode.INVALID_STATUS, paid.error or "Award cannot be paid")
    previous = payout.status
    payout.status = PayoutStatus.COMPLETED
    payout.bank_ref = bank_ref
    payout.completed_at = utc_now()
    commit_or_conflict(session, operation="complete_payout", payout_id=payout_id)
    _log_transition(payout, previous, actor_id, bank_ref=bank_ref)
    return ServiceResult.ok(payout)


def fail_payout(
    session: Session, payout_id: int, *, reason: str, actor_id: str | None = None
) -> ServiceResult[PayoutRequest]:
    if not reason or not reason.strip():
        return ServiceResult.fail(ErrorCode.VALIDATION_ERROR, "A failure reason is required")
    payout, failure = _load_for_transition(session, payout_id, PayoutStatus.FAILED)
    if failure is not None:
        return failure
    previous = payout.status
    payout.status = PayoutStatus.FAILED
    payout.failed_at = utc_now()
    payout.failure_reason = reason.strip()
    commit_or_conflict(session, operation="fail_payout", payout_id=payout_id)
    _log_transition(payout, previous, actor_id, reason=reason.strip(), retry_count=payout.retry_count)
    return ServiceResult.ok(payout)


def get_payout(session: Session, payout_id: int) -> ServiceResult[PayoutRequest]:
    payout = session.get(PayoutRequest, payout_id)
    if payout is None:
        return ServiceResult.fail(ErrorCode.NOT_FOUND, f"Payout {payout_id} not found")
    return ServiceResult.ok(payout)


def list_payouts(
    session: Session,
    *,
    status: PayoutStatus | None = None,
    recipient_id: str | None = None,
    campaign_id: int | None = None,
    limit: int = 100,
    offset: int = 0,
) -> List[PayoutRequest]:
    query = session.query(PayoutRequest)
    if status:
        query = query.filter(PayoutRequest.status == status)
    if recipient_id:
        query = query.filter(PayoutRequest.recipient_id == recipient_id)
    if campaign_id:
        query = query.filter(PayoutRequest.campaign_id == campaign_id)
    return query.order_by(PayoutRequest.id).offset(offset).limit(limit).all()


def get_payout_stats(session: Session, *, campaign_id: int | None = None) -> Dict[str, Any]:
    query = session.query(
        PayoutRequest.status, func.count(PayoutRequest.id), func.coalesce(func.sum(PayoutRequest.amount), 0)
    )
    if campaign_id:
        query = query.filter(PayoutRequest.campaign_id == campaign_id)
    rows = query.group_by(PayoutRequest.status).all()
    counts = {s.value: 0 for s in PayoutStatus}
    amounts = {s.value: ZERO for s in PayoutStatus}
    for status, count, amount in rows:
        counts[status.value] = int(count)
        amounts[status.value] = to_money(amount)
    return {
        "counts": counts,
        "amounts": amounts,
        "total_requests": sum(counts.values()),
        "total_completed_amount": amounts[PayoutStatus.COMPLETED.value],
        "total_pending_amount": amounts[PayoutStatus.PENDING.value]
        + amounts[PayoutStatus.APPROVED.value]
        + amounts[PayoutStatus.PROCESSING.value],
    }


__all__ = [
    "ALLOWED_TRANSITIONS",
    "generate_transaction_ref",
    "create_payout_request",
    "approve_payout",
    "reject_payout",
    "cancel_payout",
    "process_payout",
    "complete_payout",
    "fail_payout",
    "get_payout",
    "list_payouts",
    "get_payout_stats",
]
