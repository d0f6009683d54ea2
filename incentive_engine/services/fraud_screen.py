"""Referral fraud screening.

``validate_referral`` is side-effecting on the registry even when it rejects:
flags accumulate so a referrer's fraud history survives failed attempts.

Order of checks:
1. referral code lookup (unknown / BLOCKED / SUSPENDED -> invalid, no flag)
2. self-referral (normalised phone match) -> SELF_REFERRAL, invalid
3. same buyer already referred by this referrer -> DUPLICATE_REFERRAL, invalid
   same buyer referred by someone else -> invalid, no flag
4. velocity over the farming window -> FARMING_SUSPECTED, invalid
5. velocity over the rapid window -> RAPID_REFERRALS, still valid
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from incentive_engine.config import FRAUD_SETTINGS
from incentive_engine.models.db.enums import FraudFlagType, RecipientType, ReferrerStatus
from incentive_engine.models.db.fraud_flags import FraudFlag
from incentive_engine.models.db.recipients import Referral, Referrer
from incentive_engine.services.recipient_resolver import assign_case_recipient
from incentive_engine.services.risk_scoring import compute_risk_score, severity_for, should_auto_block
from incentive_engine.utils import commit_or_conflict, get_logger, log_business_event
from incentive_engine.utils.phone import normalize_phone, phones_match
from incentive_engine.utils.time import utc_now

logger = get_logger(__name__)


@dataclass
class ReferralValidation:
    valid: bool
    referrer_id: Optional[int] = None
    referrer_name: Optional[str] = None
    fraud_flag: Optional[FraudFlag] = None
    reason: Optional[str] = None


def referrer_recipient_id(referrer: Referrer) -> str:
    return f"referrer:{referrer.id}"


def lock_referrer(session: Session, referrer_id: int) -> Optional[Referrer]:
    return (
        session.query(Referrer)
        .filter(Referrer.id == referrer_id)
        .populate_existing()
        .with_for_update()
        .one_or_none()
    )


def append_fraud_flag(
    session: Session,
    referrer: Referrer,
    flag_type: FraudFlagType,
    details: Dict[str, Any] | None = None,
    *,
    now: datetime | None = None,
) -> FraudFlag:
    """Append a flag, recompute the risk score and auto-block if required.

    Runs inside the caller's transaction; the caller commits.
    """
    flag = FraudFlag(
        referrer_id=referrer.id,
        flag_type=flag_type,
        severity=severity_for(flag_type),
        details=details or {},
        detected_at=now or utc_now(),
        resolved=False,
    )
    session.add(flag)
    referrer.fraud_flags.append(flag)
    referrer.risk_score = compute_risk_score(referrer.fraud_flags)
    if should_auto_block(referrer.fraud_flags) and referrer.status != ReferrerStatus.BLOCKED:
        referrer.status = ReferrerStatus.BLOCKED
        logger.warning(
            "Referrer auto-blocked",
            referrer_id=referrer.id,
            flag_type=flag_type.value,
            risk_score=referrer.risk_score,
        )
    return flag


def _log_flag(referrer: Referrer, flag: FraudFlag, actor_id: str | None = None) -> None:
    log_business_event(
        event_type="FRAUD_FLAG_RAISED",
        details={
            "referrer_id": referrer.id,
            "flag_id": flag.id,
            "flag_type": flag.flag_type.value,
            "severity": flag.severity.value,
            "risk_score": referrer.risk_score,
            "referrer_status": referrer.status.value,
        },
        actor_id=actor_id,
    )


def _reject_with_flag(
    session: Session,
    referrer: Referrer,
    flag_type: FraudFlagType,
    reason: str,
    details: Dict[str, Any],
    now: datetime,
) -> ReferralValidation:
    flag = append_fraud_flag(session, referrer, flag_type, details, now=now)
    commit_or_conflict(session, operation="validate_referral", referrer_id=referrer.id, flag_type=flag_type.value)
    _log_flag(referrer, flag)
    log_business_event(
        event_type="REFERRAL_REJECTED",
        details={"referrer_id": referrer.id, "reason": reason, "flag_type": flag_type.value},
    )
    return ReferralValidation(
        valid=False,
        referrer_id=referrer.id,
        referrer_name=referrer.name,
        fraud_flag=flag,
        reason=reason,
    )


def _recent_referral_count(session: Session, referrer_id: int, since: datetime) -> int:
    return (
        session.query(func.count(Referral.id))
        .filter(Referral.referrer_id == referrer_id, Referral.created_at >= since)
        .scalar()
        or 0
    )


def validate_referral(
    session: Session,
    buyer_phone: str,
    referral_code: str,
    *,
    buyer_hash: str | None = None,
    case_id: str | None = None,
) -> ReferralValidation:
    code = (referral_code or "").strip().upper()
    referrer = (
        session.query(Referrer)
        .filter(func.upper(Referrer.referral_code) == code)
        .populate_existing()
        .with_for_update()
        .one_or_none()
    )
    if referrer is None:
        logger.info("Referral rejected: unknown code", referral_code=code)
        return ReferralValidation(valid=False, reason="Invalid referral code")
    if referrer.status in (ReferrerStatus.BLOCKED, ReferrerStatus.SUSPENDED):
        logger.info("Referral rejected: referrer not eligible", referrer_id=referrer.id, status=referrer.status.value)
        return ReferralValidation(
            valid=False,
            referrer_id=referrer.id,
            referrer_name=referrer.name,
            reason=f"Referrer is {referrer.status.value.lower()}",
        )

    now = utc_now()
    buyer_normalized = normalize_phone(buyer_phone)

    if phones_match(buyer_phone, referrer.phone):
        return _reject_with_flag(
            session,
            referrer,
            FraudFlagType.SELF_REFERRAL,
            "Self-referral is not allowed",
            {"buyer_phone": buyer_normalized, "case_id": case_id},
            now,
        )

    prior = session.query(Referral).filter(Referral.buyer_phone_normalized == buyer_normalized).all()
    if any(r.referrer_id == referrer.id for r in prior):
        return _reject_with_flag(
            session,
            referrer,
            FraudFlagType.DUPLICATE_REFERRAL,
            "Buyer was already referred by this referrer",
            {"buyer_phone": buyer_normalized, "case_id": case_id},
            now,
        )
    if prior:
        logger.info("Referral rejected: buyer already referred", referrer_id=referrer.id, case_id=case_id)
        return ReferralValidation(
            valid=False,
            referrer_id=referrer.id,
            referrer_name=referrer.name,
            reason="Buyer was already referred by another referrer",
        )

    farming_window = timedelta(hours=int(FRAUD_SETTINGS["farming_window_hours"]))  # type: ignore[arg-type]
    farming_count = _recent_referral_count(session, referrer.id, now - farming_window)
    if farming_count >= int(FRAUD_SETTINGS["farming_threshold"]):  # type: ignore[arg-type]
        return _reject_with_flag(
            session,
            referrer,
            FraudFlagType.FARMING_SUSPECTED,
            "Referral volume suggests farming",
            {"referrals_in_window": farming_count, "window_hours": farming_window.total_seconds() / 3600},
            now,
        )

    rapid_flag: Optional[FraudFlag] = None
    rapid_window = timedelta(minutes=int(FRAUD_SETTINGS["rapid_window_minutes"]))  # type: ignore[arg-type]
    rapid_count = _recent_referral_count(session, referrer.id, now - rapid_window)
    has_open_rapid_flag = any(
        f.flag_type == FraudFlagType.RAPID_REFERRALS and not f.resolved for f in referrer.fraud_flags
    )
    if rapid_count >= int(FRAUD_SETTINGS["rapid_threshold"]) and not has_open_rapid_flag:  # type: ignore[arg-type]
        rapid_flag = append_fraud_flag(
            session,
            referrer,
            FraudFlagType.RAPID_REFERRALS,
            {"referrals_in_window": rapid_count, "window_minutes": rapid_window.total_seconds() / 60},
            now=now,
        )

    referrer.total_referrals = (referrer.total_referrals or 0) + 1
    session.add(
        Referral(
            referrer_id=referrer.id,
            buyer_phone_normalized=buyer_normalized,
            buyer_hash=buyer_hash,
            case_id=case_id,
            created_at=now,
        )
    )
    if case_id:
        assign_case_recipient(
            session,
            case_id=case_id,
            recipient_type=RecipientType.REFERRER,
            recipient_id=referrer_recipient_id(referrer),
            recipient_name=referrer.name,
            assigned_by="validate_referral",
        )
    commit_or_conflict(session, operation="validate_referral", referrer_id=referrer.id, case_id=case_id)

    if rapid_flag is not None:
        _log_flag(referrer, rapid_flag)
    log_business_event(
        event_type="REFERRAL_VALIDATED",
        details={"referrer_id": referrer.id, "case_id": case_id, "total_referrals": referrer.total_referrals},
    )
    return ReferralValidation(
        valid=True,
        referrer_id=referrer.id,
        referrer_name=referrer.name,
        fraud_flag=rapid_flag,
    )


__all__ = [
    "ReferralValidation",
    "referrer_recipient_id",
    "lock_referrer",
    "append_fraud_flag",
    "validate_referral",
]
