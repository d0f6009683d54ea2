"""Registry of external incentive recipients: referrers, lawyers and referral links.

Recipient ids used on awards and case assignments are ``referrer:<id>`` and
``lawyer:<id>``; buyers are identified per case and never registered.
"""
from __future__ import annotations

import re
import secrets
import string
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from incentive_engine.config import REFERRAL_SETTINGS
from incentive_engine.models.db.enums import (
    FraudFlagType,
    LawyerStatus,
    LawyerVerificationMethod,
    RecipientType,
    ReferrerStatus,
)
from incentive_engine.models.db.fraud_flags import FraudFlag
from incentive_engine.models.db.recipients import Lawyer, ReferralLink, Referrer
from incentive_engine.services.fraud_screen import append_fraud_flag, lock_referrer, referrer_recipient_id
from incentive_engine.services.recipient_resolver import assign_case_recipient
from incentive_engine.services.results import ErrorCode, ServiceResult
from incentive_engine.services.risk_scoring import compute_risk_score, should_auto_block
from incentive_engine.utils import commit_or_conflict, get_logger, log_business_event
from incentive_engine.utils.phone import normalize_phone
from incentive_engine.utils.time import ensure_aware, utc_now

logger = get_logger(__name__)

_CODE_ALPHABET = string.ascii_uppercase + string.digits
_NAME_NOISE = re.compile(r"[^A-Z0-9 ]")


def lawyer_recipient_id(lawyer: Lawyer) -> str:
    return f"lawyer:{lawyer.id}"


def generate_referral_code(name: str) -> str:
    """``REF-<NAME>-<RAND>``; the name part keeps letters and digits only, dash-joined and truncated."""
    name_part = _normalize_person_name(name).replace(" ", "-")[: int(REFERRAL_SETTINGS["code_name_length"])].strip("-")  # type: ignore[arg-type]
    random_part = "".join(
        secrets.choice(_CODE_ALPHABET) for _ in range(int(REFERRAL_SETTINGS["code_random_length"]))  # type: ignore[arg-type]
    )
    return f"{REFERRAL_SETTINGS['code_prefix']}-{name_part}-{random_part}"


def _normalize_person_name(name: str | None) -> str:
    cleaned = _NAME_NOISE.sub("", (name or "").upper())
    return " ".join(cleaned.split())


# ------------------------------- referrers -------------------------------- #

def register_referrer(
    session: Session, *, name: str, phone: str, email: str | None = None, actor_id: str | None = None
) -> ServiceResult[Referrer]:
    normalized = normalize_phone(phone)
    if not normalized:
        return ServiceResult.fail(ErrorCode.VALIDATION_ERROR, "A phone number is required")
    if session.query(Referrer).filter(Referrer.phone_normalized == normalized).first():
        return ServiceResult.fail(ErrorCode.DUPLICATE_PHONE, "Phone number is already registered")

    code = generate_referral_code(name)
    while session.query(Referrer).filter(Referrer.referral_code == code).first():
        code = generate_referral_code(name)

    referrer = Referrer(
        name=name,
        phone=phone,
        phone_normalized=normalized,
        email=email,
        referral_code=code,
        status=ReferrerStatus.PENDING,
        risk_score=0,
    )
    session.add(referrer)
    commit_or_conflict(session, operation="register_referrer")
    session.refresh(referrer)
    log_business_event(
        event_type="REFERRER_REGISTERED",
        details={"referrer_id": referrer.id, "referral_code": code},
        actor_id=actor_id,
    )
    return ServiceResult.ok(referrer)


def get_referrer(session: Session, referrer_id: int) -> ServiceResult[Referrer]:
    referrer = session.get(Referrer, referrer_id)
    if referrer is None:
        return ServiceResult.fail(ErrorCode.NOT_FOUND, f"Referrer {referrer_id} not found")
    return ServiceResult.ok(referrer)


def get_referrer_by_code(session: Session, referral_code: str) -> Optional[Referrer]:
    return (
        session.query(Referrer)
        .filter(func.upper(Referrer.referral_code) == referral_code.strip().upper())
        .one_or_none()
    )


def list_referrers(
    session: Session, *, status: ReferrerStatus | None = None, limit: int = 100, offset: int = 0
) -> List[Referrer]:
    query = session.query(Referrer)
    if status:
        query = query.filter(Referrer.status == status)
    return query.order_by(Referrer.id).offset(offset).limit(limit).all()


def _referrer_transition(
    session: Session,
    referrer_id: int,
    *,
    allowed_from: frozenset[ReferrerStatus],
    target: ReferrerStatus,
    event_type: str,
    actor_id: str | None,
    reason: str | None = None,
) -> ServiceResult[Referrer]:
    referrer = lock_referrer(session, referrer_id)
    if referrer is None:
        return ServiceResult.fail(ErrorCode.NOT_FOUND, f"Referrer {referrer_id} not found")
    if referrer.status not in allowed_from:
        return ServiceResult.fail(
            ErrorCode.INVALID_STATUS,
            f"Referrer in status {referrer.status.value} cannot move to {target.value}",
        )
    if target == ReferrerStatus.ACTIVE and should_auto_block(referrer.fraud_flags):
        return ServiceResult.fail(
            ErrorCode.INVALID_STATUS, "Referrer has unresolved blocking fraud flags"
        )
    previous = referrer.status
    referrer.status = target
    if event_type == "REFERRER_VERIFIED":
        referrer.verified_at = utc_now()
        referrer.verified_method = "OTP"
    commit_or_conflict(session, operation=event_type.lower(), referrer_id=referrer_id)
    log_business_event(
        event_type=event_type,
        details={"referrer_id": referrer_id, "from_status": previous.value, "reason": reason},
        actor_id=actor_id,
    )
    return ServiceResult.ok(referrer)


def verify_referrer(session: Session, referrer_id: int, *, actor_id: str | None = None) -> ServiceResult[Referrer]:
    return _referrer_transition(
        session,
        referrer_id,
        allowed_from=frozenset({ReferrerStatus.PENDING}),
        target=ReferrerStatus.ACTIVE,
        event_type="REFERRER_VERIFIED",
        actor_id=actor_id,
    )


def suspend_referrer(
    session: Session, referrer_id: int, *, reason: str | None = None, actor_id: str | None = None
) -> ServiceResult[Referrer]:
    return _referrer_transition(
        session,
        referrer_id,
        allowed_from=frozenset({ReferrerStatus.ACTIVE, ReferrerStatus.PENDING}),
        target=ReferrerStatus.SUSPENDED,
        event_type="REFERRER_SUSPENDED",
        actor_id=actor_id,
        reason=reason,
    )


def reinstate_referrer(session: Session, referrer_id: int, *, actor_id: str | None = None) -> ServiceResult[Referrer]:
    """SUSPENDED / BLOCKED -> ACTIVE once no blocking flag is left unresolved."""
    return _referrer_transition(
        session,
        referrer_id,
        allowed_from=frozenset({ReferrerStatus.SUSPENDED, ReferrerStatus.BLOCKED}),
        target=ReferrerStatus.ACTIVE,
        event_type="REFERRER_REINSTATED",
        actor_id=actor_id,
    )


def block_referrer(
    session: Session, referrer_id: int, *, reason: str | None = None, actor_id: str | None = None
) -> ServiceResult[Referrer]:
    return _referrer_transition(
        session,
        referrer_id,
        allowed_from=frozenset({ReferrerStatus.PENDING, ReferrerStatus.ACTIVE, ReferrerStatus.SUSPENDED}),
        target=ReferrerStatus.BLOCKED,
        event_type="REFERRER_BLOCKED",
        actor_id=actor_id,
        reason=reason,
    )


def update_referrer_bank_details(
    session: Session,
    referrer_id: int,
    *,
    bank_name: str,
    bank_account_number: str,
    bank_account_name: str,
    actor_id: str | None = None,
) -> ServiceResult[Referrer]:
    """Store payout bank details; a holder name that differs from the referrer raises BANK_MISMATCH."""
    referrer = lock_referrer(session, referrer_id)
    if referrer is None:
        return ServiceResult.fail(ErrorCode.NOT_FOUND, f"Referrer {referrer_id} not found")
    referrer.bank_name = bank_name
    referrer.bank_account_number = bank_account_number
    referrer.bank_account_name = bank_account_name

    flag: Optional[FraudFlag] = None
    if _normalize_person_name(bank_account_name) != _normalize_person_name(referrer.name):
        flag = append_fraud_flag(
            session,
            referrer,
            FraudFlagType.BANK_MISMATCH,
            {"bank_account_name": bank_account_name, "referrer_name": referrer.name},
        )
    commit_or_conflict(session, operation="update_referrer_bank_details", referrer_id=referrer_id)
    log_business_event(
        event_type="REFERRER_BANK_DETAILS_UPDATED",
        details={"referrer_id": referrer_id, "bank_name": bank_name, "name_mismatch": flag is not None},
        actor_id=actor_id,
    )
    return ServiceResult.ok(referrer)


def raise_fraud_flag(
    session: Session,
    referrer_id: int,
    flag_type: FraudFlagType,
    *,
    details: Dict[str, Any] | None = None,
    actor_id: str | None = None,
) -> ServiceResult[FraudFlag]:
    referrer = lock_referrer(session, referrer_id)
    if referrer is None:
        return ServiceResult.fail(ErrorCode.NOT_FOUND, f"Referrer {referrer_id} not found")
    flag = append_fraud_flag(session, referrer, flag_type, {**(details or {}), "raised_by": actor_id})
    commit_or_conflict(session, operation="raise_fraud_flag", referrer_id=referrer_id)
    log_business_event(
        event_type="FRAUD_FLAG_RAISED",
        details={
            "referrer_id": referrer_id,
            "flag_id": flag.id,
            "flag_type": flag_type.value,
            "risk_score": referrer.risk_score,
            "referrer_status": referrer.status.value,
            "manual": True,
        },
        actor_id=actor_id,
    )
    return ServiceResult.ok(flag)


def resolve_fraud_flag(
    session: Session, flag_id: int, *, resolved_by: str, notes: str | None = None
) -> ServiceResult[FraudFlag]:
    """Mark a flag resolved and recompute the score. Never unblocks by itself."""
    flag = session.get(FraudFlag, flag_id)
    if flag is None:
        return ServiceResult.fail(ErrorCode.NOT_FOUND, f"Fraud flag {flag_id} not found")
    if flag.resolved:
        return ServiceResult.fail(ErrorCode.INVALID_STATUS, "Fraud flag is already resolved")
    referrer = lock_referrer(session, flag.referrer_id)
    flag.resolved = True
    flag.resolved_by = resolved_by
    flag.resolved_at = utc_now()
    flag.resolution_notes = notes
    if referrer is not None:
        referrer.risk_score = compute_risk_score(referrer.fraud_flags)
    commit_or_conflict(session, operation="resolve_fraud_flag", flag_id=flag_id)
    log_business_event(
        event_type="FRAUD_FLAG_RESOLVED",
        details={
            "flag_id": flag_id,
            "referrer_id": flag.referrer_id,
            "risk_score": referrer.risk_score if referrer is not None else None,
        },
        actor_id=resolved_by,
    )
    return ServiceResult.ok(flag)


def list_fraud_flags(session: Session, referrer_id: int, *, include_resolved: bool = True) -> List[FraudFlag]:
    query = session.query(FraudFlag).filter(FraudFlag.referrer_id == referrer_id)
    if not include_resolved:
        query = query.filter(FraudFlag.resolved.is_(False))
    return query.order_by(FraudFlag.id).all()


# -------------------------------- lawyers --------------------------------- #

def register_lawyer(
    session: Session,
    *,
    name: str,
    email: str,
    firm_name: str | None = None,
    phone: str | None = None,
    actor_id: str | None = None,
) -> ServiceResult[Lawyer]:
    email_key = email.strip().lower()
    if session.query(Lawyer).filter(func.lower(Lawyer.email) == email_key).first():
        return ServiceResult.fail(ErrorCode.DUPLICATE_EMAIL, "Email is already registered")
    lawyer = Lawyer(name=name, email=email_key, firm_name=firm_name, phone=phone, status=LawyerStatus.PENDING)
    session.add(lawyer)
    commit_or_conflict(session, operation="register_lawyer")
    session.refresh(lawyer)
    log_business_event(event_type="LAWYER_REGISTERED", details={"lawyer_id": lawyer.id}, actor_id=actor_id)
    return ServiceResult.ok(lawyer)


def get_lawyer(session: Session, lawyer_id: int) -> ServiceResult[Lawyer]:
    lawyer = session.get(Lawyer, lawyer_id)
    if lawyer is None:
        return ServiceResult.fail(ErrorCode.NOT_FOUND, f"Lawyer {lawyer_id} not found")
    return ServiceResult.ok(lawyer)


def list_lawyers(
    session: Session, *, status: LawyerStatus | None = None, limit: int = 100, offset: int = 0
) -> List[Lawyer]:
    query = session.query(Lawyer)
    if status:
        query = query.filter(Lawyer.status == status)
    return query.order_by(Lawyer.id).offset(offset).limit(limit).all()


def _lock_lawyer(session: Session, lawyer_id: int) -> Optional[Lawyer]:
    return (
        session.query(Lawyer)
        .filter(Lawyer.id == lawyer_id)
        .populate_existing()
        .with_for_update()
        .one_or_none()
    )


def verify_lawyer(
    session: Session,
    lawyer_id: int,
    *,
    verified_by: str,
    method: LawyerVerificationMethod = LawyerVerificationMethod.OTP,
) -> ServiceResult[Lawyer]:
    lawyer = _lock_lawyer(session, lawyer_id)
    if lawyer is None:
        return ServiceResult.fail(ErrorCode.NOT_FOUND, f"Lawyer {lawyer_id} not found")
    if lawyer.status != LawyerStatus.PENDING:
        return ServiceResult.fail(ErrorCode.INVALID_STATUS, f"Lawyer is already {lawyer.status.value}")
    lawyer.status = LawyerStatus.VERIFIED
    lawyer.verified_at = utc_now()
    lawyer.verified_by = verified_by
    lawyer.verified_method = method
    commit_or_conflict(session, operation="verify_lawyer", lawyer_id=lawyer_id)
    log_business_event(
        event_type="LAWYER_VERIFIED",
        details={"lawyer_id": lawyer_id, "method": method.value},
        actor_id=verified_by,
    )
    return ServiceResult.ok(lawyer)


def assign_lawyer_to_case(
    session: Session, lawyer_id: int, case_id: str, *, assigned_by: str
) -> ServiceResult[Lawyer]:
    """Assign a lawyer to a case; a PENDING lawyer is verified by the assignment itself."""
    lawyer = _lock_lawyer(session, lawyer_id)
    if lawyer is None:
        return ServiceResult.fail(ErrorCode.NOT_FOUND, f"Lawyer {lawyer_id} not found")
    if lawyer.status == LawyerStatus.INACTIVE:
        return ServiceResult.fail(ErrorCode.INVALID_STATUS, "Lawyer is inactive")
    now = utc_now()
    if lawyer.status == LawyerStatus.PENDING:
        lawyer.verified_at = now
        lawyer.verified_by = assigned_by
        lawyer.verified_method = LawyerVerificationMethod.AGENT_ASSIGN
    lawyer.status = LawyerStatus.ACTIVE
    lawyer.total_cases = (lawyer.total_cases or 0) + 1
    assign_case_recipient(
        session,
        case_id=case_id,
        recipient_type=RecipientType.LAWYER,
        recipient_id=lawyer_recipient_id(lawyer),
        recipient_name=lawyer.name,
        assigned_by=assigned_by,
    )
    commit_or_conflict(session, operation="assign_lawyer_to_case", lawyer_id=lawyer_id, case_id=case_id)
    log_business_event(
        event_type="LAWYER_ASSIGNED",
        details={"lawyer_id": lawyer_id, "case_id": case_id, "total_cases": lawyer.total_cases},
        actor_id=assigned_by,
    )
    return ServiceResult.ok(lawyer)


def deactivate_lawyer(session: Session, lawyer_id: int, *, actor_id: str | None = None) -> ServiceResult[Lawyer]:
    lawyer = _lock_lawyer(session, lawyer_id)
    if lawyer is None:
        return ServiceResult.fail(ErrorCode.NOT_FOUND, f"Lawyer {lawyer_id} not found")
    if lawyer.status == LawyerStatus.INACTIVE:
        return ServiceResult.fail(ErrorCode.INVALID_STATUS, "Lawyer is already inactive")
    lawyer.status = LawyerStatus.INACTIVE
    commit_or_conflict(session, operation="deactivate_lawyer", lawyer_id=lawyer_id)
    log_business_event(event_type="LAWYER_DEACTIVATED", details={"lawyer_id": lawyer_id}, actor_id=actor_id)
    return ServiceResult.ok(lawyer)


# ----------------------------- referral links ----------------------------- #

def create_referral_link(
    session: Session,
    referrer_id: int,
    *,
    project_id: str | None = None,
    developer_id: str | None = None,
    expires_at: datetime | None = None,
    actor_id: str | None = None,
) -> ServiceResult[ReferralLink]:
    referrer = session.get(Referrer, referrer_id)
    if referrer is None:
        return ServiceResult.fail(ErrorCode.NOT_FOUND, f"Referrer {referrer_id} not found")
    if referrer.status == ReferrerStatus.BLOCKED:
        return ServiceResult.fail(ErrorCode.INVALID_STATUS, "Blocked referrers cannot create links")
    base_url = str(REFERRAL_SETTINGS["link_base_url"]).rstrip("/")
    link = ReferralLink(
        referrer_id=referrer_id,
        code=referrer.referral_code,
        full_url=f"{base_url}/{referrer.referral_code}",
        project_id=project_id,
        developer_id=developer_id,
        expires_at=ensure_aware(expires_at),
        is_active=True,
        click_count=0,
        conversion_count=0,
    )
    session.add(link)
    commit_or_conflict(session, operation="create_referral_link", referrer_id=referrer_id)
    session.refresh(link)
    log_business_event(
        event_type="REFERRAL_LINK_CREATED",
        details={"link_id": link.id, "referrer_id": referrer_id, "project_id": project_id},
        actor_id=actor_id,
    )
    return ServiceResult.ok(link)


def _bump_link(session: Session, link_id: int, counter: str) -> ServiceResult[ReferralLink]:
    link = (
        session.query(ReferralLink)
        .filter(ReferralLink.id == link_id)
        .populate_existing()
        .with_for_update()
        .one_or_none()
    )
    if link is None:
        return ServiceResult.fail(ErrorCode.NOT_FOUND, f"Referral link {link_id} not found")
    expires_at = ensure_aware(link.expires_at)
    if not link.is_active or (expires_at is not None and expires_at < utc_now()):
        return ServiceResult.fail(ErrorCode.INVALID_STATUS, "Referral link is inactive or expired")
    setattr(link, counter, getattr(link, counter) + 1)
    commit_or_conflict(session, operation=f"record_link_{counter}", link_id=link_id)
    return ServiceResult.ok(link)


def record_link_click(session: Session, link_id: int) -> ServiceResult[ReferralLink]:
    return _bump_link(session, link_id, "click_count")


def record_link_conversion(session: Session, link_id: int) -> ServiceResult[ReferralLink]:
    return _bump_link(session, link_id, "conversion_count")


def list_referral_links(session: Session, referrer_id: int) -> List[ReferralLink]:
    return session.query(ReferralLink).filter(ReferralLink.referrer_id == referrer_id).order_by(ReferralLink.id).all()


__all__ = [
    "referrer_recipient_id",
    "lawyer_recipient_id",
    "generate_referral_code",
    "register_referrer",
    "get_referrer",
    "get_referrer_by_code",
    "list_referrers",
    "verify_referrer",
    "suspend_referrer",
    "reinstate_referrer",
    "block_referrer",
    "update_referrer_bank_details",
    "raise_fraud_flag",
    "resolve_fraud_flag",
    "list_fraud_flags",
    "register_lawyer",
    "get_lawyer",
    "list_lawyers",
    "verify_lawyer",
    "assign_lawyer_to_case",
    "deactivate_lawyer",
    "create_referral_link",
    "record_link_click",
    "record_link_conversion",
    "list_referral_links",
]
