"""Campaign lifecycle and budget bookkeeping helpers.

Status transitions:
* activate: DRAFT | PAUSED -> ACTIVE (refused once end_date has passed)
* pause:    ACTIVE -> PAUSED
* cancel:   any non-terminal -> CANCELLED (terminal = CANCELLED, EXPIRED)

Budget is never edited through this module's public operations; the award
ledger debits on approval and credits on clawback through
``debit_budget`` / ``credit_budget``.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from incentive_engine.config import INCENTIVE_SETTINGS
from incentive_engine.models.db.awards import Award
from incentive_engine.models.db.campaigns import Campaign
from incentive_engine.models.db.enums import AwardStatus, CampaignStatus
from incentive_engine.services.results import ErrorCode, ServiceResult
from incentive_engine.utils import commit_or_conflict, get_logger, log_business_event
from incentive_engine.utils.money import ZERO, to_money
from incentive_engine.utils.time import ensure_aware, utc_now

logger = get_logger(__name__)

TERMINAL_STATUSES = frozenset({CampaignStatus.CANCELLED, CampaignStatus.EXPIRED})

_TRANSITIONS: Dict[str, tuple[frozenset[CampaignStatus], CampaignStatus]] = {
    "activate": (frozenset({CampaignStatus.DRAFT, CampaignStatus.PAUSED}), CampaignStatus.ACTIVE),
    "pause": (frozenset({CampaignStatus.ACTIVE}), CampaignStatus.PAUSED),
    "cancel": (
        frozenset(s for s in CampaignStatus if s not in TERMINAL_STATUSES),
        CampaignStatus.CANCELLED,
    ),
}

UPDATABLE_FIELDS = frozenset({"name", "description", "end_date", "max_awards_per_case", "max_awards_per_recipient"})


def lock_campaign(session: Session, campaign_id: int) -> Optional[Campaign]:
    """Load a campaign with a row lock, discarding any stale identity-map state."""
    return (
        session.query(Campaign)
        .filter(Campaign.id == campaign_id)
        .populate_existing()
        .with_for_update()
        .one_or_none()
    )


def is_past_end(campaign: Campaign, now: datetime | None = None) -> bool:
    end = ensure_aware(campaign.end_date)
    return end is not None and end < (now or utc_now())


def has_started(campaign: Campaign, now: datetime | None = None) -> bool:
    start = ensure_aware(campaign.start_date)
    return start is None or start <= (now or utc_now())


# --------------------------- budget bookkeeping --------------------------- #

def debit_budget(campaign: Campaign, amount: Decimal) -> bool:
    """Subtract ``amount``; flips an ACTIVE campaign to EXHAUSTED at zero.

    Returns True when the campaign became EXHAUSTED. A PAUSED campaign stays
    PAUSED at zero. Caller has checked the balance and owns the transaction.
    """
    campaign.budget_remaining = to_money(campaign.budget_remaining) - to_money(amount)
    if campaign.budget_remaining <= ZERO and campaign.status == CampaignStatus.ACTIVE:
        campaign.status = CampaignStatus.EXHAUSTED
        return True
    return False


def credit_budget(campaign: Campaign, amount: Decimal, now: datetime | None = None) -> bool:
    """Return ``amount`` to the campaign; reopens an EXHAUSTED campaign.

    Returns True when the campaign status changed. A reopened campaign that is
    already past its end date goes to EXPIRED instead of ACTIVE.
    """
    remaining = to_money(campaign.budget_remaining) + to_money(amount)
    campaign.budget_remaining = min(remaining, to_money(campaign.budget_total))
    if campaign.status == CampaignStatus.EXHAUSTED and campaign.budget_remaining > ZERO:
        campaign.status = CampaignStatus.EXPIRED if is_past_end(campaign, now) else CampaignStatus.ACTIVE
        return True
    return False


# ------------------------------- operations ------------------------------- #

def create_campaign(
    session: Session,
    *,
    developer_id: str,
    project_id: str,
    name: str,
    budget_total: Decimal,
    created_by: str,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    description: str | None = None,
    max_awards_per_case: int | None = None,
    max_awards_per_recipient: int | None = None,
    currency: str | None = None,
) -> ServiceResult[Campaign]:
    budget = to_money(budget_total)
    if budget <= ZERO:
        return ServiceResult.fail(ErrorCode.VALIDATION_ERROR, "budget_total must be greater than 0")
    start = ensure_aware(start_date) or utc_now()
    end = ensure_aware(end_date)
    if end is not None and end <= start:
        return ServiceResult.fail(ErrorCode.VALIDATION_ERROR, "end_date must be after start_date")
    case_cap = max_awards_per_case if max_awards_per_case is not None else int(INCENTIVE_SETTINGS["default_max_awards_per_case"])  # type: ignore[arg-type]
    recipient_cap = (
        max_awards_per_recipient
        if max_awards_per_recipient is not None
        else int(INCENTIVE_SETTINGS["default_max_awards_per_recipient"])  # type: ignore[arg-type]
    )
    if case_cap < 1 or recipient_cap < 1:
        return ServiceResult.fail(ErrorCode.VALIDATION_ERROR, "award caps must be at least 1")

    campaign = Campaign(
        developer_id=developer_id,
        project_id=project_id,
        name=name,
        description=description,
        budget_total=budget,
        budget_remaining=budget,
        currency=currency or str(INCENTIVE_SETTINGS["currency"]),
        start_date=start,
        end_date=end,
        max_awards_per_case=case_cap,
        max_awards_per_recipient=recipient_cap,
        status=CampaignStatus.DRAFT,
        created_by=created_by,
    )
    session.add(campaign)
    commit_or_conflict(session, operation="create_campaign", developer_id=developer_id)
    session.refresh(campaign)

    log_business_event(
        event_type="CAMPAIGN_CREATED",
        details={
            "campaign_id": campaign.id,
            "developer_id": developer_id,
            "project_id": project_id,
            "budget_total": budget,
        },
        actor_id=created_by,
    )
    return ServiceResult.ok(campaign)


def get_campaign(session: Session, campaign_id: int) -> ServiceResult[Campaign]:
    campaign = session.get(Campaign, campaign_id)
    if campaign is None:
        return ServiceResult.fail(ErrorCode.NOT_FOUND, f"Campaign {campaign_id} not found")
    return ServiceResult.ok(campaign)


def list_campaigns(
    session: Session,
    *,
    developer_id: str | None = None,
    project_id: str | None = None,
    status: CampaignStatus | None = None,
    limit: int = 100,
    offset: int = 0,
) -> List[Campaign]:
    query = session.query(Campaign)
    if developer_id:
        query = query.filter(Campaign.developer_id == developer_id)
    if project_id:
        query = query.filter(Campaign.project_id == project_id)
    if status:
        query = query.filter(Campaign.status == status)
    return query.order_by(Campaign.id).offset(offset).limit(limit).all()


def update_campaign(
    session: Session, campaign_id: int, *, actor_id: str, changes: Dict[str, Any]
) -> ServiceResult[Campaign]:
    """Edit descriptive fields and caps. Budget and status are not editable here."""
    illegal = set(changes) - UPDATABLE_FIELDS
    if illegal:
        return ServiceResult.fail(
            ErrorCode.VALIDATION_ERROR, f"Fields not updatable: {sorted(illegal)}"
        )
    campaign = lock_campaign(session, campaign_id)
    if campaign is None:
        return ServiceResult.fail(ErrorCode.NOT_FOUND, f"Campaign {campaign_id} not found")
    if campaign.status in TERMINAL_STATUSES:
        return ServiceResult.fail(
            ErrorCode.INVALID_STATUS, f"Campaign is {campaign.status.value} and can no longer be edited"
        )
    for cap_field in ("max_awards_per_case", "max_awards_per_recipient"):
        if cap_field in changes and (changes[cap_field] is None or changes[cap_field] < 1):
            return ServiceResult.fail(ErrorCode.VALIDATION_ERROR, f"{cap_field} must be at least 1")
    if "end_date" in changes:
        end = ensure_aware(changes["end_date"])
        if end is not None and end <= ensure_aware(campaign.start_date):
            return ServiceResult.fail(ErrorCode.VALIDATION_ERROR, "end_date must be after start_date")
        changes = {**changes, "end_date": end}

    for field, value in changes.items():
        setattr(campaign, field, value)
    commit_or_conflict(session, operation="update_campaign", campaign_id=campaign_id)
    log_business_event(
        event_type="CAMPAIGN_UPDATED",
        details={"campaign_id": campaign_id, "fields": sorted(changes)},
        actor_id=actor_id,
    )
    return ServiceResult.ok(campaign)


def _transition(session: Session, campaign_id: int, action: str, actor_id: str | None) -> ServiceResult[Campaign]:
    allowed_from, target = _TRANSITIONS[action]
    campaign = lock_campaign(session, campaign_id)
    if campaign is None:
        return ServiceResult.fail(ErrorCode.NOT_FOUND, f"Campaign {campaign_id} not found")
    if campaign.status not in allowed_from:
        logger.info(
            "Campaign transition refused",
            campaign_id=campaign_id,
            action=action,
            current_status=campaign.status.value,
        )
        return ServiceResult.fail(
            ErrorCode.INVALID_STATUS,
            f"Cannot {action} campaign in status {campaign.status.value}",
        )
    if action == "activate" and is_past_end(campaign):
        return ServiceResult.fail(ErrorCode.CAMPAIGN_EXPIRED, "Campaign end date has passed")

    if action == "activate" and to_money(campaign.budget_remaining) <= ZERO:
        # a campaign paused while its budget ran out resumes as EXHAUSTED
        target = CampaignStatus.EXHAUSTED

    previous = campaign.status
    campaign.status = target
    commit_or_conflict(session, operation=f"{action}_campaign", campaign_id=campaign_id)
    log_business_event(
        event_type=f"CAMPAIGN_{target.value}",
        details={"campaign_id": campaign_id, "from_status": previous.value},
        actor_id=actor_id,
    )
    return ServiceResult.ok(campaign)


def activate_campaign(session: Session, campaign_id: int, actor_id: str | None = None) -> ServiceResult[Campaign]:
    return _transition(session, campaign_id, "activate", actor_id)


def pause_campaign(session: Session, campaign_id: int, actor_id: str | None = None) -> ServiceResult[Campaign]:
    return _transition(session, campaign_id, "pause", actor_id)


def cancel_campaign(session: Session, campaign_id: int, actor_id: str | None = None) -> ServiceResult[Campaign]:
    return _transition(session, campaign_id, "cancel", actor_id)


def expire_campaigns(session: Session, now: datetime | None = None) -> List[int]:
    """Move ACTIVE / PAUSED / EXHAUSTED campaigns past their end date to EXPIRED."""
    now = now or utc_now()
    candidates: Iterable[Campaign] = (
        session.query(Campaign)
        .filter(
            Campaign.status.in_([CampaignStatus.ACTIVE, CampaignStatus.PAUSED, CampaignStatus.EXHAUSTED]),
            Campaign.end_date.is_not(None),
        )
        .with_for_update()
        .all()
    )
    expired: List[int] = []
    for campaign in candidates:
        if is_past_end(campaign, now):
            campaign.status = CampaignStatus.EXPIRED
            expired.append(campaign.id)
    if expired:
        commit_or_conflict(session, operation="expire_campaigns", expired_count=len(expired))
        for campaign_id in expired:
            log_business_event(event_type="CAMPAIGN_EXPIRED", details={"campaign_id": campaign_id})
    logger.info("Campaign expiry sweep completed", expired_count=len(expired))
    return expired


def get_campaign_stats(session: Session, campaign_id: int) -> ServiceResult[Dict[str, Any]]:
    campaign = session.get(Campaign, campaign_id)
    if campaign is None:
        return ServiceResult.fail(ErrorCode.NOT_FOUND, f"Campaign {campaign_id} not found")

    rows = (
        session.query(Award.status, func.count(Award.id), func.coalesce(func.sum(Award.reward_amount), 0))
        .filter(Award.campaign_id == campaign_id)
        .group_by(Award.status)
        .all()
    )
    counts = {s.value: 0 for s in AwardStatus}
    amounts = {s.value: ZERO for s in AwardStatus}
    for status, count, amount in rows:
        counts[status.value] = int(count)
        amounts[status.value] = to_money(amount)

    total = to_money(campaign.budget_total)
    remaining = to_money(campaign.budget_remaining)
    spent = total - remaining
    used_pct = float((spent / total * 100).quantize(Decimal("0.01"))) if total > ZERO else 0.0
    return ServiceResult.ok(
        {
            "campaign_id": campaign.id,
            "status": campaign.status.value,
            "currency": campaign.currency,
            "budget_total": total,
            "budget_remaining": remaining,
            "budget_spent": spent,
            "budget_used_pct": used_pct,
            "award_counts": counts,
            "award_amounts": amounts,
            "total_awards": sum(counts.values()),
        }
    )


__all__ = [
    "TERMINAL_STATUSES",
    "lock_campaign",
    "is_past_end",
    "has_started",
    "debit_budget",
    "credit_budget",
    "create_campaign",
    "get_campaign",
    "list_campaigns",
    "update_campaign",
    "activate_campaign",
    "pause_campaign",
    "cancel_campaign",
    "expire_campaigns",
    "get_campaign_stats",
]
