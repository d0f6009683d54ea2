"""Incentive rule definition.

``create_rule`` guards run in a fixed order: forbidden trigger, allow-list,
campaign existence. A forbidden attempt is an audit event, not just a
validation error. Rules are soft-deleted (``is_active=False``) and never
removed; the trigger of an existing rule is immutable.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from incentive_engine.models.db.campaigns import Campaign
from incentive_engine.models.db.enums import RecipientType, RewardType
from incentive_engine.models.db.rules import IncentiveRule
from incentive_engine.services.campaign_store import TERMINAL_STATUSES
from incentive_engine.services.results import ErrorCode, ServiceResult
from incentive_engine.services.triggers import is_allowed_trigger, is_forbidden_trigger
from incentive_engine.utils import commit_or_conflict, get_logger, log_business_event
from incentive_engine.utils.money import ZERO, to_money

logger = get_logger(__name__)

UPDATABLE_FIELDS = frozenset(
    {
        "trigger_conditions",
        "reward_type",
        "reward_amount",
        "reward_description",
        "max_awards_per_case",
        "max_awards_per_recipient",
        "max_total_awards",
    }
)
_CAP_FIELDS = ("max_awards_per_case", "max_awards_per_recipient", "max_total_awards")


def _validate_caps(values: Dict[str, Any]) -> Optional[str]:
    for cap_field in _CAP_FIELDS:
        value = values.get(cap_field)
        if value is not None and value < 1:
            return f"{cap_field} must be at least 1"
    return None


def create_rule(
    session: Session,
    *,
    campaign_id: int,
    trigger: str,
    recipient_type: RecipientType,
    reward_type: RewardType,
    reward_amount: Decimal,
    reward_description: str | None = None,
    trigger_conditions: Dict[str, Any] | None = None,
    max_awards_per_case: int | None = None,
    max_awards_per_recipient: int | None = None,
    max_total_awards: int | None = None,
    actor_id: str | None = None,
) -> ServiceResult[IncentiveRule]:
    if is_forbidden_trigger(trigger):
        logger.warning("Rule creation blocked: forbidden trigger", campaign_id=campaign_id, trigger=trigger)
        log_business_event(
            event_type="FORBIDDEN_TRIGGER_ATTEMPTED",
            details={"source": "create_rule", "campaign_id": campaign_id, "trigger": trigger},
            actor_id=actor_id,
        )
        return ServiceResult.fail(
            ErrorCode.FORBIDDEN_TRIGGER,
            f"Trigger '{trigger}' is an approval event and cannot be rewarded",
        )
    if not is_allowed_trigger(trigger):
        return ServiceResult.fail(ErrorCode.INVALID_TRIGGER, f"Trigger '{trigger}' is not a recognised milestone")

    campaign = session.get(Campaign, campaign_id)
    if campaign is None:
        return ServiceResult.fail(ErrorCode.CAMPAIGN_NOT_FOUND, f"Campaign {campaign_id} not found")
    if campaign.status in TERMINAL_STATUSES:
        return ServiceResult.fail(
            ErrorCode.INVALID_STATUS, f"Cannot add rules to a {campaign.status.value} campaign"
        )

    amount = to_money(reward_amount)
    if amount <= ZERO:
        return ServiceResult.fail(ErrorCode.VALIDATION_ERROR, "reward_amount must be greater than 0")
    cap_error = _validate_caps(
        {
            "max_awards_per_case": max_awards_per_case,
            "max_awards_per_recipient": max_awards_per_recipient,
            "max_total_awards": max_total_awards,
        }
    )
    if cap_error:
        return ServiceResult.fail(ErrorCode.VALIDATION_ERROR, cap_error)

    rule = IncentiveRule(
        campaign_id=campaign_id,
        trigger=trigger,
        trigger_conditions=trigger_conditions or None,
        recipient_type=recipient_type,
        reward_type=reward_type,
        reward_amount=amount,
        reward_description=reward_description,
        max_awards_per_case=max_awards_per_case,
        max_awards_per_recipient=max_awards_per_recipient,
        max_total_awards=max_total_awards,
        is_active=True,
        total_awards_issued=0,
        total_amount_awarded=ZERO,
    )
    session.add(rule)
    commit_or_conflict(session, operation="create_rule", campaign_id=campaign_id, trigger=trigger)
    session.refresh(rule)

    log_business_event(
        event_type="RULE_CREATED",
        details={
            "rule_id": rule.id,
            "campaign_id": campaign_id,
            "trigger": trigger,
            "recipient_type": recipient_type.value,
            "reward_amount": amount,
        },
        actor_id=actor_id,
    )
    return ServiceResult.ok(rule)


def get_rule(session: Session, rule_id: int) -> ServiceResult[IncentiveRule]:
    rule = session.get(IncentiveRule, rule_id)
    if rule is None:
        return ServiceResult.fail(ErrorCode.NOT_FOUND, f"Rule {rule_id} not found")
    return ServiceResult.ok(rule)


def list_rules_by_campaign(session: Session, campaign_id: int, *, include_inactive: bool = True) -> List[IncentiveRule]:
    query = session.query(IncentiveRule).filter(IncentiveRule.campaign_id == campaign_id)
    if not include_inactive:
        query = query.filter(IncentiveRule.is_active.is_(True))
    return query.order_by(IncentiveRule.id).all()


def get_rules_by_trigger(session: Session, trigger: str, *, for_update: bool = False) -> List[IncentiveRule]:
    """Active rules whose trigger equals ``trigger`` exactly."""
    query = (
        session.query(IncentiveRule)
        .filter(IncentiveRule.trigger == trigger, IncentiveRule.is_active.is_(True))
        .order_by(IncentiveRule.id)
    )
    if for_update:
        query = query.populate_existing().with_for_update()
    return query.all()


def update_rule(
    session: Session, rule_id: int, *, changes: Dict[str, Any], actor_id: str | None = None
) -> ServiceResult[IncentiveRule]:
    if "trigger" in changes:
        return ServiceResult.fail(ErrorCode.VALIDATION_ERROR, "Rule trigger cannot be changed")
    illegal = set(changes) - UPDATABLE_FIELDS
    if illegal:
        return ServiceResult.fail(ErrorCode.VALIDATION_ERROR, f"Fields not updatable: {sorted(illegal)}")
    cap_error = _validate_caps(changes)
    if cap_error:
        return ServiceResult.fail(ErrorCode.VALIDATION_ERROR, cap_error)
    if "reward_amount" in changes:
        amount = to_money(changes["reward_amount"])
        if amount <= ZERO:
            return ServiceResult.fail(ErrorCode.VALIDATION_ERROR, "reward_amount must be greater than 0")
        changes = {**changes, "reward_amount": amount}

    rule = (
        session.query(IncentiveRule)
        .filter(IncentiveRule.id == rule_id)
        .populate_existing()
        .with_for_update()
        .one_or_none()
    )
    if rule is None:
        return ServiceResult.fail(ErrorCode.NOT_FOUND, f"Rule {rule_id} not found")
    for field, value in changes.items():
        setattr(rule, field, value)
    commit_or_conflict(session, operation="update_rule", rule_id=rule_id)
    log_business_event(
        event_type="RULE_UPDATED",
        details={"rule_id": rule_id, "fields": sorted(changes)},
        actor_id=actor_id,
    )
    return ServiceResult.ok(rule)


def deactivate_rule(session: Session, rule_id: int, *, actor_id: str | None = None) -> ServiceResult[IncentiveRule]:
    rule = session.get(IncentiveRule, rule_id)
    if rule is None:
        return ServiceResult.fail(ErrorCode.NOT_FOUND, f"Rule {rule_id} not found")
    if not rule.is_active:
        return ServiceResult.fail(ErrorCode.INVALID_STATUS, "Rule is already inactive")
    rule.is_active = False
    commit_or_conflict(session, operation="deactivate_rule", rule_id=rule_id)
    log_business_event(
        event_type="RULE_DEACTIVATED",
        details={"rule_id": rule_id, "campaign_id": rule.campaign_id},
        actor_id=actor_id,
    )
    return ServiceResult.ok(rule)


__all__ = [
    "create_rule",
    "get_rule",
    "list_rules_by_campaign",
    "get_rules_by_trigger",
    "update_rule",
    "deactivate_rule",
]
