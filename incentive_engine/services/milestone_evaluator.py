"""Milestone evaluation orchestrator.

Single public function ``evaluate_milestone(session, case_id, trigger, ...)``:
1. Global guard: a forbidden (approval-class) trigger short-circuits with a
   ``blocked`` result and an audit event. No rule lookup happens.
2. Loads active rules whose trigger equals the input exactly (row locked).
3. Per rule, guards in order:
   * campaign ACTIVE (past end_date -> moved to EXPIRED; start_date in the
     future -> skipped),
   * campaign budget covers the reward,
   * caps (per-case / per-recipient / total),
   * ``trigger_conditions`` all equal the corresponding metadata values.
   A failing guard skips the rule (logged, not an error).
4. Each passing rule issues one PENDING award and bumps the rule's counters
   (which bumps its version, so a concurrent evaluation of the same rule
   conflicts at commit instead of double-issuing past a cap).

Everything commits once at the end. ``proof_event_id`` is recorded on each
award but not de-duplicated here; replay protection is the caller's job.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.orm import Session

from incentive_engine.models.db.awards import Award
from incentive_engine.models.db.campaigns import Campaign
from incentive_engine.models.db.enums import AwardStatus, CampaignStatus
from incentive_engine.models.db.rules import IncentiveRule
from incentive_engine.services.campaign_store import has_started, is_past_end
from incentive_engine.services.cap_enforcement import check_caps
from incentive_engine.services.recipient_resolver import RecipientResolver, default_resolver
from incentive_engine.services.rule_store import get_rules_by_trigger
from incentive_engine.services.triggers import is_forbidden_trigger
from incentive_engine.utils import commit_or_conflict, flush_or_conflict, get_logger, log_business_event
from incentive_engine.utils.money import to_money
from incentive_engine.utils.time import utc_now

logger = get_logger(__name__)


@dataclass
class BlockedEvaluation:
    reason: str
    forbidden_trigger: str


@dataclass
class SkippedRule:
    rule_id: int
    reason: str


@dataclass
class MilestoneEvaluationResult:
    evaluated: bool
    triggered_rules: List[IncentiveRule] = field(default_factory=list)
    awards_issued: List[Award] = field(default_factory=list)
    skipped_rules: List[SkippedRule] = field(default_factory=list)
    blocked: Optional[BlockedEvaluation] = None


def _conditions_match(conditions: Optional[Dict[str, Any]], metadata: Mapping[str, Any]) -> bool:
    if not conditions:
        return True
    return all(key in metadata and metadata[key] == expected for key, expected in conditions.items())


def _campaign_guard(campaign: Campaign, now) -> Optional[str]:
    if campaign.status != CampaignStatus.ACTIVE:
        return f"campaign not active ({campaign.status.value})"
    if is_past_end(campaign, now):
        campaign.status = CampaignStatus.EXPIRED
        log_business_event(
            event_type="CAMPAIGN_EXPIRED",
            details={"campaign_id": campaign.id, "source": "evaluate_milestone"},
        )
        return "campaign end date passed"
    if not has_started(campaign, now):
        return "campaign not started"
    return None


def evaluate_milestone(
    session: Session,
    case_id: str,
    trigger: str,
    proof_event_id: str | None = None,
    metadata: Mapping[str, Any] | None = None,
    *,
    resolver: RecipientResolver | None = None,
    actor_id: str | None = None,
) -> MilestoneEvaluationResult:
    metadata = dict(metadata or {})
    resolver = resolver or default_resolver

    if is_forbidden_trigger(trigger):
        logger.error("Forbidden trigger blocked", trigger=trigger, case_id=case_id, proof_event_id=proof_event_id)
        log_business_event(
            event_type="FORBIDDEN_TRIGGER_ATTEMPTED",
            details={
                "source": "evaluate_milestone",
                "trigger": trigger,
                "case_id": case_id,
                "proof_event_id": proof_event_id,
            },
            actor_id=actor_id,
        )
        return MilestoneEvaluationResult(
            evaluated=False,
            blocked=BlockedEvaluation(
                reason=f"Trigger '{trigger}' is forbidden and cannot be evaluated",
                forbidden_trigger=trigger,
            ),
        )

    rules = get_rules_by_trigger(session, trigger, for_update=True)
    if not rules:
        logger.info("No active rules for trigger", trigger=trigger, case_id=case_id)
        return MilestoneEvaluationResult(evaluated=True)

    now = utc_now()
    result = MilestoneEvaluationResult(evaluated=True)
    campaigns: Dict[int, Campaign] = {}

    for rule in rules:
        campaign = campaigns.get(rule.campaign_id)
        if campaign is None:
            campaign = (
                session.query(Campaign)
                .filter(Campaign.id == rule.campaign_id)
                .populate_existing()
                .with_for_update()
                .one()
            )
            campaigns[campaign.id] = campaign

        skip_reason = _campaign_guard(campaign, now)
        reward = to_money(rule.reward_amount)
        if skip_reason is None and to_money(campaign.budget_remaining) < reward:
            skip_reason = f"insufficient budget (need {reward}, have {to_money(campaign.budget_remaining)})"

        recipient = None
        if skip_reason is None:
            recipient = resolver.resolve(session, case_id, rule.recipient_type, metadata)
            cap = check_caps(session, rule, campaign, case_id=case_id, recipient_id=recipient.recipient_id)
            if not cap.allowed:
                skip_reason = cap.reason
        if skip_reason is None and not _conditions_match(rule.trigger_conditions, metadata):
            skip_reason = "trigger conditions not met"

        if skip_reason is not None or recipient is None:
            logger.info(
                "Skipping rule",
                rule_id=rule.id,
                campaign_id=campaign.id,
                case_id=case_id,
                trigger=trigger,
                reason=skip_reason,
            )
            result.skipped_rules.append(SkippedRule(rule_id=rule.id, reason=skip_reason or "unresolved recipient"))
            continue

        award = Award(
            rule_id=rule.id,
            campaign_id=campaign.id,
            case_id=case_id,
            recipient_type=rule.recipient_type,
            recipient_id=recipient.recipient_id,
            recipient_name=recipient.recipient_name,
            reward_type=rule.reward_type,
            reward_amount=reward,
            reward_description=rule.reward_description,
            currency=campaign.currency,
            status=AwardStatus.PENDING,
            triggered_by=trigger,
            trigger_proof_event_id=proof_event_id,
            triggered_at=now,
        )
        session.add(award)
        rule.total_awards_issued = (rule.total_awards_issued or 0) + 1
        rule.total_amount_awarded = to_money(rule.total_amount_awarded) + reward
        flush_or_conflict(session, operation="evaluate_milestone", case_id=case_id, rule_id=rule.id)

        result.triggered_rules.append(rule)
        result.awards_issued.append(award)

    commit_or_conflict(session, operation="evaluate_milestone", case_id=case_id, trigger=trigger)

    for award in result.awards_issued:
        log_business_event(
            event_type="AWARD_ISSUED",
            details={
                "award_id": award.id,
                "rule_id": award.rule_id,
                "campaign_id": award.campaign_id,
                "case_id": case_id,
                "recipient_id": award.recipient_id,
                "reward_amount": award.reward_amount,
                "proof_event_id": proof_event_id,
            },
            actor_id=actor_id,
        )
    log_business_event(
        event_type="MILESTONE_EVALUATED",
        details={
            "case_id": case_id,
            "trigger": trigger,
            "rules_matched": len(rules),
            "rules_triggered": len(result.triggered_rules),
            "awards_issued": len(result.awards_issued),
        },
        actor_id=actor_id,
    )
    return result


__all__ = ["BlockedEvaluation", "SkippedRule", "MilestoneEvaluationResult", "evaluate_milestone"]
