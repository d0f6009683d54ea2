"""Award cap checks for a candidate (rule, case, recipient).

Counts exclude REJECTED and CLAWBACK awards. Per-case and per-recipient caps
fall back to the campaign when the rule leaves them unset; the total cap
only exists on the rule.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from incentive_engine.models.db.awards import Award
from incentive_engine.models.db.campaigns import Campaign
from incentive_engine.models.db.enums import AwardStatus
from incentive_engine.models.db.rules import IncentiveRule

COUNTED_STATUSES = (
    AwardStatus.PENDING,
    AwardStatus.VERIFIED,
    AwardStatus.APPROVED,
    AwardStatus.PAID,
)


@dataclass
class CapCheck:
    allowed: bool
    reason: Optional[str] = None
    case_count: int = 0
    recipient_count: int = 0
    total_count: int = 0


def effective_caps(rule: IncentiveRule, campaign: Campaign) -> tuple[int, int, Optional[int]]:
    per_case = rule.max_awards_per_case if rule.max_awards_per_case is not None else campaign.max_awards_per_case
    per_recipient = (
        rule.max_awards_per_recipient
        if rule.max_awards_per_recipient is not None
        else campaign.max_awards_per_recipient
    )
    return per_case, per_recipient, rule.max_total_awards


def check_caps(
    session: Session, rule: IncentiveRule, campaign: Campaign, *, case_id: str, recipient_id: str
) -> CapCheck:
    base = session.query(Award).filter(Award.rule_id == rule.id, Award.status.in_(COUNTED_STATUSES))
    per_case, per_recipient, total_cap = effective_caps(rule, campaign)

    case_count = base.filter(Award.case_id == case_id).count()
    if case_count >= per_case:
        return CapCheck(False, f"per-case cap reached ({case_count}/{per_case})", case_count=case_count)

    recipient_count = base.filter(Award.recipient_id == recipient_id).count()
    if recipient_count >= per_recipient:
        return CapCheck(
            False,
            f"per-recipient cap reached ({recipient_count}/{per_recipient})",
            case_count=case_count,
            recipient_count=recipient_count,
        )

    total_count = 0
    if total_cap is not None:
        total_count = base.count()
        if total_count >= total_cap:
            return CapCheck(
                False,
                f"total cap reached ({total_count}/{total_cap})",
                case_count=case_count,
                recipient_count=recipient_count,
                total_count=total_count,
            )
    return CapCheck(True, case_count=case_count, recipient_count=recipient_count, total_count=total_count)


__all__ = ["CapCheck", "COUNTED_STATUSES", "effective_caps", "check_caps"]
