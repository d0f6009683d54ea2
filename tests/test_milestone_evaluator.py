from decimal import Decimal
import pytest
from sqlalchemy.orm import Session
from incentive_engine.models.db import Award, Campaign, IncentiveRule
from incentive_engine.models.db.enums import AwardStatus, CampaignStatus, RecipientType
from incentive_engine.services import award_ledger, recipient_registry
from incentive_engine.services.campaign_store import debit_budget
from incentive_engine.services.fraud_screen import validate_referral
from incentive_engine.services.milestone_evaluator import evaluate_milestone
from incentive_engine.services.recipient_resolver import DerivedRecipientResolver
from incentive_engine.services.results import ErrorCode
from incentive_engine.utils.transactions import StorageConflictError, flush_or_conflict


def test_forbidden_trigger_is_blocked_without_awards(db_session: Session, campaign_factory, rule_factory):
    rule_factory(campaign_factory())
    for trigger in ("APPROVED", "loan_disbursed", " Kelulusan "):
        result = evaluate_milestone(db_session, "CASE-1", trigger, "evt-1")
        assert result.evaluated is False
        assert result.blocked is not None
        assert result.blocked.forbidden_trigger == trigger
        assert result.awards_issued == []
    assert db_session.query(Award).count() == 0


def test_no_rules_for_trigger_is_a_clean_evaluation(db_session: Session):
    result = evaluate_milestone(db_session, "CASE-1", "RETURN_VISIT")
    assert result.evaluated is True
    assert result.blocked is None
    assert result.triggered_rules == []
    assert result.awards_issued == []


def test_budget_1000_reward_200_scenario(db_session: Session, campaign_factory, rule_factory):
    campaign = campaign_factory(budget_total="1000")
    rule = rule_factory(campaign, reward_amount="200", max_awards_per_recipient=1)

    first = evaluate_milestone(db_session, "CASE-7", rule.trigger, "evt-1")
    assert len(first.awards_issued) == 1
    award = first.awards_issued[0]
    assert award.status == AwardStatus.PENDING
    assert award.recipient_id == "BUYER-CASE-7"
    assert award.trigger_proof_event_id == "evt-1"

    assert award_ledger.verify_award(db_session, award.id, "operator:ops").success
    assert award_ledger.approve_award(db_session, award.id, "operator:fin").success
    assert db_session.get(Campaign, campaign.id).budget_remaining == Decimal("800.00")

    second = evaluate_milestone(db_session, "CASE-7", rule.trigger, "evt-2")
    assert second.evaluated is True
    assert second.awards_issued == []
    assert [s.rule_id for s in second.skipped_rules] == [rule.id]
    db_session.expire_all()
    assert db_session.get(Campaign, campaign.id).budget_remaining == Decimal("800.00")
    assert db_session.query(Award).count() == 1


def test_per_recipient_cap_across_cases(db_session: Session, campaign_factory, rule_factory, referrer_factory):
    campaign = campaign_factory()
    rule = rule_factory(
        campaign,
        trigger="REFERRAL_CASE_REACHED_STEP",
        recipient_type=RecipientType.REFERRER,
        max_awards_per_case=5,
        max_awards_per_recipient=1,
    )
    referrer = referrer_factory(phone="0121111111")
    assert validate_referral(db_session, "0132222222", referrer.referral_code, case_id="CASE-A").valid
    assert validate_referral(db_session, "0133333333", referrer.referral_code, case_id="CASE-B").valid

    first = evaluate_milestone(db_session, "CASE-A", rule.trigger)
    second = evaluate_milestone(db_session, "CASE-B", rule.trigger)
    assert [a.recipient_id for a in first.awards_issued] == [f"referrer:{referrer.id}"]
    assert second.awards_issued == []
    assert "per-recipient" in second.skipped_rules[0].reason


def test_total_cap_and_rejected_awards_do_not_count(db_session: Session, campaign_factory, rule_factory):
    rule = rule_factory(campaign_factory(), max_total_awards=2)
    a1 = evaluate_milestone(db_session, "CASE-1", rule.trigger).awards_issued[0]
    evaluate_milestone(db_session, "CASE-2", rule.trigger)
    capped = evaluate_milestone(db_session, "CASE-3", rule.trigger)
    assert capped.awards_issued == []
    assert "total cap" in capped.skipped_rules[0].reason

    assert award_ledger.reject_award(db_session, a1.id, "duplicate case", rejected_by="operator:ops").success
    reopened = evaluate_milestone(db_session, "CASE-3", rule.trigger)
    assert len(reopened.awards_issued) == 1


def test_rule_counters_track_issued_awards(db_session: Session, campaign_factory, rule_factory):
    rule = rule_factory(campaign_factory(), reward_amount="75.50")
    evaluate_milestone(db_session, "CASE-1", rule.trigger)
    evaluate_milestone(db_session, "CASE-2", rule.trigger)
    db_session.expire_all()
    stored = db_session.get(IncentiveRule, rule.id)
    assert stored.total_awards_issued == 2
    assert stored.total_amount_awarded == Decimal("151.00")


def test_trigger_conditions_must_all_match(db_session: Session, campaign_factory, rule_factory):
    rule = rule_factory(campaign_factory(), trigger="DOC_VERIFIED", trigger_conditions={"docType": "IC", "page": 1})
    miss = evaluate_milestone(db_session, "CASE-1", "DOC_VERIFIED", metadata={"docType": "IC"})
    assert miss.awards_issued == []
    assert miss.skipped_rules[0].reason == "trigger conditions not met"

    hit = evaluate_milestone(db_session, "CASE-1", "DOC_VERIFIED", metadata={"docType": "IC", "page": 1, "extra": True})
    assert [r.id for r in hit.triggered_rules] == [rule.id]


def test_inactive_campaigns_and_rules_are_skipped(db_session: Session, campaign_factory, rule_factory):
    paused = rule_factory(campaign_factory(status=CampaignStatus.PAUSED))
    not_started = rule_factory(campaign_factory(start_offset_days=3))
    rule_factory(campaign_factory(), is_active=False)

    result = evaluate_milestone(db_session, "CASE-1", "DOCS_COMPLETE_CONFIRMED")
    assert result.awards_issued == []
    reasons = {s.rule_id: s.reason for s in result.skipped_rules}
    assert set(reasons) == {paused.id, not_started.id}
    assert reasons[paused.id].startswith("campaign not active")
    assert reasons[not_started.id] == "campaign not started"


def test_past_end_campaign_is_expired_during_evaluation(db_session: Session, campaign_factory, rule_factory):
    campaign = campaign_factory(start_offset_days=-10, end_offset_days=-1)
    rule_factory(campaign)
    result = evaluate_milestone(db_session, "CASE-1", "DOCS_COMPLETE_CONFIRMED")
    assert result.awards_issued == []
    db_session.expire_all()
    assert db_session.get(Campaign, campaign.id).status == CampaignStatus.EXPIRED


def test_insufficient_budget_skips_rule(db_session: Session, campaign_factory, rule_factory):
    campaign = campaign_factory(budget_total="1000", budget_remaining="100")
    rule_factory(campaign, reward_amount="200")
    result = evaluate_milestone(db_session, "CASE-1", "DOCS_COMPLETE_CONFIRMED")
    assert result.awards_issued == []
    assert result.skipped_rules[0].reason.startswith("insufficient budget")


def test_rules_in_several_campaigns_fire_independently(db_session: Session, campaign_factory, rule_factory):
    r1 = rule_factory(campaign_factory(developer_id="DEV-1"))
    r2 = rule_factory(campaign_factory(developer_id="DEV-2"), reward_amount="50")
    result = evaluate_milestone(db_session, "CASE-1", "DOCS_COMPLETE_CONFIRMED")
    assert sorted(a.rule_id for a in result.awards_issued) == sorted([r1.id, r2.id])
    assert all(a.status == AwardStatus.PENDING for a in result.awards_issued)


def test_assigned_lawyer_receives_lawyer_rewards(db_session: Session, campaign_factory, rule_factory, lawyer_factory):
    rule = rule_factory(campaign_factory(), trigger="LAWYER_ASSIGNED_CONFIRMED", recipient_type=RecipientType.LAWYER)
    lawyer = lawyer_factory()
    assert recipient_registry.assign_lawyer_to_case(db_session, lawyer.id, "CASE-L", assigned_by="operator:ops").success

    result = evaluate_milestone(db_session, "CASE-L", rule.trigger)
    award = result.awards_issued[0]
    assert award.recipient_id == f"lawyer:{lawyer.id}"
    assert award.recipient_name == lawyer.name


def test_custom_resolver_and_metadata_name(db_session: Session, campaign_factory, rule_factory):
    rule_factory(campaign_factory())
    result = evaluate_milestone(
        db_session,
        "CASE-9",
        "DOCS_COMPLETE_CONFIRMED",
        metadata={"recipientName": "Nur Aina"},
        resolver=DerivedRecipientResolver(),
    )
    award = result.awards_issued[0]
    assert award.recipient_id == "BUYER-CASE-9"
    assert award.recipient_name == "Nur Aina"


def test_stale_rule_write_conflicts_instead_of_passing_the_cap(
    db_session: Session, other_session: Session, campaign_factory, rule_factory
):
    campaign = campaign_factory(budget_total="1000")
    rule = rule_factory(campaign, reward_amount="200", max_total_awards=1)

    # B reads the rule while it still has no awards
    stale_rule = other_session.get(IncentiveRule, rule.id)
    assert stale_rule.total_awards_issued == 0

    assert len(evaluate_milestone(db_session, "CASE-1", rule.trigger).awards_issued) == 1

    other_session.add(
        Award(
            rule_id=stale_rule.id,
            campaign_id=stale_rule.campaign_id,
            case_id="CASE-2",
            recipient_type=stale_rule.recipient_type,
            recipient_id="BUYER-CASE-2",
            reward_type=stale_rule.reward_type,
            reward_amount=stale_rule.reward_amount,
            currency="MYR",
            status=AwardStatus.PENDING,
            triggered_by=stale_rule.trigger,
        )
    )
    stale_rule.total_awards_issued += 1
    with pytest.raises(StorageConflictError):
        flush_or_conflict(other_session, operation="evaluate_milestone", rule_id=stale_rule.id)

    db_session.expire_all()
    assert db_session.query(Award).filter(Award.rule_id == rule.id).count() == 1
    assert db_session.get(IncentiveRule, rule.id).total_awards_issued == 1

    # a retry in B re-reads the rule under lock and respects the total cap
    retry = evaluate_milestone(other_session, "CASE-2", rule.trigger)
    assert retry.awards_issued == []
    assert retry.skipped_rules[0].reason.startswith("total cap reached")


def test_stale_budget_debit_conflicts_instead_of_double_spending(
    db_session: Session, other_session: Session, campaign_factory, rule_factory
):
    campaign = campaign_factory(budget_total="300")
    rule = rule_factory(campaign, reward_amount="200")
    first = evaluate_milestone(db_session, "CASE-1", rule.trigger).awards_issued[0]
    second = evaluate_milestone(db_session, "CASE-2", rule.trigger).awards_issued[0]
    first_id, second_id = first.id, second.id
    for award_id in (first_id, second_id):
        award_ledger.verify_award(db_session, award_id, "operator:ops")

    # B sees the full 300 before A approves
    stale_campaign = other_session.get(Campaign, campaign.id)
    assert stale_campaign.budget_remaining == Decimal("300.00")

    assert award_ledger.approve_award(db_session, first_id, "operator:fin").success

    debit_budget(stale_campaign, Decimal("200.00"))
    with pytest.raises(StorageConflictError):
        flush_or_conflict(other_session, operation="approve_award", campaign_id=campaign.id)

    db_session.expire_all()
    assert db_session.get(Campaign, campaign.id).budget_remaining == Decimal("100.00")

    retry = award_ledger.approve_award(other_session, second_id, "operator:fin")
    assert retry.error_code == ErrorCode.BUDGET_EXHAUSTED
    db_session.expire_all()
    assert db_session.get(Campaign, campaign.id).budget_remaining == Decimal("100.00")
    assert db_session.get(Award, second_id).status == AwardStatus.VERIFIED
