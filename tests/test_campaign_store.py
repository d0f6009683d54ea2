from datetime import timedelta
from decimal import Decimal
from sqlalchemy.orm import Session
from incentive_engine.models.db.enums import CampaignStatus
from incentive_engine.services import campaign_store
from incentive_engine.services.results import ErrorCode
from incentive_engine.utils.time import utc_now


def test_create_campaign_starts_in_draft_with_full_budget(db_session: Session):
    result = campaign_store.create_campaign(
        db_session,
        developer_id="DEV-9",
        project_id="PRJ-9",
        name="Doc upload bonus",
        budget_total=Decimal("5000"),
        created_by="operator:1",
    )
    assert result.success, result.error
    campaign = result.data
    assert campaign.status == CampaignStatus.DRAFT
    assert campaign.budget_remaining == campaign.budget_total == Decimal("5000.00")
    assert campaign.max_awards_per_case == 1
    assert campaign.max_awards_per_recipient == 1
    assert campaign.currency == "MYR"


def test_create_campaign_validation(db_session: Session):
    bad_budget = campaign_store.create_campaign(
        db_session, developer_id="D", project_id="P", name="x", budget_total=Decimal("0"), created_by="op"
    )
    assert bad_budget.error_code == ErrorCode.VALIDATION_ERROR

    now = utc_now()
    bad_dates = campaign_store.create_campaign(
        db_session,
        developer_id="D",
        project_id="P",
        name="x",
        budget_total=Decimal("10"),
        created_by="op",
        start_date=now,
        end_date=now - timedelta(days=1),
    )
    assert bad_dates.error_code == ErrorCode.VALIDATION_ERROR


def test_lifecycle_transitions(db_session: Session, campaign_factory):
    campaign = campaign_factory(status=CampaignStatus.DRAFT)

    assert campaign_store.pause_campaign(db_session, campaign.id).error_code == ErrorCode.INVALID_STATUS
    assert campaign_store.activate_campaign(db_session, campaign.id).data.status == CampaignStatus.ACTIVE
    assert campaign_store.pause_campaign(db_session, campaign.id).data.status == CampaignStatus.PAUSED
    assert campaign_store.activate_campaign(db_session, campaign.id).data.status == CampaignStatus.ACTIVE
    assert campaign_store.cancel_campaign(db_session, campaign.id).data.status == CampaignStatus.CANCELLED

    for op in (campaign_store.activate_campaign, campaign_store.pause_campaign, campaign_store.cancel_campaign):
        refused = op(db_session, campaign.id)
        assert refused.error_code == ErrorCode.INVALID_STATUS


def test_activate_refused_after_end_date(db_session: Session, campaign_factory):
    campaign = campaign_factory(status=CampaignStatus.PAUSED, start_offset_days=-10, end_offset_days=-1)
    result = campaign_store.activate_campaign(db_session, campaign.id)
    assert result.error_code == ErrorCode.CAMPAIGN_EXPIRED


def test_update_campaign_rejects_budget_and_terminal(db_session: Session, campaign_factory):
    campaign = campaign_factory()
    refused = campaign_store.update_campaign(
        db_session, campaign.id, actor_id="op", changes={"budget_total": Decimal("99999")}
    )
    assert refused.error_code == ErrorCode.VALIDATION_ERROR

    ok = campaign_store.update_campaign(
        db_session, campaign.id, actor_id="op", changes={"name": "Renamed", "max_awards_per_case": 3}
    )
    assert ok.success
    assert ok.data.name == "Renamed"
    assert ok.data.max_awards_per_case == 3

    campaign_store.cancel_campaign(db_session, campaign.id)
    terminal = campaign_store.update_campaign(db_session, campaign.id, actor_id="op", changes={"name": "Again"})
    assert terminal.error_code == ErrorCode.INVALID_STATUS


def test_expire_campaigns_sweeps_only_past_end(db_session: Session, campaign_factory):
    past = campaign_factory(start_offset_days=-10, end_offset_days=-1)
    paused_past = campaign_factory(status=CampaignStatus.PAUSED, start_offset_days=-10, end_offset_days=-1)
    future = campaign_factory(end_offset_days=5)
    open_ended = campaign_factory(end_offset_days=None)
    draft_past = campaign_factory(status=CampaignStatus.DRAFT, start_offset_days=-10, end_offset_days=-1)

    expired = campaign_store.expire_campaigns(db_session)
    assert set(expired) == {past.id, paused_past.id}

    db_session.expire_all()
    assert db_session.get(type(future), future.id).status == CampaignStatus.ACTIVE
    assert db_session.get(type(open_ended), open_ended.id).status == CampaignStatus.ACTIVE
    assert db_session.get(type(draft_past), draft_past.id).status == CampaignStatus.DRAFT


def test_debit_and_credit_budget_flip_exhausted(campaign_factory):
    campaign = campaign_factory(budget_total="300")
    assert campaign_store.debit_budget(campaign, Decimal("100")) is False
    assert campaign_store.debit_budget(campaign, Decimal("200")) is True
    assert campaign.status == CampaignStatus.EXHAUSTED
    assert campaign.budget_remaining == Decimal("0.00")

    assert campaign_store.credit_budget(campaign, Decimal("150")) is True
    assert campaign.status == CampaignStatus.ACTIVE
    assert campaign.budget_remaining == Decimal("150.00")


def test_credit_never_exceeds_total(campaign_factory):
    campaign = campaign_factory(budget_total="300", budget_remaining="250")
    campaign_store.credit_budget(campaign, Decimal("100"))
    assert campaign.budget_remaining == Decimal("300.00")


def test_credit_reopens_past_end_campaign_as_expired(campaign_factory):
    campaign = campaign_factory(
        budget_total="100", budget_remaining="0", status=CampaignStatus.EXHAUSTED,
        start_offset_days=-10, end_offset_days=-1,
    )
    assert campaign_store.credit_budget(campaign, Decimal("50")) is True
    assert campaign.status == CampaignStatus.EXPIRED


def test_campaign_stats_reports_spend(db_session: Session, campaign_factory):
    campaign = campaign_factory(budget_total="1000", budget_remaining="750")
    stats = campaign_store.get_campaign_stats(db_session, campaign.id)
    assert stats.success
    assert stats.data["budget_spent"] == Decimal("250.00")
    assert stats.data["budget_used_pct"] == 25.0
    assert stats.data["total_awards"] == 0
    assert campaign_store.get_campaign_stats(db_session, 999999).error_code == ErrorCode.NOT_FOUND


def test_resuming_a_drained_campaign_lands_in_exhausted(db_session: Session, campaign_factory):
    campaign = campaign_factory(status=CampaignStatus.PAUSED, budget_total="500", budget_remaining="0")
    result = campaign_store.activate_campaign(db_session, campaign.id)
    assert result.success
    assert result.data.status == CampaignStatus.EXHAUSTED
    assert campaign_store.pause_campaign(db_session, campaign.id).error_code == ErrorCode.INVALID_STATUS
