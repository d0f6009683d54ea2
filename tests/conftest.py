import os
import secrets
import sys
from datetime import timedelta
from decimal import Decimal
from pathlib import Path
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Ensure project root on sys.path so 'incentive_engine' resolves without an install
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from incentive_engine.main import app  # type: ignore
from incentive_engine.database import Base  # type: ignore
from incentive_engine.api import deps  # type: ignore
"""Pytest fixtures and factories.

All model modules are imported through ``incentive_engine.models.db`` before
``Base.metadata.create_all()`` so every relationship target is mapped.
"""
from incentive_engine.models.db import (
    Operator, Campaign, IncentiveRule, Referrer, Lawyer,
)
from incentive_engine.models.db.enums import (
    CampaignStatus,
    OperatorRole,
    RecipientType,
    ReferrerStatus,
    LawyerStatus,
    RewardType,
)
from incentive_engine.utils.phone import normalize_phone
from incentive_engine.utils.time import utc_now

# File-based SQLite so the request sessions and the test session share one database
SQLALCHEMY_TEST_URL = "sqlite+pysqlite:///./test_incentive_engine.db"
engine = create_engine(
    SQLALCHEMY_TEST_URL,
    connect_args={"check_same_thread": False},
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

@pytest.fixture(scope="session", autouse=True)
def create_test_db():
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()
    try:
        os.remove("test_incentive_engine.db")
    except OSError:
        pass

@pytest.fixture(autouse=True)
def _fresh_schema():
    """Every test starts from empty tables so budgets and cap counts never leak between tests."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield

@pytest.fixture()
def db_session():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()

@pytest.fixture()
def other_session():
    """A second, independent session for racing writers against ``db_session``."""
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()

# Override dependency
def _override_get_db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()

app.dependency_overrides[deps.get_db] = _override_get_db

@pytest.fixture()
def client():
    return TestClient(app)

# ---------- Data factory helpers ----------

@pytest.fixture()
def operator_factory(db_session):
    def _create(role: OperatorRole = OperatorRole.OPERATIONS, *, developer_id: str | None = None, name: str | None = None):
        suffix = secrets.token_hex(3)
        if role == OperatorRole.DEVELOPER and developer_id is None:
            developer_id = "DEV-1"
        operator = Operator(
            name=name or f"{role.value.title()} {suffix}",
            email=f"{role.value.lower()}_{suffix}@example.com",
            api_key=f"key_{secrets.token_hex(12)}",
            role=role,
            developer_id=developer_id,
        )
        db_session.add(operator)
        db_session.commit()
        db_session.refresh(operator)
        return operator
    return _create

@pytest.fixture()
def auth_headers():
    def _headers(operator: Operator) -> dict:
        return {"Authorization": f"Bearer {operator.api_key}"}
    return _headers

@pytest.fixture()
def campaign_factory(db_session):
    def _create(
        *,
        budget_total: str | Decimal = "1000.00",
        budget_remaining: str | Decimal | None = None,
        status: CampaignStatus = CampaignStatus.ACTIVE,
        developer_id: str = "DEV-1",
        project_id: str = "PRJ-1",
        max_awards_per_case: int = 1,
        max_awards_per_recipient: int = 1,
        start_offset_days: int = -1,
        end_offset_days: int | None = 30,
    ):
        now = utc_now()
        total = Decimal(str(budget_total))
        campaign = Campaign(
            developer_id=developer_id,
            project_id=project_id,
            name=f"Campaign {secrets.token_hex(2)}",
            budget_total=total,
            budget_remaining=Decimal(str(budget_remaining)) if budget_remaining is not None else total,
            currency="MYR",
            start_date=now + timedelta(days=start_offset_days),
            end_date=now + timedelta(days=end_offset_days) if end_offset_days is not None else None,
            max_awards_per_case=max_awards_per_case,
            max_awards_per_recipient=max_awards_per_recipient,
            status=status,
            created_by="operator:test",
        )
        db_session.add(campaign)
        db_session.commit()
        db_session.refresh(campaign)
        return campaign
    return _create

@pytest.fixture()
def rule_factory(db_session):
    def _create(
        campaign: Campaign,
        *,
        trigger: str = "DOCS_COMPLETE_CONFIRMED",
        recipient_type: RecipientType = RecipientType.BUYER,
        reward_amount: str | Decimal = "200.00",
        reward_type: RewardType = RewardType.CASH,
        trigger_conditions: dict | None = None,
        max_awards_per_case: int | None = None,
        max_awards_per_recipient: int | None = None,
        max_total_awards: int | None = None,
        is_active: bool = True,
    ):
        rule = IncentiveRule(
            campaign_id=campaign.id,
            trigger=trigger,
            trigger_conditions=trigger_conditions,
            recipient_type=recipient_type,
            reward_type=reward_type,
            reward_amount=Decimal(str(reward_amount)),
            max_awards_per_case=max_awards_per_case,
            max_awards_per_recipient=max_awards_per_recipient,
            max_total_awards=max_total_awards,
            is_active=is_active,
            total_awards_issued=0,
            total_amount_awarded=Decimal("0"),
        )
        db_session.add(rule)
        db_session.commit()
        db_session.refresh(rule)
        return rule
    return _create

@pytest.fixture()
def referrer_factory(db_session):
    def _create(
        name: str = "Ahmad Faizal",
        phone: str | None = None,
        *,
        status: ReferrerStatus = ReferrerStatus.ACTIVE,
    ):
        if phone is None:
            phone = "01" + "".join(secrets.choice("0123456789") for _ in range(8))
        referrer = Referrer(
            name=name,
            phone=phone,
            phone_normalized=normalize_phone(phone),
            referral_code=f"REF-TEST-{secrets.token_hex(3).upper()}",
            status=status,
            risk_score=0,
        )
        db_session.add(referrer)
        db_session.commit()
        db_session.refresh(referrer)
        return referrer
    return _create

@pytest.fixture()
def lawyer_factory(db_session):
    def _create(name: str = "Siti Rahman", *, status: LawyerStatus = LawyerStatus.PENDING):
        lawyer = Lawyer(
            name=name,
            email=f"lawyer_{secrets.token_hex(4)}@example.com",
            firm_name="Rahman & Co",
            status=status,
        )
        db_session.add(lawyer)
        db_session.commit()
        db_session.refresh(lawyer)
        return lawyer
    return _create
