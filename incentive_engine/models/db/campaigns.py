from __future__ import annotations
"""SQLAlchemy model for developer-funded incentive campaigns."""
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from sqlalchemy import Integer, String, Text, DateTime, Numeric, Enum, CheckConstraint
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .rules import IncentiveRule
    from .awards import Award
from sqlalchemy.sql import func
from incentive_engine.database import Base
from .enums import CampaignStatus

class Campaign(Base):
    __tablename__ = "incentive_campaigns"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    developer_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    project_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    budget_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    budget_remaining: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="MYR", nullable=False)

    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    max_awards_per_case: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    max_awards_per_recipient: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    status: Mapped[CampaignStatus] = mapped_column(Enum(CampaignStatus), default=CampaignStatus.DRAFT, index=True)
    created_by: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=func.now(), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    rules: Mapped[list["IncentiveRule"]] = relationship("IncentiveRule", back_populates="campaign")
    awards: Mapped[list["Award"]] = relationship("Award", back_populates="campaign")

    __table_args__ = (
        CheckConstraint("budget_total > 0", name="campaign_budget_total_positive"),
        CheckConstraint("budget_remaining >= 0", name="campaign_budget_remaining_non_negative"),
        CheckConstraint("budget_remaining <= budget_total", name="campaign_budget_remaining_within_total"),
        CheckConstraint("max_awards_per_case >= 1", name="campaign_case_cap_positive"),
        CheckConstraint("max_awards_per_recipient >= 1", name="campaign_recipient_cap_positive"),
    )
    __mapper_args__ = {"version_id_col": version}
