from __future__ import annotations
"""SQLAlchemy model for incentive rules (trigger → reward) owned by a campaign."""
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from sqlalchemy import Integer, String, Text, DateTime, Boolean, Numeric, Enum, ForeignKey, JSON, CheckConstraint
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .campaigns import Campaign
    from .awards import Award
from sqlalchemy.sql import func
from incentive_engine.config import INCENTIVE_SETTINGS
from incentive_engine.database import Base
from .enums import RecipientType, RewardType

_FORBIDDEN_SQL_LIST = ", ".join(f"'{t}'" for t in INCENTIVE_SETTINGS["forbidden_triggers"])  # type: ignore[union-attr]

class IncentiveRule(Base):
    __tablename__ = "incentive_rules"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    campaign_id: Mapped[int] = mapped_column(Integer, ForeignKey("incentive_campaigns.id"), nullable=False, index=True)
    # Stored as free text so the allow-list can grow without a migration;
    # the forbidden set is additionally enforced by the check constraint below.
    trigger: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    trigger_conditions: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    recipient_type: Mapped[RecipientType] = mapped_column(Enum(RecipientType), nullable=False)
    reward_type: Mapped[RewardType] = mapped_column(Enum(RewardType), nullable=False)
    reward_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    reward_description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # None → fall back to the campaign cap (case / recipient) or unlimited (total)
    max_awards_per_case: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_awards_per_recipient: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_total_awards: Mapped[int | None] = mapped_column(Integer, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    total_awards_issued: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_amount_awarded: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=func.now(), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    campaign: Mapped["Campaign"] = relationship("Campaign", back_populates="rules")
    awards: Mapped[list["Award"]] = relationship("Award", back_populates="rule")

    __table_args__ = (
        CheckConstraint(f"upper(trigger) NOT IN ({_FORBIDDEN_SQL_LIST})", name="rule_trigger_not_forbidden"),
        CheckConstraint("reward_amount > 0", name="rule_reward_amount_positive"),
    )
    __mapper_args__ = {"version_id_col": version}
