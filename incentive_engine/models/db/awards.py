from __future__ import annotations
"""SQLAlchemy model for awards issued when a rule fires for a case."""
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from sqlalchemy import Integer, String, Text, DateTime, Numeric, Enum, ForeignKey, Index
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .campaigns import Campaign
    from .rules import IncentiveRule
    from .payouts import PayoutRequest
from sqlalchemy.sql import func
from incentive_engine.database import Base
from .enums import AwardStatus, RecipientType, RewardType

class Award(Base):
    __tablename__ = "incentive_awards"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    rule_id: Mapped[int] = mapped_column(Integer, ForeignKey("incentive_rules.id"), nullable=False)
    # Denormalised for budget bookkeeping and filtering
    campaign_id: Mapped[int] = mapped_column(Integer, ForeignKey("incentive_campaigns.id"), nullable=False, index=True)
    case_id: Mapped[str] = mapped_column(String, nullable=False, index=True)

    recipient_type: Mapped[RecipientType] = mapped_column(Enum(RecipientType), nullable=False)
    recipient_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    recipient_name: Mapped[str | None] = mapped_column(String, nullable=True)

    reward_type: Mapped[RewardType] = mapped_column(Enum(RewardType), nullable=False)
    reward_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    reward_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    currency: Mapped[str] = mapped_column(String(3), default="MYR", nullable=False)

    status: Mapped[AwardStatus] = mapped_column(Enum(AwardStatus), default=AwardStatus.PENDING, index=True)
    status_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Trigger provenance
    triggered_by: Mapped[str] = mapped_column(String(64), nullable=False)
    trigger_proof_event_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    triggered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    verified_by: Mapped[str | None] = mapped_column(String, nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by: Mapped[str | None] = mapped_column(String, nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    payout_reference: Mapped[str | None] = mapped_column(String, nullable=True)
    payout_method: Mapped[str | None] = mapped_column(String, nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    clawback_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=func.now(), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    rule: Mapped["IncentiveRule"] = relationship("IncentiveRule", back_populates="awards")
    campaign: Mapped["Campaign"] = relationship("Campaign", back_populates="awards")
    payout: Mapped["PayoutRequest | None"] = relationship("PayoutRequest", back_populates="award", uselist=False)

    # Cap counting reads (rule, case) / (rule, recipient) / (rule, status)
    __table_args__ = (
        Index("ix_awards_rule_case", "rule_id", "case_id"),
        Index("ix_awards_rule_recipient", "rule_id", "recipient_id"),
        Index("ix_awards_rule_status", "rule_id", "status"),
    )
    __mapper_args__ = {"version_id_col": version}
