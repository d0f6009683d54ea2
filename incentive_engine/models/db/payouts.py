from __future__ import annotations
"""SQLAlchemy model for payout requests (one per APPROVED award)."""
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from sqlalchemy import Integer, String, Text, DateTime, Numeric, Enum, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .awards import Award
from sqlalchemy.sql import func
from incentive_engine.database import Base
from .enums import PayoutStatus, PaymentMethod, RecipientType

class PayoutRequest(Base):
    __tablename__ = "payout_requests"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    # Unique: at most one payout per award, also under concurrent creation
    award_id: Mapped[int] = mapped_column(Integer, ForeignKey("incentive_awards.id"), nullable=False, unique=True)
    campaign_id: Mapped[int] = mapped_column(Integer, ForeignKey("incentive_campaigns.id"), nullable=False, index=True)
    case_id: Mapped[str] = mapped_column(String, nullable=False, index=True)

    recipient_type: Mapped[RecipientType] = mapped_column(Enum(RecipientType), nullable=False)
    recipient_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    recipient_name: Mapped[str | None] = mapped_column(String, nullable=True)
    recipient_phone: Mapped[str | None] = mapped_column(String, nullable=True)
    recipient_email: Mapped[str | None] = mapped_column(String, nullable=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="MYR", nullable=False)
    reward_trigger: Mapped[str | None] = mapped_column(String(64), nullable=True)

    payment_method: Mapped[PaymentMethod] = mapped_column(Enum(PaymentMethod), nullable=False)
    bank_account_ref: Mapped[str | None] = mapped_column(String, nullable=True)
    ewallet_ref: Mapped[str | None] = mapped_column(String, nullable=True)

    status: Mapped[PayoutStatus] = mapped_column(Enum(PayoutStatus), default=PayoutStatus.PENDING, index=True)

    requested_by: Mapped[str] = mapped_column(String, nullable=False)
    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    approved_by: Mapped[str | None] = mapped_column(String, nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approval_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejected_by: Mapped[str | None] = mapped_column(String, nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_by: Mapped[str | None] = mapped_column(String, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    transaction_ref: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    bank_ref: Mapped[str | None] = mapped_column(String, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_by: Mapped[str | None] = mapped_column(String, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_retries: Mapped[int] = mapped_column(Integer, default=3, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=func.now(), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    award: Mapped["Award"] = relationship("Award", back_populates="payout")

    __table_args__ = (
        CheckConstraint("amount > 0", name="payout_amount_positive"),
    )
    __mapper_args__ = {"version_id_col": version}
