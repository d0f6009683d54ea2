from __future__ import annotations
"""SQLAlchemy models for incentive recipients (referrers, lawyers) and case assignments.

Buyers are not registered here; they are identified per case.
"""
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from sqlalchemy import Integer, String, DateTime, Boolean, Numeric, Enum, ForeignKey, UniqueConstraint, Index
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .fraud_flags import FraudFlag
from sqlalchemy.sql import func
from incentive_engine.database import Base
from .enums import ReferrerStatus, LawyerStatus, LawyerVerificationMethod, RecipientType

class Referrer(Base):
    __tablename__ = "referrers"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    phone: Mapped[str] = mapped_column(String, nullable=False)
    phone_normalized: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    referral_code: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)

    status: Mapped[ReferrerStatus] = mapped_column(Enum(ReferrerStatus), default=ReferrerStatus.PENDING, index=True)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    verified_method: Mapped[str | None] = mapped_column(String, nullable=True)

    bank_name: Mapped[str | None] = mapped_column(String, nullable=True)
    bank_account_number: Mapped[str | None] = mapped_column(String, nullable=True)
    bank_account_name: Mapped[str | None] = mapped_column(String, nullable=True)

    total_referrals: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    successful_referrals: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_earned: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    risk_score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=func.now(), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    fraud_flags: Mapped[list["FraudFlag"]] = relationship(
        "FraudFlag", back_populates="referrer", order_by="FraudFlag.id"
    )
    links: Mapped[list["ReferralLink"]] = relationship("ReferralLink", back_populates="referrer")
    referrals: Mapped[list["Referral"]] = relationship("Referral", back_populates="referrer")

    __mapper_args__ = {"version_id_col": version}


class Lawyer(Base):
    __tablename__ = "lawyers"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    firm_name: Mapped[str | None] = mapped_column(String, nullable=True)
    phone: Mapped[str | None] = mapped_column(String, nullable=True)
    email: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)

    status: Mapped[LawyerStatus] = mapped_column(Enum(LawyerStatus), default=LawyerStatus.PENDING, index=True)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    verified_by: Mapped[str | None] = mapped_column(String, nullable=True)
    verified_method: Mapped[LawyerVerificationMethod | None] = mapped_column(Enum(LawyerVerificationMethod), nullable=True)

    bank_name: Mapped[str | None] = mapped_column(String, nullable=True)
    bank_account_number: Mapped[str | None] = mapped_column(String, nullable=True)
    bank_account_name: Mapped[str | None] = mapped_column(String, nullable=True)

    total_cases: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    completed_cases: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_earned: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=func.now(), nullable=True)


class ReferralLink(Base):
    __tablename__ = "referral_links"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    referrer_id: Mapped[int] = mapped_column(Integer, ForeignKey("referrers.id"), nullable=False, index=True)
    # Same as the referrer's referral code; one referrer may hold several project-scoped links
    code: Mapped[str] = mapped_column(String, nullable=False, index=True)
    full_url: Mapped[str] = mapped_column(String, nullable=False)
    project_id: Mapped[str | None] = mapped_column(String, nullable=True)
    developer_id: Mapped[str | None] = mapped_column(String, nullable=True)
    click_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    conversion_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    referrer: Mapped["Referrer"] = relationship("Referrer", back_populates="links")


class Referral(Base):
    """One row per successful referral validation (velocity / duplicate history)."""
    __tablename__ = "referrals"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    referrer_id: Mapped[int] = mapped_column(Integer, ForeignKey("referrers.id"), nullable=False, index=True)
    buyer_phone_normalized: Mapped[str] = mapped_column(String, nullable=False, index=True)
    buyer_hash: Mapped[str | None] = mapped_column(String, nullable=True)
    case_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    referrer: Mapped["Referrer"] = relationship("Referrer", back_populates="referrals")

    __table_args__ = (
        Index("ix_referrals_referrer_created", "referrer_id", "created_at"),
    )


class CaseRecipient(Base):
    """Explicit recipient assignment for a case (e.g. the lawyer handling it)."""
    __tablename__ = "case_recipients"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    case_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    recipient_type: Mapped[RecipientType] = mapped_column(Enum(RecipientType), nullable=False)
    recipient_id: Mapped[str] = mapped_column(String, nullable=False)
    recipient_name: Mapped[str | None] = mapped_column(String, nullable=True)
    assigned_by: Mapped[str | None] = mapped_column(String, nullable=True)
    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("case_id", "recipient_type", name="uq_case_recipient_type"),
    )
