from __future__ import annotations
"""SQLAlchemy model for fraud flags raised against referrers.

Flags are append-only; resolution marks them resolved but never deletes them.
"""
from datetime import datetime
from typing import TYPE_CHECKING
from sqlalchemy import Integer, String, DateTime, ForeignKey, Enum, Text, Boolean, JSON
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .recipients import Referrer
from incentive_engine.database import Base
from .enums import FraudFlagType, FraudSeverity

class FraudFlag(Base):
    __tablename__ = "fraud_flags"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    referrer_id: Mapped[int] = mapped_column(Integer, ForeignKey("referrers.id"), nullable=False, index=True)
    flag_type: Mapped[FraudFlagType] = mapped_column(Enum(FraudFlagType), nullable=False, index=True)
    severity: Mapped[FraudSeverity] = mapped_column(Enum(FraudSeverity), nullable=False, index=True)
    details: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    detected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    resolved: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    resolved_by: Mapped[str | None] = mapped_column(String, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    referrer: Mapped["Referrer"] = relationship("Referrer", back_populates="fraud_flags")
