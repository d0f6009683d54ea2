from __future__ import annotations
"""SQLAlchemy model for back-office operators (developers, ops, finance, workflow service, admins)."""
from datetime import datetime
from sqlalchemy import Integer, String, DateTime, Boolean, Enum
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from incentive_engine.database import Base
from .enums import OperatorRole

class Operator(Base):
    __tablename__ = "operators"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String, unique=True, index=True)
    email: Mapped[str] = mapped_column(String, unique=True, index=True)
    api_key: Mapped[str | None] = mapped_column(String, unique=True, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    role: Mapped[OperatorRole] = mapped_column(Enum(OperatorRole), default=OperatorRole.OPERATIONS, index=True)
    # Developer operators own campaigns for this developer id
    developer_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    @property
    def actor_id(self) -> str:
        """Identity recorded on audit columns (created_by, approved_by, ...)."""
        return f"operator:{self.id}"
