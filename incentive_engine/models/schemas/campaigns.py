"""
Pydantic schemas for incentive campaign management.
"""
from datetime import datetime
from typing import Optional, Dict
from decimal import Decimal
from pydantic import BaseModel, Field, ConfigDict, model_validator
from ..db.enums import CampaignStatus

class CampaignCreate(BaseModel):
    project_id: str = Field(min_length=1, max_length=100)
    developer_id: Optional[str] = Field(None, max_length=100, description="Defaults to the operator's developer id")
    name: str = Field(min_length=1, max_length=300)
    description: Optional[str] = Field(None, max_length=2000)
    budget_total: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    max_awards_per_case: Optional[int] = Field(None, ge=1)
    max_awards_per_recipient: Optional[int] = Field(None, ge=1)

    @model_validator(mode="after")
    def _check_dates(self):
        if self.start_date and self.end_date and self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "project_id": "PRJ-SERENIA-01",
            "name": "Early document upload bonus",
            "budget_total": "10000.00",
            "start_date": "2026-01-01T00:00:00Z",
            "end_date": "2026-06-30T23:59:59Z",
            "max_awards_per_case": 1,
            "max_awards_per_recipient": 1
        }
    })

class CampaignUpdate(BaseModel):
    """Budget and status are deliberately absent; use the lifecycle endpoints."""
    name: Optional[str] = Field(None, min_length=1, max_length=300)
    description: Optional[str] = Field(None, max_length=2000)
    end_date: Optional[datetime] = None
    max_awards_per_case: Optional[int] = Field(None, ge=1)
    max_awards_per_recipient: Optional[int] = Field(None, ge=1)

    model_config = ConfigDict(extra="forbid")

class CampaignRead(BaseModel):
    id: int
    developer_id: str
    project_id: str
    name: str
    description: Optional[str]
    budget_total: Decimal
    budget_remaining: Decimal
    currency: str
    start_date: datetime
    end_date: Optional[datetime]
    max_awards_per_case: int
    max_awards_per_recipient: int
    status: CampaignStatus
    created_by: str
    created_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)

class CampaignStats(BaseModel):
    campaign_id: int
    status: str
    currency: str
    budget_total: Decimal
    budget_remaining: Decimal
    budget_spent: Decimal
    budget_used_pct: float
    award_counts: Dict[str, int]
    award_amounts: Dict[str, Decimal]
    total_awards: int
