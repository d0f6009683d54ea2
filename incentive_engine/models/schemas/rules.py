"""
Pydantic schemas for incentive rules.

Trigger strings are validated by the rule store (forbidden vs. allow-list),
not here, so that forbidden attempts reach the audit trail.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field, ConfigDict
from ..db.enums import RecipientType, RewardType

class RuleCreate(BaseModel):
    campaign_id: int
    trigger: str = Field(min_length=1, max_length=64)
    recipient_type: RecipientType
    reward_type: RewardType
    reward_amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    reward_description: Optional[str] = Field(None, max_length=1000)
    trigger_conditions: Optional[Dict[str, Any]] = None
    max_awards_per_case: Optional[int] = Field(None, ge=1)
    max_awards_per_recipient: Optional[int] = Field(None, ge=1)
    max_total_awards: Optional[int] = Field(None, ge=1)

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "campaign_id": 1,
            "trigger": "DOCS_COMPLETE_CONFIRMED",
            "recipient_type": "BUYER",
            "reward_type": "VOUCHER",
            "reward_amount": "200.00",
            "reward_description": "RM200 furnishing voucher",
            "max_total_awards": 50
        }
    })

class RuleUpdate(BaseModel):
    reward_type: Optional[RewardType] = None
    reward_amount: Optional[Decimal] = Field(None, gt=0, max_digits=12, decimal_places=2)
    reward_description: Optional[str] = Field(None, max_length=1000)
    trigger_conditions: Optional[Dict[str, Any]] = None
    max_awards_per_case: Optional[int] = Field(None, ge=1)
    max_awards_per_recipient: Optional[int] = Field(None, ge=1)
    max_total_awards: Optional[int] = Field(None, ge=1)

    # Unknown fields (including ``trigger``) are rejected with 422
    model_config = ConfigDict(extra="forbid")

class RuleRead(BaseModel):
    id: int
    campaign_id: int
    trigger: str
    trigger_conditions: Optional[Dict[str, Any]]
    recipient_type: RecipientType
    reward_type: RewardType
    reward_amount: Decimal
    reward_description: Optional[str]
    max_awards_per_case: Optional[int]
    max_awards_per_recipient: Optional[int]
    max_total_awards: Optional[int]
    is_active: bool
    total_awards_issued: int
    total_amount_awarded: Decimal
    created_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)
