"""
Pydantic schemas for award ledger reads and transitions.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict
from ..db.enums import AwardStatus, RecipientType, RewardType

class AwardRead(BaseModel):
    id: int
    rule_id: int
    campaign_id: int
    case_id: str
    recipient_type: RecipientType
    recipient_id: str
    recipient_name: Optional[str]
    reward_type: RewardType
    reward_amount: Decimal
    reward_description: Optional[str]
    currency: str
    status: AwardStatus
    status_reason: Optional[str]
    triggered_by: str
    trigger_proof_event_id: Optional[str]
    triggered_at: Optional[datetime]
    verified_at: Optional[datetime]
    verified_by: Optional[str]
    approved_at: Optional[datetime]
    approved_by: Optional[str]
    paid_at: Optional[datetime]
    payout_reference: Optional[str]
    payout_method: Optional[str]
    rejected_at: Optional[datetime]
    clawback_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)

class AwardReasonRequest(BaseModel):
    """Body for reject / clawback."""
    reason: str = Field(min_length=1, max_length=1000)

class AwardMarkPaidRequest(BaseModel):
    payout_reference: str = Field(min_length=1, max_length=200)
    payout_method: str = Field(min_length=1, max_length=50)
