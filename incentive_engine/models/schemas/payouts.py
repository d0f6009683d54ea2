"""
Pydantic schemas for payout requests and their workflow transitions.
"""
from datetime import datetime
from decimal import Decimal
from typing import Dict, Optional
from pydantic import BaseModel, Field, ConfigDict
from ..db.enums import PaymentMethod, PayoutStatus, RecipientType

class PayoutCreate(BaseModel):
    award_id: int
    payment_method: PaymentMethod
    bank_account_ref: Optional[str] = Field(None, max_length=200)
    ewallet_ref: Optional[str] = Field(None, max_length=200)
    recipient_phone: Optional[str] = Field(None, max_length=30)
    recipient_email: Optional[str] = Field(None, max_length=200)

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "award_id": 12,
            "payment_method": "BANK_TRANSFER",
            "bank_account_ref": "MBB-5140-XXXX-2231"
        }
    })

class PayoutApproveRequest(BaseModel):
    notes: Optional[str] = Field(None, max_length=1000)

class PayoutRejectRequest(BaseModel):
    # Minimum length is enforced by the workflow so the error carries REASON_TOO_SHORT
    reason: str = Field(max_length=1000)

class PayoutCancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)

class PayoutCompleteRequest(BaseModel):
    bank_ref: str = Field(min_length=1, max_length=200)

class PayoutFailRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=1000)

class PayoutRead(BaseModel):
    id: int
    award_id: int
    campaign_id: int
    case_id: str
    recipient_type: RecipientType
    recipient_id: str
    recipient_name: Optional[str]
    amount: Decimal
    currency: str
    reward_trigger: Optional[str]
    payment_method: PaymentMethod
    bank_account_ref: Optional[str]
    ewallet_ref: Optional[str]
    status: PayoutStatus
    requested_by: str
    requested_at: Optional[datetime]
    approved_by: Optional[str]
    approved_at: Optional[datetime]
    approval_notes: Optional[str]
    rejected_by: Optional[str]
    rejected_at: Optional[datetime]
    rejection_reason: Optional[str]
    processed_by: Optional[str]
    processed_at: Optional[datetime]
    transaction_ref: Optional[str]
    bank_ref: Optional[str]
    completed_at: Optional[datetime]
    failed_at: Optional[datetime]
    failure_reason: Optional[str]
    cancelled_by: Optional[str]
    cancelled_at: Optional[datetime]
    retry_count: int
    max_retries: int

    model_config = ConfigDict(from_attributes=True)

class PayoutStats(BaseModel):
    counts: Dict[str, int]
    amounts: Dict[str, Decimal]
    total_requests: int
    total_completed_amount: Decimal
    total_pending_amount: Decimal
