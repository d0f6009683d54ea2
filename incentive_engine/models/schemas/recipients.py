"""
Pydantic schemas for the recipient registry: referrers, lawyers, referral
links, fraud flags and referral validation.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional
from pydantic import BaseModel, EmailStr, Field, ConfigDict
from ..db.enums import (
    FraudFlagType,
    FraudSeverity,
    LawyerStatus,
    LawyerVerificationMethod,
    ReferrerStatus,
)

# ------------------------------- Referrers -------------------------------- #

class ReferrerCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    phone: str = Field(min_length=6, max_length=30)
    email: Optional[EmailStr] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {"name": "Ahmad Faizal", "phone": "+60 12-345 6789", "email": "faizal@example.com"}
    })

class ReferrerRead(BaseModel):
    id: int
    name: str
    phone: str
    email: Optional[str]
    referral_code: str
    status: ReferrerStatus
    verified_at: Optional[datetime]
    bank_name: Optional[str]
    bank_account_name: Optional[str]
    total_referrals: int
    successful_referrals: int
    total_earned: Decimal
    risk_score: int
    created_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)

class ReferrerStatusChange(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)

class BankDetailsUpdate(BaseModel):
    bank_name: str = Field(min_length=1, max_length=100)
    bank_account_number: str = Field(min_length=4, max_length=40)
    bank_account_name: str = Field(min_length=1, max_length=200)

# ------------------------------ Fraud flags ------------------------------- #

class FraudFlagCreate(BaseModel):
    flag_type: FraudFlagType
    details: Optional[Dict[str, Any]] = None

class FraudFlagResolve(BaseModel):
    notes: Optional[str] = Field(None, max_length=1000)

class FraudFlagRead(BaseModel):
    id: int
    referrer_id: int
    flag_type: FraudFlagType
    severity: FraudSeverity
    details: Optional[Dict[str, Any]]
    detected_at: datetime
    resolved: bool
    resolved_by: Optional[str]
    resolved_at: Optional[datetime]
    resolution_notes: Optional[str]

    model_config = ConfigDict(from_attributes=True)

# ---------------------------- Referral links ------------------------------ #

class ReferralLinkCreate(BaseModel):
    project_id: Optional[str] = Field(None, max_length=100)
    developer_id: Optional[str] = Field(None, max_length=100)
    expires_at: Optional[datetime] = None

class ReferralLinkRead(BaseModel):
    id: int
    referrer_id: int
    code: str
    full_url: str
    project_id: Optional[str]
    developer_id: Optional[str]
    click_count: int
    conversion_count: int
    is_active: bool
    expires_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)

# -------------------------- Referral validation --------------------------- #

class ReferralValidateRequest(BaseModel):
    buyer_phone: str = Field(min_length=6, max_length=30)
    referral_code: str = Field(min_length=1, max_length=100)
    buyer_hash: Optional[str] = Field(None, max_length=200)
    case_id: Optional[str] = Field(None, max_length=100)

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "buyer_phone": "012-987 6543",
            "referral_code": "REF-AHMAD-FAIZ-7K2Q",
            "case_id": "CASE-2026-00042"
        }
    })

class ReferralValidationRead(BaseModel):
    valid: bool
    referrer_id: Optional[int] = None
    referrer_name: Optional[str] = None
    fraud_flag: Optional[FraudFlagRead] = None
    reason: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

# -------------------------------- Lawyers --------------------------------- #

class LawyerCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    email: EmailStr
    firm_name: Optional[str] = Field(None, max_length=200)
    phone: Optional[str] = Field(None, max_length=30)

class LawyerVerifyRequest(BaseModel):
    method: LawyerVerificationMethod = LawyerVerificationMethod.OTP

class LawyerAssignRequest(BaseModel):
    case_id: str = Field(min_length=1, max_length=100)

class LawyerRead(BaseModel):
    id: int
    name: str
    firm_name: Optional[str]
    phone: Optional[str]
    email: str
    status: LawyerStatus
    verified_at: Optional[datetime]
    verified_by: Optional[str]
    verified_method: Optional[LawyerVerificationMethod]
    total_cases: int
    completed_cases: int
    total_earned: Decimal
    created_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)
