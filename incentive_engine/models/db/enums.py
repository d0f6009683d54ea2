"""Central Enum definitions for core incentive domain states.

These replace scattered string literals to ensure consistency across
DB models, schemas, and business logic.
"""
from __future__ import annotations
import enum


class CampaignStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    EXHAUSTED = "EXHAUSTED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


class RecipientType(str, enum.Enum):
    BUYER = "BUYER"
    REFERRER = "REFERRER"
    LAWYER = "LAWYER"


class RewardType(str, enum.Enum):
    CASH = "CASH"
    VOUCHER = "VOUCHER"
    REBATE = "REBATE"
    CREDIT = "CREDIT"


class AwardStatus(str, enum.Enum):
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    APPROVED = "APPROVED"
    PAID = "PAID"
    REJECTED = "REJECTED"
    CLAWBACK = "CLAWBACK"


class OperatorRole(str, enum.Enum):
    DEVELOPER = "DEVELOPER"
    OPERATIONS = "OPERATIONS"
    FINANCE = "FINANCE"
    WORKFLOW = "WORKFLOW"
    ADMIN = "ADMIN"

# ------------------------- Recipient registry enums ------------------------- #

class ReferrerStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    BLOCKED = "BLOCKED"


class LawyerStatus(str, enum.Enum):
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class LawyerVerificationMethod(str, enum.Enum):
    AGENT_ASSIGN = "AGENT_ASSIGN"
    OTP = "OTP"


class FraudFlagType(str, enum.Enum):
    SELF_REFERRAL = "SELF_REFERRAL"
    DUPLICATE_REFERRAL = "DUPLICATE_REFERRAL"
    RAPID_REFERRALS = "RAPID_REFERRALS"
    SUSPICIOUS_PATTERN = "SUSPICIOUS_PATTERN"
    BANK_MISMATCH = "BANK_MISMATCH"
    FARMING_SUSPECTED = "FARMING_SUSPECTED"


class FraudSeverity(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

# ------------------------------ Payout enums ------------------------------ #

class PayoutStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class PaymentMethod(str, enum.Enum):
    BANK_TRANSFER = "BANK_TRANSFER"
    CHEQUE = "CHEQUE"
    EWALLET = "EWALLET"


__all__ = [
    "CampaignStatus",
    "RecipientType",
    "RewardType",
    "AwardStatus",
    "OperatorRole",
    "ReferrerStatus",
    "LawyerStatus",
    "LawyerVerificationMethod",
    "FraudFlagType",
    "FraudSeverity",
    "PayoutStatus",
    "PaymentMethod",
]
