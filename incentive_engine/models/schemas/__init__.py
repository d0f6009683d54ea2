from .base import ResponseBase, ErrorResponse
from .operators import OperatorCreate, OperatorRead, OperatorWithKey
from .campaigns import CampaignCreate, CampaignRead, CampaignUpdate, CampaignStats
from .rules import RuleCreate, RuleRead, RuleUpdate
from .awards import AwardRead, AwardReasonRequest, AwardMarkPaidRequest
from .milestones import (
    MilestoneEvaluateRequest,
    MilestoneEvaluationRead,
    SkippedRuleRead,
    BlockedEvaluationRead,
)
from .payouts import (
    PayoutCreate,
    PayoutRead,
    PayoutApproveRequest,
    PayoutRejectRequest,
    PayoutCancelRequest,
    PayoutCompleteRequest,
    PayoutFailRequest,
    PayoutStats,
)
from .recipients import (
    ReferrerCreate,
    ReferrerRead,
    ReferrerStatusChange,
    BankDetailsUpdate,
    FraudFlagCreate,
    FraudFlagResolve,
    FraudFlagRead,
    ReferralLinkCreate,
    ReferralLinkRead,
    ReferralValidateRequest,
    ReferralValidationRead,
    LawyerCreate,
    LawyerVerifyRequest,
    LawyerAssignRequest,
    LawyerRead,
)

__all__ = [
    # Base
    "ResponseBase",
    "ErrorResponse",

    # Operators
    "OperatorCreate",
    "OperatorRead",
    "OperatorWithKey",

    # Campaigns & rules
    "CampaignCreate",
    "CampaignRead",
    "CampaignUpdate",
    "CampaignStats",
    "RuleCreate",
    "RuleRead",
    "RuleUpdate",

    # Awards & evaluation
    "AwardRead",
    "AwardReasonRequest",
    "AwardMarkPaidRequest",
    "MilestoneEvaluateRequest",
    "MilestoneEvaluationRead",
    "SkippedRuleRead",
    "BlockedEvaluationRead",

    # Payouts
    "PayoutCreate",
    "PayoutRead",
    "PayoutApproveRequest",
    "PayoutRejectRequest",
    "PayoutCancelRequest",
    "PayoutCompleteRequest",
    "PayoutFailRequest",
    "PayoutStats",

    # Registry
    "ReferrerCreate",
    "ReferrerRead",
    "ReferrerStatusChange",
    "BankDetailsUpdate",
    "FraudFlagCreate",
    "FraudFlagResolve",
    "FraudFlagRead",
    "ReferralLinkCreate",
    "ReferralLinkRead",
    "ReferralValidateRequest",
    "ReferralValidationRead",
    "LawyerCreate",
    "LawyerVerifyRequest",
    "LawyerAssignRequest",
    "LawyerRead",
]
