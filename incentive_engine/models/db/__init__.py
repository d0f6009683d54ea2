from .operators import Operator
from .campaigns import Campaign
from .rules import IncentiveRule
from .awards import Award
from .recipients import Referrer, Lawyer, ReferralLink, Referral, CaseRecipient
from .fraud_flags import FraudFlag
from .payouts import PayoutRequest

__all__ = [
    "Operator",
    "Campaign",
    "IncentiveRule",
    "Award",
    "Referrer",
    "Lawyer",
    "ReferralLink",
    "Referral",
    "CaseRecipient",
    "FraudFlag",
    "PayoutRequest",
]
