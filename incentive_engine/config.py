"""Core application configuration & tunable incentive governance rules.

All business rules that may evolve (trigger lists, default caps, fraud
severities and windows, payout retry limits) are centralized here so they can
be adjusted without diving into service logic. Module constants are plain
dicts so tests can monkeypatch values; operationally relevant knobs read an
environment variable first.
"""
from __future__ import annotations

import os

# ------------------------------- Incentives ------------------------------- #
INCENTIVE_SETTINGS: dict[str, object] = {
	"currency": os.getenv("INCENTIVE_CURRENCY", "MYR"),
	# Campaign-level caps used when a rule does not override them.
	"default_max_awards_per_case": 1,
	"default_max_awards_per_recipient": 1,
	# Approval-class events. Never rewardable, compared case-insensitively.
	"forbidden_triggers": [
		"APPROVED",
		"LULUS",
		"KELULUSAN",
		"CASE_COMPLETED",
		"LOAN_APPROVED",
		"LOAN_DISBURSED",
		"PINJAMAN_DILULUSKAN",
	],
	# Closed allow-list of rewardable workflow milestones (exact match).
	"allowed_triggers": [
		"CONSENT_GRANTED",
		"PROFILE_CREATED",
		"FIRST_DOC_UPLOADED",
		"DOCS_COMPLETE_CONFIRMED",
		"DOC_VERIFIED",
		"SUBMISSION_ATTESTED",
		"TAC_TIMESTAMP_RECORDED",
		"REFERRAL_VALIDATED",
		"REFERRAL_CASE_REACHED_STEP",
		"LAWYER_ASSIGNED_CONFIRMED",
		"CASE_VIEWED_BY_BUYER",
		"RETURN_VISIT",
		"CAMPAIGN_MILESTONE",
	],
}

# ------------------------------ Fraud Screen ------------------------------ #
FRAUD_SETTINGS: dict[str, object] = {
	"severity_points": {
		"CRITICAL": 40,
		"HIGH": 25,
		"MEDIUM": 15,
		"LOW": 5,
	},
	"max_risk_score": 100,
	# Flag type → severity / whether an unresolved flag blocks the referrer.
	"flags": {
		"SELF_REFERRAL": {"severity": "CRITICAL", "auto_block": True},
		"DUPLICATE_REFERRAL": {"severity": "HIGH", "auto_block": True},
		"RAPID_REFERRALS": {"severity": "MEDIUM", "auto_block": False},
		"SUSPICIOUS_PATTERN": {"severity": "MEDIUM", "auto_block": False},
		"BANK_MISMATCH": {"severity": "LOW", "auto_block": False},
		"FARMING_SUSPECTED": {"severity": "HIGH", "auto_block": True},
	},
	# Velocity checks compare against referrals already recorded in the window.
	"rapid_window_minutes": int(os.getenv("FRAUD_RAPID_WINDOW_MINUTES", "60")),
	"rapid_threshold": int(os.getenv("FRAUD_RAPID_THRESHOLD", "5")),
	"farming_window_hours": int(os.getenv("FRAUD_FARMING_WINDOW_HOURS", "24")),
	"farming_threshold": int(os.getenv("FRAUD_FARMING_THRESHOLD", "20")),
	# Phone canonicalisation
	"country_code": "60",
	"national_prefix": "0",
}

# --------------------------------- Payouts -------------------------------- #
PAYOUT_SETTINGS: dict[str, object] = {
	"max_retries": int(os.getenv("PAYOUT_MAX_RETRIES", "3")),
	"min_rejection_reason_length": 10,
	"transaction_ref_prefix": "TXN",
	"transaction_ref_random_length": 6,
}

# -------------------------------- Referrals ------------------------------- #
REFERRAL_SETTINGS: dict[str, object] = {
	"link_base_url": os.getenv("REFERRAL_LINK_BASE_URL", "https://snang.my/r"),
	"code_prefix": "REF",
	"code_name_length": 10,
	"code_random_length": 4,
}

# --------------------------------- Storage -------------------------------- #
STORAGE_SETTINGS: dict[str, int] = {
	# Hint returned with 409 STORAGE_CONFLICT responses.
	"conflict_retry_after_seconds": int(os.getenv("STORAGE_CONFLICT_RETRY_AFTER", "1")),
}

__all__ = [
	"INCENTIVE_SETTINGS",
	"FRAUD_SETTINGS",
	"PAYOUT_SETTINGS",
	"REFERRAL_SETTINGS",
	"STORAGE_SETTINGS",
]
