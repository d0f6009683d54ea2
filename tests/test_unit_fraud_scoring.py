from datetime import datetime, timezone
from incentive_engine.models.db import FraudFlag
from incentive_engine.models.db.enums import FraudFlagType, FraudSeverity
from incentive_engine.services.risk_scoring import compute_risk_score, severity_for, should_auto_block
from incentive_engine.utils.phone import normalize_phone, phones_match


def _flag(flag_type: FraudFlagType, resolved: bool = False) -> FraudFlag:
    return FraudFlag(
        flag_type=flag_type,
        severity=severity_for(flag_type),
        detected_at=datetime.now(timezone.utc),
        resolved=resolved,
    )


def test_phone_formats_normalise_to_national_number():
    variants = ["+60 12-345 6789", "60123456789", "0060123456789", "012-345 6789", "(012) 345.6789"]
    assert {normalize_phone(v) for v in variants} == {"0123456789"}
    assert phones_match("+60123456789", "012 345 6789")
    assert not phones_match("", "")
    assert not phones_match(None, "0123456789")


def test_severity_mapping():
    assert severity_for(FraudFlagType.SELF_REFERRAL) == FraudSeverity.CRITICAL
    assert severity_for(FraudFlagType.DUPLICATE_REFERRAL) == FraudSeverity.HIGH
    assert severity_for(FraudFlagType.RAPID_REFERRALS) == FraudSeverity.MEDIUM
    assert severity_for(FraudFlagType.BANK_MISMATCH) == FraudSeverity.LOW


def test_risk_score_sums_unresolved_and_caps_at_100():
    flags = [_flag(FraudFlagType.SELF_REFERRAL), _flag(FraudFlagType.RAPID_REFERRALS)]
    assert compute_risk_score(flags) == 55
    flags.append(_flag(FraudFlagType.DUPLICATE_REFERRAL, resolved=True))
    assert compute_risk_score(flags) == 55
    flags += [_flag(FraudFlagType.SELF_REFERRAL), _flag(FraudFlagType.FARMING_SUSPECTED)]
    assert compute_risk_score(flags) == 100


def test_auto_block_only_while_blocking_flag_unresolved():
    assert not should_auto_block([_flag(FraudFlagType.RAPID_REFERRALS), _flag(FraudFlagType.BANK_MISMATCH)])
    assert should_auto_block([_flag(FraudFlagType.SELF_REFERRAL)])
    assert not should_auto_block([_flag(FraudFlagType.SELF_REFERRAL, resolved=True)])
