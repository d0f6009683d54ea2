"""Referrer risk scoring (0-100 scale).

Score is the sum of severity points over unresolved flags, capped at
``max_risk_score``. A referrer is auto-blocked while any unresolved flag's
type is configured with ``auto_block``.
"""
from __future__ import annotations

from typing import Iterable

from incentive_engine.config import FRAUD_SETTINGS
from incentive_engine.models.db.enums import FraudFlagType, FraudSeverity
from incentive_engine.models.db.fraud_flags import FraudFlag


def _flag_config(flag_type: FraudFlagType) -> dict:
    flags_cfg = FRAUD_SETTINGS.get("flags", {})
    if isinstance(flags_cfg, dict):
        return flags_cfg.get(flag_type.value, {})
    return {}


def severity_for(flag_type: FraudFlagType) -> FraudSeverity:
    return FraudSeverity(_flag_config(flag_type).get("severity", FraudSeverity.LOW.value))


def is_auto_block(flag_type: FraudFlagType) -> bool:
    return bool(_flag_config(flag_type).get("auto_block", False))


def severity_points(severity: FraudSeverity) -> int:
    points = FRAUD_SETTINGS["severity_points"]
    return int(points.get(severity.value, 0))  # type: ignore[union-attr]


def compute_risk_score(flags: Iterable[FraudFlag]) -> int:
    total = sum(severity_points(f.severity) for f in flags if not f.resolved)
    return min(total, int(FRAUD_SETTINGS["max_risk_score"]))  # type: ignore[arg-type]


def should_auto_block(flags: Iterable[FraudFlag]) -> bool:
    return any(is_auto_block(f.flag_type) for f in flags if not f.resolved)


__all__ = ["severity_for", "is_auto_block", "severity_points", "compute_risk_score", "should_auto_block"]
