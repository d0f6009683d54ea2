"""Trigger classification for incentive rules.

Approval-class events can never carry a reward. The forbidden check is
case-insensitive and ignores surrounding whitespace; the allow-list check is
exact so stored triggers stay canonical.
"""
from __future__ import annotations

from incentive_engine.config import INCENTIVE_SETTINGS


def _forbidden() -> frozenset[str]:
    return frozenset(str(t).upper() for t in INCENTIVE_SETTINGS["forbidden_triggers"])  # type: ignore[union-attr]


def _allowed() -> frozenset[str]:
    return frozenset(str(t) for t in INCENTIVE_SETTINGS["allowed_triggers"])  # type: ignore[union-attr]


def is_forbidden_trigger(trigger: str | None) -> bool:
    if trigger is None:
        return False
    return trigger.strip().upper() in _forbidden()


def is_allowed_trigger(trigger: str | None) -> bool:
    return trigger is not None and trigger in _allowed()


def allowed_triggers() -> list[str]:
    return sorted(_allowed())


__all__ = ["is_forbidden_trigger", "is_allowed_trigger", "allowed_triggers"]
