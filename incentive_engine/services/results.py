"""Uniform result contract for incentive service operations.

Validation errors, compliance violations and missing entities are returned as
``ServiceResult.fail(...)`` with a distinct ``ErrorCode``; only storage
transaction failures raise (see ``utils.transactions``).
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorCode(str, enum.Enum):
    NOT_FOUND = "NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_STATUS = "INVALID_STATUS"
    FORBIDDEN_TRIGGER = "FORBIDDEN_TRIGGER"
    INVALID_TRIGGER = "INVALID_TRIGGER"
    CAMPAIGN_NOT_FOUND = "CAMPAIGN_NOT_FOUND"
    CAMPAIGN_EXPIRED = "CAMPAIGN_EXPIRED"
    BUDGET_EXHAUSTED = "BUDGET_EXHAUSTED"
    FOUR_EYES_VIOLATION = "FOUR_EYES_VIOLATION"
    REASON_TOO_SHORT = "REASON_TOO_SHORT"
    DUPLICATE_PAYOUT = "DUPLICATE_PAYOUT"
    MISSING_DESTINATION = "MISSING_DESTINATION"
    MAX_RETRIES_EXCEEDED = "MAX_RETRIES_EXCEEDED"
    DUPLICATE_PHONE = "DUPLICATE_PHONE"
    DUPLICATE_EMAIL = "DUPLICATE_EMAIL"


@dataclass
class ServiceResult(Generic[T]):
    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[ErrorCode] = None

    @classmethod
    def ok(cls, data: Any = None) -> "ServiceResult[Any]":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error_code: ErrorCode, error: str) -> "ServiceResult[Any]":
        return cls(success=False, error=error, error_code=error_code)


__all__ = ["ErrorCode", "ServiceResult"]
