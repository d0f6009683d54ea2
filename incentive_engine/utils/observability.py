"""Observability helpers (correlation IDs, request timing)."""
from __future__ import annotations
import time
import uuid
from contextvars import ContextVar
from typing import Mapping, Optional

REQUEST_ID_HEADER = "X-Request-ID"

_request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

def ensure_request_id(headers: Mapping[str, str]) -> str:
    return headers.get(REQUEST_ID_HEADER, None) or str(uuid.uuid4())

def bind_request_id(request_id: Optional[str]):
    """Bind the correlation id for the current request context; returns a reset token."""
    return _request_id_ctx.set(request_id)

def reset_request_id(token) -> None:
    _request_id_ctx.reset(token)

def current_request_id() -> Optional[str]:
    return _request_id_ctx.get()

def elapsed_ms(start_time: float) -> float:
    return round((time.time() - start_time) * 1000, 2)

__all__ = [
    "ensure_request_id",
    "bind_request_id",
    "reset_request_id",
    "current_request_id",
    "elapsed_ms",
    "REQUEST_ID_HEADER",
]
