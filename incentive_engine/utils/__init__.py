"""
Utilities package initialization.
"""
from .logger import get_logger, log_business_event, log_performance, setup_logging
from .transactions import StorageConflictError, commit_or_conflict, flush_or_conflict

__all__ = [
    "get_logger",
    "log_business_event",
    "log_performance",
    "setup_logging",
    "StorageConflictError",
    "commit_or_conflict",
    "flush_or_conflict",
]
