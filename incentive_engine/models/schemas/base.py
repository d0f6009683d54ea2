"""
Base schemas used across the application.
"""
from datetime import datetime, timezone
from typing import Optional, Any, Dict
from pydantic import BaseModel, Field, ConfigDict

class ResponseBase(BaseModel):
    """Base response format for API endpoints with an optional arbitrary data payload."""
    success: bool = True
    message: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    data: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)

class ErrorResponse(BaseModel):
    """Shape of every non-2xx JSON body produced by the exception handlers."""
    success: bool = False
    message: str
    error_code: Optional[str] = None
    request_id: Optional[str] = None
    retry: Optional[bool] = None
