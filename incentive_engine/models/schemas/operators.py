"""
Pydantic schemas for back-office operators.
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, EmailStr, Field, ConfigDict, model_validator
from ..db.enums import OperatorRole

class OperatorCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    email: EmailStr
    role: OperatorRole = OperatorRole.OPERATIONS
    developer_id: Optional[str] = Field(None, max_length=100)

    @model_validator(mode="after")
    def _developer_needs_id(self):
        if self.role == OperatorRole.DEVELOPER and not self.developer_id:
            raise ValueError("developer_id is required for DEVELOPER operators")
        return self

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "name": "Finance Desk 1",
            "email": "finance1@example.com",
            "role": "FINANCE"
        }
    })

class OperatorRead(BaseModel):
    id: int
    name: str
    email: EmailStr
    role: OperatorRole
    developer_id: Optional[str]
    is_active: bool
    created_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)

class OperatorWithKey(OperatorRead):
    """Returned once at creation; the key is not retrievable afterwards."""
    api_key: str
