"""
Pydantic schemas for milestone evaluation requests and results.
"""
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, ConfigDict
from .awards import AwardRead

class MilestoneEvaluateRequest(BaseModel):
    case_id: str = Field(min_length=1, max_length=100)
    trigger: str = Field(min_length=1, max_length=64)
    proof_event_id: Optional[str] = Field(None, max_length=200)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "case_id": "CASE-2026-00042",
            "trigger": "DOCS_COMPLETE_CONFIRMED",
            "proof_event_id": "evt_8f2c1",
            "metadata": {"recipientName": "Aisyah binti Rahman"}
        }
    })

class SkippedRuleRead(BaseModel):
    rule_id: int
    reason: str

    model_config = ConfigDict(from_attributes=True)

class BlockedEvaluationRead(BaseModel):
    reason: str
    forbidden_trigger: str

    model_config = ConfigDict(from_attributes=True)

class MilestoneEvaluationRead(BaseModel):
    evaluated: bool
    triggered_rule_ids: List[int] = Field(default_factory=list)
    awards_issued: List[AwardRead] = Field(default_factory=list)
    skipped_rules: List[SkippedRuleRead] = Field(default_factory=list)
    blocked: Optional[BlockedEvaluationRead] = None
