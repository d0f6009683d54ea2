"""
Milestone evaluation endpoint, called by the workflow service when a case
reaches a milestone.
"""
from fastapi import APIRouter, Depends, HTTPException, status, Request
from sqlalchemy.orm import Session
import time
from incentive_engine.api.deps import get_db, require_role
from incentive_engine.models.db import Operator
from incentive_engine.models.db.enums import OperatorRole
from incentive_engine.models.schemas.awards import AwardRead
from incentive_engine.models.schemas.milestones import (
    MilestoneEvaluateRequest,
    MilestoneEvaluationRead,
    SkippedRuleRead,
    BlockedEvaluationRead,
)
from incentive_engine.services.milestone_evaluator import evaluate_milestone
from incentive_engine.utils import get_logger, log_performance, StorageConflictError

router = APIRouter()
logger = get_logger(__name__)

@router.post(
    "/evaluate",
    response_model=MilestoneEvaluationRead,
    summary="Evaluate a workflow milestone",
    description=(
        "Run every active rule for the trigger against the case and issue PENDING awards. "
        "Forbidden approval-class triggers come back with evaluated=false and a blocked reason."
    )
)
async def evaluate(
    payload: MilestoneEvaluateRequest,
    request: Request,
    operator: Operator = Depends(require_role([OperatorRole.WORKFLOW])),
    db: Session = Depends(get_db)
) -> MilestoneEvaluationRead:
    start_time = time.time()
    request_id = getattr(request.state, "request_id", "unknown")

    logger.info(
        "Milestone evaluation started",
        case_id=payload.case_id,
        trigger=payload.trigger,
        proof_event_id=payload.proof_event_id,
        request_id=request_id
    )

    try:
        result = evaluate_milestone(
            db,
            payload.case_id,
            payload.trigger,
            payload.proof_event_id,
            payload.metadata,
            actor_id=operator.actor_id,
        )

        duration_ms = (time.time() - start_time) * 1000
        log_performance(
            operation="evaluate_milestone",
            duration_ms=duration_ms,
            additional_data={
                "case_id": payload.case_id,
                "trigger": payload.trigger,
                "awards_issued": len(result.awards_issued),
                "rules_skipped": len(result.skipped_rules),
                "blocked": result.blocked is not None
            }
        )

        logger.info(
            "Milestone evaluation completed",
            case_id=payload.case_id,
            evaluated=result.evaluated,
            awards_issued=len(result.awards_issued),
            duration_ms=duration_ms,
            request_id=request_id
        )

        return MilestoneEvaluationRead(
            evaluated=result.evaluated,
            triggered_rule_ids=[rule.id for rule in result.triggered_rules],
            awards_issued=[AwardRead.model_validate(a) for a in result.awards_issued],
            skipped_rules=[SkippedRuleRead.model_validate(s) for s in result.skipped_rules],
            blocked=BlockedEvaluationRead.model_validate(result.blocked) if result.blocked else None,
        )

    except StorageConflictError:
        raise
    except Exception as e:
        logger.error(
            "Milestone evaluation failed with unexpected error",
            case_id=payload.case_id,
            trigger=payload.trigger,
            error=str(e),
            request_id=request_id,
            exc_info=True
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error during milestone evaluation"
        )
