"""
Award ledger endpoints: review (verify / approve / reject), payment and clawback.
"""
from typing import Callable, List, Optional
from fastapi import APIRouter, Depends, HTTPException, status, Query, Request
from sqlalchemy.orm import Session
import time
from incentive_engine.api.deps import get_db, require_role, raise_for_result, get_pagination_params
from incentive_engine.models.db import Operator
from incentive_engine.models.db.enums import AwardStatus, OperatorRole
from incentive_engine.models.schemas.awards import AwardRead, AwardReasonRequest, AwardMarkPaidRequest
from incentive_engine.services import award_ledger
from incentive_engine.services.results import ServiceResult
from incentive_engine.utils import get_logger, log_performance, StorageConflictError

router = APIRouter()
logger = get_logger(__name__)

award_reviewer = require_role([OperatorRole.OPERATIONS, OperatorRole.FINANCE])
finance_only = require_role([OperatorRole.FINANCE])

def _run_transition(
    operation: str,
    award_id: int,
    request: Request,
    operator: Operator,
    call: Callable[[], ServiceResult],
) -> AwardRead:
    start_time = time.time()
    request_id = getattr(request.state, "request_id", "unknown")

    logger.info(
        "Award transition requested",
        award_id=award_id,
        operation=operation,
        operator_id=operator.id,
        request_id=request_id
    )

    try:
        result = call()
        if not result.success:
            raise_for_result(result, request_id=request_id)

        log_performance(
            operation=operation,
            duration_ms=(time.time() - start_time) * 1000,
            additional_data={"award_id": award_id, "status": result.data.status.value}
        )

        return AwardRead.model_validate(result.data)

    except (HTTPException, StorageConflictError):
        raise
    except Exception as e:
        logger.error(
            "Award transition failed with unexpected error",
            award_id=award_id,
            operation=operation,
            error=str(e),
            request_id=request_id,
            exc_info=True
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Internal server error during {operation}"
        )

@router.get(
    "/",
    response_model=List[AwardRead],
    summary="List awards"
)
async def list_awards(
    request: Request,
    case_id: Optional[str] = Query(None),
    recipient_id: Optional[str] = Query(None),
    campaign_id: Optional[int] = Query(None),
    status_filter: Optional[AwardStatus] = Query(None),
    pagination: dict = Depends(get_pagination_params),
    operator: Operator = Depends(award_reviewer),
    db: Session = Depends(get_db)
) -> List[AwardRead]:
    start_time = time.time()
    request_id = getattr(request.state, "request_id", "unknown")

    try:
        awards = award_ledger.list_awards(
            db,
            case_id=case_id,
            recipient_id=recipient_id,
            campaign_id=campaign_id,
            status=status_filter,
            **pagination
        )

        log_performance(
            operation="list_awards",
            duration_ms=(time.time() - start_time) * 1000,
            additional_data={"awards_returned": len(awards)}
        )

        return [AwardRead.model_validate(a) for a in awards]

    except Exception as e:
        logger.error("Award list failed", error=str(e), request_id=request_id, exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error while listing awards"
        )

@router.get("/{award_id}", response_model=AwardRead, summary="Get award")
async def get_award(
    award_id: int,
    request: Request,
    operator: Operator = Depends(award_reviewer),
    db: Session = Depends(get_db)
) -> AwardRead:
    result = award_ledger.get_award(db, award_id)
    if not result.success:
        raise_for_result(result, request_id=getattr(request.state, "request_id", "unknown"))
    return AwardRead.model_validate(result.data)

@router.post("/{award_id}/verify", response_model=AwardRead, summary="Verify award (PENDING -> VERIFIED)")
async def verify_award(
    award_id: int,
    request: Request,
    operator: Operator = Depends(award_reviewer),
    db: Session = Depends(get_db)
) -> AwardRead:
    return _run_transition(
        "verify_award", award_id, request, operator,
        lambda: award_ledger.verify_award(db, award_id, operator.actor_id),
    )

@router.post(
    "/{award_id}/approve",
    response_model=AwardRead,
    summary="Approve award (VERIFIED -> APPROVED)",
    description="Debits the campaign budget; refused with 409 BUDGET_EXHAUSTED when the budget cannot cover it"
)
async def approve_award(
    award_id: int,
    request: Request,
    operator: Operator = Depends(finance_only),
    db: Session = Depends(get_db)
) -> AwardRead:
    return _run_transition(
        "approve_award", award_id, request, operator,
        lambda: award_ledger.approve_award(db, award_id, operator.actor_id),
    )

@router.post("/{award_id}/mark-paid", response_model=AwardRead, summary="Mark award paid (APPROVED -> PAID)")
async def mark_award_paid(
    award_id: int,
    payload: AwardMarkPaidRequest,
    request: Request,
    operator: Operator = Depends(finance_only),
    db: Session = Depends(get_db)
) -> AwardRead:
    return _run_transition(
        "mark_award_paid", award_id, request, operator,
        lambda: award_ledger.mark_award_paid(
            db, award_id, payload.payout_reference, payload.payout_method, actor_id=operator.actor_id
        ),
    )

@router.post("/{award_id}/reject", response_model=AwardRead, summary="Reject award")
async def reject_award(
    award_id: int,
    payload: AwardReasonRequest,
    request: Request,
    operator: Operator = Depends(award_reviewer),
    db: Session = Depends(get_db)
) -> AwardRead:
    return _run_transition(
        "reject_award", award_id, request, operator,
        lambda: award_ledger.reject_award(db, award_id, payload.reason, rejected_by=operator.actor_id),
    )

@router.post(
    "/{award_id}/clawback",
    response_model=AwardRead,
    summary="Claw back a paid award",
    description="Returns the amount to the campaign budget and reopens an EXHAUSTED campaign"
)
async def clawback_award(
    award_id: int,
    payload: AwardReasonRequest,
    request: Request,
    operator: Operator = Depends(finance_only),
    db: Session = Depends(get_db)
) -> AwardRead:
    return _run_transition(
        "clawback_award", award_id, request, operator,
        lambda: award_ledger.clawback_award(db, award_id, payload.reason, actor_id=operator.actor_id),
    )
