"""
Payout workflow endpoints for APPROVED awards.

The approver of a payout must be a different operator from its requester.
"""
from typing import Callable, List, Optional
from fastapi import APIRouter, Depends, HTTPException, status, Query, Request
from sqlalchemy.orm import Session
import time
from incentive_engine.api.deps import get_db, require_role, raise_for_result, get_pagination_params
from incentive_engine.models.db import Operator
from incentive_engine.models.db.enums import OperatorRole, PayoutStatus
from incentive_engine.models.schemas.payouts import (
    PayoutCreate,
    PayoutRead,
    PayoutApproveRequest,
    PayoutRejectRequest,
    PayoutCancelRequest,
    PayoutCompleteRequest,
    PayoutFailRequest,
    PayoutStats,
)
from incentive_engine.services import payout_workflow
from incentive_engine.services.results import ServiceResult
from incentive_engine.utils import get_logger, log_performance, StorageConflictError

router = APIRouter()
logger = get_logger(__name__)

finance = require_role([OperatorRole.FINANCE])

def _run(
    operation: str,
    request: Request,
    operator: Operator,
    call: Callable[[], ServiceResult],
    **context,
) -> PayoutRead:
    start_time = time.time()
    request_id = getattr(request.state, "request_id", "unknown")

    logger.info(
        "Payout operation requested",
        operation=operation,
        operator_id=operator.id,
        request_id=request_id,
        **context
    )

    try:
        result = call()
        if not result.success:
            raise_for_result(result, request_id=request_id)

        payout = result.data
        log_performance(
            operation=operation,
            duration_ms=(time.time() - start_time) * 1000,
            additional_data={"payout_id": payout.id, "status": payout.status.value}
        )

        return PayoutRead.model_validate(payout)

    except (HTTPException, StorageConflictError):
        raise
    except Exception as e:
        logger.error(
            "Payout operation failed with unexpected error",
            operation=operation,
            error=str(e),
            request_id=request_id,
            exc_info=True,
            **context
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Internal server error during {operation}"
        )

@router.post(
    "/",
    response_model=PayoutRead,
    status_code=status.HTTP_201_CREATED,
    summary="Request payout for an approved award"
)
async def create_payout(
    payload: PayoutCreate,
    request: Request,
    operator: Operator = Depends(finance),
    db: Session = Depends(get_db)
) -> PayoutRead:
    return _run(
        "create_payout_request", request, operator,
        lambda: payout_workflow.create_payout_request(
            db,
            payload.award_id,
            requested_by=operator.actor_id,
            payment_method=payload.payment_method,
            bank_account_ref=payload.bank_account_ref,
            ewallet_ref=payload.ewallet_ref,
            recipient_phone=payload.recipient_phone,
            recipient_email=payload.recipient_email,
        ),
        award_id=payload.award_id,
    )

@router.get("/", response_model=List[PayoutRead], summary="List payouts")
async def list_payouts(
    request: Request,
    status_filter: Optional[PayoutStatus] = Query(None),
    recipient_id: Optional[str] = Query(None),
    campaign_id: Optional[int] = Query(None),
    pagination: dict = Depends(get_pagination_params),
    operator: Operator = Depends(finance),
    db: Session = Depends(get_db)
) -> List[PayoutRead]:
    start_time = time.time()
    request_id = getattr(request.state, "request_id", "unknown")

    try:
        payouts = payout_workflow.list_payouts(
            db, status=status_filter, recipient_id=recipient_id, campaign_id=campaign_id, **pagination
        )
        log_performance(
            operation="list_payouts",
            duration_ms=(time.time() - start_time) * 1000,
            additional_data={"payouts_returned": len(payouts)}
        )
        return [PayoutRead.model_validate(p) for p in payouts]

    except Exception as e:
        logger.error("Payout list failed", error=str(e), request_id=request_id, exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error while listing payouts"
        )

@router.get("/stats", response_model=PayoutStats, summary="Payout totals by status")
async def payout_stats(
    campaign_id: Optional[int] = Query(None),
    operator: Operator = Depends(finance),
    db: Session = Depends(get_db)
) -> PayoutStats:
    return PayoutStats(**payout_workflow.get_payout_stats(db, campaign_id=campaign_id))

@router.get("/{payout_id}", response_model=PayoutRead, summary="Get payout")
async def get_payout(
    payout_id: int,
    request: Request,
    operator: Operator = Depends(finance),
    db: Session = Depends(get_db)
) -> PayoutRead:
    result = payout_workflow.get_payout(db, payout_id)
    if not result.success:
        raise_for_result(result, request_id=getattr(request.state, "request_id", "unknown"))
    return PayoutRead.model_validate(result.data)

@router.post("/{payout_id}/approve", response_model=PayoutRead, summary="Approve payout (four-eyes)")
async def approve_payout(
    payout_id: int,
    request: Request,
    payload: Optional[PayoutApproveRequest] = None,
    operator: Operator = Depends(finance),
    db: Session = Depends(get_db)
) -> PayoutRead:
    notes = payload.notes if payload else None
    return _run(
        "approve_payout", request, operator,
        lambda: payout_workflow.approve_payout(db, payout_id, approved_by=operator.actor_id, notes=notes),
        payout_id=payout_id,
    )

@router.post("/{payout_id}/reject", response_model=PayoutRead, summary="Reject payout")
async def reject_payout(
    payout_id: int,
    payload: PayoutRejectRequest,
    request: Request,
    operator: Operator = Depends(finance),
    db: Session = Depends(get_db)
) -> PayoutRead:
    return _run(
        "reject_payout", request, operator,
        lambda: payout_workflow.reject_payout(db, payout_id, rejected_by=operator.actor_id, reason=payload.reason),
        payout_id=payout_id,
    )

@router.post("/{payout_id}/cancel", response_model=PayoutRead, summary="Cancel payout")
async def cancel_payout(
    payout_id: int,
    request: Request,
    payload: Optional[PayoutCancelRequest] = None,
    operator: Operator = Depends(finance),
    db: Session = Depends(get_db)
) -> PayoutRead:
    reason = payload.reason if payload else None
    return _run(
        "cancel_payout", request, operator,
        lambda: payout_workflow.cancel_payout(db, payout_id, cancelled_by=operator.actor_id, reason=reason),
        payout_id=payout_id,
    )

@router.post(
    "/{payout_id}/process",
    response_model=PayoutRead,
    summary="Start processing payout",
    description="APPROVED -> PROCESSING, or retry a FAILED payout until its retry budget is spent"
)
async def process_payout(
    payout_id: int,
    request: Request,
    operator: Operator = Depends(finance),
    db: Session = Depends(get_db)
) -> PayoutRead:
    return _run(
        "process_payout", request, operator,
        lambda: payout_workflow.process_payout(db, payout_id, processed_by=operator.actor_id),
        payout_id=payout_id,
    )

@router.post(
    "/{payout_id}/complete",
    response_model=PayoutRead,
    summary="Complete payout",
    description="Marks the payout COMPLETED and its award PAID in one transaction"
)
async def complete_payout(
    payout_id: int,
    payload: PayoutCompleteRequest,
    request: Request,
    operator: Operator = Depends(finance),
    db: Session = Depends(get_db)
) -> PayoutRead:
    return _run(
        "complete_payout", request, operator,
        lambda: payout_workflow.complete_payout(db, payout_id, bank_ref=payload.bank_ref, actor_id=operator.actor_id),
        payout_id=payout_id,
    )

@router.post("/{payout_id}/fail", response_model=PayoutRead, summary="Record a failed payout attempt")
async def fail_payout(
    payout_id: int,
    payload: PayoutFailRequest,
    request: Request,
    operator: Operator = Depends(finance),
    db: Session = Depends(get_db)
) -> PayoutRead:
    return _run(
        "fail_payout", request, operator,
        lambda: payout_workflow.fail_payout(db, payout_id, reason=payload.reason, actor_id=operator.actor_id),
        payout_id=payout_id,
    )
