"""
Lawyer registry endpoints.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status, Query, Request
from sqlalchemy.orm import Session
import time
from incentive_engine.api.deps import get_db, require_role, raise_for_result, get_pagination_params
from incentive_engine.models.db import Operator
from incentive_engine.models.db.enums import LawyerStatus, OperatorRole
from incentive_engine.models.schemas.recipients import (
    LawyerCreate,
    LawyerRead,
    LawyerVerifyRequest,
    LawyerAssignRequest,
)
from incentive_engine.services import recipient_registry
from incentive_engine.utils import get_logger, log_performance, StorageConflictError

router = APIRouter()
logger = get_logger(__name__)

operations = require_role([OperatorRole.OPERATIONS])

@router.post(
    "/",
    response_model=LawyerRead,
    status_code=status.HTTP_201_CREATED,
    summary="Register lawyer"
)
async def register_lawyer(
    payload: LawyerCreate,
    request: Request,
    operator: Operator = Depends(operations),
    db: Session = Depends(get_db)
) -> LawyerRead:
    start_time = time.time()
    request_id = getattr(request.state, "request_id", "unknown")

    logger.info("Lawyer registration started", firm_name=payload.firm_name, request_id=request_id)

    try:
        result = recipient_registry.register_lawyer(
            db,
            name=payload.name,
            email=payload.email,
            firm_name=payload.firm_name,
            phone=payload.phone,
            actor_id=operator.actor_id,
        )
        if not result.success:
            raise_for_result(result, request_id=request_id)

        log_performance(
            operation="register_lawyer",
            duration_ms=(time.time() - start_time) * 1000,
            additional_data={"lawyer_id": result.data.id}
        )

        return LawyerRead.model_validate(result.data)

    except (HTTPException, StorageConflictError):
        raise
    except Exception as e:
        logger.error("Lawyer registration failed", error=str(e), request_id=request_id, exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error during lawyer registration"
        )

@router.get("/", response_model=List[LawyerRead], summary="List lawyers")
async def list_lawyers(
    status_filter: Optional[LawyerStatus] = Query(None),
    pagination: dict = Depends(get_pagination_params),
    operator: Operator = Depends(operations),
    db: Session = Depends(get_db)
) -> List[LawyerRead]:
    return [LawyerRead.model_validate(l) for l in recipient_registry.list_lawyers(db, status=status_filter, **pagination)]

@router.get("/{lawyer_id}", response_model=LawyerRead, summary="Get lawyer")
async def get_lawyer(
    lawyer_id: int,
    request: Request,
    operator: Operator = Depends(operations),
    db: Session = Depends(get_db)
) -> LawyerRead:
    result = recipient_registry.get_lawyer(db, lawyer_id)
    if not result.success:
        raise_for_result(result, request_id=getattr(request.state, "request_id", "unknown"))
    return LawyerRead.model_validate(result.data)

@router.post("/{lawyer_id}/verify", response_model=LawyerRead, summary="Verify lawyer")
async def verify_lawyer(
    lawyer_id: int,
    request: Request,
    payload: Optional[LawyerVerifyRequest] = None,
    operator: Operator = Depends(operations),
    db: Session = Depends(get_db)
) -> LawyerRead:
    request_id = getattr(request.state, "request_id", "unknown")
    method = (payload or LawyerVerifyRequest()).method
    try:
        result = recipient_registry.verify_lawyer(db, lawyer_id, verified_by=operator.actor_id, method=method)
        if not result.success:
            raise_for_result(result, request_id=request_id)
        return LawyerRead.model_validate(result.data)
    except (HTTPException, StorageConflictError):
        raise
    except Exception as e:
        logger.error("Lawyer verification failed", lawyer_id=lawyer_id, error=str(e), request_id=request_id, exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error during lawyer verification"
        )

@router.post(
    "/{lawyer_id}/assign",
    response_model=LawyerRead,
    summary="Assign lawyer to case",
    description="Records the lawyer as the case's LAWYER recipient; a PENDING lawyer is verified by the assignment"
)
async def assign_lawyer(
    lawyer_id: int,
    payload: LawyerAssignRequest,
    request: Request,
    operator: Operator = Depends(operations),
    db: Session = Depends(get_db)
) -> LawyerRead:
    start_time = time.time()
    request_id = getattr(request.state, "request_id", "unknown")

    logger.info("Lawyer assignment started", lawyer_id=lawyer_id, case_id=payload.case_id, request_id=request_id)

    try:
        result = recipient_registry.assign_lawyer_to_case(
            db, lawyer_id, payload.case_id, assigned_by=operator.actor_id
        )
        if not result.success:
            raise_for_result(result, request_id=request_id)

        log_performance(
            operation="assign_lawyer_to_case",
            duration_ms=(time.time() - start_time) * 1000,
            additional_data={"lawyer_id": lawyer_id, "case_id": payload.case_id}
        )

        return LawyerRead.model_validate(result.data)

    except (HTTPException, StorageConflictError):
        raise
    except Exception as e:
        logger.error(
            "Lawyer assignment failed",
            lawyer_id=lawyer_id,
            case_id=payload.case_id,
            error=str(e),
            request_id=request_id,
            exc_info=True
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error during lawyer assignment"
        )

@router.post("/{lawyer_id}/deactivate", response_model=LawyerRead, summary="Deactivate lawyer")
async def deactivate_lawyer(
    lawyer_id: int,
    request: Request,
    operator: Operator = Depends(operations),
    db: Session = Depends(get_db)
) -> LawyerRead:
    result = recipient_registry.deactivate_lawyer(db, lawyer_id, actor_id=operator.actor_id)
    if not result.success:
        raise_for_result(result, request_id=getattr(request.state, "request_id", "unknown"))
    return LawyerRead.model_validate(result.data)
