"""
Referrer registry endpoints: registration, status changes, bank details,
fraud flags, referral links and referral validation.
"""
from typing import Callable, List, Optional
from fastapi import APIRouter, Depends, HTTPException, status, Query, Request
from sqlalchemy.orm import Session
import time
from incentive_engine.api.deps import get_db, require_role, raise_for_result, get_pagination_params
from incentive_engine.models.db import Operator
from incentive_engine.models.db.enums import OperatorRole, ReferrerStatus
from incentive_engine.models.schemas.recipients import (
    ReferrerCreate,
    ReferrerRead,
    ReferrerStatusChange,
    BankDetailsUpdate,
    FraudFlagCreate,
    FraudFlagResolve,
    FraudFlagRead,
    ReferralLinkCreate,
    ReferralLinkRead,
    ReferralValidateRequest,
    ReferralValidationRead,
)
from incentive_engine.services import recipient_registry
from incentive_engine.services.fraud_screen import validate_referral
from incentive_engine.services.results import ServiceResult
from incentive_engine.utils import get_logger, log_performance, StorageConflictError

router = APIRouter()
logger = get_logger(__name__)

operations = require_role([OperatorRole.OPERATIONS])
link_tracker = require_role([OperatorRole.OPERATIONS, OperatorRole.WORKFLOW])

def _run(operation: str, request: Request, call: Callable[[], ServiceResult], read_model, **context):
    start_time = time.time()
    request_id = getattr(request.state, "request_id", "unknown")

    try:
        result = call()
        if not result.success:
            raise_for_result(result, request_id=request_id)

        log_performance(
            operation=operation,
            duration_ms=(time.time() - start_time) * 1000,
            additional_data=context
        )

        return read_model.model_validate(result.data)

    except (HTTPException, StorageConflictError):
        raise
    except Exception as e:
        logger.error(
            "Referrer operation failed with unexpected error",
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
    "/validate",
    response_model=ReferralValidationRead,
    summary="Validate a referral",
    description=(
        "Screen a buyer's referral code for fraud. Always returns 200; "
        "`valid` is false with a reason when the referral is refused."
    )
)
async def validate(
    payload: ReferralValidateRequest,
    request: Request,
    operator: Operator = Depends(require_role([OperatorRole.WORKFLOW])),
    db: Session = Depends(get_db)
) -> ReferralValidationRead:
    start_time = time.time()
    request_id = getattr(request.state, "request_id", "unknown")

    logger.info(
        "Referral validation started",
        referral_code=payload.referral_code,
        case_id=payload.case_id,
        request_id=request_id
    )

    try:
        outcome = validate_referral(
            db,
            payload.buyer_phone,
            payload.referral_code,
            buyer_hash=payload.buyer_hash,
            case_id=payload.case_id,
        )

        duration_ms = (time.time() - start_time) * 1000
        log_performance(
            operation="validate_referral",
            duration_ms=duration_ms,
            additional_data={
                "valid": outcome.valid,
                "flagged": outcome.fraud_flag is not None
            }
        )

        logger.info(
            "Referral validation completed",
            valid=outcome.valid,
            referrer_id=outcome.referrer_id,
            reason=outcome.reason,
            duration_ms=duration_ms,
            request_id=request_id
        )

        return ReferralValidationRead.model_validate(outcome)

    except StorageConflictError:
        raise
    except Exception as e:
        logger.error(
            "Referral validation failed with unexpected error",
            referral_code=payload.referral_code,
            error=str(e),
            request_id=request_id,
            exc_info=True
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error during referral validation"
        )

@router.post(
    "/",
    response_model=ReferrerRead,
    status_code=status.HTTP_201_CREATED,
    summary="Register referrer"
)
async def register_referrer(
    payload: ReferrerCreate,
    request: Request,
    operator: Operator = Depends(operations),
    db: Session = Depends(get_db)
) -> ReferrerRead:
    logger.info(
        "Referrer registration started",
        referrer_name=payload.name,
        request_id=getattr(request.state, "request_id", "unknown")
    )
    return _run(
        "register_referrer", request,
        lambda: recipient_registry.register_referrer(
            db, name=payload.name, phone=payload.phone, email=payload.email, actor_id=operator.actor_id
        ),
        ReferrerRead,
    )

@router.get("/", response_model=List[ReferrerRead], summary="List referrers")
async def list_referrers(
    status_filter: Optional[ReferrerStatus] = Query(None),
    pagination: dict = Depends(get_pagination_params),
    operator: Operator = Depends(operations),
    db: Session = Depends(get_db)
) -> List[ReferrerRead]:
    referrers = recipient_registry.list_referrers(db, status=status_filter, **pagination)
    return [ReferrerRead.model_validate(r) for r in referrers]

@router.get("/by-code/{referral_code}", response_model=ReferrerRead, summary="Look up referrer by code")
async def get_referrer_by_code(
    referral_code: str,
    operator: Operator = Depends(operations),
    db: Session = Depends(get_db)
) -> ReferrerRead:
    referrer = recipient_registry.get_referrer_by_code(db, referral_code)
    if referrer is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"message": f"No referrer with code {referral_code}", "error_code": "NOT_FOUND"}
        )
    return ReferrerRead.model_validate(referrer)

@router.post(
    "/flags/{flag_id}/resolve",
    response_model=FraudFlagRead,
    summary="Resolve fraud flag",
    description="Marks the flag resolved and recomputes the risk score. A blocked referrer stays blocked until reinstated."
)
async def resolve_flag(
    flag_id: int,
    request: Request,
    payload: Optional[FraudFlagResolve] = None,
    operator: Operator = Depends(operations),
    db: Session = Depends(get_db)
) -> FraudFlagRead:
    notes = payload.notes if payload else None
    return _run(
        "resolve_fraud_flag", request,
        lambda: recipient_registry.resolve_fraud_flag(db, flag_id, resolved_by=operator.actor_id, notes=notes),
        FraudFlagRead,
        flag_id=flag_id,
    )

@router.post("/links/{link_id}/click", response_model=ReferralLinkRead, summary="Record link click")
async def record_click(
    link_id: int,
    request: Request,
    operator: Operator = Depends(link_tracker),
    db: Session = Depends(get_db)
) -> ReferralLinkRead:
    return _run(
        "record_link_click", request,
        lambda: recipient_registry.record_link_click(db, link_id),
        ReferralLinkRead,
        link_id=link_id,
    )

@router.post("/links/{link_id}/conversion", response_model=ReferralLinkRead, summary="Record link conversion")
async def record_conversion(
    link_id: int,
    request: Request,
    operator: Operator = Depends(link_tracker),
    db: Session = Depends(get_db)
) -> ReferralLinkRead:
    return _run(
        "record_link_conversion", request,
        lambda: recipient_registry.record_link_conversion(db, link_id),
        ReferralLinkRead,
        link_id=link_id,
    )

@router.get("/{referrer_id}", response_model=ReferrerRead, summary="Get referrer")
async def get_referrer(
    referrer_id: int,
    request: Request,
    operator: Operator = Depends(operations),
    db: Session = Depends(get_db)
) -> ReferrerRead:
    result = recipient_registry.get_referrer(db, referrer_id)
    if not result.success:
        raise_for_result(result, request_id=getattr(request.state, "request_id", "unknown"))
    return ReferrerRead.model_validate(result.data)

@router.post("/{referrer_id}/verify", response_model=ReferrerRead, summary="Verify referrer (PENDING -> ACTIVE)")
async def verify_referrer(
    referrer_id: int,
    request: Request,
    operator: Operator = Depends(operations),
    db: Session = Depends(get_db)
) -> ReferrerRead:
    return _run(
        "verify_referrer", request,
        lambda: recipient_registry.verify_referrer(db, referrer_id, actor_id=operator.actor_id),
        ReferrerRead,
        referrer_id=referrer_id,
    )

@router.post("/{referrer_id}/suspend", response_model=ReferrerRead, summary="Suspend referrer")
async def suspend_referrer(
    referrer_id: int,
    request: Request,
    payload: Optional[ReferrerStatusChange] = None,
    operator: Operator = Depends(operations),
    db: Session = Depends(get_db)
) -> ReferrerRead:
    reason = payload.reason if payload else None
    return _run(
        "suspend_referrer", request,
        lambda: recipient_registry.suspend_referrer(db, referrer_id, reason=reason, actor_id=operator.actor_id),
        ReferrerRead,
        referrer_id=referrer_id,
    )

@router.post(
    "/{referrer_id}/reinstate",
    response_model=ReferrerRead,
    summary="Reinstate referrer",
    description="SUSPENDED / BLOCKED -> ACTIVE; refused while a blocking fraud flag is unresolved"
)
async def reinstate_referrer(
    referrer_id: int,
    request: Request,
    operator: Operator = Depends(operations),
    db: Session = Depends(get_db)
) -> ReferrerRead:
    return _run(
        "reinstate_referrer", request,
        lambda: recipient_registry.reinstate_referrer(db, referrer_id, actor_id=operator.actor_id),
        ReferrerRead,
        referrer_id=referrer_id,
    )

@router.post("/{referrer_id}/block", response_model=ReferrerRead, summary="Block referrer")
async def block_referrer(
    referrer_id: int,
    request: Request,
    payload: Optional[ReferrerStatusChange] = None,
    operator: Operator = Depends(operations),
    db: Session = Depends(get_db)
) -> ReferrerRead:
    reason = payload.reason if payload else None
    return _run(
        "block_referrer", request,
        lambda: recipient_registry.block_referrer(db, referrer_id, reason=reason, actor_id=operator.actor_id),
        ReferrerRead,
        referrer_id=referrer_id,
    )

@router.put(
    "/{referrer_id}/bank-details",
    response_model=ReferrerRead,
    summary="Update payout bank details",
    description="A holder name that does not match the referrer raises a BANK_MISMATCH flag"
)
async def update_bank_details(
    referrer_id: int,
    payload: BankDetailsUpdate,
    request: Request,
    operator: Operator = Depends(operations),
    db: Session = Depends(get_db)
) -> ReferrerRead:
    return _run(
        "update_referrer_bank_details", request,
        lambda: recipient_registry.update_referrer_bank_details(
            db,
            referrer_id,
            bank_name=payload.bank_name,
            bank_account_number=payload.bank_account_number,
            bank_account_name=payload.bank_account_name,
            actor_id=operator.actor_id,
        ),
        ReferrerRead,
        referrer_id=referrer_id,
    )

@router.get("/{referrer_id}/flags", response_model=List[FraudFlagRead], summary="List fraud flags")
async def list_flags(
    referrer_id: int,
    request: Request,
    include_resolved: bool = Query(True),
    operator: Operator = Depends(operations),
    db: Session = Depends(get_db)
) -> List[FraudFlagRead]:
    found = recipient_registry.get_referrer(db, referrer_id)
    if not found.success:
        raise_for_result(found, request_id=getattr(request.state, "request_id", "unknown"))
    flags = recipient_registry.list_fraud_flags(db, referrer_id, include_resolved=include_resolved)
    return [FraudFlagRead.model_validate(f) for f in flags]

@router.post(
    "/{referrer_id}/flags",
    response_model=FraudFlagRead,
    status_code=status.HTTP_201_CREATED,
    summary="Raise a fraud flag manually"
)
async def raise_flag(
    referrer_id: int,
    payload: FraudFlagCreate,
    request: Request,
    operator: Operator = Depends(operations),
    db: Session = Depends(get_db)
) -> FraudFlagRead:
    return _run(
        "raise_fraud_flag", request,
        lambda: recipient_registry.raise_fraud_flag(
            db, referrer_id, payload.flag_type, details=payload.details, actor_id=operator.actor_id
        ),
        FraudFlagRead,
        referrer_id=referrer_id,
    )

@router.post(
    "/{referrer_id}/links",
    response_model=ReferralLinkRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create referral link"
)
async def create_link(
    referrer_id: int,
    request: Request,
    payload: Optional[ReferralLinkCreate] = None,
    operator: Operator = Depends(operations),
    db: Session = Depends(get_db)
) -> ReferralLinkRead:
    payload = payload or ReferralLinkCreate()
    return _run(
        "create_referral_link", request,
        lambda: recipient_registry.create_referral_link(
            db,
            referrer_id,
            project_id=payload.project_id,
            developer_id=payload.developer_id,
            expires_at=payload.expires_at,
            actor_id=operator.actor_id,
        ),
        ReferralLinkRead,
        referrer_id=referrer_id,
    )

@router.get("/{referrer_id}/links", response_model=List[ReferralLinkRead], summary="List referral links")
async def list_links(
    referrer_id: int,
    operator: Operator = Depends(operations),
    db: Session = Depends(get_db)
) -> List[ReferralLinkRead]:
    return [ReferralLinkRead.model_validate(link) for link in recipient_registry.list_referral_links(db, referrer_id)]
