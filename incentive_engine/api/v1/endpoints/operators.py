"""
Operator management endpoints (developers, operations, finance, workflow service, admins).
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status, Query, Request
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
import time
import secrets
import string
from incentive_engine.api.deps import get_db, get_current_operator, require_admin, get_pagination_params
from incentive_engine.models.db import Operator
from incentive_engine.models.db.enums import OperatorRole
from incentive_engine.models.schemas.operators import OperatorCreate, OperatorRead, OperatorWithKey
from incentive_engine.utils import get_logger, log_business_event, log_performance

router = APIRouter()
logger = get_logger(__name__)

def generate_api_key() -> str:
    """Generate a secure API key."""
    alphabet = string.ascii_letters + string.digits
    return ''.join(secrets.choice(alphabet) for _ in range(32))

@router.post(
    "/",
    response_model=OperatorWithKey,
    status_code=status.HTTP_201_CREATED,
    summary="Create operator",
    description="Register a back-office operator (admin only). The API key is returned once."
)
async def create_operator(
    operator_data: OperatorCreate,
    request: Request,
    admin: Operator = Depends(require_admin),
    db: Session = Depends(get_db)
) -> OperatorWithKey:
    start_time = time.time()
    request_id = getattr(request.state, "request_id", "unknown")

    logger.info(
        "Operator creation started",
        operator_name=operator_data.name,
        operator_role=operator_data.role.value,
        admin_id=admin.id,
        request_id=request_id
    )

    try:
        existing = db.query(Operator).filter(
            (Operator.email == operator_data.email) | (Operator.name == operator_data.name)
        ).first()
        if existing:
            logger.warning(
                "Operator creation failed: duplicate name or email",
                existing_operator_id=existing.id,
                request_id=request_id
            )
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Operator with this email or name already exists"
            )

        new_operator = Operator(
            name=operator_data.name,
            email=operator_data.email,
            api_key=generate_api_key(),
            role=operator_data.role,
            developer_id=operator_data.developer_id if operator_data.role == OperatorRole.DEVELOPER else None,
        )

        db.add(new_operator)
        db.commit()
        db.refresh(new_operator)

        log_business_event(
            event_type="OPERATOR_CREATED",
            details={
                "operator_id": new_operator.id,
                "operator_role": new_operator.role.value,
                "developer_id": new_operator.developer_id,
            },
            actor_id=admin.actor_id,
            request_id=request_id
        )

        log_performance(
            operation="create_operator",
            duration_ms=(time.time() - start_time) * 1000,
            additional_data={"operator_id": new_operator.id, "role": new_operator.role.value}
        )

        return OperatorWithKey.model_validate(new_operator)

    except HTTPException:
        raise
    except IntegrityError as e:
        db.rollback()
        logger.error(
            "Operator creation failed: database integrity error",
            error=str(e),
            operator_name=operator_data.name,
            request_id=request_id
        )
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Operator with this email or name already exists"
        )
    except Exception as e:
        logger.error(
            "Operator creation failed with unexpected error",
            error=str(e),
            operator_name=operator_data.name,
            request_id=request_id,
            exc_info=True
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create operator"
        )

@router.get("/me", response_model=OperatorRead, summary="Current operator")
async def read_me(operator: Operator = Depends(get_current_operator)) -> OperatorRead:
    return OperatorRead.model_validate(operator)

@router.get("/", response_model=List[OperatorRead], summary="List operators")
async def list_operators(
    role: Optional[OperatorRole] = Query(None),
    pagination: dict = Depends(get_pagination_params),
    admin: Operator = Depends(require_admin),
    db: Session = Depends(get_db)
) -> List[OperatorRead]:
    query = db.query(Operator)
    if role is not None:
        query = query.filter(Operator.role == role)
    operators = query.order_by(Operator.id).offset(pagination["offset"]).limit(pagination["limit"]).all()
    return [OperatorRead.model_validate(o) for o in operators]
