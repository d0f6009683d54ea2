"""
Dependencies for authentication, database sessions, and service result translation.
"""
from typing import Generator, List, NoReturn
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from incentive_engine.database import SessionLocal
from incentive_engine.models.db import Operator
from incentive_engine.models.db.enums import OperatorRole
from incentive_engine.services.results import ErrorCode, ServiceResult
from incentive_engine.utils import get_logger

logger = get_logger(__name__)
security = HTTPBearer()

ERROR_STATUS: dict[ErrorCode, int] = {
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.CAMPAIGN_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.VALIDATION_ERROR: status.HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_TRIGGER: status.HTTP_400_BAD_REQUEST,
    ErrorCode.MISSING_DESTINATION: status.HTTP_400_BAD_REQUEST,
    ErrorCode.REASON_TOO_SHORT: status.HTTP_400_BAD_REQUEST,
    ErrorCode.FORBIDDEN_TRIGGER: status.HTTP_403_FORBIDDEN,
    ErrorCode.FOUR_EYES_VIOLATION: status.HTTP_403_FORBIDDEN,
    ErrorCode.INVALID_STATUS: status.HTTP_409_CONFLICT,
    ErrorCode.BUDGET_EXHAUSTED: status.HTTP_409_CONFLICT,
    ErrorCode.DUPLICATE_PAYOUT: status.HTTP_409_CONFLICT,
    ErrorCode.DUPLICATE_PHONE: status.HTTP_409_CONFLICT,
    ErrorCode.DUPLICATE_EMAIL: status.HTTP_409_CONFLICT,
    ErrorCode.MAX_RETRIES_EXCEEDED: status.HTTP_409_CONFLICT,
    ErrorCode.CAMPAIGN_EXPIRED: status.HTTP_409_CONFLICT,
}

def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.
    Ensures proper session lifecycle management with automatic cleanup.

    Yields:
        Session: SQLAlchemy database session
    """
    db = SessionLocal()
    try:
        yield db
    except Exception as e:
        logger.error("Database session error", error=str(e), exc_info=True)
        db.rollback()
        raise
    finally:
        db.close()

def _key_prefix(api_key: str) -> str:
    return api_key[:10] + "..." if len(api_key) > 10 else api_key

def get_current_operator(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> Operator:
    """
    Extract and validate the operator behind a Bearer API key.

    Raises:
        HTTPException: 401 if the key is unknown or the operator is inactive
    """
    api_key = credentials.credentials

    logger.debug("Operator authentication attempt", api_key_prefix=_key_prefix(api_key))

    operator = db.query(Operator).filter(
        Operator.api_key == api_key,
        Operator.is_active.is_(True)
    ).first()

    if not operator:
        logger.warning(
            "Authentication failed: invalid or inactive API key",
            api_key_prefix=_key_prefix(api_key)
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or inactive API key",
            headers={"WWW-Authenticate": "Bearer"},
        )

    logger.info(
        "Operator authenticated successfully",
        operator_id=operator.id,
        operator_role=operator.role.value
    )

    return operator

def require_role(allowed_roles: List[OperatorRole]):
    """
    Factory function to create a dependency that requires specific operator roles.
    ADMIN is always accepted.
    """
    def role_dependency(
        current_operator: Operator = Depends(get_current_operator)
    ) -> Operator:
        if current_operator.role != OperatorRole.ADMIN and current_operator.role not in allowed_roles:
            logger.warning(
                "Access denied: insufficient role",
                operator_id=current_operator.id,
                operator_role=current_operator.role.value,
                required_roles=[role.value for role in allowed_roles]
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required roles: {[role.value for role in allowed_roles]}"
            )
        return current_operator

    return role_dependency

def require_admin(
    current_operator: Operator = Depends(get_current_operator)
) -> Operator:
    """Dependency that requires the ADMIN role."""
    if current_operator.role != OperatorRole.ADMIN:
        logger.warning(
            "Access denied: admin required",
            operator_id=current_operator.id,
            operator_role=current_operator.role.value
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )

    return current_operator

def raise_for_result(result: ServiceResult, *, request_id: str | None = None) -> NoReturn:
    """Translate a failed ``ServiceResult`` into an ``HTTPException``.

    The detail is a dict so the exception handler can surface ``error_code``.
    """
    error_code = result.error_code or ErrorCode.VALIDATION_ERROR
    status_code = ERROR_STATUS.get(error_code, status.HTTP_400_BAD_REQUEST)
    logger.warning(
        "Service operation refused",
        error_code=error_code.value,
        error=result.error,
        status_code=status_code,
        request_id=request_id
    )
    raise HTTPException(
        status_code=status_code,
        detail={"message": result.error, "error_code": error_code.value},
    )

def get_pagination_params(
    limit: int = 100,
    offset: int = 0
) -> dict:
    """
    Validate and return pagination parameters.

    Raises:
        HTTPException: If limit is outside 1-500 or offset is negative
    """
    if limit < 1 or limit > 500:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Limit must be between 1 and 500"
        )

    if offset < 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Offset must be >= 0"
        )

    return {"limit": limit, "offset": offset}

def ensure_developer_scope(operator: Operator, developer_id: str) -> None:
    """DEVELOPER operators may only act on their own developer's campaigns; other roles pass."""
    if operator.role == OperatorRole.DEVELOPER and operator.developer_id != developer_id:
        logger.warning(
            "Access denied: developer scope violation",
            operator_id=operator.id,
            operator_developer_id=operator.developer_id,
            requested_developer_id=developer_id
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied: campaign belongs to another developer"
        )
