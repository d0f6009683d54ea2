"""
Incentive campaign endpoints: creation, lifecycle transitions and budget stats.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status, Query, Request
from sqlalchemy.orm import Session
import time
from incentive_engine.api.deps import (
    get_db,
    require_role,
    require_admin,
    raise_for_result,
    ensure_developer_scope,
    get_pagination_params,
)
from incentive_engine.models.db import Operator
from incentive_engine.models.db.enums import CampaignStatus, OperatorRole
from incentive_engine.models.schemas.campaigns import CampaignCreate, CampaignRead, CampaignUpdate, CampaignStats
from incentive_engine.models.schemas.base import ResponseBase
from incentive_engine.services import campaign_store
from incentive_engine.utils import get_logger, log_performance, StorageConflictError

router = APIRouter()
logger = get_logger(__name__)

campaign_manager = require_role([OperatorRole.DEVELOPER])

def _load_scoped(db: Session, campaign_id: int, operator: Operator, request_id: str):
    result = campaign_store.get_campaign(db, campaign_id)
    if not result.success:
        raise_for_result(result, request_id=request_id)
    ensure_developer_scope(operator, result.data.developer_id)
    return result.data

@router.post(
    "/",
    response_model=CampaignRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create new campaign",
    description="Create a DRAFT incentive campaign with a fixed budget for a developer project"
)
async def create_campaign(
    campaign_data: CampaignCreate,
    request: Request,
    operator: Operator = Depends(campaign_manager),
    db: Session = Depends(get_db)
) -> CampaignRead:
    start_time = time.time()
    request_id = getattr(request.state, "request_id", "unknown")

    logger.info(
        "Campaign creation started",
        campaign_name=campaign_data.name,
        project_id=campaign_data.project_id,
        budget_total=campaign_data.budget_total,
        operator_id=operator.id,
        request_id=request_id
    )

    try:
        developer_id = campaign_data.developer_id
        if operator.role == OperatorRole.DEVELOPER:
            developer_id = developer_id or operator.developer_id
            ensure_developer_scope(operator, developer_id)
        if not developer_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="developer_id is required"
            )

        result = campaign_store.create_campaign(
            db,
            developer_id=developer_id,
            project_id=campaign_data.project_id,
            name=campaign_data.name,
            description=campaign_data.description,
            budget_total=campaign_data.budget_total,
            start_date=campaign_data.start_date,
            end_date=campaign_data.end_date,
            max_awards_per_case=campaign_data.max_awards_per_case,
            max_awards_per_recipient=campaign_data.max_awards_per_recipient,
            created_by=operator.actor_id,
        )
        if not result.success:
            raise_for_result(result, request_id=request_id)
        campaign = result.data

        duration_ms = (time.time() - start_time) * 1000
        log_performance(
            operation="create_campaign",
            duration_ms=duration_ms,
            additional_data={"campaign_id": campaign.id}
        )

        logger.info(
            "Campaign created successfully",
            campaign_id=campaign.id,
            duration_ms=duration_ms,
            request_id=request_id
        )

        return CampaignRead.model_validate(campaign)

    except (HTTPException, StorageConflictError):
        raise
    except Exception as e:
        logger.error(
            "Campaign creation failed with unexpected error",
            campaign_name=campaign_data.name,
            error=str(e),
            request_id=request_id,
            exc_info=True
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error during campaign creation"
        )

@router.get(
    "/",
    response_model=List[CampaignRead],
    summary="List campaigns"
)
async def list_campaigns(
    request: Request,
    status_filter: Optional[CampaignStatus] = Query(None),
    project_id: Optional[str] = Query(None, description="Filter by project ID"),
    developer_id: Optional[str] = Query(None, description="Filter by developer ID (admins only)"),
    pagination: dict = Depends(get_pagination_params),
    operator: Operator = Depends(campaign_manager),
    db: Session = Depends(get_db)
) -> List[CampaignRead]:
    """Developers only ever see their own campaigns."""
    start_time = time.time()
    request_id = getattr(request.state, "request_id", "unknown")

    try:
        if operator.role == OperatorRole.DEVELOPER:
            developer_id = operator.developer_id

        campaigns = campaign_store.list_campaigns(
            db,
            developer_id=developer_id,
            project_id=project_id,
            status=status_filter,
            **pagination
        )

        duration_ms = (time.time() - start_time) * 1000
        log_performance(
            operation="list_campaigns",
            duration_ms=duration_ms,
            additional_data={
                "campaigns_returned": len(campaigns),
                "filters_applied": bool(status_filter or project_id or developer_id)
            }
        )

        return [CampaignRead.model_validate(c) for c in campaigns]

    except HTTPException:
        raise
    except Exception as e:
        logger.error(
            "Campaign list failed",
            error=str(e),
            request_id=request_id,
            exc_info=True
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error while listing campaigns"
        )

@router.post(
    "/expire",
    response_model=ResponseBase,
    summary="Expire campaigns past their end date",
    description="Sweep ACTIVE / PAUSED / EXHAUSTED campaigns whose end date has passed into EXPIRED"
)
async def expire_campaigns(
    request: Request,
    admin: Operator = Depends(require_admin),
    db: Session = Depends(get_db)
) -> ResponseBase:
    start_time = time.time()
    request_id = getattr(request.state, "request_id", "unknown")

    logger.info("Campaign expiry sweep requested", admin_id=admin.id, request_id=request_id)

    try:
        expired = campaign_store.expire_campaigns(db)

        log_performance(
            operation="expire_campaigns",
            duration_ms=(time.time() - start_time) * 1000,
            additional_data={"expired_count": len(expired)}
        )

        return ResponseBase(
            message=f"{len(expired)} campaign(s) expired",
            data={"expired_campaign_ids": expired}
        )

    except StorageConflictError:
        raise
    except Exception as e:
        logger.error("Campaign expiry sweep failed", error=str(e), request_id=request_id, exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error during campaign expiry"
        )

@router.get(
    "/{campaign_id}",
    response_model=CampaignRead,
    summary="Get campaign"
)
async def get_campaign(
    campaign_id: int,
    request: Request,
    operator: Operator = Depends(campaign_manager),
    db: Session = Depends(get_db)
) -> CampaignRead:
    request_id = getattr(request.state, "request_id", "unknown")
    campaign = _load_scoped(db, campaign_id, operator, request_id)
    return CampaignRead.model_validate(campaign)

@router.patch(
    "/{campaign_id}",
    response_model=CampaignRead,
    summary="Update campaign",
    description="Edit name, description, end date and campaign-level caps. Budget and status are not editable."
)
async def update_campaign(
    campaign_id: int,
    update_data: CampaignUpdate,
    request: Request,
    operator: Operator = Depends(campaign_manager),
    db: Session = Depends(get_db)
) -> CampaignRead:
    start_time = time.time()
    request_id = getattr(request.state, "request_id", "unknown")

    changes = update_data.model_dump(exclude_unset=True)
    logger.info(
        "Campaign update started",
        campaign_id=campaign_id,
        fields=sorted(changes),
        request_id=request_id
    )

    try:
        _load_scoped(db, campaign_id, operator, request_id)
        result = campaign_store.update_campaign(db, campaign_id, actor_id=operator.actor_id, changes=changes)
        if not result.success:
            raise_for_result(result, request_id=request_id)

        log_performance(
            operation="update_campaign",
            duration_ms=(time.time() - start_time) * 1000,
            additional_data={"campaign_id": campaign_id, "field_count": len(changes)}
        )

        return CampaignRead.model_validate(result.data)

    except (HTTPException, StorageConflictError):
        raise
    except Exception as e:
        logger.error(
            "Campaign update failed",
            campaign_id=campaign_id,
            error=str(e),
            request_id=request_id,
            exc_info=True
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error during campaign update"
        )

async def _transition(action: str, campaign_id: int, request: Request, operator: Operator, db: Session) -> CampaignRead:
    start_time = time.time()
    request_id = getattr(request.state, "request_id", "unknown")

    logger.info(
        "Campaign transition requested",
        campaign_id=campaign_id,
        action=action,
        operator_id=operator.id,
        request_id=request_id
    )

    try:
        _load_scoped(db, campaign_id, operator, request_id)
        handler = {
            "activate": campaign_store.activate_campaign,
            "pause": campaign_store.pause_campaign,
            "cancel": campaign_store.cancel_campaign,
        }[action]
        result = handler(db, campaign_id, operator.actor_id)
        if not result.success:
            raise_for_result(result, request_id=request_id)

        log_performance(
            operation=f"{action}_campaign",
            duration_ms=(time.time() - start_time) * 1000,
            additional_data={"campaign_id": campaign_id, "status": result.data.status.value}
        )

        return CampaignRead.model_validate(result.data)

    except (HTTPException, StorageConflictError):
        raise
    except Exception as e:
        logger.error(
            "Campaign transition failed",
            campaign_id=campaign_id,
            action=action,
            error=str(e),
            request_id=request_id,
            exc_info=True
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Internal server error during campaign {action}"
        )

@router.post("/{campaign_id}/activate", response_model=CampaignRead, summary="Activate campaign")
async def activate_campaign(
    campaign_id: int,
    request: Request,
    operator: Operator = Depends(campaign_manager),
    db: Session = Depends(get_db)
) -> CampaignRead:
    return await _transition("activate", campaign_id, request, operator, db)

@router.post("/{campaign_id}/pause", response_model=CampaignRead, summary="Pause campaign")
async def pause_campaign(
    campaign_id: int,
    request: Request,
    operator: Operator = Depends(campaign_manager),
    db: Session = Depends(get_db)
) -> CampaignRead:
    return await _transition("pause", campaign_id, request, operator, db)

@router.post("/{campaign_id}/cancel", response_model=CampaignRead, summary="Cancel campaign")
async def cancel_campaign(
    campaign_id: int,
    request: Request,
    operator: Operator = Depends(campaign_manager),
    db: Session = Depends(get_db)
) -> CampaignRead:
    return await _transition("cancel", campaign_id, request, operator, db)

@router.get(
    "/{campaign_id}/stats",
    response_model=CampaignStats,
    summary="Campaign budget and award statistics"
)
async def get_campaign_stats(
    campaign_id: int,
    request: Request,
    operator: Operator = Depends(campaign_manager),
    db: Session = Depends(get_db)
) -> CampaignStats:
    start_time = time.time()
    request_id = getattr(request.state, "request_id", "unknown")

    try:
        _load_scoped(db, campaign_id, operator, request_id)
        result = campaign_store.get_campaign_stats(db, campaign_id)
        if not result.success:
            raise_for_result(result, request_id=request_id)

        log_performance(
            operation="get_campaign_stats",
            duration_ms=(time.time() - start_time) * 1000,
            additional_data={"campaign_id": campaign_id}
        )

        return CampaignStats(**result.data)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(
            "Campaign stats failed",
            campaign_id=campaign_id,
            error=str(e),
            request_id=request_id,
            exc_info=True
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error while computing campaign stats"
        )
