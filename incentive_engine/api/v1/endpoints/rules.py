"""
Incentive rule endpoints.

Forbidden (approval-class) triggers are refused with 403 and recorded in the
audit trail; unknown triggers are refused with 400.
"""
from typing import List
from fastapi import APIRouter, Depends, HTTPException, status, Query, Request
from sqlalchemy.orm import Session
import time
from incentive_engine.api.deps import get_db, require_role, raise_for_result, ensure_developer_scope
from incentive_engine.models.db import Campaign, Operator
from incentive_engine.models.db.enums import OperatorRole
from incentive_engine.models.schemas.rules import RuleCreate, RuleRead, RuleUpdate
from incentive_engine.services import rule_store
from incentive_engine.services.triggers import allowed_triggers
from incentive_engine.utils import get_logger, log_performance, StorageConflictError

router = APIRouter()
logger = get_logger(__name__)

rule_manager = require_role([OperatorRole.DEVELOPER])

def _check_campaign_scope(db: Session, campaign_id: int, operator: Operator) -> None:
    # A missing campaign is reported by the rule store itself
    campaign = db.get(Campaign, campaign_id)
    if campaign is not None:
        ensure_developer_scope(operator, campaign.developer_id)

def _load_rule(db: Session, rule_id: int, operator: Operator, request_id: str):
    result = rule_store.get_rule(db, rule_id)
    if not result.success:
        raise_for_result(result, request_id=request_id)
    _check_campaign_scope(db, result.data.campaign_id, operator)
    return result.data

@router.get(
    "/triggers",
    response_model=List[str],
    summary="List rewardable triggers"
)
async def list_allowed_triggers(
    operator: Operator = Depends(rule_manager)
) -> List[str]:
    return allowed_triggers()

@router.post(
    "/",
    response_model=RuleRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create incentive rule",
    description="Attach a reward rule for a workflow milestone trigger to a campaign"
)
async def create_rule(
    rule_data: RuleCreate,
    request: Request,
    operator: Operator = Depends(rule_manager),
    db: Session = Depends(get_db)
) -> RuleRead:
    start_time = time.time()
    request_id = getattr(request.state, "request_id", "unknown")

    logger.info(
        "Rule creation started",
        campaign_id=rule_data.campaign_id,
        trigger=rule_data.trigger,
        recipient_type=rule_data.recipient_type.value,
        operator_id=operator.id,
        request_id=request_id
    )

    try:
        _check_campaign_scope(db, rule_data.campaign_id, operator)
        result = rule_store.create_rule(
            db,
            campaign_id=rule_data.campaign_id,
            trigger=rule_data.trigger,
            recipient_type=rule_data.recipient_type,
            reward_type=rule_data.reward_type,
            reward_amount=rule_data.reward_amount,
            reward_description=rule_data.reward_description,
            trigger_conditions=rule_data.trigger_conditions,
            max_awards_per_case=rule_data.max_awards_per_case,
            max_awards_per_recipient=rule_data.max_awards_per_recipient,
            max_total_awards=rule_data.max_total_awards,
            actor_id=operator.actor_id,
        )
        if not result.success:
            raise_for_result(result, request_id=request_id)

        duration_ms = (time.time() - start_time) * 1000
        log_performance(
            operation="create_rule",
            duration_ms=duration_ms,
            additional_data={"rule_id": result.data.id, "campaign_id": rule_data.campaign_id}
        )

        logger.info(
            "Rule created successfully",
            rule_id=result.data.id,
            duration_ms=duration_ms,
            request_id=request_id
        )

        return RuleRead.model_validate(result.data)

    except (HTTPException, StorageConflictError):
        raise
    except Exception as e:
        logger.error(
            "Rule creation failed with unexpected error",
            campaign_id=rule_data.campaign_id,
            error=str(e),
            request_id=request_id,
            exc_info=True
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error during rule creation"
        )

@router.get(
    "/",
    response_model=List[RuleRead],
    summary="List rules of a campaign"
)
async def list_rules(
    request: Request,
    campaign_id: int = Query(..., description="Campaign whose rules to list"),
    include_inactive: bool = Query(True),
    operator: Operator = Depends(rule_manager),
    db: Session = Depends(get_db)
) -> List[RuleRead]:
    start_time = time.time()
    request_id = getattr(request.state, "request_id", "unknown")

    try:
        _check_campaign_scope(db, campaign_id, operator)
        rules = rule_store.list_rules_by_campaign(db, campaign_id, include_inactive=include_inactive)

        log_performance(
            operation="list_rules",
            duration_ms=(time.time() - start_time) * 1000,
            additional_data={"campaign_id": campaign_id, "rules_returned": len(rules)}
        )

        return [RuleRead.model_validate(r) for r in rules]

    except HTTPException:
        raise
    except Exception as e:
        logger.error("Rule list failed", campaign_id=campaign_id, error=str(e), request_id=request_id, exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error while listing rules"
        )

@router.get("/{rule_id}", response_model=RuleRead, summary="Get rule")
async def get_rule(
    rule_id: int,
    request: Request,
    operator: Operator = Depends(rule_manager),
    db: Session = Depends(get_db)
) -> RuleRead:
    request_id = getattr(request.state, "request_id", "unknown")
    return RuleRead.model_validate(_load_rule(db, rule_id, operator, request_id))

@router.patch(
    "/{rule_id}",
    response_model=RuleRead,
    summary="Update rule",
    description="Edit reward, conditions and caps. The trigger of an existing rule cannot be changed."
)
async def update_rule(
    rule_id: int,
    update_data: RuleUpdate,
    request: Request,
    operator: Operator = Depends(rule_manager),
    db: Session = Depends(get_db)
) -> RuleRead:
    start_time = time.time()
    request_id = getattr(request.state, "request_id", "unknown")
    changes = update_data.model_dump(exclude_unset=True)

    try:
        _load_rule(db, rule_id, operator, request_id)
        result = rule_store.update_rule(db, rule_id, changes=changes, actor_id=operator.actor_id)
        if not result.success:
            raise_for_result(result, request_id=request_id)

        log_performance(
            operation="update_rule",
            duration_ms=(time.time() - start_time) * 1000,
            additional_data={"rule_id": rule_id, "field_count": len(changes)}
        )

        return RuleRead.model_validate(result.data)

    except (HTTPException, StorageConflictError):
        raise
    except Exception as e:
        logger.error("Rule update failed", rule_id=rule_id, error=str(e), request_id=request_id, exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error during rule update"
        )

@router.post("/{rule_id}/deactivate", response_model=RuleRead, summary="Deactivate rule")
async def deactivate_rule(
    rule_id: int,
    request: Request,
    operator: Operator = Depends(rule_manager),
    db: Session = Depends(get_db)
) -> RuleRead:
    start_time = time.time()
    request_id = getattr(request.state, "request_id", "unknown")

    try:
        _load_rule(db, rule_id, operator, request_id)
        result = rule_store.deactivate_rule(db, rule_id, actor_id=operator.actor_id)
        if not result.success:
            raise_for_result(result, request_id=request_id)

        log_performance(
            operation="deactivate_rule",
            duration_ms=(time.time() - start_time) * 1000,
            additional_data={"rule_id": rule_id}
        )

        return RuleRead.model_validate(result.data)

    except (HTTPException, StorageConflictError):
        raise
    except Exception as e:
        logger.error("Rule deactivation failed", rule_id=rule_id, error=str(e), request_id=request_id, exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error during rule deactivation"
        )
