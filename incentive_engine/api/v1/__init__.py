"""
API v1 router initialization and setup.
"""
from fastapi import APIRouter
from .endpoints import operators, campaigns, rules, milestones, awards, payouts, referrers, lawyers

api_router = APIRouter()

api_router.include_router(
    operators.router,
    prefix="/operators",
    tags=["operators"]
)

api_router.include_router(
    campaigns.router,
    prefix="/campaigns",
    tags=["campaigns"]
)

api_router.include_router(
    rules.router,
    prefix="/rules",
    tags=["rules"]
)

api_router.include_router(
    milestones.router,
    prefix="/milestones",
    tags=["milestones"]
)

api_router.include_router(
    awards.router,
    prefix="/awards",
    tags=["awards"]
)

api_router.include_router(
    payouts.router,
    prefix="/payouts",
    tags=["payouts"]
)

api_router.include_router(
    referrers.router,
    prefix="/referrers",
    tags=["referrers"]
)

api_router.include_router(
    lawyers.router,
    prefix="/lawyers",
    tags=["lawyers"]
)
