from fastapi import APIRouter, Depends, Query

from ....core.deps import get_current_active_user, get_referral_service
from ....models.user import User
from ....schemas.referral import (
    ReferralAnalyticsResponse,
    ReferralLinkResponse,
    ReferralStatsResponse,
    ReferralTreeNode,
)
from ....services.referral_service import ReferralService

router = APIRouter()

@router.get("/stats", response_model=ReferralStatsResponse)
async def get_referral_stats(
    current_user: User = Depends(get_current_active_user),
    referral_service: ReferralService = Depends(get_referral_service)
):
    """
    Get direct referral count, bonus totals and recent bonuses.
    """
    return await referral_service.get_user_referral_stats(current_user.id)

@router.get("/tree", response_model=ReferralTreeNode)
async def get_referral_tree(
    max_level: int = Query(5, ge=1, le=10, alias="maxLevel"),
    current_user: User = Depends(get_current_active_user),
    referral_service: ReferralService = Depends(get_referral_service)
):
    """
    Get the users referred by the current user, down to ``maxLevel`` levels.
    """
    return await referral_service.get_referral_tree(current_user.id, max_level)

@router.get("/link", response_model=ReferralLinkResponse)
async def get_referral_link(
    current_user: User = Depends(get_current_active_user),
    referral_service: ReferralService = Depends(get_referral_service)
):
    """
    Get the current user's referral code and shareable link.
    """
    return await referral_service.get_referral_link(current_user.id)

@router.get("/analytics", response_model=ReferralAnalyticsResponse)
async def get_referral_analytics(
    current_user: User = Depends(get_current_active_user),
    referral_service: ReferralService = Depends(get_referral_service)
):
    """
    Get referral conversion and earnings by type and level.
    """
    return await referral_service.get_referral_analytics(current_user.id)
