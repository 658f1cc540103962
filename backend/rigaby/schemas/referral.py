from typing import Any, Dict, List, Optional
from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field, UUID4
from datetime import datetime
from decimal import Decimal

from ..models.referral import ReferralBonusStatus, ReferralBonusType
from ..models.user import SubscriptionTier


class ReferredUserSummary(BaseModel):
    first_name: str
    last_name: str
    email: EmailStr
    subscription_tier: SubscriptionTier

    model_config = ConfigDict(from_attributes=True)


class ReferralBonusResponse(BaseModel):
    id: UUID4
    amount: Decimal
    level: int
    type: ReferralBonusType
    status: ReferralBonusStatus
    created_at: datetime
    metadata: Optional[Dict[str, Any]] = Field(
        default=None, validation_alias=AliasChoices("meta", "metadata")
    )
    referred_user: ReferredUserSummary

    model_config = ConfigDict(from_attributes=True)


class ReferralStatsResponse(BaseModel):
    direct_referrals: int
    total_bonus: Decimal
    monthly_bonus: Decimal
    recent_bonuses: List[ReferralBonusResponse]


class ReferralTreeNode(BaseModel):
    id: UUID4
    first_name: str
    last_name: str
    email: EmailStr
    subscription_tier: SubscriptionTier
    created_at: datetime
    balance: Decimal
    locked: Decimal
    # None once the requested depth is exhausted
    referrals: Optional[List["ReferralTreeNode"]] = None


class ReferralLinkResponse(BaseModel):
    referral_code: str
    referral_link: str
    share_message: str


class LevelEarnings(BaseModel):
    level: int
    total_earnings: Decimal
    referral_count: int


class ReferralAnalyticsResponse(BaseModel):
    total_referrals: int
    active_referrals: int
    conversion_rate: float
    total_earnings: Decimal
    subscription_earnings: Decimal
    task_earnings: Decimal
    earnings_by_level: List[LevelEarnings]
