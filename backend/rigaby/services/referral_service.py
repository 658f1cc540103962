import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import UUID
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..core.config import settings
from ..core.exceptions import DuplicateAttributionError, NotFoundError
from ..core.metrics import record_referral_bonus
from ..core.tracing import get_tracer
from ..models.referral import ReferralBonus, ReferralBonusStatus, ReferralBonusType
from ..models.user import User
from ..models.wallet import TransactionType, Wallet
from .user_service import UserService
from .wallet_service import CENT, WalletService

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)


@dataclass(frozen=True)
class BonusConfig:
    """Bonus rates: ``direct_rate`` for level 0, ``level_rates[k - 1]`` for level k."""

    direct_rate: Decimal
    level_rates: Tuple[Decimal, ...]

    @property
    def max_level(self) -> int:
        return len(self.level_rates)

    @classmethod
    def from_settings(cls) -> "BonusConfig":
        return cls(
            direct_rate=Decimal(str(settings.REFERRAL_DIRECT_RATE)),
            level_rates=tuple(Decimal(str(rate)) for rate in settings.REFERRAL_LEVEL_RATES),
        )


@dataclass
class LevelOutcome:
    level: int
    referrer_id: UUID
    amount: Decimal
    succeeded: bool
    error: Optional[str] = None


@dataclass
class ReferralPayout:
    """Result of one referral event: the direct bonus plus every level attempted above it."""

    referrer_id: UUID
    bonus: Decimal
    levels: List[LevelOutcome] = field(default_factory=list)

    @property
    def paid_levels(self) -> List[int]:
        return [outcome.level for outcome in self.levels if outcome.succeeded]


class ReferralService:
    """
    Pays referral bonuses up a user's referral chain.

    Wallets are only ever credited through ``WalletService.add_funds``; the
    bonus record joins that call's unit of work, so a level is either credited
    and recorded or neither.
    """

    def __init__(
        self,
        db: AsyncSession,
        wallet_service: Optional[WalletService] = None,
        user_service: Optional[UserService] = None,
        config: Optional[BonusConfig] = None,
    ):
        self.db = db
        self.user_service = user_service or UserService(db)
        self.wallet_service = wallet_service or WalletService(db, self.user_service)
        self.config = config or BonusConfig.from_settings()

    async def process_subscription_referral(
        self, user_id: UUID, subscription_amount: Decimal
    ) -> Optional[ReferralPayout]:
        """
        Pay the direct referrer of ``user_id`` and then every ancestor up to
        ``config.max_level`` levels above it.

        Returns None when the user has no referrer. Errors at the direct level
        propagate; errors at higher levels are logged and reported in
        ``ReferralPayout.levels``.
        """
        logger.info(f"Processing subscription referral for user: {user_id}, amount: {subscription_amount}")
        subscription_amount = Decimal(str(subscription_amount))

        with tracer.start_as_current_span("ReferralService.process_subscription_referral") as span:
            span.set_attribute("user_id", str(user_id))

            referrer_id = await self.user_service.get_referrer(user_id)
            if not referrer_id:
                logger.info(f"No referrer found for user: {user_id}")
                return None

            bonus = self._bonus_amount(subscription_amount, self.config.direct_rate)
            await self._pay_level(
                referrer_id=referrer_id,
                referred_user_id=user_id,
                level=0,
                rate=self.config.direct_rate,
                amount=bonus,
                bonus_type=ReferralBonusType.SUBSCRIPTION,
                description="Direct referral bonus from a referred user's subscription",
                metadata={"subscriptionAmount": str(subscription_amount)},
            )
            logger.info(f"Direct referral bonus processed: {bonus} for referrer: {referrer_id}")

            levels = await self._propagate(
                referrer_id, user_id, subscription_amount, ReferralBonusType.SUBSCRIPTION
            )
            span.set_attribute("levels_paid", sum(1 for outcome in levels if outcome.succeeded))

        return ReferralPayout(referrer_id=referrer_id, bonus=bonus, levels=levels)

    async def process_task_referral(self, user_id: UUID, task_reward: Decimal) -> Optional[ReferralPayout]:
        """Pay the direct referrer a share of a completed task's reward. Single level only."""
        logger.info(f"Processing task referral for user: {user_id}, reward: {task_reward}")
        task_reward = Decimal(str(task_reward))

        referrer_id = await self.user_service.get_referrer(user_id)
        if not referrer_id:
            logger.info(f"No referrer found for user: {user_id}")
            return None

        bonus = self._bonus_amount(task_reward, self.config.direct_rate)
        await self._pay_level(
            referrer_id=referrer_id,
            referred_user_id=user_id,
            level=0,
            rate=self.config.direct_rate,
            amount=bonus,
            bonus_type=ReferralBonusType.TASK_REWARD,
            description="Task completion bonus from a referred user",
            metadata={"taskReward": str(task_reward)},
        )
        logger.info(f"Task referral bonus processed: {bonus} for referrer: {referrer_id}")
        return ReferralPayout(referrer_id=referrer_id, bonus=bonus)

    async def _propagate(
        self,
        referrer_id: UUID,
        original_user_id: UUID,
        amount: Decimal,
        bonus_type: ReferralBonusType,
    ) -> List[LevelOutcome]:
        """
        Walk from the direct referrer upward, paying levels 1..max_level.

        Each level is its own unit of work. A failed level does not undo the
        levels below it and does not stop the walk; the loop bound also ends
        the walk if the chain loops back on itself.
        """
        outcomes: List[LevelOutcome] = []
        current_id = referrer_id

        for level in range(1, self.config.max_level + 1):
            try:
                ancestor_id = await self.user_service.get_referrer(current_id)
            except Exception as e:
                logger.exception(f"Error looking up referrer of {current_id} at level {level}: {e}")
                break
            if not ancestor_id:
                break

            rate = self.config.level_rates[level - 1]
            bonus = self._bonus_amount(amount, rate)
            try:
                await self._pay_level(
                    referrer_id=ancestor_id,
                    referred_user_id=original_user_id,
                    level=level,
                    rate=rate,
                    amount=bonus,
                    bonus_type=bonus_type,
                    description=f"Level {level} referral bonus from network",
                    metadata={"subscriptionAmount": str(amount), "via": str(current_id)},
                )
            except Exception as e:
                logger.error(f"Error processing level {level} referral for referrer {ancestor_id}: {e}")
                outcomes.append(LevelOutcome(level, ancestor_id, bonus, False, str(e)))
            else:
                logger.info(f"Level {level} referral bonus processed: {bonus} for referrer: {ancestor_id}")
                outcomes.append(LevelOutcome(level, ancestor_id, bonus, True))

            current_id = ancestor_id

        return outcomes

    async def _pay_level(
        self,
        referrer_id: UUID,
        referred_user_id: UUID,
        level: int,
        rate: Decimal,
        amount: Decimal,
        bonus_type: ReferralBonusType,
        description: str,
        metadata: Dict[str, Any],
    ) -> ReferralBonus:
        """Credit one ancestor and record its bonus in a single unit of work."""
        metadata = {
            **metadata,
            "referredUserId": str(referred_user_id),
            "level": level,
            "bonusPercentage": str(rate),
            "timestamp": datetime.utcnow().isoformat(),
        }
        try:
            async with self.wallet_service.unit_of_work():
                if await self._bonus_exists(referrer_id, referred_user_id, bonus_type):
                    raise DuplicateAttributionError(
                        f"{bonus_type.value} bonus for referrer {referrer_id} and user {referred_user_id} already exists"
                    )

                await self.wallet_service.add_funds(
                    referrer_id, amount, TransactionType.REFERRAL_BONUS, description, metadata
                )
                bonus = ReferralBonus(
                    referrer_id=referrer_id,
                    referred_user_id=referred_user_id,
                    level=level,
                    bonus_percentage=rate,
                    amount=amount,
                    type=bonus_type,
                    status=ReferralBonusStatus.PAID,
                    meta=metadata,
                )
                self.db.add(bonus)
                try:
                    await self.db.flush()
                except IntegrityError as e:
                    # A concurrent event recorded the same triple first
                    raise DuplicateAttributionError(
                        f"{bonus_type.value} bonus for referrer {referrer_id} and user {referred_user_id} already exists"
                    ) from e
        except DuplicateAttributionError:
            record_referral_bonus(bonus_type.value, level, "duplicate")
            raise
        except Exception:
            record_referral_bonus(bonus_type.value, level, "failed")
            raise

        record_referral_bonus(bonus_type.value, level, "paid", amount)
        return bonus

    async def _bonus_exists(
        self, referrer_id: UUID, referred_user_id: UUID, bonus_type: ReferralBonusType
    ) -> bool:
        result = await self.db.execute(
            select(ReferralBonus.id).where(
                ReferralBonus.referrer_id == referrer_id,
                ReferralBonus.referred_user_id == referred_user_id,
                ReferralBonus.type == bonus_type,
            )
        )
        return result.first() is not None

    def _bonus_amount(self, amount: Decimal, rate: Decimal) -> Decimal:
        return (amount * rate).quantize(CENT, rounding=ROUND_HALF_UP)

    # --- Reporting ---

    async def get_user_referral_stats(self, user_id: UUID) -> Dict[str, Any]:
        """Direct referral count, paid bonus totals and the latest bonuses"""
        logger.info(f"Getting referral stats for user: {user_id}")

        direct_referrals = await self._count_referrals(User.referred_by_id == user_id)
        total_bonus = await self._sum_bonuses(
            ReferralBonus.referrer_id == user_id,
            ReferralBonus.status == ReferralBonusStatus.PAID,
        )
        monthly_bonus = await self._sum_bonuses(
            ReferralBonus.referrer_id == user_id,
            ReferralBonus.status == ReferralBonusStatus.PAID,
            ReferralBonus.created_at >= datetime.utcnow() - timedelta(days=30),
        )

        result = await self.db.execute(
            select(ReferralBonus).where(ReferralBonus.referrer_id == user_id).options(
                selectinload(ReferralBonus.referred_user)
            ).order_by(ReferralBonus.created_at.desc()).limit(10)
        )

        return {
            "direct_referrals": direct_referrals,
            "total_bonus": total_bonus,
            "monthly_bonus": monthly_bonus,
            "recent_bonuses": list(result.scalars().all()),
        }

    async def get_referral_tree(self, user_id: UUID, max_level: int = 5) -> Optional[Dict[str, Any]]:
        """
        Nested view of the users below ``user_id``.

        Direct referrals are level 1; nodes on level ``max_level`` are not
        expanded and carry ``referrals=None``.
        """
        logger.info(f"Getting referral tree for user: {user_id}, maxLevel: {max_level}")

        root = await self._load_tree_level([user_id])
        if user_id not in root:
            raise NotFoundError("User not found")

        root_node = _tree_node(*root[user_id])
        nodes = {user_id: root_node}
        frontier = [user_id]
        for _ in range(max_level):
            children = await self._load_tree_level(frontier, by_referrer=True)
            next_frontier = []
            for child_id, (child, wallet) in children.items():
                if child_id in nodes:
                    continue
                node = _tree_node(child, wallet)
                parent = nodes[child.referred_by_id]
                parent["referrals"].append(node)
                nodes[child_id] = node
                next_frontier.append(child_id)
            if not next_frontier:
                break
            frontier = next_frontier

        _close_leaves(root_node, 0, max_level)
        return root_node

    async def get_referral_link(self, user_id: UUID) -> Dict[str, str]:
        logger.info(f"Getting referral link for user: {user_id}")

        user = await self.user_service.get_user(user_id)
        if not user:
            raise NotFoundError("User not found")

        referral_link = f"{settings.APP_URL}/register?ref={user.referral_code}"
        return {
            "referral_code": user.referral_code,
            "referral_link": referral_link,
            "share_message": (
                f"Join me on {settings.PROJECT_NAME}! Use my referral code "
                f"{user.referral_code} to get started. {referral_link}"
            ),
        }

    async def get_referral_analytics(self, user_id: UUID) -> Dict[str, Any]:
        """Referral conversion and earnings broken down by type and level"""
        logger.info(f"Getting referral analytics for user: {user_id}")

        total_referrals = await self._count_referrals(User.referred_by_id == user_id)
        active_referrals = await self._count_referrals(
            User.referred_by_id == user_id,
            User.is_active.is_(True),
            User.is_email_verified.is_(True),
        )
        paid = (ReferralBonus.referrer_id == user_id, ReferralBonus.status == ReferralBonusStatus.PAID)
        total_earnings = await self._sum_bonuses(*paid)
        subscription_earnings = await self._sum_bonuses(
            *paid, ReferralBonus.type == ReferralBonusType.SUBSCRIPTION
        )
        task_earnings = await self._sum_bonuses(
            *paid, ReferralBonus.type == ReferralBonusType.TASK_REWARD
        )

        by_level = await self.db.execute(
            select(
                ReferralBonus.level,
                func.coalesce(func.sum(ReferralBonus.amount), 0),
                func.count(ReferralBonus.id),
            ).where(*paid).group_by(ReferralBonus.level).order_by(ReferralBonus.level)
        )

        return {
            "total_referrals": total_referrals,
            "active_referrals": active_referrals,
            "conversion_rate": (active_referrals / total_referrals) * 100 if total_referrals > 0 else 0.0,
            "total_earnings": total_earnings,
            "subscription_earnings": subscription_earnings,
            "task_earnings": task_earnings,
            "earnings_by_level": [
                {
                    "level": level,
                    "total_earnings": Decimal(str(level_sum)).quantize(CENT),
                    "referral_count": count,
                }
                for level, level_sum, count in by_level.all()
            ],
        }

    async def _count_referrals(self, *filters) -> int:
        result = await self.db.execute(select(func.count(User.id)).where(*filters))
        return result.scalar() or 0

    async def _sum_bonuses(self, *filters) -> Decimal:
        result = await self.db.execute(
            select(func.coalesce(func.sum(ReferralBonus.amount), 0)).where(*filters)
        )
        return Decimal(str(result.scalar() or 0)).quantize(CENT)

    async def _load_tree_level(
        self, user_ids: Sequence[UUID], by_referrer: bool = False
    ) -> Dict[UUID, Tuple[User, Optional[Wallet]]]:
        column = User.referred_by_id if by_referrer else User.id
        result = await self.db.execute(
            select(User, Wallet).outerjoin(Wallet, Wallet.user_id == User.id).where(
                column.in_(user_ids)
            ).order_by(User.created_at)
        )
        return {user.id: (user, wallet) for user, wallet in result.all()}


def _tree_node(user: User, wallet: Optional[Wallet]) -> Dict[str, Any]:
    return {
        "id": user.id,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "email": user.email,
        "subscription_tier": user.subscription_tier,
        "created_at": user.created_at,
        "balance": wallet.balance if wallet else Decimal("0"),
        "locked": wallet.locked if wallet else Decimal("0"),
        "referrals": [],
    }


def _close_leaves(node: Dict[str, Any], depth: int, max_level: int) -> None:
    if depth >= max_level:
        node["referrals"] = None
        return
    for child in node["referrals"]:
        _close_leaves(child, depth + 1, max_level)
