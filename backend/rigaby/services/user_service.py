import logging
import secrets
from typing import Optional
from uuid import UUID
from email_validator import EmailNotValidError, validate_email
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.user import User, UserRole
from ..models.wallet import Wallet

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    """Normalize an address the way pydantic's ``EmailStr`` does (domain lower-cased)."""
    return validate_email(email, check_deliverability=False).normalized


class UserService:
    """Read access to users and their referral links."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user(self, user_id: UUID) -> Optional[User]:
        return await self.db.get(User, user_id)

    async def get_user_by_email(self, email: str) -> Optional[User]:
        try:
            email = normalize_email(email)
        except EmailNotValidError:
            return None
        result = await self.db.execute(select(User).where(User.email == email))
        return result.scalars().first()

    async def get_user_by_referral_code(self, referral_code: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.referral_code == referral_code))
        return result.scalars().first()

    async def get_referrer(self, user_id: UUID) -> Optional[UUID]:
        """Return the id of the user who referred ``user_id``, if any."""
        result = await self.db.execute(select(User.referred_by_id).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def create_user(
        self,
        email: str,
        first_name: str,
        last_name: str,
        referred_by_id: Optional[UUID] = None,
        role: UserRole = UserRole.READER,
        **fields,
    ) -> User:
        """Create a user together with its empty wallet."""
        user = User(
            email=normalize_email(email),
            first_name=first_name,
            last_name=last_name,
            role=role,
            referral_code=secrets.token_urlsafe(9),
            referred_by_id=referred_by_id,
            **fields,
        )
        user.wallet = Wallet(balance=0, locked=0)
        self.db.add(user)
        await self.db.commit()
        logger.info(f"Created user {user.id} (referred by {referred_by_id})")
        return user
