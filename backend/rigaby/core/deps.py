from typing import AsyncGenerator, Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession
from uuid import UUID

from ..core.database import SessionLocal
from ..core.config import settings
from ..core.security import decode_access_token
from ..models.user import User, UserRole
from ..services.referral_service import ReferralService
from ..services.user_service import UserService
from ..services.wallet_service import WalletService

oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.API_V1_STR}/auth/login")

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for database session.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        await db.close()

async def get_user_by_id(db: AsyncSession, user_id: UUID) -> Optional[User]:
    """
    Get a user by ID.
    """
    user = await db.get(User, user_id)
    return user

async def get_current_user(
    db: AsyncSession = Depends(get_db),
    token: str = Depends(oauth2_scheme)
) -> User:
    """
    Validate token and get current user.
    """
    credentials_error = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    payload = decode_access_token(token)
    if not payload or not payload.get("sub"):
        raise credentials_error
    try:
        user_id = UUID(payload["sub"])
    except ValueError:
        raise credentials_error

    user = await get_user_by_id(db, user_id=user_id)

    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )

    return user

async def get_current_active_user(
    current_user: User = Depends(get_current_user)
) -> User:
    """
    Get current active user.
    """
    if not current_user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Inactive user"
        )
    return current_user

async def get_current_admin_user(
    current_user: User = Depends(get_current_active_user)
) -> User:
    """
    Require the ADMIN role.
    """
    if current_user.role != UserRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return current_user

def get_wallet_service(db: AsyncSession = Depends(get_db)) -> WalletService:
    return WalletService(db)

def get_referral_service(db: AsyncSession = Depends(get_db)) -> ReferralService:
    user_service = UserService(db)
    return ReferralService(db, WalletService(db, user_service), user_service)
