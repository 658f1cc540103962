import enum
import uuid
from datetime import datetime
from sqlalchemy import Column, String, Boolean, DateTime, Enum, ForeignKey, Uuid
from sqlalchemy.orm import relationship
from ..core.database import Base


class UserRole(str, enum.Enum):
    READER = "READER"
    CONTENT_MANAGER = "CONTENT_MANAGER"
    ADMIN = "ADMIN"


class SubscriptionTier(str, enum.Enum):
    ENTRY = "ENTRY"
    INTERMEDIATE = "INTERMEDIATE"
    PRO = "PRO"


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String, unique=True, nullable=False, index=True)
    phone = Column(String, nullable=True)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    role = Column(Enum(UserRole, name="user_role"), default=UserRole.READER, nullable=False)
    is_active = Column(Boolean, default=True)
    is_email_verified = Column(Boolean, default=False)
    subscription_tier = Column(
        Enum(SubscriptionTier, name="subscription_tier"),
        default=SubscriptionTier.ENTRY,
        nullable=False,
    )
    referral_code = Column(String, unique=True, nullable=False, index=True)
    # Fixed at registration; forms a forest of referral chains
    referred_by_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    wallet = relationship("Wallet", back_populates="user", uselist=False, cascade="all, delete-orphan")
    referrer = relationship("User", remote_side=[id], back_populates="referrals")
    referrals = relationship("User", back_populates="referrer")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"
