import enum
import uuid
from datetime import datetime
from sqlalchemy import Column, Integer, DateTime, Enum, ForeignKey, JSON, Numeric, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship
from ..core.database import Base


class ReferralBonusType(str, enum.Enum):
    SUBSCRIPTION = "SUBSCRIPTION"
    TASK_REWARD = "TASK_REWARD"


class ReferralBonusStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"


class ReferralBonus(Base):
    __tablename__ = "referral_bonuses"
    __table_args__ = (
        UniqueConstraint(
            "referrer_id",
            "referred_user_id",
            "type",
            name="uq_referral_bonuses_referrer_referred_type",
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    referrer_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    # Always the user whose payment triggered the bonus, at every level
    referred_user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    level = Column(Integer, nullable=False)  # 0 = direct referral
    bonus_percentage = Column(Numeric(precision=6, scale=4), nullable=False)
    amount = Column(Numeric(precision=18, scale=2), nullable=False)
    type = Column(Enum(ReferralBonusType, name="referral_bonus_type"), nullable=False)
    status = Column(
        Enum(ReferralBonusStatus, name="referral_bonus_status"),
        default=ReferralBonusStatus.PENDING,
        nullable=False,
    )
    meta = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    referrer = relationship("User", foreign_keys=[referrer_id])
    referred_user = relationship("User", foreign_keys=[referred_user_id])
