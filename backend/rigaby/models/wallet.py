import enum
import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Enum, ForeignKey, JSON, Numeric, Text, Uuid
from sqlalchemy.orm import relationship
from ..core.database import Base


class TransactionType(str, enum.Enum):
    TASK_REWARD = "TASK_REWARD"
    TOURNAMENT_WIN = "TOURNAMENT_WIN"
    REFERRAL_BONUS = "REFERRAL_BONUS"
    SUBSCRIPTION_PAYMENT = "SUBSCRIPTION_PAYMENT"
    WITHDRAWAL = "WITHDRAWAL"


class TransactionStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


# Types counted as earnings in wallet statistics
EARNING_TYPES = (
    TransactionType.TASK_REWARD,
    TransactionType.REFERRAL_BONUS,
    TransactionType.TOURNAMENT_WIN,
)


class Wallet(Base):
    __tablename__ = "wallets"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    balance = Column(Numeric(precision=18, scale=2), default=0, nullable=False)
    locked = Column(Numeric(precision=18, scale=2), default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="wallet")
    transactions = relationship("Transaction", back_populates="wallet", cascade="all, delete-orphan")


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    wallet_id = Column(Uuid(as_uuid=True), ForeignKey("wallets.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(Enum(TransactionType, name="transaction_type"), nullable=False)
    amount = Column(Numeric(precision=18, scale=2), nullable=False)  # always positive
    description = Column(Text, nullable=False)
    status = Column(
        Enum(TransactionStatus, name="transaction_status"),
        default=TransactionStatus.COMPLETED,
        nullable=False,
    )
    # "metadata" is reserved on declarative classes
    meta = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    # Relationships
    wallet = relationship("Wallet", back_populates="transactions")
