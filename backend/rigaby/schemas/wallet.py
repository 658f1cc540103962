from typing import Any, Dict, List, Optional
from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field, UUID4, condecimal, constr
from datetime import datetime
from decimal import Decimal

from ..models.wallet import TransactionStatus, TransactionType

Money = condecimal(max_digits=18, decimal_places=2)


# Wallet Schema
class WalletResponse(BaseModel):
    id: UUID4
    user_id: UUID4
    balance: Money
    locked: Money
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class WalletBalanceResponse(BaseModel):
    wallet: WalletResponse
    total_balance: str
    available_balance: str
    locked_balance: str


# Transaction Response Schema
class TransactionResponse(BaseModel):
    id: UUID4
    wallet_id: UUID4
    type: TransactionType
    amount: Money
    description: str
    status: TransactionStatus
    # ORM rows expose the JSON column as ``meta``
    metadata: Optional[Dict[str, Any]] = Field(
        default=None, validation_alias=AliasChoices("meta", "metadata")
    )
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TransactionListResponse(BaseModel):
    transactions: List[TransactionResponse]
    total: int
    page: int
    total_pages: int


# Withdrawal Schemas
class WithdrawalRequest(BaseModel):
    amount: condecimal(gt=0, max_digits=18, decimal_places=2)
    payment_method: constr(strip_whitespace=True, min_length=1)
    account_details: constr(strip_whitespace=True, min_length=1)

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "amount": "50.00",
            "payment_method": "bank_transfer",
            "account_details": "1234567890"
        }
    })


class WithdrawalResponse(BaseModel):
    transaction: TransactionResponse
    new_balance: str
    message: str


class ProcessWithdrawalRequest(BaseModel):
    status: TransactionStatus
    admin_notes: Optional[str] = None


# Transfer Schemas
class TransferRequest(BaseModel):
    amount: condecimal(gt=0, max_digits=18, decimal_places=2)
    recipient_email: EmailStr
    description: Optional[str] = None


class TransferResponse(BaseModel):
    transaction: TransactionResponse


# Statistics Schemas
class WalletStatsResponse(BaseModel):
    total_earnings: Decimal
    total_withdrawals: Decimal
    current_balance: Decimal
    locked_balance: Decimal
    recent_transactions: List[TransactionResponse]


class WalletOwner(BaseModel):
    id: UUID4
    email: EmailStr
    first_name: str
    last_name: str
    phone: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class TransactionWithOwner(TransactionResponse):
    user: WalletOwner


class PendingWithdrawalListResponse(BaseModel):
    withdrawals: List[TransactionWithOwner]
    total: int
    page: int
    total_pages: int


class PlatformWalletStatsResponse(BaseModel):
    total_wallets: int
    total_balance: Decimal
    total_locked: Decimal
    total_platform_value: Decimal
    recent_transactions: List[TransactionWithOwner]
