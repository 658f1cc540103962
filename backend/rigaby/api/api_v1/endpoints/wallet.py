from datetime import date, datetime
from typing import Optional, Union
from uuid import UUID
from fastapi import APIRouter, Depends, Query

from ....core.deps import get_current_active_user, get_current_admin_user, get_wallet_service
from ....models.user import User
from ....models.wallet import TransactionStatus, TransactionType
from ....schemas.wallet import (
    PendingWithdrawalListResponse,
    PlatformWalletStatsResponse,
    ProcessWithdrawalRequest,
    TransactionListResponse,
    TransactionResponse,
    TransferRequest,
    TransferResponse,
    WalletBalanceResponse,
    WalletStatsResponse,
    WithdrawalRequest,
    WithdrawalResponse,
)
from ....services.wallet_service import WalletService

router = APIRouter()

@router.get("/balance", response_model=WalletBalanceResponse)
async def get_balance(
    current_user: User = Depends(get_current_active_user),
    wallet_service: WalletService = Depends(get_wallet_service)
):
    """
    Get the current user's available, locked and total balance.
    """
    return await wallet_service.get_wallet_with_balance(current_user.id)

@router.get("/transactions", response_model=TransactionListResponse)
async def get_transactions(
    type: Optional[TransactionType] = None,
    status: Optional[TransactionStatus] = None,
    start_date: Optional[Union[date, datetime]] = Query(None, alias="startDate"),
    end_date: Optional[Union[date, datetime]] = Query(None, alias="endDate"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_active_user),
    wallet_service: WalletService = Depends(get_wallet_service)
):
    """
    Get the current user's transaction history, newest first.
    """
    return await wallet_service.get_transactions(
        current_user.id,
        type=type,
        status=status,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    )

@router.post("/withdraw", response_model=WithdrawalResponse)
async def request_withdrawal(
    withdrawal: WithdrawalRequest,
    current_user: User = Depends(get_current_active_user),
    wallet_service: WalletService = Depends(get_wallet_service)
):
    """
    Request a withdrawal; the amount is held until an admin processes it.
    """
    transaction, new_balance = await wallet_service.request_withdrawal(
        current_user.id,
        withdrawal.amount,
        withdrawal.payment_method,
        withdrawal.account_details,
    )
    return {
        "transaction": transaction,
        "new_balance": f"{new_balance:.2f}",
        "message": "Withdrawal request submitted successfully",
    }

@router.post("/transfer", response_model=TransferResponse)
async def transfer_funds(
    transfer: TransferRequest,
    current_user: User = Depends(get_current_active_user),
    wallet_service: WalletService = Depends(get_wallet_service)
):
    """
    Transfer funds to another user identified by email.
    """
    transaction = await wallet_service.transfer_funds(
        current_user.id,
        transfer.recipient_email,
        transfer.amount,
        transfer.description,
    )
    return {"transaction": transaction}

@router.get("/stats", response_model=WalletStatsResponse)
async def get_wallet_stats(
    current_user: User = Depends(get_current_active_user),
    wallet_service: WalletService = Depends(get_wallet_service)
):
    """
    Get earnings, withdrawals and recent activity for the current user.
    """
    return await wallet_service.get_wallet_stats(current_user.id)

# --- Admin endpoints ---

@router.post("/withdrawals/{withdrawal_id}/process", response_model=TransactionResponse)
async def process_withdrawal(
    withdrawal_id: UUID,
    decision: ProcessWithdrawalRequest,
    admin: User = Depends(get_current_admin_user),
    wallet_service: WalletService = Depends(get_wallet_service)
):
    """
    Approve (COMPLETED) or reject (FAILED) a pending withdrawal.
    """
    return await wallet_service.process_withdrawal(
        withdrawal_id, decision.status, decision.admin_notes
    )

@router.get("/withdrawals/pending", response_model=PendingWithdrawalListResponse)
async def get_pending_withdrawals(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin: User = Depends(get_current_admin_user),
    wallet_service: WalletService = Depends(get_wallet_service)
):
    """
    List pending withdrawal requests.
    """
    return await wallet_service.get_pending_withdrawals(page, limit)

@router.get("/platform/stats", response_model=PlatformWalletStatsResponse)
async def get_platform_stats(
    admin: User = Depends(get_current_admin_user),
    wallet_service: WalletService = Depends(get_wallet_service)
):
    """
    Platform-wide wallet totals.
    """
    return await wallet_service.get_platform_wallet_stats()
