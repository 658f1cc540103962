import functools
import logging
import math
import time
from contextlib import asynccontextmanager
from datetime import date, datetime, time as dt_time, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Tuple, Union
from uuid import UUID
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..core.config import settings
from ..core.exceptions import (
    InsufficientFundsError,
    InvalidAmountError,
    InvalidOperationError,
    InvalidStateError,
    NotFoundError,
)
from ..core.metrics import record_ledger_operation
from ..core.tracing import get_tracer
from ..models.user import User
from ..models.wallet import EARNING_TYPES, Transaction, TransactionStatus, TransactionType, Wallet
from .user_service import UserService

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

CENT = Decimal("0.01")

DateBound = Union[date, datetime]


def to_money(amount: Any) -> Decimal:
    """Convert ``amount`` to a Decimal rounded to cents."""
    return Decimal(str(amount)).quantize(CENT, rounding=ROUND_HALF_UP)


def ledger_operation(name: str):
    """Trace a ledger operation and record its outcome and latency."""
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(self, *args, **kwargs):
            started = time.perf_counter()
            with tracer.start_as_current_span(f"WalletService.{name}"):
                try:
                    result = await func(self, *args, **kwargs)
                except Exception as e:
                    record_ledger_operation(name, type(e).__name__, time.perf_counter() - started)
                    raise
            record_ledger_operation(name, "success", time.perf_counter() - started)
            return result
        return wrapper
    return decorator


class WalletService:
    """
    Wallet ledger: per-user available and locked funds plus an append-only
    transaction log.

    Every mutating operation runs as one unit of work. The wallet row is read
    with ``SELECT ... FOR UPDATE``, validated, updated, the transaction row is
    added, and the session is committed; any exception rolls all of it back.
    Nothing outside this service changes ``Wallet.balance`` or ``Wallet.locked``.
    """

    def __init__(self, db: AsyncSession, user_service: Optional[UserService] = None):
        self.db = db
        self.user_service = user_service or UserService(db)
        self._in_unit_of_work = False

    @asynccontextmanager
    async def unit_of_work(self):
        """
        Commit on success, roll back on any exception.

        Nested use joins the outer unit of work, so callers can add their own
        rows (e.g. a referral bonus record) to a ledger operation.
        """
        if self._in_unit_of_work:
            yield
            return
        self._in_unit_of_work = True
        try:
            yield
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        finally:
            self._in_unit_of_work = False

    # --- Reads ---

    async def get_wallet(self, user_id: UUID) -> Optional[Wallet]:
        """Get a user's wallet"""
        result = await self.db.execute(select(Wallet).where(Wallet.user_id == user_id))
        return result.scalars().first()

    async def create_wallet(self, user_id: UUID) -> Wallet:
        """Create an empty wallet for a user"""
        logger.info(f"Creating wallet for user: {user_id}")
        wallet = Wallet(user_id=user_id, balance=Decimal("0"), locked=Decimal("0"))
        self.db.add(wallet)
        await self.db.commit()
        await self.db.refresh(wallet)
        return wallet

    async def get_wallet_with_balance(self, user_id: UUID) -> Dict[str, Any]:
        wallet = await self._require_wallet(user_id)
        return {
            "wallet": wallet,
            "total_balance": f"{wallet.balance + wallet.locked:.2f}",
            "available_balance": f"{wallet.balance:.2f}",
            "locked_balance": f"{wallet.locked:.2f}",
        }

    async def get_transactions(
        self,
        user_id: UUID,
        type: Optional[TransactionType] = None,
        status: Optional[TransactionStatus] = None,
        start_date: Optional[DateBound] = None,
        end_date: Optional[DateBound] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Dict[str, Any]:
        """Get a user's transactions, newest first, with filtering and pagination"""
        wallet = await self._require_wallet(user_id)

        filters = [Transaction.wallet_id == wallet.id]
        if type:
            filters.append(Transaction.type == type)
        if status:
            filters.append(Transaction.status == status)
        if start_date:
            filters.append(Transaction.created_at >= _start_of(start_date))
        if end_date:
            if isinstance(end_date, datetime):
                filters.append(Transaction.created_at <= _as_utc(end_date))
            else:
                # A bare date covers the whole day
                filters.append(Transaction.created_at < _start_of(end_date) + timedelta(days=1))

        query = select(Transaction).where(*filters).order_by(
            Transaction.created_at.desc()
        ).offset((page - 1) * limit).limit(limit)
        result = await self.db.execute(query)
        transactions = list(result.scalars().all())

        count_result = await self.db.execute(
            select(func.count()).select_from(Transaction).where(*filters)
        )
        total = count_result.scalar() or 0

        return {
            "transactions": transactions,
            "total": total,
            "page": page,
            "total_pages": math.ceil(total / limit) if limit else 0,
        }

    async def get_wallet_stats(self, user_id: UUID) -> Dict[str, Any]:
        """Earnings, withdrawals and recent activity for a user's dashboard"""
        wallet = await self._require_wallet(user_id)

        earnings = await self._sum_transactions(
            Transaction.wallet_id == wallet.id,
            Transaction.type.in_(EARNING_TYPES),
            Transaction.status == TransactionStatus.COMPLETED,
        )
        withdrawals = await self._sum_transactions(
            Transaction.wallet_id == wallet.id,
            Transaction.type == TransactionType.WITHDRAWAL,
            Transaction.status == TransactionStatus.COMPLETED,
        )

        recent = await self.db.execute(
            select(Transaction).where(Transaction.wallet_id == wallet.id).order_by(
                Transaction.created_at.desc()
            ).limit(5)
        )

        return {
            "total_earnings": earnings,
            "total_withdrawals": withdrawals,
            "current_balance": wallet.balance,
            "locked_balance": wallet.locked,
            "recent_transactions": list(recent.scalars().all()),
        }

    async def get_pending_withdrawals(self, page: int = 1, limit: int = 20) -> Dict[str, Any]:
        """Pending withdrawal requests awaiting an admin decision"""
        filters = (
            Transaction.type == TransactionType.WITHDRAWAL,
            Transaction.status == TransactionStatus.PENDING,
        )
        query = select(Transaction).where(*filters).options(
            selectinload(Transaction.wallet).selectinload(Wallet.user)
        ).order_by(
            Transaction.created_at.desc()
        ).offset((page - 1) * limit).limit(limit)
        result = await self.db.execute(query)
        withdrawals = [_with_owner(tx) for tx in result.scalars().all()]

        count_result = await self.db.execute(
            select(func.count()).select_from(Transaction).where(*filters)
        )
        total = count_result.scalar() or 0

        return {
            "withdrawals": withdrawals,
            "total": total,
            "page": page,
            "total_pages": math.ceil(total / limit) if limit else 0,
        }

    async def get_platform_wallet_stats(self) -> Dict[str, Any]:
        """Platform-wide wallet totals for admins"""
        totals = await self.db.execute(
            select(
                func.count(Wallet.id),
                func.coalesce(func.sum(Wallet.balance), 0),
                func.coalesce(func.sum(Wallet.locked), 0),
            )
        )
        total_wallets, total_balance, total_locked = totals.one()
        total_balance = to_money(total_balance)
        total_locked = to_money(total_locked)

        recent = await self.db.execute(
            select(Transaction).options(
                selectinload(Transaction.wallet).selectinload(Wallet.user)
            ).order_by(Transaction.created_at.desc()).limit(10)
        )

        return {
            "total_wallets": total_wallets,
            "total_balance": total_balance,
            "total_locked": total_locked,
            "total_platform_value": total_balance + total_locked,
            "recent_transactions": [_with_owner(tx) for tx in recent.scalars().all()],
        }

    # --- Mutations ---

    @ledger_operation("add_funds")
    async def add_funds(
        self,
        user_id: UUID,
        amount: Any,
        type: TransactionType,
        description: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Transaction:
        """Credit a wallet (task rewards, tournament winnings, referral bonuses)"""
        amount = self._positive_amount(amount)

        async with self.unit_of_work():
            wallet = await self._get_wallet_for_update(user_id)
            wallet.balance = wallet.balance + amount
            transaction = self._record(
                wallet, type, amount, description, TransactionStatus.COMPLETED, metadata
            )
            await self.db.flush()

        logger.info(f"Credited {amount} ({type.value}) to wallet of user {user_id}")
        return transaction

    @ledger_operation("lock_funds")
    async def lock_funds(
        self,
        user_id: UUID,
        amount: Any,
        description: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Transaction:
        """Move funds from the available balance into locked funds"""
        amount = self._positive_amount(amount)

        async with self.unit_of_work():
            wallet = await self._get_wallet_for_update(user_id)
            if wallet.balance < amount:
                raise InsufficientFundsError("Insufficient balance to lock funds")

            wallet.balance = wallet.balance - amount
            wallet.locked = wallet.locked + amount
            transaction = self._record(
                wallet,
                TransactionType.WITHDRAWAL,
                amount,
                description,
                TransactionStatus.PENDING,
                {**(metadata or {}), "lockType": "funds_locked"},
            )
            await self.db.flush()

        logger.info(f"Locked {amount} in wallet of user {user_id}")
        return transaction

    @ledger_operation("unlock_funds")
    async def unlock_funds(
        self,
        user_id: UUID,
        amount: Any,
        description: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Transaction:
        """Return locked funds to the available balance"""
        amount = self._positive_amount(amount)

        async with self.unit_of_work():
            wallet = await self._get_wallet_for_update(user_id)
            if wallet.locked < amount:
                raise InsufficientFundsError("Insufficient locked funds to unlock")

            wallet.locked = wallet.locked - amount
            wallet.balance = wallet.balance + amount
            transaction = self._record(
                wallet,
                TransactionType.TASK_REWARD,
                amount,
                description,
                TransactionStatus.COMPLETED,
                {**(metadata or {}), "unlockType": "funds_unlocked"},
            )
            await self.db.flush()

        logger.info(f"Unlocked {amount} in wallet of user {user_id}")
        return transaction

    @ledger_operation("request_withdrawal")
    async def request_withdrawal(
        self,
        user_id: UUID,
        amount: Any,
        payment_method: str,
        account_details: str,
    ) -> Tuple[Transaction, Decimal]:
        """
        Hold ``amount`` for payout: it leaves the available balance and stays
        locked until an admin approves or rejects the request.

        Returns the pending WITHDRAWAL transaction and the new available balance.
        """
        amount = to_money(amount)
        if amount < settings.MIN_WITHDRAWAL_AMOUNT:
            raise InvalidAmountError(
                f"Minimum withdrawal amount is {settings.MIN_WITHDRAWAL_AMOUNT:.2f}"
            )

        async with self.unit_of_work():
            wallet = await self._get_wallet_for_update(user_id)
            if wallet.balance < amount:
                raise InsufficientFundsError("Insufficient balance for withdrawal")

            wallet.balance = wallet.balance - amount
            wallet.locked = wallet.locked + amount
            transaction = self._record(
                wallet,
                TransactionType.WITHDRAWAL,
                amount,
                f"Withdrawal via {payment_method}",
                TransactionStatus.PENDING,
                {
                    "paymentMethod": payment_method,
                    "accountDetails": account_details,
                    "requestedAt": datetime.utcnow().isoformat(),
                },
            )
            await self.db.flush()
            new_balance = wallet.balance

        logger.info(f"Withdrawal of {amount} requested by user {user_id} via {payment_method}")
        return transaction, new_balance

    @ledger_operation("process_withdrawal")
    async def process_withdrawal(
        self,
        transaction_id: UUID,
        decision: TransactionStatus,
        admin_notes: Optional[str] = None,
    ) -> Transaction:
        """
        Approve (COMPLETED) or reject (FAILED) a pending withdrawal.

        Approval releases the held amount from locked funds; the money has left
        the platform. Rejection returns it to the available balance.
        """
        if decision not in (TransactionStatus.COMPLETED, TransactionStatus.FAILED):
            raise InvalidOperationError("Decision must be COMPLETED or FAILED")

        async with self.unit_of_work():
            result = await self.db.execute(
                select(Transaction).where(Transaction.id == transaction_id).with_for_update()
                .execution_options(populate_existing=True)
            )
            transaction = result.scalars().first()
            if not transaction:
                raise NotFoundError("Withdrawal transaction not found")
            if transaction.type != TransactionType.WITHDRAWAL:
                raise InvalidStateError("Transaction is not a withdrawal")
            if transaction.status != TransactionStatus.PENDING:
                raise InvalidStateError("Withdrawal already processed")

            wallet_result = await self.db.execute(
                select(Wallet).where(Wallet.id == transaction.wallet_id).with_for_update()
                .execution_options(populate_existing=True)
            )
            wallet = wallet_result.scalars().first()
            if not wallet:
                raise NotFoundError("Wallet not found")
            if wallet.locked < transaction.amount:
                raise InvalidStateError("Locked funds do not cover this withdrawal")

            wallet.locked = wallet.locked - transaction.amount
            if decision == TransactionStatus.FAILED:
                wallet.balance = wallet.balance + transaction.amount

            transaction.status = decision
            # Reassign so the JSON column is flagged as changed
            transaction.meta = {
                **(transaction.meta or {}),
                "processedAt": datetime.utcnow().isoformat(),
                "adminNotes": admin_notes,
            }
            await self.db.flush()

        logger.info(f"Withdrawal {transaction_id} processed: {decision.value}")
        return transaction

    @ledger_operation("transfer_funds")
    async def transfer_funds(
        self,
        from_user_id: UUID,
        recipient_email: str,
        amount: Any,
        description: Optional[str] = None,
    ) -> Transaction:
        """
        Move funds from one user's wallet to another's.

        Both balance updates and both transaction rows commit together.
        Returns the sender's (outgoing) transaction.
        """
        amount = self._positive_amount(amount)

        async with self.unit_of_work():
            recipient = await self.user_service.get_user_by_email(recipient_email)
            user_ids = [from_user_id]
            if recipient and recipient.id != from_user_id:
                user_ids.append(recipient.id)
            wallets = await self._lock_wallets(user_ids)

            sender_wallet = wallets.get(from_user_id)
            if not sender_wallet:
                raise NotFoundError("Sender wallet not found")
            if sender_wallet.balance < amount:
                raise InsufficientFundsError("Insufficient balance for transfer")
            if not recipient:
                raise NotFoundError("Recipient not found")
            if recipient.id == from_user_id:
                raise InvalidOperationError("Cannot transfer funds to yourself")
            recipient_wallet = wallets.get(recipient.id)
            if not recipient_wallet:
                raise NotFoundError("Recipient wallet not found")

            sender = await self.user_service.get_user(from_user_id)
            sender_name = sender.full_name if sender else str(from_user_id)

            sender_wallet.balance = sender_wallet.balance - amount
            recipient_wallet.balance = recipient_wallet.balance + amount

            sender_tx = self._record(
                sender_wallet,
                TransactionType.WITHDRAWAL,
                amount,
                description or f"Transfer to {recipient_email}",
                TransactionStatus.COMPLETED,
                {
                    "transferType": "peer_to_peer",
                    "direction": "outgoing",
                    "recipientId": str(recipient.id),
                    "recipientEmail": recipient_email,
                    "recipientName": recipient.full_name,
                },
            )
            # Incoming transfers are booked as TASK_REWARD credits
            self._record(
                recipient_wallet,
                TransactionType.TASK_REWARD,
                amount,
                f"Transfer from {sender_name}",
                TransactionStatus.COMPLETED,
                {
                    "transferType": "peer_to_peer",
                    "direction": "incoming",
                    "senderId": str(from_user_id),
                    "senderName": sender_name,
                },
            )
            await self.db.flush()

        logger.info(f"Transferred {amount} from user {from_user_id} to {recipient_email}")
        return sender_tx

    # --- Helpers ---

    def _positive_amount(self, amount: Any) -> Decimal:
        amount = to_money(amount)
        if amount <= 0:
            raise InvalidAmountError("Amount must be positive")
        return amount

    async def _require_wallet(self, user_id: UUID) -> Wallet:
        wallet = await self.get_wallet(user_id)
        if not wallet:
            raise NotFoundError("Wallet not found")
        return wallet

    async def _get_wallet_for_update(self, user_id: UUID) -> Wallet:
        query = select(Wallet).where(Wallet.user_id == user_id).with_for_update().execution_options(
            populate_existing=True
        )
        result = await self.db.execute(query)
        wallet = result.scalars().first()
        if not wallet:
            raise NotFoundError("Wallet not found")
        return wallet

    async def _lock_wallets(self, user_ids: List[UUID]) -> Dict[UUID, Wallet]:
        # Lock in wallet id order so concurrent transfers cannot deadlock
        query = select(Wallet).where(Wallet.user_id.in_(user_ids)).order_by(
            Wallet.id
        ).with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(query)
        return {wallet.user_id: wallet for wallet in result.scalars().all()}

    async def _sum_transactions(self, *filters) -> Decimal:
        result = await self.db.execute(
            select(func.coalesce(func.sum(Transaction.amount), 0)).where(*filters)
        )
        return to_money(result.scalar() or 0)

    def _record(
        self,
        wallet: Wallet,
        type: TransactionType,
        amount: Decimal,
        description: str,
        status: TransactionStatus,
        metadata: Optional[Dict[str, Any]],
    ) -> Transaction:
        transaction = Transaction(
            wallet_id=wallet.id,
            type=type,
            amount=amount,
            description=description,
            status=status,
            meta=metadata,
        )
        self.db.add(transaction)
        return transaction


def _as_utc(moment: datetime) -> datetime:
    # created_at is stored as naive UTC
    if moment.tzinfo is not None:
        return moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment


def _start_of(bound: DateBound) -> datetime:
    if isinstance(bound, datetime):
        return _as_utc(bound)
    return datetime.combine(bound, dt_time.min)


def _with_owner(transaction: Transaction) -> Dict[str, Any]:
    user: User = transaction.wallet.user
    return {
        "id": transaction.id,
        "wallet_id": transaction.wallet_id,
        "type": transaction.type,
        "amount": transaction.amount,
        "description": transaction.description,
        "status": transaction.status,
        "metadata": transaction.meta,
        "created_at": transaction.created_at,
        "user": {
            "id": user.id,
            "email": user.email,
            "first_name": user.first_name,
            "last_name": user.last_name,
            "phone": user.phone,
        },
    }
