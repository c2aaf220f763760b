"""
Wallet Ledger

Single writer for wallet balances. Every balance change is a compare-and-set
on (wallet.id, wallet.version) followed by an insert of the matching
WalletTransaction, inside the caller's database transaction. Callers commit.

Conflicting writers retry with exponential backoff; after the configured
number of attempts the operation fails with WalletContention.
"""
import asyncio
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, update, func, case
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from skillmint.config import settings
from skillmint.core.exceptions import InsufficientFunds, InvalidInput, WalletContention
from skillmint.core.identifiers import generate_transaction_id
from skillmint.db_types import to_money
from skillmint.models.wallet import (
    Wallet,
    WalletTransaction,
    TransactionType,
    TransactionStatus,
    ReferenceType,
    EARNING_REFERENCE_TYPES,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")

# Wallet counters that callers may move alongside a balance change
COUNTER_FIELDS = ("total_earned", "total_topped_up", "total_withdrawn", "pending_withdrawals")


class WalletLedger:
    """Credits, debits and read views over per-user wallets."""

    def __init__(
        self,
        db: AsyncSession,
        max_retries: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
    ):
        self.db = db
        self.max_retries = max_retries or settings.WALLET_MAX_RETRIES
        self.retry_base_delay = settings.WALLET_RETRY_BASE_DELAY if retry_base_delay is None else retry_base_delay

    # ==================== WALLET LOOKUP ====================

    async def get_wallet(self, user_id: uuid.UUID) -> Optional[Wallet]:
        """Fresh read of the wallet row; never serves a stale identity-map copy."""
        stmt = (
            select(Wallet)
            .where(Wallet.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def get_or_create_wallet(self, user_id: uuid.UUID) -> Wallet:
        """Create the wallet on first use. Safe against concurrent creators."""
        wallet = await self.get_wallet(user_id)
        if wallet is not None:
            return wallet

        values = {
            "id": uuid.uuid4(),
            "user_id": user_id,
            "balance": ZERO,
            "total_earned": ZERO,
            "total_topped_up": ZERO,
            "total_withdrawn": ZERO,
            "pending_withdrawals": ZERO,
            "currency": settings.CURRENCY,
            "version": 0,
            "created_at": datetime.now(timezone.utc),
        }
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            stmt = pg_insert(Wallet).values(**values).on_conflict_do_nothing(index_elements=["user_id"])
            await self.db.execute(stmt)
        elif dialect == "sqlite":
            stmt = sqlite_insert(Wallet).values(**values).on_conflict_do_nothing(index_elements=["user_id"])
            await self.db.execute(stmt)
        else:
            try:
                async with self.db.begin_nested():
                    self.db.add(Wallet(**values))
            except IntegrityError:
                pass  # Another request created it first

        wallet = await self.get_wallet(user_id)
        logger.info(f"Wallet ready for user {user_id}")
        return wallet

    # ==================== BALANCE CHANGES ====================

    async def credit(
        self,
        user_id: uuid.UUID,
        amount: Decimal,
        description: str,
        reference_type: str = ReferenceType.OTHER.value,
        reference_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        counters: Optional[Dict[str, Decimal]] = None,
    ) -> WalletTransaction:
        """Add funds. Earning credits also raise total_earned, top-ups total_topped_up."""
        amount = self._check_amount(amount)
        deltas = dict(counters or {})
        if reference_type in EARNING_REFERENCE_TYPES:
            deltas["total_earned"] = deltas.get("total_earned", ZERO) + amount
        elif reference_type == ReferenceType.WALLET_TOPUP.value:
            deltas["total_topped_up"] = deltas.get("total_topped_up", ZERO) + amount

        return await self._apply(
            user_id, TransactionType.CREDIT.value, amount, description,
            reference_type, reference_id, metadata, deltas,
        )

    async def debit(
        self,
        user_id: uuid.UUID,
        amount: Decimal,
        description: str,
        reference_type: str = ReferenceType.OTHER.value,
        reference_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        counters: Optional[Dict[str, Decimal]] = None,
    ) -> WalletTransaction:
        """
        Remove funds.

        Raises:
            InsufficientFunds: balance is lower than amount
        """
        amount = self._check_amount(amount)
        return await self._apply(
            user_id, TransactionType.DEBIT.value, amount, description,
            reference_type, reference_id, metadata, counters or {},
        )

    async def adjust_counters(self, user_id: uuid.UUID, counters: Dict[str, Decimal]) -> Wallet:
        """
        Move wallet counters without touching the balance, e.g. when a
        withdrawal is paid out (pending_withdrawals -> total_withdrawn).
        """
        for attempt in range(self.max_retries):
            wallet = await self.get_or_create_wallet(user_id)
            wallet_id, expected_version = wallet.id, wallet.version
            values = self._counter_values(wallet, counters)
            values["version"] = expected_version + 1
            if await self._compare_and_set(wallet_id, expected_version, values):
                return await self.get_wallet(user_id)
            await self._backoff(user_id, attempt)

        raise WalletContention(
            "Wallet is busy, please retry",
            {"user_id": str(user_id), "attempts": self.max_retries},
        )

    async def _apply(
        self,
        user_id: uuid.UUID,
        txn_type: str,
        amount: Decimal,
        description: str,
        reference_type: str,
        reference_id: Optional[str],
        metadata: Optional[Dict[str, Any]],
        counters: Dict[str, Decimal],
    ) -> WalletTransaction:
        for attempt in range(self.max_retries):
            wallet = await self.get_or_create_wallet(user_id)
            wallet_id, expected_version = wallet.id, wallet.version
            balance = to_money(wallet.balance)

            if txn_type == TransactionType.DEBIT.value:
                if balance < amount:
                    raise InsufficientFunds(
                        "Insufficient wallet balance",
                        {"balance": str(balance), "requested": str(amount)},
                    )
                new_balance = balance - amount
            else:
                new_balance = balance + amount

            now = datetime.now(timezone.utc)
            sequence = expected_version + 1
            values = self._counter_values(wallet, counters)
            values.update(balance=new_balance, version=sequence, last_transaction_at=now)

            if await self._compare_and_set(wallet_id, expected_version, values):
                txn = WalletTransaction(
                    transaction_id=generate_transaction_id(),
                    user_id=user_id,
                    wallet_id=wallet_id,
                    sequence=sequence,
                    type=txn_type,
                    amount=amount,
                    balance_after=new_balance,
                    description=description,
                    reference_type=reference_type,
                    reference_id=reference_id,
                    status=TransactionStatus.COMPLETED.value,
                    extra=metadata,
                    created_at=now,
                )
                self.db.add(txn)
                await self.db.flush()
                logger.info(
                    f"Wallet {txn_type} {txn.transaction_id}: user={user_id} amount={amount} "
                    f"balance_after={new_balance} ref={reference_type}:{reference_id}"
                )
                return txn

            await self._backoff(user_id, attempt)

        raise WalletContention(
            "Wallet is busy, please retry",
            {"user_id": str(user_id), "attempts": self.max_retries},
        )

    async def _compare_and_set(self, wallet_id: uuid.UUID, expected_version: int, values: Dict[str, Any]) -> bool:
        # expected_version is the version the new values were computed from
        stmt = (
            update(Wallet)
            .where(Wallet.id == wallet_id, Wallet.version == expected_version)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def _backoff(self, user_id: uuid.UUID, attempt: int) -> None:
        logger.warning(f"Wallet version conflict for user {user_id} (attempt {attempt + 1}/{self.max_retries})")
        await asyncio.sleep(self.retry_base_delay * (2 ** attempt))

    @staticmethod
    def _counter_values(wallet: Wallet, counters: Dict[str, Decimal]) -> Dict[str, Decimal]:
        values = {}
        for field, delta in counters.items():
            if field not in COUNTER_FIELDS:
                raise ValueError(f"Unknown wallet counter: {field}")
            new_value = to_money(getattr(wallet, field)) + to_money(delta)
            if new_value < 0:
                raise InvalidInput(
                    f"Wallet {field} cannot go negative",
                    {"current": str(getattr(wallet, field)), "delta": str(delta)},
                )
            values[field] = new_value
        return values

    @staticmethod
    def _check_amount(amount) -> Decimal:
        amount = to_money(amount)
        if amount <= 0:
            raise InvalidInput("Amount must be greater than zero", {"amount": str(amount)})
        return amount

    # ==================== READ VIEWS ====================

    async def has_balance(self, user_id: uuid.UUID, amount: Decimal) -> bool:
        wallet = await self.get_wallet(user_id)
        balance = to_money(wallet.balance) if wallet else ZERO
        return balance >= to_money(amount)

    async def summary(self, user_id: uuid.UUID) -> Dict[str, Any]:
        wallet = await self.get_wallet(user_id)
        if wallet is None:
            return {
                "balance": ZERO,
                "total_earned": ZERO,
                "total_topped_up": ZERO,
                "total_withdrawn": ZERO,
                "pending_withdrawals": ZERO,
                "currency": settings.CURRENCY,
                "last_transaction_at": None,
            }
        return {
            "balance": to_money(wallet.balance),
            "total_earned": to_money(wallet.total_earned),
            "total_topped_up": to_money(wallet.total_topped_up),
            "total_withdrawn": to_money(wallet.total_withdrawn),
            "pending_withdrawals": to_money(wallet.pending_withdrawals),
            "currency": wallet.currency,
            "last_transaction_at": wallet.last_transaction_at,
        }

    async def list_transactions(
        self,
        user_id: uuid.UUID,
        txn_type: Optional[str] = None,
        reference_type: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[WalletTransaction], int]:
        """Paginated history, newest first."""
        filters = [WalletTransaction.user_id == user_id]
        if txn_type:
            filters.append(WalletTransaction.type == txn_type)
        if reference_type:
            filters.append(WalletTransaction.reference_type == reference_type)
        if start_date:
            filters.append(WalletTransaction.created_at >= start_date)
        if end_date:
            filters.append(WalletTransaction.created_at <= end_date)

        total = (await self.db.execute(
            select(func.count(WalletTransaction.id)).where(*filters)
        )).scalar() or 0

        stmt = (
            select(WalletTransaction)
            .where(*filters)
            .order_by(WalletTransaction.sequence.desc())
            .offset(skip)
            .limit(limit)
        )
        items = (await self.db.execute(stmt)).scalars().all()
        return list(items), total

    async def reconcile(self, user_id: uuid.UUID) -> Dict[str, Any]:
        """
        Recompute the balance from completed transactions and compare it with
        the stored balance. Reports only; fixes go through correction entries.
        """
        wallet = await self.get_wallet(user_id)
        signed = case(
            (WalletTransaction.type == TransactionType.CREDIT.value, WalletTransaction.amount),
            else_=-WalletTransaction.amount,
        )
        stmt = select(
            func.coalesce(func.sum(signed), 0),
            func.count(WalletTransaction.id),
            func.min(WalletTransaction.balance_after),
        ).where(
            WalletTransaction.user_id == user_id,
            WalletTransaction.status == TransactionStatus.COMPLETED.value,
        )
        computed, count, min_balance_after = (await self.db.execute(stmt)).one()

        computed = to_money(computed)
        stored = to_money(wallet.balance) if wallet else ZERO
        discrepancy = stored - computed
        is_consistent = abs(discrepancy) < Decimal("0.01")
        if not is_consistent:
            logger.error(
                f"Wallet discrepancy for user {user_id}: stored={stored} computed={computed}"
            )

        return {
            "user_id": user_id,
            "stored_balance": stored,
            "computed_balance": computed,
            "discrepancy": discrepancy,
            "is_consistent": is_consistent,
            "transaction_count": count,
            "min_balance_after": to_money(min_balance_after) if min_balance_after is not None else None,
        }

    # ==================== ADMIN CORRECTIONS ====================

    async def admin_adjust(
        self,
        user_id: uuid.UUID,
        amount: Decimal,
        txn_type: str,
        reason: str,
        admin_id: uuid.UUID,
    ) -> WalletTransaction:
        """Record a correction entry; the only way to fix a balance."""
        if not reason:
            raise InvalidInput("A reason is required for wallet corrections")

        metadata = {"admin_id": str(admin_id), "reason": reason}
        description = f"Admin correction: {reason}"
        if txn_type == TransactionType.CREDIT.value:
            txn = await self.credit(
                user_id, amount, description,
                reference_type=ReferenceType.CORRECTION.value, metadata=metadata,
            )
        elif txn_type == TransactionType.DEBIT.value:
            txn = await self.debit(
                user_id, amount, description,
                reference_type=ReferenceType.CORRECTION.value, metadata=metadata,
            )
        else:
            raise InvalidInput(f"Unknown transaction type: {txn_type}")

        logger.info(f"Admin {admin_id} applied {txn_type} correction {txn.transaction_id} to user {user_id}")
        return txn
