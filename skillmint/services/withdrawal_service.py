"""
Withdrawal state machine.

    pending --approve--> processing --complete--> completed
       |                     |
       |                     +--reject--> rejected (amount credited back)
       +--reject--> rejected (nothing to return)
       +--cancel (owner)--> cancelled

approve debits the wallet once and parks the amount in pending_withdrawals;
complete moves it to total_withdrawn. Every transition is a status-guarded
UPDATE, so two admins acting on the same request cannot both succeed.
"""
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError
from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from skillmint.config import settings
from skillmint.core.exceptions import (
    Forbidden,
    IllegalStateTransition,
    InsufficientFunds,
    InvalidInput,
    NotFound,
    WithdrawalInFlight,
)
from skillmint.core.identifiers import generate_withdrawal_id
from skillmint.db_types import to_money
from skillmint.models.wallet import ReferenceType
from skillmint.models.withdrawal import (
    IN_FLIGHT_STATUSES,
    WithdrawalMethod,
    WithdrawalStatus,
    WithdrawRequest,
)
from skillmint.schemas.withdrawal import PAYMENT_DETAIL_SCHEMAS
from skillmint.services.state_machines import WITHDRAWAL_TRANSITIONS, validate_transition
from skillmint.services.wallet_service import WalletLedger

logger = logging.getLogger(__name__)


def calculate_fee(amount: Decimal) -> Tuple[Decimal, Decimal]:
    """processing fee = max(fee% of amount, minimum fee); returns (fee, net)."""
    amount = to_money(amount)
    percent_fee = to_money(amount * Decimal(str(settings.WITHDRAWAL_FEE_PERCENT)) / 100)
    fee = max(percent_fee, to_money(settings.MIN_WITHDRAWAL_FEE))
    return fee, amount - fee


def validate_payment_details(method: str, details: Dict[str, Any]) -> Dict[str, Any]:
    schema = PAYMENT_DETAIL_SCHEMAS.get(method)
    if schema is None:
        raise InvalidInput(f"Unsupported payment method: {method}")
    try:
        return schema.model_validate(details or {}).model_dump(exclude_none=True)
    except ValidationError as e:
        raise InvalidInput(
            f"Invalid {method} payment details",
            {"errors": [
                {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                for err in e.errors()
            ]},
        )


class WithdrawalService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.ledger = WalletLedger(db)

    # ==================== LOOKUPS ====================

    async def get_request(self, request_id: str) -> WithdrawRequest:
        stmt = (
            select(WithdrawRequest)
            .where(WithdrawRequest.request_id == request_id)
            .execution_options(populate_existing=True)
        )
        request = (await self.db.execute(stmt)).scalar_one_or_none()
        if request is None:
            raise NotFound("Withdrawal request not found", {"request_id": request_id})
        return request

    async def list_requests(
        self,
        user_id: Optional[uuid.UUID] = None,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[WithdrawRequest], int]:
        filters = []
        if user_id:
            filters.append(WithdrawRequest.user_id == user_id)
        if status:
            filters.append(WithdrawRequest.status == status)

        total = (await self.db.execute(
            select(func.count(WithdrawRequest.id)).where(*filters)
        )).scalar() or 0
        stmt = (
            select(WithdrawRequest)
            .where(*filters)
            .order_by(WithdrawRequest.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        items = (await self.db.execute(stmt)).scalars().all()
        return list(items), total

    @staticmethod
    def get_settings() -> Dict[str, Any]:
        return {
            "min_amount": to_money(settings.MIN_WITHDRAWAL_AMOUNT),
            "max_amount": to_money(settings.MAX_WITHDRAWAL_AMOUNT),
            "fee_percent": Decimal(str(settings.WITHDRAWAL_FEE_PERCENT)),
            "min_fee": to_money(settings.MIN_WITHDRAWAL_FEE),
            "payment_methods": [m.value for m in WithdrawalMethod],
        }

    # ==================== CREATE ====================

    async def create_request(
        self,
        user_id: uuid.UUID,
        amount: Decimal,
        payment_method: str,
        payment_details: Dict[str, Any],
    ) -> WithdrawRequest:
        amount = to_money(amount)
        min_amount = to_money(settings.MIN_WITHDRAWAL_AMOUNT)
        max_amount = to_money(settings.MAX_WITHDRAWAL_AMOUNT)
        if amount < min_amount or amount > max_amount:
            raise InvalidInput(
                f"Withdrawal amount must be between {min_amount} and {max_amount}",
                {"amount": str(amount)},
            )

        details = validate_payment_details(payment_method, payment_details)

        in_flight = await self._in_flight_request_id(user_id)
        if in_flight is not None:
            raise WithdrawalInFlight(
                "You already have a withdrawal request in progress",
                {"request_id": in_flight},
            )

        if not await self.ledger.has_balance(user_id, amount):
            raise InsufficientFunds("Insufficient wallet balance", {"requested": str(amount)})

        fee, net = calculate_fee(amount)
        request = WithdrawRequest(
            request_id=generate_withdrawal_id(),
            user_id=user_id,
            amount=amount,
            processing_fee=fee,
            net_amount=net,
            payment_method=payment_method,
            payment_details=details,
            status=WithdrawalStatus.PENDING.value,
        )
        self.db.add(request)
        try:
            await self.db.commit()
        except IntegrityError:
            # A concurrent request for the same user committed first
            await self.db.rollback()
            raise WithdrawalInFlight(
                "You already have a withdrawal request in progress",
                {"request_id": await self._in_flight_request_id(user_id)},
            )

        logger.info(f"Withdrawal {request.request_id} requested by {user_id}: {amount} (fee {fee})")
        return request

    async def _in_flight_request_id(self, user_id: uuid.UUID) -> Optional[str]:
        return (await self.db.execute(
            select(WithdrawRequest.request_id).where(
                WithdrawRequest.user_id == user_id,
                WithdrawRequest.status.in_(IN_FLIGHT_STATUSES),
            )
        )).scalar()

    # ==================== TRANSITIONS ====================

    async def _transition(self, request: WithdrawRequest, from_status: str, to_status: str, **values) -> None:
        validate_transition(WITHDRAWAL_TRANSITIONS, from_status, to_status, "Withdrawal")
        result = await self.db.execute(
            update(WithdrawRequest)
            .where(
                WithdrawRequest.id == request.id,
                WithdrawRequest.status == from_status,
            )
            .values(status=to_status, updated_at=datetime.now(timezone.utc), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise IllegalStateTransition(
                f"Withdrawal {request.request_id} is no longer {from_status}",
                {"request_id": request.request_id},
            )

    async def approve(self, request_id: str, admin_id: uuid.UUID, admin_notes: Optional[str] = None) -> WithdrawRequest:
        """pending -> processing, debiting the wallet in the same transaction."""
        request = await self.get_request(request_id)
        try:
            await self._transition(
                request,
                request.status,
                WithdrawalStatus.PROCESSING.value,
                approved_by_id=admin_id,
                approved_at=datetime.now(timezone.utc),
                admin_notes=admin_notes,
            )
            txn = await self.ledger.debit(
                request.user_id,
                request.amount,
                f"Withdrawal {request.request_id}",
                reference_type=ReferenceType.WITHDRAWAL.value,
                reference_id=request.request_id,
                metadata={"approved_by": str(admin_id), "method": request.payment_method},
                counters={"pending_withdrawals": to_money(request.amount)},
            )
            await self.db.execute(
                update(WithdrawRequest)
                .where(WithdrawRequest.id == request.id)
                .values(debit_transaction_id=txn.transaction_id)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Withdrawal {request_id} approved by {admin_id}; {request.amount} debited")
        return await self.get_request(request_id)

    async def complete(
        self,
        request_id: str,
        admin_id: uuid.UUID,
        transaction_id: str,
        admin_notes: Optional[str] = None,
    ) -> WithdrawRequest:
        """processing -> completed once the external payout is confirmed."""
        if not transaction_id or not transaction_id.strip():
            raise InvalidInput("An external transaction id is required to complete a withdrawal")

        request = await self.get_request(request_id)
        values: Dict[str, Any] = {
            "processed_at": datetime.now(timezone.utc),
            "transaction_id": transaction_id.strip(),
        }
        if admin_notes:
            values["admin_notes"] = admin_notes
        try:
            await self._transition(request, request.status, WithdrawalStatus.COMPLETED.value, **values)
            amount = to_money(request.amount)
            await self.ledger.adjust_counters(
                request.user_id,
                {"pending_withdrawals": -amount, "total_withdrawn": amount},
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Withdrawal {request_id} completed by {admin_id} (txn {transaction_id})")
        return await self.get_request(request_id)

    async def reject(self, request_id: str, admin_id: uuid.UUID, reason: str) -> WithdrawRequest:
        """
        Reject a pending or processing request. From processing the debited
        amount is credited back.
        """
        if not reason or not reason.strip():
            raise InvalidInput("A reason is required to reject a withdrawal")

        request = await self.get_request(request_id)
        from_status = request.status
        try:
            await self._transition(
                request,
                from_status,
                WithdrawalStatus.REJECTED.value,
                failure_reason=reason,
                processed_at=datetime.now(timezone.utc),
            )
            if from_status == WithdrawalStatus.PROCESSING.value:
                amount = to_money(request.amount)
                await self.ledger.credit(
                    request.user_id,
                    amount,
                    f"Withdrawal {request.request_id} rejected: {reason}",
                    reference_type=ReferenceType.WITHDRAWAL.value,
                    reference_id=request.request_id,
                    metadata={"rejected_by": str(admin_id)},
                    counters={"pending_withdrawals": -amount},
                )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Withdrawal {request_id} rejected by {admin_id} from {from_status}: {reason}")
        return await self.get_request(request_id)

    async def cancel(self, request_id: str, user_id: uuid.UUID) -> WithdrawRequest:
        """Owner cancels a request that has not been approved yet."""
        request = await self.get_request(request_id)
        if request.user_id != user_id:
            raise Forbidden("You can only cancel your own withdrawal requests")
        if request.status != WithdrawalStatus.PENDING.value:
            raise IllegalStateTransition(
                "Only pending withdrawal requests can be cancelled",
                {"request_id": request_id, "status": request.status},
            )

        await self._transition(request, WithdrawalStatus.PENDING.value, WithdrawalStatus.CANCELLED.value)
        await self.db.commit()

        logger.info(f"Withdrawal {request_id} cancelled by owner")
        return await self.get_request(request_id)
