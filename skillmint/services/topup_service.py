"""Wallet top-ups paid through the payment gateway."""
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from skillmint.config import settings
from skillmint.core.exceptions import Forbidden, InvalidInput, NotFound
from skillmint.core.identifiers import generate_topup_id
from skillmint.db_types import to_money
from skillmint.models.wallet import WalletTopup, TopupStatus, ReferenceType
from skillmint.services.payment_service import PaymentGateway
from skillmint.services.wallet_service import WalletLedger

logger = logging.getLogger(__name__)


class TopupService:
    def __init__(self, db: AsyncSession, gateway: PaymentGateway):
        self.db = db
        self.gateway = gateway
        self.ledger = WalletLedger(db)

    async def create_topup(self, user_id: uuid.UUID, amount: Decimal) -> Dict[str, Any]:
        amount = to_money(amount)
        if amount <= 0:
            raise InvalidInput("Top-up amount must be greater than zero")

        topup_id = generate_topup_id()
        gateway_order = await self.gateway.create_order(
            amount,
            settings.CURRENCY,
            receipt=topup_id,
            notes={"user_id": str(user_id), "type": "wallet_topup"},
        )

        topup = WalletTopup(
            topup_id=topup_id,
            user_id=user_id,
            amount=amount,
            gateway_order_id=gateway_order.gateway_order_id,
            status=TopupStatus.PENDING.value,
        )
        self.db.add(topup)
        await self.db.commit()

        logger.info(f"Wallet top-up {topup_id} initiated for user {user_id}: {amount}")
        return {
            "topup_id": topup_id,
            "gateway_order_id": gateway_order.gateway_order_id,
            "amount": amount,
            "currency": settings.CURRENCY,
            "key": self.gateway.key_id,
        }

    async def _get_by_gateway_id(self, gateway_order_id: str) -> Optional[WalletTopup]:
        stmt = (
            select(WalletTopup)
            .where(WalletTopup.gateway_order_id == gateway_order_id)
            .execution_options(populate_existing=True)
        )
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def _complete(self, topup: WalletTopup, payment_id: Optional[str]) -> bool:
        """pending -> completed plus the wallet credit, in one transaction."""
        try:
            result = await self.db.execute(
                update(WalletTopup)
                .where(
                    WalletTopup.id == topup.id,
                    WalletTopup.status == TopupStatus.PENDING.value,
                )
                .values(
                    status=TopupStatus.COMPLETED.value,
                    gateway_payment_id=payment_id,
                    completed_at=datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await self.db.rollback()
                return False

            txn = await self.ledger.credit(
                topup.user_id,
                topup.amount,
                "Wallet top-up",
                reference_type=ReferenceType.WALLET_TOPUP.value,
                reference_id=topup.topup_id,
                metadata={"gateway_order_id": topup.gateway_order_id, "payment_id": payment_id},
            )
            await self.db.execute(
                update(WalletTopup)
                .where(WalletTopup.id == topup.id)
                .values(transaction_id=txn.transaction_id)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Wallet top-up {topup.topup_id} completed: {topup.amount}")
        return True

    async def verify_topup(
        self,
        user_id: uuid.UUID,
        gateway_order_id: str,
        payment_id: str,
        signature: str,
    ) -> WalletTopup:
        topup = await self._get_by_gateway_id(gateway_order_id)
        if topup is None:
            raise NotFound("Top-up not found", {"gateway_order_id": gateway_order_id})
        if topup.user_id != user_id:
            raise Forbidden("You do not have access to this top-up")

        # A bad signature leaves the top-up pending so a captured webhook can still credit it
        self.gateway.verify_checkout_signature(gateway_order_id, payment_id, signature)

        await self._complete(topup, payment_id)
        return await self._get_by_gateway_id(gateway_order_id)

    async def complete_from_webhook(self, gateway_order_id: str, payment_id: Optional[str]) -> bool:
        topup = await self._get_by_gateway_id(gateway_order_id)
        if topup is None:
            logger.warning(f"payment.captured for unknown gateway order {gateway_order_id}")
            return False
        return await self._complete(topup, payment_id)

    async def fail_from_webhook(self, gateway_order_id: str) -> bool:
        result = await self.db.execute(
            update(WalletTopup)
            .where(
                WalletTopup.gateway_order_id == gateway_order_id,
                WalletTopup.status == TopupStatus.PENDING.value,
            )
            .values(status=TopupStatus.FAILED.value)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount == 1
