from decimal import Decimal

import pytest

from skillmint.core.exceptions import Forbidden, InvalidInput, SignatureMismatch
from skillmint.services.order_service import OrderPipeline
from skillmint.services.topup_service import TopupService
from skillmint.services.wallet_service import WalletLedger


@pytest.mark.asyncio
async def test_topup_credits_wallet_once(db, make_user, gateway):
    user_id = (await make_user(db, "Tara Topup")).id
    service = TopupService(db, gateway)

    checkout = await service.create_topup(user_id, Decimal("500"))
    assert checkout["topup_id"].startswith("TOP")
    assert checkout["key"] == "rzp_test_key"
    assert gateway.orders[checkout["gateway_order_id"]].amount == Decimal("500.00")

    signature = gateway.checkout_signature(checkout["gateway_order_id"], "pay_top_1")
    topup = await service.verify_topup(user_id, checkout["gateway_order_id"], "pay_top_1", signature)
    assert topup.status == "completed"
    assert topup.transaction_id.startswith("TXN")

    # The webhook for the same capture arrives afterwards
    body, webhook_signature = gateway.webhook("payment.captured", {
        "id": "pay_top_1",
        "order_id": checkout["gateway_order_id"],
        "amount": 50000,
    })
    ack = await OrderPipeline(db, gateway).handle_webhook(body, webhook_signature)
    assert ack["handled"] is False

    summary = await WalletLedger(db).summary(user_id)
    assert summary["balance"] == Decimal("500.00")
    assert summary["total_topped_up"] == Decimal("500.00")
    assert summary["total_earned"] == Decimal("0.00")


@pytest.mark.asyncio
async def test_topup_completed_by_webhook(db, make_user, gateway):
    user_id = (await make_user(db, "Wes Webhook")).id
    checkout = await TopupService(db, gateway).create_topup(user_id, Decimal("250.50"))

    body, signature = gateway.webhook("payment.captured", {
        "id": "pay_top_2",
        "order_id": checkout["gateway_order_id"],
    })
    ack = await OrderPipeline(db, gateway).handle_webhook(body, signature)

    assert ack == {"status": "ok", "event": "payment.captured", "handled": True}
    assert (await WalletLedger(db).summary(user_id))["balance"] == Decimal("250.50")


@pytest.mark.asyncio
async def test_bad_signature_leaves_topup_pending(db, make_user, gateway):
    user_id = (await make_user(db, "Fay Forger")).id
    service = TopupService(db, gateway)
    checkout = await service.create_topup(user_id, Decimal("300"))

    with pytest.raises(SignatureMismatch):
        await service.verify_topup(user_id, checkout["gateway_order_id"], "pay_top_3", "0" * 64)

    topup = await service._get_by_gateway_id(checkout["gateway_order_id"])
    assert topup.status == "pending"
    assert (await WalletLedger(db).summary(user_id))["balance"] == Decimal("0.00")

    # The processor still captured the payment and says so on the webhook
    body, signature = gateway.webhook("payment.captured", {
        "id": "pay_top_3",
        "order_id": checkout["gateway_order_id"],
    })
    ack = await OrderPipeline(db, gateway).handle_webhook(body, signature)

    assert ack["handled"] is True
    assert (await WalletLedger(db).summary(user_id))["balance"] == Decimal("300.00")


@pytest.mark.asyncio
async def test_payment_failed_webhook_fails_topup(db, make_user, gateway):
    user_id = (await make_user(db, "Pat Pending")).id
    checkout = await TopupService(db, gateway).create_topup(user_id, Decimal("100"))

    body, signature = gateway.webhook("payment.failed", {
        "id": "pay_top_3",
        "order_id": checkout["gateway_order_id"],
        "error_description": "Card declined",
    })
    ack = await OrderPipeline(db, gateway).handle_webhook(body, signature)

    assert ack["handled"] is True
    topup = await TopupService(db, gateway)._get_by_gateway_id(checkout["gateway_order_id"])
    assert topup.status == "failed"


@pytest.mark.asyncio
async def test_topup_belongs_to_its_user(db, make_user, gateway):
    owner_id = (await make_user(db, "Owen Owner")).id
    other_id = (await make_user(db, "Otto Other")).id
    service = TopupService(db, gateway)
    checkout = await service.create_topup(owner_id, Decimal("100"))
    signature = gateway.checkout_signature(checkout["gateway_order_id"], "pay_top_4")

    with pytest.raises(Forbidden):
        await service.verify_topup(other_id, checkout["gateway_order_id"], "pay_top_4", signature)


@pytest.mark.asyncio
async def test_topup_amount_must_be_positive(db, make_user, gateway):
    user_id = (await make_user(db, "Zed Zero")).id
    with pytest.raises(InvalidInput):
        await TopupService(db, gateway).create_topup(user_id, Decimal("0"))
