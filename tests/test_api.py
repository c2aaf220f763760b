from decimal import Decimal

import pytest

WALLET = "/api/v1/wallet"
ORDERS = "/api/v1/orders"
PAYMENTS = "/api/v1/payments"
WITHDRAWALS = "/api/v1/withdrawals"
COMMISSIONS = "/api/v1/commissions"
REFUNDS = "/api/v1/refunds"


@pytest.mark.asyncio
async def test_requests_without_token_are_rejected(client):
    response = await client.get(WALLET)

    assert response.status_code == 401
    assert response.json() == {
        "success": False,
        "code": "UNAUTHENTICATED",
        "message": "Not authenticated",
        "details": {},
    }


@pytest.mark.asyncio
async def test_invalid_token_is_rejected(client):
    response = await client.get(WALLET, headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401
    assert response.json()["code"] == "UNAUTHENTICATED"


@pytest.mark.asyncio
async def test_purchase_through_checkout(client, marketplace, gateway, headers):
    buyer, instructor = marketplace["buyer"], marketplace["instructor"]

    response = await client.post(
        ORDERS,
        json={"course_id": str(marketplace["course"].id), "referral_code": "ANNA1B2XYZ"},
        headers=headers(buyer),
    )
    assert response.status_code == 201
    checkout = response.json()
    assert checkout["order_id"].startswith("ORD")
    assert checkout["key"] == "rzp_test_key"
    assert Decimal(checkout["amount"]) == Decimal("1000")

    gateway_order_id = checkout["gateway_order_id"]
    response = await client.post(
        f"{PAYMENTS}/verify",
        json={
            "razorpay_order_id": gateway_order_id,
            "razorpay_payment_id": "pay_api_1",
            "razorpay_signature": gateway.checkout_signature(gateway_order_id, "pay_api_1"),
        },
        headers=headers(buyer),
    )
    assert response.status_code == 200
    order = response.json()
    assert order["payment_status"] == "completed"
    assert order["order_status"] == "completed"
    assert order["settlement_status"] == "settled"
    assert order["instructor_earnings"] == "700.00"
    assert order["affiliate_commission"] == "170.00"
    assert order["platform_earnings"] == "130.00"

    response = await client.get(WALLET, headers=headers(instructor))
    assert response.json()["balance"] == "700.00"
    assert response.json()["total_earned"] == "700.00"

    response = await client.get(f"{COMMISSIONS}/me", headers=headers(marketplace["affiliate_a"]))
    commissions = response.json()
    assert commissions["total"] == 1
    assert commissions["items"][0]["commission_amount"] == "100.00"
    assert commissions["items"][0]["status"] == "pending"

    response = await client.get(ORDERS, headers=headers(buyer))
    assert response.json()["total"] == 1


@pytest.mark.asyncio
async def test_verify_with_bad_signature(client, marketplace, headers):
    buyer = marketplace["buyer"]
    response = await client.post(ORDERS, json={"course_id": str(marketplace["course"].id)}, headers=headers(buyer))
    checkout = response.json()

    response = await client.post(
        f"{PAYMENTS}/verify",
        json={
            "razorpay_order_id": checkout["gateway_order_id"],
            "razorpay_payment_id": "pay_api_2",
            "razorpay_signature": "f" * 64,
        },
        headers=headers(buyer),
    )

    assert response.status_code == 400
    assert response.json()["code"] == "SIGNATURE_MISMATCH"
    order = (await client.get(f"{ORDERS}/{checkout['order_id']}", headers=headers(buyer))).json()
    assert order["payment_status"] == "pending"


@pytest.mark.asyncio
async def test_webhook_is_idempotent(client, marketplace, gateway, headers):
    buyer = marketplace["buyer"]
    response = await client.post(ORDERS, json={"course_id": str(marketplace["course"].id)}, headers=headers(buyer))
    checkout = response.json()
    body, signature = gateway.webhook("payment.captured", {
        "id": "pay_api_3",
        "order_id": checkout["gateway_order_id"],
        "amount": 100000,
        "status": "captured",
    })

    for _ in range(2):
        response = await client.post(
            f"{PAYMENTS}/webhook",
            content=body,
            headers={"X-Razorpay-Signature": signature, "Content-Type": "application/json"},
        )
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "event": "payment.captured", "handled": True}

    response = await client.get(f"{WALLET}/transactions", headers=headers(marketplace["instructor"]))
    assert response.json()["total"] == 1


@pytest.mark.asyncio
async def test_webhook_signature_required(client, gateway):
    body, _ = gateway.webhook("payment.captured", {"id": "pay_x", "order_id": "order_x"})

    response = await client.post(f"{PAYMENTS}/webhook", content=body)
    assert response.status_code == 400
    assert response.json()["code"] == "SIGNATURE_MISMATCH"

    response = await client.post(f"{PAYMENTS}/webhook", content=body, headers={"X-Razorpay-Signature": "0" * 64})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_domain_errors_carry_codes(client, marketplace, headers):
    course_id = str(marketplace["course"].id)

    response = await client.post(ORDERS, json={"course_id": course_id}, headers=headers(marketplace["instructor"]))
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_INPUT"

    response = await client.post(
        ORDERS,
        json={"course_id": course_id, "referral_code": "ZZZ0000ZZZ"},
        headers=headers(marketplace["buyer"]),
    )
    assert response.json()["code"] == "INVALID_INPUT"

    response = await client.get(f"{ORDERS}/ORD00000000000000000", headers=headers(marketplace["buyer"]))
    assert response.status_code == 404
    assert response.json()["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_self_referral_rejected(client, db, make_user, marketplace, headers):
    buyer = await make_user(db, "Sam Affiliate", role="affiliate", referral_code="SAMAB12XYZ")

    response = await client.post(
        ORDERS,
        json={"course_id": str(marketplace["course"].id), "referral_code": "SAMAB12XYZ"},
        headers=headers(buyer),
    )

    assert response.status_code == 400
    assert response.json()["code"] == "SELF_REFERRAL_REJECTED"


@pytest.mark.asyncio
async def test_wallet_purchase_and_insufficient_funds(client, db, marketplace, fund, headers):
    buyer = marketplace["buyer"]
    await fund(db, buyer.id, "400")
    course_id = str(marketplace["course"].id)

    response = await client.post(ORDERS, json={"course_id": course_id, "payment_method": "wallet"}, headers=headers(buyer))
    assert response.status_code == 400
    error = response.json()
    assert error["code"] == "INSUFFICIENT_FUNDS"
    assert error["details"] == {"required": "1000.00"}

    await fund(db, buyer.id, "600")
    response = await client.post(ORDERS, json={"course_id": course_id, "payment_method": "wallet"}, headers=headers(buyer))
    assert response.status_code == 201
    assert response.json()["payment_status"] == "completed"

    response = await client.get(WALLET, headers=headers(buyer))
    assert response.json()["balance"] == "0.00"

    response = await client.post(ORDERS, json={"course_id": course_id, "payment_method": "wallet"}, headers=headers(buyer))
    assert response.status_code == 409
    assert response.json()["code"] == "ALREADY_ENROLLED"


@pytest.mark.asyncio
async def test_topup_flow(client, marketplace, gateway, headers):
    buyer = marketplace["buyer"]
    response = await client.post(f"{WALLET}/topup", json={"amount": "750.00"}, headers=headers(buyer))
    assert response.status_code == 201
    checkout = response.json()
    assert checkout["topup_id"].startswith("TOP")

    response = await client.post(
        f"{WALLET}/topup/verify",
        json={
            "razorpay_order_id": checkout["gateway_order_id"],
            "razorpay_payment_id": "pay_top_api",
            "razorpay_signature": gateway.checkout_signature(checkout["gateway_order_id"], "pay_top_api"),
        },
        headers=headers(buyer),
    )
    assert response.status_code == 200
    assert response.json()["status"] == "completed"

    summary = (await client.get(WALLET, headers=headers(buyer))).json()
    assert summary["balance"] == "750.00"
    assert summary["total_topped_up"] == "750.00"

    history = (await client.get(f"{WALLET}/transactions?reference_type=wallet_topup", headers=headers(buyer))).json()
    assert history["total"] == 1
    assert history["items"][0]["balance_after"] == "750.00"


@pytest.mark.asyncio
async def test_withdrawal_workflow(client, db, marketplace, fund, headers):
    affiliate, admin = marketplace["affiliate_a"], marketplace["admin"]
    await fund(db, affiliate.id, "2000")

    response = await client.get(f"{WITHDRAWALS}/settings")
    assert response.json()["min_amount"] == "100.00"

    response = await client.post(
        WITHDRAWALS,
        json={"amount": "50.00", "payment_method": "upi", "payment_details": {"upi_id": "ann@okbank"}},
        headers=headers(affiliate),
    )
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_INPUT"

    response = await client.post(
        WITHDRAWALS,
        json={"amount": "1000.00", "payment_method": "upi", "payment_details": {"upi_id": "ann@okbank"}},
        headers=headers(affiliate),
    )
    assert response.status_code == 201
    request = response.json()
    assert (request["processing_fee"], request["net_amount"]) == ("20.00", "980.00")

    response = await client.post(
        WITHDRAWALS,
        json={"amount": "100.00", "payment_method": "upi", "payment_details": {"upi_id": "ann@okbank"}},
        headers=headers(affiliate),
    )
    assert response.status_code == 409
    assert response.json()["code"] == "WITHDRAWAL_IN_FLIGHT"

    response = await client.get(f"{WITHDRAWALS}/admin/queue", headers=headers(affiliate))
    assert response.status_code == 403
    assert response.json()["code"] == "FORBIDDEN"

    queue = (await client.get(f"{WITHDRAWALS}/admin/queue", headers=headers(admin))).json()
    assert [item["request_id"] for item in queue["items"]] == [request["request_id"]]

    response = await client.post(f"{WITHDRAWALS}/{request['request_id']}/approve", json={}, headers=headers(admin))
    assert response.json()["status"] == "processing"

    response = await client.post(
        f"{WITHDRAWALS}/{request['request_id']}/complete",
        json={"transaction_id": "UTR123"},
        headers=headers(admin),
    )
    assert response.json()["status"] == "completed"

    summary = (await client.get(WALLET, headers=headers(affiliate))).json()
    assert summary["balance"] == "1000.00"
    assert summary["total_withdrawn"] == "1000.00"
    assert summary["pending_withdrawals"] == "0.00"

    response = await client.post(f"{WITHDRAWALS}/{request['request_id']}/reject", json={"reason": "late"}, headers=headers(admin))
    assert response.status_code == 409
    assert response.json()["code"] == "ILLEGAL_STATE_TRANSITION"


@pytest.mark.asyncio
async def test_commission_rates_admin_only(client, marketplace, rates, headers):
    response = await client.get(f"{COMMISSIONS}/rates", headers=headers(marketplace["buyer"]))
    assert response.json() == {"rates": {"1": "10", "2": "5", "3": "2"}}

    response = await client.put(f"{COMMISSIONS}/rates", json={"rates": {"1": 12}}, headers=headers(marketplace["buyer"]))
    assert response.status_code == 403

    response = await client.put(f"{COMMISSIONS}/rates", json={"rates": {"1": 12}}, headers=headers(marketplace["admin"]))
    assert response.status_code == 200
    assert rates.get(1) == Decimal("12")

    response = await client.put(f"{COMMISSIONS}/rates", json={"rates": {"4": 1}}, headers=headers(marketplace["admin"]))
    assert response.status_code == 400
    assert rates.get(1) == Decimal("12")


@pytest.mark.asyncio
async def test_admin_adjust_and_reconcile(client, marketplace, headers):
    admin, buyer = marketplace["admin"], marketplace["buyer"]

    response = await client.post(
        f"{WALLET}/admin/adjust",
        json={"user_id": str(buyer.id), "amount": "25.00", "type": "credit", "reason": "goodwill credit"},
        headers=headers(admin),
    )
    assert response.status_code == 201
    assert response.json()["reference_type"] == "correction"

    response = await client.get(f"{WALLET}/admin/reconcile/{buyer.id}", headers=headers(admin))
    report = response.json()
    assert report["is_consistent"] is True
    assert report["stored_balance"] == "25.00"

    response = await client.get(f"{WALLET}/admin/reconcile/{buyer.id}", headers=headers(buyer))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_refund_request_and_approval(client, marketplace, gateway, headers):
    buyer, admin = marketplace["buyer"], marketplace["admin"]
    checkout = (await client.post(ORDERS, json={"course_id": str(marketplace["course"].id)}, headers=headers(buyer))).json()
    gateway_order_id = checkout["gateway_order_id"]
    await client.post(
        f"{PAYMENTS}/verify",
        json={
            "razorpay_order_id": gateway_order_id,
            "razorpay_payment_id": "pay_api_r",
            "razorpay_signature": gateway.checkout_signature(gateway_order_id, "pay_api_r"),
        },
        headers=headers(buyer),
    )

    response = await client.post(
        f"{REFUNDS}/orders/{checkout['order_id']}",
        json={"reason": "Wrong course"},
        headers=headers(buyer),
    )
    assert response.status_code == 200
    assert response.json()["refund_status"] == "pending"

    queue = (await client.get(REFUNDS, headers=headers(admin))).json()
    assert queue["total"] == 1

    response = await client.post(f"{REFUNDS}/orders/{checkout['order_id']}/approve", json={}, headers=headers(admin))
    assert response.status_code == 200
    result = response.json()
    assert result["order"]["payment_status"] == "refunded"
    assert result["gateway_refund_id"] == "rfnd_000001"
    assert result["reversal_errors"] == []

    summary = (await client.get(WALLET, headers=headers(marketplace["instructor"]))).json()
    assert summary["balance"] == "0.00"
