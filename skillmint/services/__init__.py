# Services module
from skillmint.services.wallet_service import WalletLedger
from skillmint.services.payment_service import PaymentGateway, RazorpayGateway, get_payment_gateway
from skillmint.services.commission_service import CommissionEngine, CommissionRates
from skillmint.services.coupon_service import CouponService
from skillmint.services.order_service import OrderPipeline
from skillmint.services.topup_service import TopupService
from skillmint.services.refund_service import RefundService
from skillmint.services.withdrawal_service import WithdrawalService

__all__ = [
    "WalletLedger",
    "PaymentGateway",
    "RazorpayGateway",
    "get_payment_gateway",
    "CommissionEngine",
    "CommissionRates",
    "CouponService",
    "OrderPipeline",
    "TopupService",
    "RefundService",
    "WithdrawalService",
]
