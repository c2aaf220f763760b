"""Import every model so Base.metadata knows all tables."""
from skillmint.models.user import User, UserRole, REFERRER_ROLES
from skillmint.models.course import Course, Enrollment
from skillmint.models.order import (
    Order,
    PaymentMethod,
    PaymentStatus,
    OrderStatus,
    OrderCommissionStatus,
    SettlementStatus,
    RefundStatus,
)
from skillmint.models.wallet import (
    Wallet,
    WalletTransaction,
    WalletTopup,
    TransactionType,
    TransactionStatus,
    ReferenceType,
    TopupStatus,
    EARNING_REFERENCE_TYPES,
)
from skillmint.models.commission import AffiliateCommission, CommissionStatus
from skillmint.models.withdrawal import WithdrawRequest, WithdrawalMethod, WithdrawalStatus, IN_FLIGHT_STATUSES
from skillmint.models.coupon import Coupon, CouponUsage, DiscountType

__all__ = [
    "User", "UserRole", "REFERRER_ROLES",
    "Course", "Enrollment",
    "Order", "PaymentMethod", "PaymentStatus", "OrderStatus",
    "OrderCommissionStatus", "SettlementStatus", "RefundStatus",
    "Wallet", "WalletTransaction", "WalletTopup", "TransactionType",
    "TransactionStatus", "ReferenceType", "TopupStatus", "EARNING_REFERENCE_TYPES",
    "AffiliateCommission", "CommissionStatus",
    "WithdrawRequest", "WithdrawalMethod", "WithdrawalStatus", "IN_FLIGHT_STATUSES",
    "Coupon", "CouponUsage", "DiscountType",
]
