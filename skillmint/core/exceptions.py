"""
Error taxonomy for the money subsystem.

Every business failure is raised as a MoneyError subclass carrying a stable
string code. The API layer renders them as
{"success": false, "code": ..., "message": ..., "details": ...}.
"""
from typing import Any, Optional


class MoneyError(Exception):
    """Base class for all domain errors."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": False,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


# Validation

class InvalidInput(MoneyError):
    code = "INVALID_INPUT"
    status_code = 400


class NotFound(MoneyError):
    code = "NOT_FOUND"
    status_code = 404


# Auth

class Unauthenticated(MoneyError):
    code = "UNAUTHENTICATED"
    status_code = 401


class Forbidden(MoneyError):
    code = "FORBIDDEN"
    status_code = 403


# Business rules

class InsufficientFunds(MoneyError):
    code = "INSUFFICIENT_FUNDS"
    status_code = 400


class SelfReferralRejected(MoneyError):
    code = "SELF_REFERRAL_REJECTED"
    status_code = 400


class AlreadyEnrolled(MoneyError):
    code = "ALREADY_ENROLLED"
    status_code = 409


class CouponInvalid(MoneyError):
    code = "COUPON_INVALID"
    status_code = 400


class OrderNotRefundable(MoneyError):
    code = "ORDER_NOT_REFUNDABLE"
    status_code = 400


class WithdrawalInFlight(MoneyError):
    code = "WITHDRAWAL_IN_FLIGHT"
    status_code = 409


class IllegalStateTransition(MoneyError):
    code = "ILLEGAL_STATE_TRANSITION"
    status_code = 409


# External

class GatewayUnavailable(MoneyError):
    code = "GATEWAY_UNAVAILABLE"
    status_code = 502


class GatewayTimeout(MoneyError):
    code = "GATEWAY_TIMEOUT"
    status_code = 504


class SignatureMismatch(MoneyError):
    code = "SIGNATURE_MISMATCH"
    status_code = 400


# Contention

class WalletContention(MoneyError):
    code = "WALLET_CONTENTION"
    status_code = 503


class OrderAlreadyFinalized(MoneyError):
    code = "ORDER_ALREADY_FINALIZED"
    status_code = 409


# Internal

class StoreUnavailable(MoneyError):
    code = "STORE_UNAVAILABLE"
    status_code = 503
