"""Business identifiers and referral codes."""
import hashlib
import random
import re
import string
import time

REFERRAL_CODE_PATTERN = re.compile(r"^[A-Z]{3}[A-F0-9]{4}[A-Z]{3}$")

ORDER_PREFIX = "ORD"
TRANSACTION_PREFIX = "TXN"
COMMISSION_PREFIX = "COM"
WITHDRAWAL_PREFIX = "WDR"
TOPUP_PREFIX = "TOP"


def generate_identifier(prefix: str) -> str:
    """{prefix}{epochMillis}{4 random digits}, e.g. ORD17134567890120042."""
    return f"{prefix}{int(time.time() * 1000)}{random.randint(0, 9999):04d}"


def generate_order_id() -> str:
    return generate_identifier(ORDER_PREFIX)


def generate_transaction_id() -> str:
    return generate_identifier(TRANSACTION_PREFIX)


def generate_commission_id() -> str:
    return generate_identifier(COMMISSION_PREFIX)


def generate_withdrawal_id() -> str:
    return generate_identifier(WITHDRAWAL_PREFIX)


def generate_topup_id() -> str:
    return generate_identifier(TOPUP_PREFIX)


def generate_referral_code(name: str, user_id) -> str:
    """
    Build a 10 character referral code.

    Three letters from the name (padded with X), four hex characters of the
    md5 of the user id, then three random letters.
    """
    if not name or not user_id:
        raise ValueError("Name and user id are required")

    letters = "".join(ch for ch in name.upper() if "A" <= ch <= "Z")
    name_part = (letters + "XXX")[:3]
    hash_part = hashlib.md5(str(user_id).encode()).hexdigest()[:4].upper()
    random_part = "".join(random.choices(string.ascii_uppercase, k=3))
    return f"{name_part}{hash_part}{random_part}"


def is_valid_referral_code(code) -> bool:
    if not code or not isinstance(code, str):
        return False
    return bool(REFERRAL_CODE_PATTERN.match(code))
