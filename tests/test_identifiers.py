import re
import time
import uuid

import pytest

from skillmint.core.identifiers import (
    generate_commission_id,
    generate_order_id,
    generate_referral_code,
    generate_topup_id,
    generate_transaction_id,
    generate_withdrawal_id,
    is_valid_referral_code,
)


@pytest.mark.parametrize("generator,prefix", [
    (generate_order_id, "ORD"),
    (generate_transaction_id, "TXN"),
    (generate_commission_id, "COM"),
    (generate_withdrawal_id, "WDR"),
    (generate_topup_id, "TOP"),
])
def test_business_ids_are_prefix_millis_and_four_digits(generator, prefix):
    before = int(time.time() * 1000)
    value = generator()
    after = int(time.time() * 1000)

    match = re.fullmatch(rf"{prefix}(\d{{13}})(\d{{4}})", value)
    assert match is not None
    assert before <= int(match.group(1)) <= after


def test_business_ids_rarely_collide():
    ids = {generate_order_id() for _ in range(200)}
    assert len(ids) > 190


def test_referral_code_shape():
    user_id = uuid.uuid4()
    code = generate_referral_code("Priya Sharma", user_id)

    assert len(code) == 10
    assert code.startswith("PRI")
    assert is_valid_referral_code(code)


def test_referral_code_pads_short_names():
    code = generate_referral_code("Al", uuid.uuid4())
    assert code[:3] == "ALX"
    assert is_valid_referral_code(code)


def test_referral_code_hash_part_is_stable_per_user():
    user_id = uuid.uuid4()
    first = generate_referral_code("Kiran", user_id)
    second = generate_referral_code("Kiran", user_id)
    assert first[3:7] == second[3:7]


def test_referral_code_requires_name_and_user():
    with pytest.raises(ValueError):
        generate_referral_code("", uuid.uuid4())
    with pytest.raises(ValueError):
        generate_referral_code("Kiran", None)


@pytest.mark.parametrize("code,expected", [
    ("ANNA1B2XYZ", True),
    ("ann a1b2xyz", False),
    ("ANNA1B2XY", False),
    ("ANNG1B2XYZ", False),
    ("", False),
    (None, False),
    (12345, False),
])
def test_referral_code_validation(code, expected):
    assert is_valid_referral_code(code) is expected
