from decimal import Decimal

import pytest

from bookings.pricing import AMOUNT_POLICY_FULL, AMOUNT_POLICY_SPLIT, apportion_amount, get_amount_policy


def test_full_policy_records_whole_amount_on_each_booking():
    assert apportion_amount(Decimal("149.99"), 2, policy=AMOUNT_POLICY_FULL) == [Decimal("149.99")] * 2


def test_split_policy_puts_remainder_on_first_booking():
    parts = apportion_amount(Decimal("100.00"), 3, policy=AMOUNT_POLICY_SPLIT)

    assert parts == [Decimal("33.34"), Decimal("33.33"), Decimal("33.33")]
    assert sum(parts) == Decimal("100.00")


def test_policy_defaults_to_setting(settings):
    settings.BOOKING_AMOUNT_POLICY = "split"

    assert get_amount_policy() == AMOUNT_POLICY_SPLIT
    assert apportion_amount(Decimal("10"), 2) == [Decimal("5.00"), Decimal("5.00")]


def test_unknown_policy_is_rejected():
    with pytest.raises(ValueError):
        get_amount_policy("half")


def test_zero_bookings_is_rejected():
    with pytest.raises(ValueError):
        apportion_amount(Decimal("10"), 0)
