from __future__ import annotations

from decimal import ROUND_DOWN, Decimal
from typing import List, Optional

from django.conf import settings

AMOUNT_POLICY_FULL = "full"
AMOUNT_POLICY_SPLIT = "split"
AMOUNT_POLICIES = (AMOUNT_POLICY_FULL, AMOUNT_POLICY_SPLIT)

CENT = Decimal("0.01")


def get_amount_policy(policy: Optional[str] = None) -> str:
    policy = (policy or getattr(settings, "BOOKING_AMOUNT_POLICY", AMOUNT_POLICY_FULL)).lower()
    if policy not in AMOUNT_POLICIES:
        raise ValueError(f"Unknown booking amount policy {policy!r}; expected one of {AMOUNT_POLICIES}.")
    return policy


def apportion_amount(amount: Decimal, count: int, *, policy: Optional[str] = None) -> List[Decimal]:
    """
    Work out ``amount_paid`` for each of ``count`` bookings bought by one payment.

    ``full`` records the whole payment on every booking, since the payment is for
    the multi-day intent as a whole. ``split`` divides it evenly to the cent and
    puts any remainder on the first booking so the parts add up exactly.
    """

    if count < 1:
        raise ValueError("Cannot apportion a payment across zero bookings.")
    amount = Decimal(amount).quantize(CENT)
    if get_amount_policy(policy) == AMOUNT_POLICY_FULL:
        return [amount] * count

    share = (amount / count).quantize(CENT, rounding=ROUND_DOWN)
    remainder = amount - share * count
    return [share + remainder] + [share] * (count - 1)
