from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from django.conf import settings

from core.exceptions import InvalidRequest

PLATFORM_FEE_RATE = Decimal("0.08")
PLATFORM_FEE_MIN_CENTS = 99
PLATFORM_FEE_MAX_CENTS = 1299
PROCESSING_FEE_RATE = Decimal("0.029")
PROCESSING_FEE_FIXED_CENTS = 30


@dataclass(frozen=True)
class BookingAmounts:
    service_price_cents: int
    platform_fee_cents: int
    amount_total_cents: int
    currency: str


def calc_platform_fee_cents(price_cents: int) -> int:
    """
    Platform fee charged on top of the service price.

    The base fee is 8% of the price clamped to $0.99..$12.99, grossed up so the
    platform still nets the base fee after card processing (2.9% + 30c) on the
    whole charge.
    """
    price = Decimal(price_cents)
    base = int((PLATFORM_FEE_RATE * price).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    base = max(PLATFORM_FEE_MIN_CENTS, min(base, PLATFORM_FEE_MAX_CENTS))
    grossed = (Decimal(base) + PROCESSING_FEE_RATE * price + PROCESSING_FEE_FIXED_CENTS) / (
        Decimal(1) - PROCESSING_FEE_RATE
    )
    return int(math.ceil(grossed))


def calculate_booking_amounts(price_cents: int, *, currency: str | None = None) -> BookingAmounts:
    if price_cents is None or price_cents <= 0:
        raise InvalidRequest("Service price must be a positive amount.", code="invalid_price")

    fee = calc_platform_fee_cents(price_cents)
    total = price_cents + fee

    if total < settings.BOOKING_MIN_CHARGE_CENTS:
        raise InvalidRequest(
            f"Amount must be at least ${settings.BOOKING_MIN_CHARGE_CENTS / 100:.2f}.",
            code="amount_too_small",
        )
    if settings.BOOKING_REVIEW_MODE and total > settings.BOOKING_REVIEW_MODE_MAX_CHARGE_CENTS:
        raise InvalidRequest(
            "Review mode is enabled. Maximum charge is "
            f"${settings.BOOKING_REVIEW_MODE_MAX_CHARGE_CENTS / 100:.2f}.",
            code="review_mode_limit_exceeded",
        )

    return BookingAmounts(
        service_price_cents=price_cents,
        platform_fee_cents=fee,
        amount_total_cents=total,
        currency=currency or settings.STRIPE_CURRENCY,
    )
