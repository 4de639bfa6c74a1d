"""
Seat pricing  (delta charge)
============================

Formula
-------
Amount = (seat_count - paid_seat_count) x price_per_seat

A rider who grows an already-paid booking is charged for the new seats
only.  Amounts are then rounded to the currency's minor unit (XAF has
none) before they reach a payment provider.

Complexity: O(1) per calculation.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

# ISO 4217 minor units for the currencies the providers settle in
CURRENCY_EXPONENTS = {"XAF": 0, "XOF": 0, "EUR": 2, "USD": 2}


def chargeable_amount(
    seat_count: int, paid_seat_count: int, price_per_seat: Decimal
) -> Decimal:
    """Amount owed for the unpaid seats of a booking.  May be <= 0."""
    return (seat_count - paid_seat_count) * Decimal(price_per_seat)


def round_to_currency(amount: Decimal, currency: str) -> Decimal:
    exponent = CURRENCY_EXPONENTS.get(currency.upper(), 2)
    quantum = Decimal(1).scaleb(-exponent)
    return Decimal(amount).quantize(quantum, rounding=ROUND_HALF_UP)
