"""Tier selection, payment surcharges and money conversion helpers.

All arithmetic is done in integer cents; ``Decimal`` appears only at the API
boundary through :func:`to_cents` and :func:`from_cents`.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

from .domain import Deal, PaymentMethod, PriceResult, Quote

_CENT = Decimal("0.01")


def to_cents(amount: Decimal) -> int:
    quantized = (amount * Decimal("100")).to_integral_value(rounding=ROUND_HALF_UP)
    return int(quantized)


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / Decimal("100")).quantize(_CENT)


def optional_from_cents(cents: int | None) -> Decimal | None:
    return from_cents(cents) if cents is not None else None


def price(deal: Deal, quantity: int) -> PriceResult:
    """Return the unit and total price for ``quantity`` units of ``deal``.

    The highest tier whose threshold is met wins, checked from the top down, so
    a misconfigured tier table still resolves to a tier instead of raising.
    """

    if quantity <= 0:
        msg = "quantity must be positive"
        raise ValueError(msg)

    base = deal.base_tier
    selected = base
    for level in (3, 2):
        tier = deal.tier(level)
        if tier is not None and quantity >= tier.min_quantity:
            selected = tier
            break

    savings: int | None = None
    if selected.level != base.level:
        savings = (base.unit_price_cents - selected.unit_price_cents) * quantity

    return PriceResult(
        quantity=quantity,
        unit_price_cents=selected.unit_price_cents,
        total_price_cents=selected.unit_price_cents * quantity,
        applied_tier=selected.level,
        savings_cents=savings,
    )


def access_allowed(deal: Deal, method: PaymentMethod) -> bool:
    if not deal.payment_methods:
        return True
    return PaymentMethod(method) in deal.payment_methods


def surcharge(deal: Deal, quantity: int, method: PaymentMethod) -> int:
    method = PaymentMethod(method)
    if method is PaymentMethod.CHECK_MONTH:
        per_unit = deal.surcharge_check_month_cents
    elif method is PaymentMethod.CHECK_WEEK:
        per_unit = deal.surcharge_check_week_cents
    else:
        per_unit = None
    if not per_unit:
        return 0
    return per_unit * quantity


def quote(deal: Deal, quantity: int, method: PaymentMethod | None = None) -> Quote:
    """Price ``quantity`` units and add the surcharge for ``method`` on top."""

    result = price(deal, quantity)
    if method is None:
        return Quote(price=result, payment_method=None, payment_allowed=True, surcharge_cents=0)
    method = PaymentMethod(method)
    return Quote(
        price=result,
        payment_method=method,
        payment_allowed=access_allowed(deal, method),
        surcharge_cents=surcharge(deal, quantity, method),
    )
