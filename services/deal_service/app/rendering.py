"""Presentation of deal state for UI badges, cards and outbound text messages."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum

from .domain import Countdown, Deal, DealStatus, PaymentMethod
from .pricing import from_cents
from .validity import status, time_remaining


class BadgeTier(str, Enum):
    HOT = "hot"
    TRENDING = "trending"
    FRESH = "fresh"


@dataclass(frozen=True, slots=True)
class BadgeStyle:
    tier: BadgeTier
    icon: str
    label: str


# Ordered from the highest priority threshold down; the first match wins.
_BADGE_THRESHOLDS: tuple[tuple[int, BadgeStyle], ...] = (
    (15, BadgeStyle(tier=BadgeTier.HOT, icon="flame", label="Hot")),
    (10, BadgeStyle(tier=BadgeTier.TRENDING, icon="trending-up", label="Trending")),
)
_DEFAULT_BADGE = BadgeStyle(tier=BadgeTier.FRESH, icon="sparkles", label="Fresh")

PAYMENT_METHOD_LABELS: dict[PaymentMethod, str] = {
    PaymentMethod.CASH: "Cash",
    PaymentMethod.BANK_TRANSFER: "Bank transfer",
    PaymentMethod.CHECK_WEEK: "Check (1 week)",
    PaymentMethod.CHECK_MONTH: "Check (up to 1 month)",
}

IMPORTER_LABELS: dict[str, str] = {
    "official": "Official importer",
    "parallel": "Parallel importer",
}

_PAYMENT_ORDER = tuple(PaymentMethod)


def render_badge(deal: Deal) -> BadgeStyle:
    for threshold, style in _BADGE_THRESHOLDS:
        if deal.priority >= threshold:
            return style
    return _DEFAULT_BADGE


def format_amount(cents: int) -> str:
    """Format cents with thousands separators and either zero or two decimals."""

    amount = from_cents(cents)
    if amount == amount.to_integral_value():
        return f"{int(amount):,}"
    return f"{amount:,.2f}"


def format_countdown(countdown: Countdown) -> str:
    if countdown.total_seconds <= 0:
        return "expired"
    if countdown.days > 0:
        return f"{countdown.days}d {countdown.hours}h"
    if countdown.hours > 0:
        return f"{countdown.hours}h {countdown.minutes}m"
    return f"{countdown.minutes}m"


@dataclass(frozen=True, slots=True)
class TierCard:
    level: int
    min_quantity: int
    unit_price: Decimal
    savings: Decimal | None


@dataclass(frozen=True, slots=True)
class DealCard:
    """Everything a deal tile needs, computed for a single instant."""

    status: DealStatus
    badge: BadgeStyle
    tiers: tuple[TierCard, ...]
    countdown: str | None
    is_urgent: bool
    remaining_quantity: int | None
    is_low_stock: bool


def render_card(
    deal: Deal,
    now: datetime | None = None,
    *,
    low_stock_threshold: int = 3,
    urgent_window: timedelta = timedelta(hours=24),
) -> DealCard:
    now = now if now is not None else datetime.now(timezone.utc)
    countdown_text: str | None = None
    is_urgent = False
    if deal.deadline is not None:
        countdown = time_remaining(deal.deadline, now)
        countdown_text = format_countdown(countdown)
        is_urgent = 0 < countdown.total_seconds < urgent_window.total_seconds()

    remaining = deal.capacity.remaining if deal.capacity is not None else None
    is_low_stock = remaining is not None and 0 < remaining <= low_stock_threshold

    base = deal.base_tier
    tiers = tuple(
        TierCard(
            level=tier.level,
            min_quantity=tier.min_quantity,
            unit_price=from_cents(tier.unit_price_cents),
            savings=(
                from_cents((base.unit_price_cents - tier.unit_price_cents) * tier.min_quantity)
                if tier.level != base.level
                else None
            ),
        )
        for tier in deal.tiers
    )

    return DealCard(
        status=status(deal, now),
        badge=render_badge(deal),
        tiers=tiers,
        countdown=countdown_text,
        is_urgent=is_urgent,
        remaining_quantity=remaining,
        is_low_stock=is_low_stock,
    )


def _price_lines(deal: Deal, currency: str) -> list[str]:
    lines = ["📊 Prices:"]
    for tier in deal.tiers:
        amount = f"{currency}{format_amount(tier.unit_price_cents)}"
        if tier.level == deal.base_tier.level:
            lines.append(f"{tier.min_quantity} units - {amount}")
        else:
            lines.append(f"{tier.min_quantity} units - {amount} per unit")
    return lines


def _expiration_lines(deal: Deal, now: datetime | None) -> list[str]:
    lines: list[str] = []
    if deal.deadline is not None:
        countdown = time_remaining(deal.deadline, now)
        if countdown.total_seconds > 0:
            lines.append(
                f"⏳ Ends in {countdown.days}d {countdown.hours}h {countdown.minutes}m"
            )
        else:
            lines.append("⏳ This deal has ended")
    if deal.capacity is not None:
        remaining = max(deal.capacity.remaining, 0)
        lines.append(f"📦 {remaining} units left in stock!")
    return lines


def _payment_lines(deal: Deal) -> list[str]:
    if not deal.payment_methods:
        return []
    methods = " / ".join(
        PAYMENT_METHOD_LABELS[method] for method in _PAYMENT_ORDER if method in deal.payment_methods
    )
    lines = [f"💳 Payment: {methods}"]
    if deal.payment_notes:
        lines.append(f"   {deal.payment_notes}")
    return lines


def _variant_lines(deal: Deal) -> list[str]:
    lines: list[str] = []
    if deal.allowed_colors:
        lines.append(f"🎨 Colors: {' / '.join(deal.allowed_colors)}")
    if deal.is_esim:
        lines.append("📱 eSIM only")
    if deal.required_importer:
        label = IMPORTER_LABELS.get(deal.required_importer, deal.required_importer)
        lines.append(f"✅ {label}")
    return lines


def render_message(
    deal: Deal,
    product_name: str | None,
    now: datetime | None = None,
    *,
    currency: str = "₪",
) -> str:
    """Compose the outbound text for ``deal``.

    Sections are separated by a blank line and always appear in the same
    order; empty sections are skipped. The countdown is floored to whole
    minutes, so callers re-render on a fixed interval rather than continuously.
    """

    now = now if now is not None else datetime.now(timezone.utc)
    if render_badge(deal).tier is BadgeTier.HOT:
        header = [f"🔥 {deal.title} 🔥"]
    else:
        header = [deal.title]
    if product_name:
        header.append(product_name)

    sections = [
        header,
        [deal.description] if deal.description else [],
        _price_lines(deal, currency),
        _expiration_lines(deal, now),
        _payment_lines(deal),
        _variant_lines(deal),
        [f"ℹ️ {deal.notes}"] if deal.notes else [],
    ]
    return "\n\n".join("\n".join(section) for section in sections if section)
