"""Immutable deal snapshots and result types shared by the deal engine."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any


class PaymentMethod(str, Enum):
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    CHECK_WEEK = "check_week"
    CHECK_MONTH = "check_month"


class ExpirationType(str, Enum):
    NONE = "none"
    DATE = "date"
    QUANTITY = "quantity"
    BOTH = "both"


class InvalidReason(str, Enum):
    INACTIVE = "inactive"
    EXPIRED = "expired"
    SOLD_OUT = "sold_out"


class DealStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    SOLD_OUT = "sold_out"


def ensure_utc(value: datetime) -> datetime:
    """Interpret naive timestamps as UTC and convert aware ones to UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True, slots=True)
class PriceTier:
    """Unit price applying to purchases of at least ``min_quantity`` units."""

    level: int
    min_quantity: int
    unit_price_cents: int


@dataclass(frozen=True, slots=True)
class CapacityLimit:
    max_quantity: int
    sold_quantity: int = 0

    @property
    def remaining(self) -> int:
        return self.max_quantity - self.sold_quantity


@dataclass(frozen=True, slots=True)
class Deal:
    """Read-only view of a deal row as seen by the engine.

    The deadline and the capacity are independent optional constraints; a deal
    carrying both must satisfy both to be purchasable.
    """

    id: int | None
    title: str
    tiers: tuple[PriceTier, ...]
    product_id: str | None = None
    description: str | None = None
    notes: str | None = None
    priority: int = 0
    is_active: bool = True
    deadline: datetime | None = None
    capacity: CapacityLimit | None = None
    payment_methods: frozenset[PaymentMethod] = frozenset()
    surcharge_check_week_cents: int | None = None
    surcharge_check_month_cents: int | None = None
    payment_notes: str | None = None
    allowed_colors: tuple[str, ...] = ()
    required_importer: str | None = None
    is_esim: bool = False
    # Read-only view of free-form JSON; excluded from the hash.
    additional_specs: Mapping[str, Any] = field(default_factory=dict, hash=False)

    def __post_init__(self) -> None:
        if not self.tiers:
            msg = "deal requires at least the base price tier"
            raise ValueError(msg)
        if self.deadline is not None:
            object.__setattr__(self, "deadline", ensure_utc(self.deadline))
        object.__setattr__(self, "additional_specs", MappingProxyType(dict(self.additional_specs)))

    @property
    def base_tier(self) -> PriceTier:
        return self.tiers[0]

    def tier(self, level: int) -> PriceTier | None:
        return next((tier for tier in self.tiers if tier.level == level), None)

    @property
    def expiration_type(self) -> ExpirationType:
        if self.deadline is not None and self.capacity is not None:
            return ExpirationType.BOTH
        if self.deadline is not None:
            return ExpirationType.DATE
        if self.capacity is not None:
            return ExpirationType.QUANTITY
        return ExpirationType.NONE


@dataclass(frozen=True, slots=True)
class ValidityResult:
    valid: bool
    reason: InvalidReason | None = None
    remaining_quantity: int | None = None
    time_remaining_ms: int | None = None


@dataclass(frozen=True, slots=True)
class Countdown:
    days: int
    hours: int
    minutes: int
    seconds: int
    total_seconds: int


@dataclass(frozen=True, slots=True)
class PriceResult:
    quantity: int
    unit_price_cents: int
    total_price_cents: int
    applied_tier: int
    savings_cents: int | None = None


@dataclass(frozen=True, slots=True)
class Quote:
    price: PriceResult
    payment_method: PaymentMethod | None
    payment_allowed: bool
    surcharge_cents: int

    @property
    def grand_total_cents(self) -> int:
        return self.price.total_price_cents + self.surcharge_cents


@dataclass(frozen=True, slots=True)
class ReservationResult:
    deal_id: int
    quantity: int
    sold_quantity: int
    max_quantity: int | None

    @property
    def remaining_quantity(self) -> int | None:
        if self.max_quantity is None:
            return None
        return self.max_quantity - self.sold_quantity


class DealNotFound(Exception):
    """Raised when a deal id does not resolve to a stored deal."""

    def __init__(self, deal_id: int) -> None:
        super().__init__(f"deal {deal_id} not found")
        self.deal_id = deal_id


class CapacityExceeded(Exception):
    """Raised when a reservation would push sold quantity past the deal's capacity."""

    def __init__(self, deal_id: int, *, requested: int, remaining: int) -> None:
        super().__init__(
            f"deal {deal_id} cannot reserve {requested} unit(s); {remaining} remaining"
        )
        self.deal_id = deal_id
        self.requested = requested
        self.remaining = remaining
