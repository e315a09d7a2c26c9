"""Deal domain services."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from time import perf_counter
from typing import Any

from services.common.tracing import get_tracer

from .cache import DealDisplayCache
from .domain import (
    CapacityExceeded,
    Deal,
    DealNotFound,
    InvalidReason,
    PaymentMethod,
    Quote,
    ReservationResult,
    ValidityResult,
)
from .metrics import (
    DEAL_QUOTES_TOTAL,
    DEAL_RESERVATION_SECONDS,
    DEAL_RESERVATIONS_TOTAL,
    DEAL_RESERVED_UNITS_TOTAL,
)
from .models import DealRecord
from .pricing import from_cents, optional_from_cents, quote
from .repository import DealRepository, to_snapshot
from .schemas import DealCreate, DealUpdate
from .validity import validate

_LOGGER = logging.getLogger(__name__)
_TRACER = get_tracer(__name__)


class DealUnavailable(Exception):
    """Raised when a purchase is attempted on a deal that is not currently valid."""

    def __init__(self, deal_id: int, reason: InvalidReason) -> None:
        super().__init__(f"deal {deal_id} is {reason.value}")
        self.deal_id = deal_id
        self.reason = reason


def _stored_fields(record: DealRecord) -> dict[str, Any]:
    """Express a stored deal in ``DealCreate`` field names for re-validation."""

    return {
        "title": record.title,
        "product_id": record.product_id,
        "description": record.description,
        "notes": record.notes,
        "internal_notes": record.internal_notes,
        "priority": record.priority,
        "tier1_qty": record.tier1_qty,
        "tier1_price": from_cents(record.tier1_price_cents),
        "tier2_qty": record.tier2_qty,
        "tier2_price": optional_from_cents(record.tier2_price_cents),
        "tier3_qty": record.tier3_qty,
        "tier3_price": optional_from_cents(record.tier3_price_cents),
        "expires_at": record.expires_at,
        "max_quantity": record.max_quantity,
        "payment_methods": list(record.payment_methods or []),
        "surcharge_check_week": optional_from_cents(record.surcharge_check_week_cents),
        "surcharge_check_month": optional_from_cents(record.surcharge_check_month_cents),
        "payment_notes": record.payment_notes,
        "allowed_colors": record.allowed_colors,
        "required_importer": record.required_importer,
        "is_esim": record.is_esim,
        "additional_specs": record.additional_specs,
        "is_active": record.is_active,
    }


class DealService:
    """High-level deal orchestration: authoring, quoting and capacity commits."""

    def __init__(self, repository: DealRepository, cache: DealDisplayCache | None = None) -> None:
        self.repository = repository
        self.cache = cache

    async def create_deal(self, payload: DealCreate) -> DealRecord:
        record = await self.repository.create_deal(payload.to_columns())
        _LOGGER.info("Created deal %s (%s)", record.id, record.title)
        return record

    async def update_deal(self, record: DealRecord, payload: DealUpdate) -> DealRecord:
        """Apply a partial update after validating the merged deal as a whole.

        Raises ``pydantic.ValidationError`` when the result would be malformed and
        ``ValueError`` when a new capacity would fall below the units already sold.
        """

        merged = _stored_fields(record)
        merged.update(payload.model_dump(exclude_unset=True))
        validated = DealCreate.model_validate(merged)
        updated = await self.repository.update_deal(record, validated.to_columns())
        await self._invalidate(updated.id)
        return updated

    async def delete_deal(self, record: DealRecord) -> None:
        deal_id = record.id
        await self.repository.delete_deal(record)
        await self._invalidate(deal_id)

    async def snapshot(self, deal_id: int) -> Deal:
        record = await self.repository.get_deal(deal_id)
        if record is None:
            raise DealNotFound(deal_id)
        return to_snapshot(record)

    async def check_validity(self, deal_id: int, now: datetime | None = None) -> ValidityResult:
        return validate(await self.snapshot(deal_id), now)

    async def quote(
        self,
        deal_id: int,
        quantity: int,
        payment_method: PaymentMethod | None = None,
    ) -> Quote:
        result = quote(await self.snapshot(deal_id), quantity, payment_method)
        DEAL_QUOTES_TOTAL.labels(tier=str(result.price.applied_tier)).inc()
        return result

    async def reserve(self, deal_id: int, quantity: int) -> ReservationResult:
        """Consume ``quantity`` units of capacity with a single atomic update."""

        start = perf_counter()
        with _TRACER.start_as_current_span("deal.reserve") as span:
            span.set_attribute("deal.id", deal_id)
            span.set_attribute("deal.quantity", quantity)
            try:
                result = await self.repository.reserve_capacity(deal_id, quantity)
            except CapacityExceeded as exc:
                span.set_attribute("deal.outcome", "capacity_exceeded")
                DEAL_RESERVATIONS_TOTAL.labels(outcome="capacity_exceeded").inc()
                _LOGGER.warning(
                    "Reservation of %s unit(s) rejected for deal %s: %s remaining",
                    quantity,
                    deal_id,
                    exc.remaining,
                )
                raise
            except DealNotFound:
                DEAL_RESERVATIONS_TOTAL.labels(outcome="not_found").inc()
                raise
            finally:
                DEAL_RESERVATION_SECONDS.observe(perf_counter() - start)
            span.set_attribute("deal.outcome", "reserved")

        DEAL_RESERVATIONS_TOTAL.labels(outcome="reserved").inc()
        DEAL_RESERVED_UNITS_TOTAL.inc(quantity)
        _LOGGER.info(
            "Reserved %s unit(s) of deal %s; sold %s of %s",
            quantity,
            deal_id,
            result.sold_quantity,
            result.max_quantity if result.max_quantity is not None else "unlimited",
        )
        await self._invalidate(deal_id)
        return result

    async def commit_purchase(
        self,
        deal_id: int,
        quantity: int,
        now: datetime | None = None,
    ) -> ReservationResult:
        """Reject inactive or expired deals, then reserve capacity atomically.

        The validity check runs on a snapshot and only gates the attempt; the
        capacity guarantee comes from :meth:`reserve` alone.
        """

        validity = await self.check_validity(deal_id, now or datetime.now(timezone.utc))
        if not validity.valid and validity.reason is not InvalidReason.SOLD_OUT:
            DEAL_RESERVATIONS_TOTAL.labels(outcome=validity.reason.value).inc()
            raise DealUnavailable(deal_id, validity.reason)
        return await self.reserve(deal_id, quantity)

    async def _invalidate(self, deal_id: int) -> None:
        if self.cache is not None:
            await self.cache.invalidate(deal_id)
