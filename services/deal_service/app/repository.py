"""Data access helpers for the deal service."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from sqlalchemy import Select, and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .domain import (
    CapacityExceeded,
    CapacityLimit,
    Deal,
    DealNotFound,
    PaymentMethod,
    PriceTier,
    ReservationResult,
)
from .models import DealRecord

# Columns that may only change through reserve_capacity.
_PROTECTED_COLUMNS = frozenset({"id", "sold_quantity", "created_at", "updated_at"})


def _tiers(record: DealRecord) -> tuple[PriceTier, ...]:
    tiers = [PriceTier(level=1, min_quantity=record.tier1_qty, unit_price_cents=record.tier1_price_cents)]
    optional = (
        (2, record.tier2_qty, record.tier2_price_cents),
        (3, record.tier3_qty, record.tier3_price_cents),
    )
    for level, qty, price_cents in optional:
        # A tier missing either half is treated as undefined.
        if qty is not None and price_cents is not None:
            tiers.append(PriceTier(level=level, min_quantity=qty, unit_price_cents=price_cents))
    return tuple(tiers)


def to_snapshot(record: DealRecord) -> Deal:
    """Build the immutable engine view of a stored deal."""

    capacity = None
    if record.max_quantity is not None:
        capacity = CapacityLimit(max_quantity=record.max_quantity, sold_quantity=record.sold_quantity)
    return Deal(
        id=record.id,
        title=record.title,
        tiers=_tiers(record),
        product_id=record.product_id,
        description=record.description,
        notes=record.notes,
        priority=record.priority,
        is_active=record.is_active,
        deadline=record.expires_at,
        capacity=capacity,
        payment_methods=frozenset(PaymentMethod(method) for method in record.payment_methods or ()),
        surcharge_check_week_cents=record.surcharge_check_week_cents,
        surcharge_check_month_cents=record.surcharge_check_month_cents,
        payment_notes=record.payment_notes,
        allowed_colors=tuple(record.allowed_colors or ()),
        required_importer=record.required_importer,
        is_esim=record.is_esim,
        additional_specs=dict(record.additional_specs or {}),
    )


class DealRepository:
    """Persistence helpers for deals, including the atomic capacity counter."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create_deal(self, fields: Mapping[str, Any]) -> DealRecord:
        values = {key: value for key, value in fields.items() if key not in _PROTECTED_COLUMNS}
        record = DealRecord(**values, sold_quantity=0)
        self.session.add(record)
        await self.session.flush()
        await self.session.refresh(record, attribute_names=["created_at", "updated_at"])
        return record

    async def get_deal(self, deal_id: int) -> DealRecord | None:
        result = await self.session.execute(select(DealRecord).where(DealRecord.id == deal_id))
        return result.scalar_one_or_none()

    async def list_deals(
        self,
        *,
        limit: int,
        offset: int,
        active_only: bool,
        product_id: str | None,
    ) -> tuple[list[DealRecord], int]:
        base: Select[tuple[DealRecord]] = select(DealRecord)
        count: Select[tuple[int]] = select(func.count(DealRecord.id))

        filters = []
        if active_only:
            filters.append(DealRecord.is_active.is_(True))
        if product_id:
            filters.append(DealRecord.product_id == product_id)

        if filters:
            base = base.where(and_(*filters))
            count = count.where(and_(*filters))

        base = base.order_by(
            DealRecord.priority.desc(), DealRecord.created_at.desc(), DealRecord.id.desc()
        )

        total = (await self.session.execute(count)).scalar_one()
        result = await self.session.execute(base.offset(offset).limit(limit))
        return list(result.scalars()), total

    async def update_deal(self, record: DealRecord, changes: Mapping[str, Any]) -> DealRecord:
        protected = _PROTECTED_COLUMNS.intersection(changes)
        if protected:
            msg = f"{sorted(protected)[0]} cannot be updated directly"
            raise ValueError(msg)
        max_quantity = changes.get("max_quantity")
        if max_quantity is not None:
            await self._set_capacity(record.id, max_quantity)
        for key, value in changes.items():
            setattr(record, key, value)
        await self.session.flush()
        await self.session.refresh(record, attribute_names=["sold_quantity", "updated_at"])
        return record

    async def _set_capacity(self, deal_id: int, max_quantity: int) -> None:
        """Lower or raise the capacity only if it still covers the current sold count."""

        stmt = (
            update(DealRecord)
            .where(DealRecord.id == deal_id, DealRecord.sold_quantity <= max_quantity)
            .values(max_quantity=max_quantity)
            .returning(DealRecord.id)
            .execution_options(synchronize_session=False)
        )
        if (await self.session.execute(stmt)).one_or_none() is None:
            msg = "maxQuantity cannot be lower than the quantity already sold"
            raise ValueError(msg)

    async def delete_deal(self, record: DealRecord) -> None:
        await self.session.delete(record)
        await self.session.flush()

    async def reserve_capacity(self, deal_id: int, quantity: int) -> ReservationResult:
        """Atomically add ``quantity`` to the sold counter of ``deal_id``.

        The capacity check and the increment happen in one conditional UPDATE,
        so concurrent reservations can never push ``sold_quantity`` past
        ``max_quantity``. Deals without a capacity always accept the increment.
        """

        if quantity <= 0:
            msg = "quantity must be positive"
            raise ValueError(msg)

        stmt = (
            update(DealRecord)
            .where(
                DealRecord.id == deal_id,
                or_(
                    DealRecord.max_quantity.is_(None),
                    DealRecord.sold_quantity + quantity <= DealRecord.max_quantity,
                ),
            )
            .values(sold_quantity=DealRecord.sold_quantity + quantity, updated_at=func.now())
            .returning(DealRecord.sold_quantity, DealRecord.max_quantity)
            .execution_options(synchronize_session=False)
        )
        row = (await self.session.execute(stmt)).one_or_none()
        if row is not None:
            sold_quantity, max_quantity = row
            return ReservationResult(
                deal_id=deal_id,
                quantity=quantity,
                sold_quantity=sold_quantity,
                max_quantity=max_quantity,
            )

        current = (
            await self.session.execute(
                select(DealRecord.sold_quantity, DealRecord.max_quantity).where(DealRecord.id == deal_id)
            )
        ).one_or_none()
        if current is None:
            raise DealNotFound(deal_id)
        sold_quantity, max_quantity = current
        raise CapacityExceeded(
            deal_id,
            requested=quantity,
            remaining=max(max_quantity - sold_quantity, 0),
        )
