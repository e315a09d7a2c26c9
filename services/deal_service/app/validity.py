"""Validity checks for deals: active flag, deadline and capacity."""

from __future__ import annotations

from datetime import datetime, timezone

from .domain import Countdown, Deal, DealStatus, InvalidReason, ValidityResult, ensure_utc

_STATUS_BY_REASON = {
    InvalidReason.INACTIVE: DealStatus.INACTIVE,
    InvalidReason.EXPIRED: DealStatus.EXPIRED,
    InvalidReason.SOLD_OUT: DealStatus.SOLD_OUT,
}


def _now(now: datetime | None) -> datetime:
    return ensure_utc(now) if now is not None else datetime.now(timezone.utc)


def _milliseconds_between(start: datetime, end: datetime) -> int:
    delta = end - start
    return (delta.days * 86_400 + delta.seconds) * 1000 + delta.microseconds // 1000


def validate(deal: Deal, now: datetime | None = None) -> ValidityResult:
    """Decide whether ``deal`` can be purchased at ``now``.

    Checks run in a fixed order: the active flag short-circuits everything, then
    the deadline, then the capacity. When a deal is both past its deadline and
    sold out the reported reason is ``expired``.
    """

    if not deal.is_active:
        return ValidityResult(valid=False, reason=InvalidReason.INACTIVE)

    current = _now(now)
    time_remaining_ms: int | None = None
    if deal.deadline is not None:
        if current > deal.deadline:
            return ValidityResult(valid=False, reason=InvalidReason.EXPIRED)
        time_remaining_ms = _milliseconds_between(current, deal.deadline)

    remaining_quantity: int | None = None
    if deal.capacity is not None:
        if deal.capacity.sold_quantity >= deal.capacity.max_quantity:
            return ValidityResult(valid=False, reason=InvalidReason.SOLD_OUT)
        remaining_quantity = deal.capacity.remaining

    return ValidityResult(
        valid=True,
        remaining_quantity=remaining_quantity,
        time_remaining_ms=time_remaining_ms,
    )


def status(deal: Deal, now: datetime | None = None) -> DealStatus:
    result = validate(deal, now)
    if result.valid or result.reason is None:
        return DealStatus.ACTIVE
    return _STATUS_BY_REASON[result.reason]


def time_remaining(deadline: datetime, now: datetime | None = None) -> Countdown:
    """Split the time left until ``deadline`` into whole days/hours/minutes/seconds."""

    remaining_ms = _milliseconds_between(_now(now), ensure_utc(deadline))
    if remaining_ms <= 0:
        return Countdown(days=0, hours=0, minutes=0, seconds=0, total_seconds=0)

    total_seconds = remaining_ms // 1000
    days, rest = divmod(total_seconds, 86_400)
    hours, rest = divmod(rest, 3_600)
    minutes, seconds = divmod(rest, 60)
    return Countdown(
        days=days,
        hours=hours,
        minutes=minutes,
        seconds=seconds,
        total_seconds=total_seconds,
    )
