"""Prometheus metrics for the deal service."""

from __future__ import annotations

from typing import Final

from prometheus_client import Counter, Histogram


DEAL_RESERVATIONS_TOTAL: Final = Counter(
    "deal_reservations_total",
    "Number of capacity reservation attempts by outcome.",
    labelnames=("outcome",),
)

DEAL_RESERVED_UNITS_TOTAL: Final = Counter(
    "deal_reserved_units_total",
    "Units successfully reserved against deal capacity.",
)

DEAL_RESERVATION_SECONDS: Final = Histogram(
    "deal_reservation_seconds",
    "Latency of the atomic capacity reservation.",
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2, 5),
)

DEAL_QUOTES_TOTAL: Final = Counter(
    "deal_quotes_total",
    "Number of price quotes by applied tier.",
    labelnames=("tier",),
)

DEAL_CACHE_EVENTS_TOTAL: Final = Counter(
    "deal_cache_events_total",
    "Count of deal display cache interactions.",
    labelnames=("event",),
)
