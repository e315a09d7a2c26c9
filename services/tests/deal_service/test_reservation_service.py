import asyncio
import logging
from decimal import Decimal

import pytest
from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from services.common import (
    ServiceSettings,
    build_app,
    create_schema,
    dispose_engines,
    get_session_factory,
    lifespan_session,
)
from services.deal_service.app.domain import CapacityExceeded, DealNotFound, ReservationResult
from services.deal_service.app.models import Base
from services.deal_service.app.repository import DealRepository
from services.deal_service.app.schemas import DealCreate, DealUpdate
from services.deal_service.app.services import DealService


async def _create_deal(database_url: str, **fields) -> int:
    await create_schema(database_url, Base.metadata)
    payload = DealCreate(title="Flash sale", tier1_price=Decimal("1.00"), **fields)
    async with lifespan_session(get_session_factory(database_url)) as session:
        record = await DealService(DealRepository(session)).create_deal(payload)
        return record.id


async def _reserve(database_url: str, deal_id: int, quantity: int) -> ReservationResult:
    async with lifespan_session(get_session_factory(database_url)) as session:
        return await DealService(DealRepository(session)).reserve(deal_id, quantity)


async def _sold_quantity(database_url: str, deal_id: int) -> int:
    async with lifespan_session(get_session_factory(database_url)) as session:
        record = await DealRepository(session).get_deal(deal_id)
        assert record is not None
        return record.sold_quantity


def test_concurrent_reserve_against_capacity(tmp_path) -> None:
    database_url = f"sqlite+aiosqlite:///{tmp_path / 'reserve.db'}"

    async def body() -> None:
        deal_id = await _create_deal(database_url, max_quantity=10)

        outcomes = await asyncio.gather(
            *(_reserve(database_url, deal_id, 1) for _ in range(20)),
            return_exceptions=True,
        )

        successes = [outcome for outcome in outcomes if isinstance(outcome, ReservationResult)]
        failures = [outcome for outcome in outcomes if isinstance(outcome, CapacityExceeded)]
        assert len(successes) == 10
        assert len(failures) == 10
        assert sorted(result.sold_quantity for result in successes) == list(range(1, 11))
        assert all(failure.remaining == 0 for failure in failures)
        assert await _sold_quantity(database_url, deal_id) == 10

        await dispose_engines()

    asyncio.run(body())


def test_concurrent_multi_unit_reservations_fill_exactly(tmp_path) -> None:
    database_url = f"sqlite+aiosqlite:///{tmp_path / 'reserve.db'}"

    async def body() -> None:
        deal_id = await _create_deal(database_url, max_quantity=7)

        outcomes = await asyncio.gather(
            *(_reserve(database_url, deal_id, 3) for _ in range(5)),
            return_exceptions=True,
        )

        accepted = sum(outcome.quantity for outcome in outcomes if isinstance(outcome, ReservationResult))
        assert accepted == 6
        assert await _sold_quantity(database_url, deal_id) == 6

        last = await _reserve(database_url, deal_id, 1)
        assert last.remaining_quantity == 0

        await dispose_engines()

    asyncio.run(body())


def test_reserve_unknown_deal(tmp_path) -> None:
    database_url = f"sqlite+aiosqlite:///{tmp_path / 'reserve.db'}"

    async def body() -> None:
        await create_schema(database_url, Base.metadata)
        with pytest.raises(DealNotFound):
            await _reserve(database_url, 404, 1)
        await dispose_engines()

    asyncio.run(body())


def test_capacity_update_checks_current_sold_quantity(tmp_path) -> None:
    database_url = f"sqlite+aiosqlite:///{tmp_path / 'reserve.db'}"

    async def body() -> None:
        deal_id = await _create_deal(database_url, max_quantity=10)
        session_factory = get_session_factory(database_url)

        with pytest.raises(ValueError, match="lower than the quantity already sold"):
            async with lifespan_session(session_factory) as session:
                service = DealService(DealRepository(session))
                record = await service.repository.get_deal(deal_id)
                assert record is not None
                assert record.sold_quantity == 0
                await _reserve(database_url, deal_id, 5)
                await service.update_deal(record, DealUpdate(max_quantity=4))

        assert await _sold_quantity(database_url, deal_id) == 5

        async with lifespan_session(session_factory) as session:
            service = DealService(DealRepository(session))
            record = await service.repository.get_deal(deal_id)
            assert record is not None
            await _reserve(database_url, deal_id, 1)
            updated = await service.update_deal(record, DealUpdate(max_quantity=6))
            assert updated.max_quantity == 6
            assert updated.sold_quantity == 6

        with pytest.raises(CapacityExceeded):
            await _reserve(database_url, deal_id, 1)

        await dispose_engines()

    asyncio.run(body())


def test_reserve_logs_and_traces(tmp_path, caplog: pytest.LogCaptureFixture) -> None:
    build_app(ServiceSettings(enable_tracing=True, enable_metrics=False, app_name="Deal Trace Test"))
    provider = trace.get_tracer_provider()
    assert isinstance(provider, TracerProvider)
    exporter = InMemorySpanExporter()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    database_url = f"sqlite+aiosqlite:///{tmp_path / 'reserve.db'}"

    async def body() -> None:
        deal_id = await _create_deal(database_url, max_quantity=1)
        with caplog.at_level(logging.INFO, logger="services.deal_service.app.services"):
            await _reserve(database_url, deal_id, 1)
            with pytest.raises(CapacityExceeded):
                await _reserve(database_url, deal_id, 1)
        await dispose_engines()

    asyncio.run(body())

    spans = [span for span in exporter.get_finished_spans() if span.name == "deal.reserve"]
    assert [span.attributes["deal.outcome"] for span in spans] == ["reserved", "capacity_exceeded"]
    levels = [record.levelno for record in caplog.records if record.name == "services.deal_service.app.services"]
    assert logging.INFO in levels
    assert logging.WARNING in levels
