import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from prometheus_client import REGISTRY

from services.common import ServiceSettings, create_engine, dispose_engines
from services.deal_service.app.main import create_app
from services.deal_service.app.models import Base


def _run(coro):
    return asyncio.run(coro)


async def _prepare_app(tmp_path) -> FastAPI:
    db_file = tmp_path / "deals.db"
    database_url = f"sqlite+aiosqlite:///{db_file}"

    engine = create_engine(database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await engine.dispose()

    settings = ServiceSettings(
        app_name="Deal Service Test",
        enable_metrics=False,
        enable_tracing=False,
        database_url=database_url,
    )
    return create_app(settings)


def _deal_payload(**overrides: Any) -> dict[str, Any]:
    payload = {
        "title": "Galaxy S24 launch",
        "productId": "galaxy-s24",
        "priority": 5,
        "tier1Qty": 1,
        "tier1Price": "100.00",
        "tier2Qty": 5,
        "tier2Price": "90.00",
    }
    payload.update(overrides)
    return payload


def _future(hours: int = 48) -> str:
    return (datetime.now(timezone.utc) + timedelta(hours=hours)).isoformat()


class _MetricTracker:
    def __init__(self, name: str, labels: dict[str, str] | None = None) -> None:
        self.name = name
        self.labels = labels or {}
        baseline = REGISTRY.get_sample_value(name, self.labels)
        self._baseline = baseline if baseline is not None else 0.0

    def delta(self) -> float:
        current = REGISTRY.get_sample_value(self.name, self.labels)
        value = current if current is not None else 0.0
        return value - self._baseline


def test_create_and_get_deal(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                create_resp = await client.post(
                    "/deals",
                    json=_deal_payload(
                        expiresAt=_future(),
                        maxQuantity=10,
                        paymentMethods=["cash", "check_month", "cash"],
                        surchargeCheckMonth="2.50",
                    ),
                )
                assert create_resp.status_code == 201
                created = create_resp.json()
                assert created["expirationType"] == "both"
                assert created["soldQuantity"] == 0
                assert created["paymentMethods"] == ["cash", "check_month"]
                assert Decimal(created["tier2Price"]) == Decimal("90")
                assert created["card"]["status"] == "active"
                assert created["card"]["badge"]["tier"] == "fresh"
                assert Decimal(created["card"]["tiers"][1]["savings"]) == Decimal("50")
                deal_id = created["id"]

                get_resp = await client.get(f"/deals/{deal_id}")
                assert get_resp.status_code == 200
                assert get_resp.json()["id"] == deal_id
                assert get_resp.json()["maxQuantity"] == 10

                missing = await client.get("/deals/9999")
                assert missing.status_code == 404

    _run(body())
    _run(dispose_engines())


def test_authoring_validation(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                misordered = await client.post("/deals", json=_deal_payload(tier2Qty=1))
                assert misordered.status_code == 422

                orphan_tier3 = await client.post(
                    "/deals",
                    json=_deal_payload(tier2Qty=None, tier2Price=None, tier3Qty=10, tier3Price="80.00"),
                )
                assert orphan_tier3.status_code == 422

                half_tier = await client.post("/deals", json=_deal_payload(tier2Price=None))
                assert half_tier.status_code == 422

                negative = await client.post("/deals", json=_deal_payload(tier1Price="-1.00"))
                assert negative.status_code == 422

                tag_mismatch = await client.post("/deals", json=_deal_payload(expirationType="date"))
                assert tag_mismatch.status_code == 422

                unknown_method = await client.post("/deals", json=_deal_payload(paymentMethods=["crypto"]))
                assert unknown_method.status_code == 422

                blank_title = await client.post("/deals", json=_deal_payload(title="   "))
                assert blank_title.status_code == 422

    _run(body())
    _run(dispose_engines())


def test_list_orders_by_priority(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                await client.post("/deals", json=_deal_payload(title="Low", priority=1))
                await client.post("/deals", json=_deal_payload(title="Hot", priority=20))
                await client.post("/deals", json=_deal_payload(title="Off", priority=30, isActive=False))
                await client.post("/deals", json=_deal_payload(title="Other", productId="pixel-9", priority=12))

                list_resp = await client.get("/deals")
                assert list_resp.status_code == 200
                body = list_resp.json()
                assert body["total"] == 4
                assert [item["title"] for item in body["items"]] == ["Off", "Hot", "Other", "Low"]
                assert body["items"][1]["card"]["badge"]["tier"] == "hot"

                active = await client.get("/deals", params={"activeOnly": "true", "productId": "galaxy-s24"})
                assert [item["title"] for item in active.json()["items"]] == ["Hot", "Low"]
                assert active.json()["total"] == 2

                paged = await client.get("/deals", params={"limit": 1, "offset": 1})
                assert [item["title"] for item in paged.json()["items"]] == ["Hot"]

    _run(body())
    _run(dispose_engines())


def test_update_and_delete(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                created = await client.post("/deals", json=_deal_payload(maxQuantity=5))
                deal_id = created.json()["id"]
                await client.post(f"/deals/{deal_id}/reservations", json={"quantity": 3})

                patch = await client.patch(
                    f"/deals/{deal_id}",
                    json={"title": "Renamed", "tier3Qty": 10, "tier3Price": "85.00", "soldQuantity": 0},
                )
                assert patch.status_code == 200
                patched = patch.json()
                assert patched["title"] == "Renamed"
                assert patched["tier3Qty"] == 10
                assert patched["tier1Qty"] == 1
                assert patched["soldQuantity"] == 3

                clear_tier = await client.patch(f"/deals/{deal_id}", json={"tier2Qty": None, "tier2Price": None})
                assert clear_tier.status_code == 422
                assert isinstance(clear_tier.json()["detail"], list)

                misordered = await client.patch(f"/deals/{deal_id}", json={"tier2Qty": 1})
                assert misordered.status_code == 422
                errors = misordered.json()["detail"]
                assert any("tier2 quantity must be greater" in error["msg"] for error in errors)
                assert all("input" not in error for error in errors)

                unchanged = await client.get(f"/deals/{deal_id}")
                assert unchanged.json()["tier2Qty"] == 5

                shrink = await client.patch(f"/deals/{deal_id}", json={"maxQuantity": 2})
                assert shrink.status_code == 409

                uncapped = await client.patch(f"/deals/{deal_id}", json={"maxQuantity": None})
                assert uncapped.status_code == 200
                assert uncapped.json()["expirationType"] == "none"

                delete_resp = await client.delete(f"/deals/{deal_id}")
                assert delete_resp.status_code == 204

                missing = await client.get(f"/deals/{deal_id}")
                assert missing.status_code == 404

                missing_patch = await client.patch(f"/deals/{deal_id}", json={"title": "Ghost"})
                assert missing_patch.status_code == 404

    _run(body())
    _run(dispose_engines())


def test_validity_endpoint(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                deadline = datetime(2030, 1, 1, tzinfo=timezone.utc)
                created = await client.post(
                    "/deals",
                    json=_deal_payload(expirationType="date", expiresAt=deadline.isoformat()),
                )
                deal_id = created.json()["id"]

                before = await client.get(
                    f"/deals/{deal_id}/validity",
                    params={"at": (deadline - timedelta(hours=1)).isoformat()},
                )
                assert before.status_code == 200
                assert before.json() == {
                    "valid": True,
                    "status": "active",
                    "reason": None,
                    "remainingQuantity": None,
                    "timeRemainingMs": 3_600_000,
                }

                after = await client.get(
                    f"/deals/{deal_id}/validity",
                    params={"at": (deadline + timedelta(hours=1)).isoformat()},
                )
                assert after.json()["valid"] is False
                assert after.json()["status"] == "expired"
                assert after.json()["reason"] == "expired"

                missing = await client.get("/deals/9999/validity")
                assert missing.status_code == 404

    _run(body())
    _run(dispose_engines())


def test_quote_endpoint(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                created = await client.post(
                    "/deals",
                    json=_deal_payload(paymentMethods=["cash"], surchargeCheckMonth="3.00"),
                )
                deal_id = created.json()["id"]
                tracker = _MetricTracker("deal_quotes_total", {"tier": "2"})

                quote = await client.get(f"/deals/{deal_id}/quote", params={"quantity": 5})
                assert quote.status_code == 200
                body = quote.json()
                assert Decimal(body["unitPrice"]) == Decimal("90")
                assert Decimal(body["totalPrice"]) == Decimal("450")
                assert body["appliedTier"] == 2
                assert Decimal(body["savings"]) == Decimal("50")
                assert body["paymentAllowed"] is True
                assert tracker.delta() == 1

                check = await client.get(
                    f"/deals/{deal_id}/quote",
                    params={"quantity": 5, "paymentMethod": "check_month"},
                )
                assert check.json()["paymentAllowed"] is False
                assert Decimal(check.json()["surcharge"]) == Decimal("15")
                assert Decimal(check.json()["grandTotal"]) == Decimal("465")

                invalid = await client.get(f"/deals/{deal_id}/quote", params={"quantity": 0})
                assert invalid.status_code == 422

                missing = await client.get("/deals/9999/quote", params={"quantity": 1})
                assert missing.status_code == 404

    _run(body())
    _run(dispose_engines())


def test_reservations_consume_capacity(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                created = await client.post("/deals", json=_deal_payload(maxQuantity=4))
                deal_id = created.json()["id"]
                reserved = _MetricTracker("deal_reservations_total", {"outcome": "reserved"})
                rejected = _MetricTracker("deal_reservations_total", {"outcome": "capacity_exceeded"})

                first = await client.post(f"/deals/{deal_id}/reservations", json={"quantity": 3})
                assert first.status_code == 201
                assert first.json() == {
                    "dealId": deal_id,
                    "quantity": 3,
                    "soldQuantity": 3,
                    "maxQuantity": 4,
                    "remainingQuantity": 1,
                }

                too_many = await client.post(f"/deals/{deal_id}/reservations", json={"quantity": 2})
                assert too_many.status_code == 409
                assert too_many.json()["detail"]["reason"] == "sold_out"
                assert too_many.json()["detail"]["remainingQuantity"] == 1

                last = await client.post(f"/deals/{deal_id}/reservations", json={"quantity": 1})
                assert last.status_code == 201

                sold_out = await client.post(f"/deals/{deal_id}/reservations", json={"quantity": 1})
                assert sold_out.status_code == 409
                assert sold_out.json()["detail"]["remainingQuantity"] == 0

                validity = await client.get(f"/deals/{deal_id}/validity")
                assert validity.json()["status"] == "sold_out"

                assert reserved.delta() == 2
                assert rejected.delta() == 2

                zero = await client.post(f"/deals/{deal_id}/reservations", json={"quantity": 0})
                assert zero.status_code == 422

                missing = await client.post("/deals/9999/reservations", json={"quantity": 1})
                assert missing.status_code == 404

    _run(body())
    _run(dispose_engines())


def test_reservations_rejected_for_unavailable_deals(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                expired = await client.post(
                    "/deals",
                    json=_deal_payload(expiresAt=_future(hours=-1), maxQuantity=5),
                )
                inactive = await client.post("/deals", json=_deal_payload(isActive=False))
                unlimited = await client.post("/deals", json=_deal_payload())

                expired_resp = await client.post(
                    f"/deals/{expired.json()['id']}/reservations", json={"quantity": 1}
                )
                assert expired_resp.status_code == 409
                assert expired_resp.json()["detail"]["reason"] == "expired"

                inactive_resp = await client.post(
                    f"/deals/{inactive.json()['id']}/reservations", json={"quantity": 1}
                )
                assert inactive_resp.status_code == 409
                assert inactive_resp.json()["detail"]["reason"] == "inactive"

                unlimited_resp = await client.post(
                    f"/deals/{unlimited.json()['id']}/reservations", json={"quantity": 250}
                )
                assert unlimited_resp.status_code == 201
                assert unlimited_resp.json()["maxQuantity"] is None
                assert unlimited_resp.json()["remainingQuantity"] is None

                stored = await client.get(f"/deals/{expired.json()['id']}")
                assert stored.json()["soldQuantity"] == 0

    _run(body())
    _run(dispose_engines())


def test_concurrent_reservations_never_oversell(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                created = await client.post("/deals", json=_deal_payload(maxQuantity=10))
                deal_id = created.json()["id"]

                responses = await asyncio.gather(
                    *(
                        client.post(f"/deals/{deal_id}/reservations", json={"quantity": 1})
                        for _ in range(20)
                    )
                )
                codes = sorted(response.status_code for response in responses)
                assert codes == [201] * 10 + [409] * 10

                stored = await client.get(f"/deals/{deal_id}")
                assert stored.json()["soldQuantity"] == 10

    _run(body())
    _run(dispose_engines())


def test_message_endpoint(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                created = await client.post(
                    "/deals",
                    json=_deal_payload(
                        priority=18,
                        maxQuantity=8,
                        paymentMethods=["bank_transfer"],
                        allowedColors=[" Black ", ""],
                        requiredImporter="parallel",
                    ),
                )
                deal_id = created.json()["id"]

                message = await client.get(f"/deals/{deal_id}/message", params={"productName": "Galaxy S24"})
                assert message.status_code == 200
                body = message.json()
                assert body["refreshSeconds"] == 60
                text = body["message"]
                assert text.startswith("🔥 Galaxy S24 launch 🔥\nGalaxy S24\n\n")
                assert "5 units - ₪90 per unit" in text
                assert "📦 8 units left in stock!" in text
                assert "💳 Payment: Bank transfer" in text
                assert "🎨 Colors: Black" in text
                assert "✅ Parallel importer" in text

                missing = await client.get("/deals/9999/message")
                assert missing.status_code == 404

    _run(body())
    _run(dispose_engines())


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with app.router.lifespan_context(app):
        yield
