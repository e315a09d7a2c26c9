"""Deal HTTP endpoints."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import ValidationError

from services.common import ServiceSettings

from ..dependencies import get_repository, get_service, get_settings
from ..domain import CapacityExceeded, CapacityLimit, Deal, DealNotFound, PaymentMethod, PriceTier
from ..models import DealRecord
from ..pricing import from_cents, optional_from_cents, to_cents
from ..rendering import DealCard, render_card, render_message
from ..repository import DealRepository, to_snapshot
from ..schemas import (
    DealCardResponse,
    DealCreate,
    DealListResponse,
    DealResponse,
    DealUpdate,
    MessageResponse,
    QuoteResponse,
    ReservationRequest,
    ReservationResponse,
    ValidityResponse,
)
from ..services import DealService, DealUnavailable
from ..validity import status as deal_status, validate

router = APIRouter(prefix="/deals", tags=["deals"])


def _serialize_card(card: DealCard) -> dict[str, object]:
    return {
        "status": card.status,
        "badge": {"tier": card.badge.tier.value, "icon": card.badge.icon, "label": card.badge.label},
        "tiers": [
            {
                "level": tier.level,
                "minQuantity": tier.min_quantity,
                "unitPrice": tier.unit_price,
                "savings": tier.savings,
            }
            for tier in card.tiers
        ],
        "countdown": card.countdown,
        "isUrgent": card.is_urgent,
        "remainingQuantity": card.remaining_quantity,
        "isLowStock": card.is_low_stock,
    }


def _render_card(snapshot: Deal, settings: ServiceSettings) -> DealCard:
    return render_card(
        snapshot,
        low_stock_threshold=settings.deal_low_stock_threshold,
        urgent_window=timedelta(hours=settings.deal_urgent_window_hours),
    )


def _cached_snapshot(response: DealResponse) -> Deal:
    """Rebuild the fields a display card depends on from a cached deal payload."""

    tiers = [PriceTier(level=1, min_quantity=response.tier1_qty, unit_price_cents=to_cents(response.tier1_price))]
    optional = (
        (2, response.tier2_qty, response.tier2_price),
        (3, response.tier3_qty, response.tier3_price),
    )
    for level, qty, unit_price in optional:
        if qty is not None and unit_price is not None:
            tiers.append(PriceTier(level=level, min_quantity=qty, unit_price_cents=to_cents(unit_price)))
    capacity = None
    if response.max_quantity is not None:
        capacity = CapacityLimit(max_quantity=response.max_quantity, sold_quantity=response.sold_quantity)
    return Deal(
        id=response.id,
        title=response.title,
        tiers=tuple(tiers),
        priority=response.priority,
        is_active=response.is_active,
        deadline=response.expires_at,
        capacity=capacity,
    )


def _serialize(record: DealRecord, settings: ServiceSettings) -> dict[str, object]:
    snapshot = to_snapshot(record)
    card = _render_card(snapshot, settings)
    return {
        "id": record.id,
        "productId": record.product_id,
        "title": record.title,
        "description": record.description,
        "notes": record.notes,
        "internalNotes": record.internal_notes,
        "priority": record.priority,
        "tier1Qty": record.tier1_qty,
        "tier1Price": from_cents(record.tier1_price_cents),
        "tier2Qty": record.tier2_qty,
        "tier2Price": optional_from_cents(record.tier2_price_cents),
        "tier3Qty": record.tier3_qty,
        "tier3Price": optional_from_cents(record.tier3_price_cents),
        "expirationType": snapshot.expiration_type,
        "expiresAt": snapshot.deadline,
        "maxQuantity": record.max_quantity,
        "soldQuantity": record.sold_quantity,
        "paymentMethods": record.payment_methods or [],
        "surchargeCheckWeek": optional_from_cents(record.surcharge_check_week_cents),
        "surchargeCheckMonth": optional_from_cents(record.surcharge_check_month_cents),
        "paymentNotes": record.payment_notes,
        "allowedColors": record.allowed_colors,
        "requiredImporter": record.required_importer,
        "isEsim": record.is_esim,
        "additionalSpecs": record.additional_specs,
        "isActive": record.is_active,
        "createdAt": record.created_at,
        "updatedAt": record.updated_at,
        "card": _serialize_card(card),
    }


async def _get_or_404(repository: DealRepository, deal_id: int) -> DealRecord:
    record = await repository.get_deal(deal_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Deal not found")
    return record


@router.post("", response_model=DealResponse, status_code=status.HTTP_201_CREATED)
async def create_deal(
    payload: DealCreate,
    service: DealService = Depends(get_service),
    settings: ServiceSettings = Depends(get_settings),
) -> DealResponse:
    record = await service.create_deal(payload)
    return DealResponse.model_validate(_serialize(record, settings))


@router.get("", response_model=DealListResponse)
async def list_deals(
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    active_only: bool = Query(default=False, alias="activeOnly"),
    product_id: str | None = Query(default=None, alias="productId"),
    repository: DealRepository = Depends(get_repository),
    settings: ServiceSettings = Depends(get_settings),
) -> DealListResponse:
    records, total = await repository.list_deals(
        limit=limit,
        offset=offset,
        active_only=active_only,
        product_id=product_id.strip() if product_id else None,
    )
    items = [DealResponse.model_validate(_serialize(record, settings)) for record in records]
    return DealListResponse(items=items, total=total)


@router.get("/{deal_id}", response_model=DealResponse)
async def get_deal(
    deal_id: int,
    service: DealService = Depends(get_service),
    settings: ServiceSettings = Depends(get_settings),
) -> DealResponse:
    if service.cache is not None:
        cached = await service.cache.get(deal_id)
        if cached is not None:
            # Cached fields may lag by the cache TTL; the card always reflects the current time.
            response = DealResponse.model_validate(cached)
            card = _render_card(_cached_snapshot(response), settings)
            return response.model_copy(
                update={"card": DealCardResponse.model_validate(_serialize_card(card))}
            )

    record = await _get_or_404(service.repository, deal_id)
    response = DealResponse.model_validate(_serialize(record, settings))
    if service.cache is not None:
        await service.cache.set(deal_id, response.model_dump(mode="json", by_alias=True))
    return response


@router.patch("/{deal_id}", response_model=DealResponse)
async def update_deal(
    deal_id: int,
    payload: DealUpdate,
    service: DealService = Depends(get_service),
    settings: ServiceSettings = Depends(get_settings),
) -> DealResponse:
    record = await _get_or_404(service.repository, deal_id)
    try:
        updated = await service.update_deal(record, payload)
    except ValidationError as exc:
        errors = exc.errors(include_url=False, include_context=False, include_input=False)
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=errors) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return DealResponse.model_validate(_serialize(updated, settings))


@router.delete("/{deal_id}")
async def delete_deal(
    deal_id: int,
    service: DealService = Depends(get_service),
) -> Response:
    record = await service.repository.get_deal(deal_id)
    if record is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    await service.delete_deal(record)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{deal_id}/validity", response_model=ValidityResponse)
async def get_validity(
    deal_id: int,
    at: datetime | None = Query(default=None),
    repository: DealRepository = Depends(get_repository),
) -> ValidityResponse:
    record = await _get_or_404(repository, deal_id)
    snapshot = to_snapshot(record)
    now = at or datetime.now(timezone.utc)
    result = validate(snapshot, now)
    return ValidityResponse(
        valid=result.valid,
        status=deal_status(snapshot, now),
        reason=result.reason,
        remaining_quantity=result.remaining_quantity,
        time_remaining_ms=result.time_remaining_ms,
    )


@router.get("/{deal_id}/quote", response_model=QuoteResponse)
async def get_quote(
    deal_id: int,
    quantity: int = Query(..., ge=1),
    payment_method: PaymentMethod | None = Query(default=None, alias="paymentMethod"),
    service: DealService = Depends(get_service),
) -> QuoteResponse:
    try:
        result = await service.quote(deal_id, quantity, payment_method)
    except DealNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Deal not found") from exc
    return QuoteResponse(
        quantity=result.price.quantity,
        unit_price=from_cents(result.price.unit_price_cents),
        total_price=from_cents(result.price.total_price_cents),
        applied_tier=result.price.applied_tier,
        savings=optional_from_cents(result.price.savings_cents),
        payment_method=result.payment_method,
        payment_allowed=result.payment_allowed,
        surcharge=from_cents(result.surcharge_cents),
        grand_total=from_cents(result.grand_total_cents),
    )


@router.post("/{deal_id}/reservations", response_model=ReservationResponse, status_code=status.HTTP_201_CREATED)
async def reserve_capacity(
    deal_id: int,
    payload: ReservationRequest,
    service: DealService = Depends(get_service),
) -> ReservationResponse:
    try:
        result = await service.commit_purchase(deal_id, payload.quantity)
    except DealNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Deal not found") from exc
    except DealUnavailable as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"reason": exc.reason.value, "message": str(exc)},
        ) from exc
    except CapacityExceeded as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"reason": "sold_out", "message": str(exc), "remainingQuantity": exc.remaining},
        ) from exc
    return ReservationResponse(
        deal_id=result.deal_id,
        quantity=result.quantity,
        sold_quantity=result.sold_quantity,
        max_quantity=result.max_quantity,
        remaining_quantity=result.remaining_quantity,
    )


@router.get("/{deal_id}/message", response_model=MessageResponse)
async def get_message(
    deal_id: int,
    product_name: str | None = Query(default=None, alias="productName", max_length=200),
    repository: DealRepository = Depends(get_repository),
    settings: ServiceSettings = Depends(get_settings),
) -> MessageResponse:
    record = await _get_or_404(repository, deal_id)
    message = render_message(
        to_snapshot(record),
        product_name.strip() if product_name else None,
        currency=settings.deal_currency_symbol,
    )
    return MessageResponse(message=message, refresh_seconds=settings.deal_countdown_refresh_seconds)
