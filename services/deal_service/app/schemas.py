"""Pydantic schemas for the deal service."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, PositiveInt, field_validator, model_validator

from .domain import DealStatus, ExpirationType, InvalidReason, PaymentMethod, ensure_utc
from .pricing import to_cents

Money = Decimal
Importer = Literal["official", "parallel"]


class DealFields(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    product_id: str | None = Field(default=None, max_length=64, alias="productId")
    description: str | None = None
    notes: str | None = None
    internal_notes: str | None = Field(default=None, alias="internalNotes")
    priority: int = Field(default=0, ge=-1000, le=1000)

    tier1_qty: PositiveInt = Field(default=1, alias="tier1Qty")
    tier1_price: Money = Field(ge=Decimal("0"), max_digits=12, decimal_places=2, alias="tier1Price")
    tier2_qty: PositiveInt | None = Field(default=None, alias="tier2Qty")
    tier2_price: Money | None = Field(default=None, ge=Decimal("0"), max_digits=12, decimal_places=2, alias="tier2Price")
    tier3_qty: PositiveInt | None = Field(default=None, alias="tier3Qty")
    tier3_price: Money | None = Field(default=None, ge=Decimal("0"), max_digits=12, decimal_places=2, alias="tier3Price")

    expiration_type: ExpirationType | None = Field(default=None, alias="expirationType")
    expires_at: datetime | None = Field(default=None, alias="expiresAt")
    max_quantity: PositiveInt | None = Field(default=None, alias="maxQuantity")

    payment_methods: list[PaymentMethod] = Field(default_factory=list, alias="paymentMethods")
    surcharge_check_week: Money | None = Field(
        default=None, ge=Decimal("0"), max_digits=12, decimal_places=2, alias="surchargeCheckWeek"
    )
    surcharge_check_month: Money | None = Field(
        default=None, ge=Decimal("0"), max_digits=12, decimal_places=2, alias="surchargeCheckMonth"
    )
    payment_notes: str | None = Field(default=None, alias="paymentNotes")

    allowed_colors: list[str] | None = Field(default=None, alias="allowedColors")
    required_importer: Importer | None = Field(default=None, alias="requiredImporter")
    is_esim: bool = Field(default=False, alias="isEsim")
    additional_specs: dict[str, Any] | None = Field(default=None, alias="additionalSpecs")

    is_active: bool = Field(default=True, alias="isActive")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("title")
    @classmethod
    def _clean_title(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            msg = "title must be non-empty"
            raise ValueError(msg)
        return cleaned

    @field_validator("product_id")
    @classmethod
    def _clean_product(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None

    @field_validator("payment_methods")
    @classmethod
    def _dedupe_methods(cls, value: list[PaymentMethod]) -> list[PaymentMethod]:
        return list(dict.fromkeys(value))

    @field_validator("allowed_colors")
    @classmethod
    def _clean_colors(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return None
        cleaned = [color.strip() for color in value if color.strip()]
        return cleaned or None

    @model_validator(mode="after")
    def _check_tiers(self) -> DealFields:
        if (self.tier2_qty is None) != (self.tier2_price is None):
            msg = "tier2 requires both quantity and price"
            raise ValueError(msg)
        if (self.tier3_qty is None) != (self.tier3_price is None):
            msg = "tier3 requires both quantity and price"
            raise ValueError(msg)
        if self.tier3_qty is not None and self.tier2_qty is None:
            msg = "tier3 requires tier2"
            raise ValueError(msg)
        if self.tier2_qty is not None and self.tier2_qty <= self.tier1_qty:
            msg = "tier2 quantity must be greater than tier1 quantity"
            raise ValueError(msg)
        if self.tier3_qty is not None and self.tier2_qty is not None and self.tier3_qty <= self.tier2_qty:
            msg = "tier3 quantity must be greater than tier2 quantity"
            raise ValueError(msg)
        return self

    @model_validator(mode="after")
    def _check_expiration(self) -> DealFields:
        declared = self.expiration_type
        if declared is None:
            return self
        wants_date = declared in (ExpirationType.DATE, ExpirationType.BOTH)
        wants_quantity = declared in (ExpirationType.QUANTITY, ExpirationType.BOTH)
        if wants_date != (self.expires_at is not None):
            msg = f"expiresAt must be {'set' if wants_date else 'unset'} for expirationType {declared.value}"
            raise ValueError(msg)
        if wants_quantity != (self.max_quantity is not None):
            msg = f"maxQuantity must be {'set' if wants_quantity else 'unset'} for expirationType {declared.value}"
            raise ValueError(msg)
        return self

    def to_columns(self) -> dict[str, Any]:
        """Map the validated payload onto ``DealRecord`` column values."""

        def cents(amount: Decimal | None) -> int | None:
            return to_cents(amount) if amount is not None else None

        return {
            "title": self.title,
            "product_id": self.product_id,
            "description": self.description,
            "notes": self.notes,
            "internal_notes": self.internal_notes,
            "priority": self.priority,
            "tier1_qty": self.tier1_qty,
            "tier1_price_cents": to_cents(self.tier1_price),
            "tier2_qty": self.tier2_qty,
            "tier2_price_cents": cents(self.tier2_price),
            "tier3_qty": self.tier3_qty,
            "tier3_price_cents": cents(self.tier3_price),
            "expires_at": ensure_utc(self.expires_at) if self.expires_at is not None else None,
            "max_quantity": self.max_quantity,
            "payment_methods": [method.value for method in self.payment_methods],
            "surcharge_check_week_cents": cents(self.surcharge_check_week),
            "surcharge_check_month_cents": cents(self.surcharge_check_month),
            "payment_notes": self.payment_notes,
            "allowed_colors": self.allowed_colors,
            "required_importer": self.required_importer,
            "is_esim": self.is_esim,
            "additional_specs": self.additional_specs,
            "is_active": self.is_active,
        }


class DealCreate(DealFields):
    pass


class DealUpdate(BaseModel):
    """Partial update; merged onto the stored deal and re-validated as a whole."""

    title: str | None = Field(default=None, min_length=1, max_length=200)
    product_id: str | None = Field(default=None, max_length=64, alias="productId")
    description: str | None = None
    notes: str | None = None
    internal_notes: str | None = Field(default=None, alias="internalNotes")
    priority: int | None = Field(default=None, ge=-1000, le=1000)
    tier1_qty: PositiveInt | None = Field(default=None, alias="tier1Qty")
    tier1_price: Money | None = Field(default=None, ge=Decimal("0"), alias="tier1Price")
    tier2_qty: PositiveInt | None = Field(default=None, alias="tier2Qty")
    tier2_price: Money | None = Field(default=None, ge=Decimal("0"), alias="tier2Price")
    tier3_qty: PositiveInt | None = Field(default=None, alias="tier3Qty")
    tier3_price: Money | None = Field(default=None, ge=Decimal("0"), alias="tier3Price")
    expiration_type: ExpirationType | None = Field(default=None, alias="expirationType")
    expires_at: datetime | None = Field(default=None, alias="expiresAt")
    max_quantity: PositiveInt | None = Field(default=None, alias="maxQuantity")
    payment_methods: list[PaymentMethod] | None = Field(default=None, alias="paymentMethods")
    surcharge_check_week: Money | None = Field(default=None, ge=Decimal("0"), alias="surchargeCheckWeek")
    surcharge_check_month: Money | None = Field(default=None, ge=Decimal("0"), alias="surchargeCheckMonth")
    payment_notes: str | None = Field(default=None, alias="paymentNotes")
    allowed_colors: list[str] | None = Field(default=None, alias="allowedColors")
    required_importer: Importer | None = Field(default=None, alias="requiredImporter")
    is_esim: bool | None = Field(default=None, alias="isEsim")
    additional_specs: dict[str, Any] | None = Field(default=None, alias="additionalSpecs")
    is_active: bool | None = Field(default=None, alias="isActive")

    model_config = ConfigDict(populate_by_name=True)


class TierResponse(BaseModel):
    level: int
    min_quantity: int = Field(alias="minQuantity")
    unit_price: Decimal = Field(alias="unitPrice")
    savings: Decimal | None

    model_config = ConfigDict(populate_by_name=True)


class BadgeResponse(BaseModel):
    tier: str
    icon: str
    label: str


class DealCardResponse(BaseModel):
    status: DealStatus
    badge: BadgeResponse
    tiers: list[TierResponse]
    countdown: str | None
    is_urgent: bool = Field(alias="isUrgent")
    remaining_quantity: int | None = Field(alias="remainingQuantity")
    is_low_stock: bool = Field(alias="isLowStock")

    model_config = ConfigDict(populate_by_name=True)


class DealResponse(BaseModel):
    id: PositiveInt
    product_id: str | None = Field(alias="productId")
    title: str
    description: str | None
    notes: str | None
    internal_notes: str | None = Field(alias="internalNotes")
    priority: int
    tier1_qty: int = Field(alias="tier1Qty")
    tier1_price: Decimal = Field(alias="tier1Price")
    tier2_qty: int | None = Field(alias="tier2Qty")
    tier2_price: Decimal | None = Field(alias="tier2Price")
    tier3_qty: int | None = Field(alias="tier3Qty")
    tier3_price: Decimal | None = Field(alias="tier3Price")
    expiration_type: ExpirationType = Field(alias="expirationType")
    expires_at: datetime | None = Field(alias="expiresAt")
    max_quantity: int | None = Field(alias="maxQuantity")
    sold_quantity: NonNegativeInt = Field(alias="soldQuantity")
    payment_methods: list[PaymentMethod] = Field(alias="paymentMethods")
    surcharge_check_week: Decimal | None = Field(alias="surchargeCheckWeek")
    surcharge_check_month: Decimal | None = Field(alias="surchargeCheckMonth")
    payment_notes: str | None = Field(alias="paymentNotes")
    allowed_colors: list[str] | None = Field(alias="allowedColors")
    required_importer: str | None = Field(alias="requiredImporter")
    is_esim: bool = Field(alias="isEsim")
    additional_specs: dict[str, Any] | None = Field(alias="additionalSpecs")
    is_active: bool = Field(alias="isActive")
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")
    card: DealCardResponse

    model_config = ConfigDict(populate_by_name=True)


class DealListResponse(BaseModel):
    items: list[DealResponse]
    total: int


class ValidityResponse(BaseModel):
    valid: bool
    status: DealStatus
    reason: InvalidReason | None
    remaining_quantity: int | None = Field(alias="remainingQuantity")
    time_remaining_ms: int | None = Field(alias="timeRemainingMs")

    model_config = ConfigDict(populate_by_name=True)


class QuoteResponse(BaseModel):
    quantity: int
    unit_price: Decimal = Field(alias="unitPrice")
    total_price: Decimal = Field(alias="totalPrice")
    applied_tier: int = Field(alias="appliedTier")
    savings: Decimal | None
    payment_method: PaymentMethod | None = Field(alias="paymentMethod")
    payment_allowed: bool = Field(alias="paymentAllowed")
    surcharge: Decimal
    grand_total: Decimal = Field(alias="grandTotal")

    model_config = ConfigDict(populate_by_name=True)


class ReservationRequest(BaseModel):
    quantity: PositiveInt


class ReservationResponse(BaseModel):
    deal_id: int = Field(alias="dealId")
    quantity: int
    sold_quantity: int = Field(alias="soldQuantity")
    max_quantity: int | None = Field(alias="maxQuantity")
    remaining_quantity: int | None = Field(alias="remainingQuantity")

    model_config = ConfigDict(populate_by_name=True)


class MessageResponse(BaseModel):
    message: str
    refresh_seconds: int = Field(alias="refreshSeconds")

    model_config = ConfigDict(populate_by_name=True)
