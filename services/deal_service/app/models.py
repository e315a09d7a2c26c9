"""SQLAlchemy models for the deal service."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, CheckConstraint, DateTime, Integer, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for deal ORM models."""


class DealRecord(Base):
    __tablename__ = "deals"
    __table_args__ = (
        CheckConstraint("sold_quantity >= 0", name="ck_deal_sold_non_negative"),
        CheckConstraint(
            "max_quantity IS NULL OR sold_quantity <= max_quantity",
            name="ck_deal_sold_within_capacity",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    internal_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    tier1_qty: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    tier1_price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    tier2_qty: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tier2_price_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tier3_qty: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tier3_price_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)

    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    max_quantity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    sold_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    payment_methods: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    surcharge_check_week_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    surcharge_check_month_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    payment_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    allowed_colors: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    required_importer: Mapped[str | None] = mapped_column(String(16), nullable=True)
    is_esim: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
    additional_specs: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )
