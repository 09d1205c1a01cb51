"""
schemas/inventory.py — Pydantic models for inventory and alert endpoints

Business Rules:
- threshold_quantity is a non-negative decimal (fractional units allowed)
- Acknowledgement carries an optional user and note

Called by: routers/inventory.py
Depends on: pydantic
"""

from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, field_validator


def _non_negative(v: Decimal | None) -> Decimal | None:
    if v is not None and v < 0:
        raise ValueError("threshold_quantity must be >= 0")
    return v


class AlertCreate(BaseModel):
    product_id: int
    threshold_quantity: Decimal
    is_active: bool = True

    @field_validator("threshold_quantity")
    @classmethod
    def threshold_ok(cls, v: Decimal) -> Decimal:
        return _non_negative(v)


class AlertUpdate(BaseModel):
    threshold_quantity: Decimal | None = None
    is_active: bool | None = None

    @field_validator("threshold_quantity")
    @classmethod
    def threshold_ok(cls, v: Decimal | None) -> Decimal | None:
        return _non_negative(v)


class AcknowledgeIn(BaseModel):
    user: str | None = None
    note: str | None = None
