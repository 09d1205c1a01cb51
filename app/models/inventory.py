"""Inventory models — ERP stock snapshots and threshold alerts."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship

from ..database import UTCDateTime
from .base import Base


def _now():
    return datetime.now(timezone.utc)


class InventorySnapshot(Base):
    """Latest stock figures reported by the ERP — refreshed only on sync.

    quantity_available is taken verbatim from the ERP, never derived here.
    """

    __tablename__ = "inventory_snapshots"
    id = Column(Integer, primary_key=True)
    organization_id = Column(String(64), nullable=False, index=True)
    product_id = Column(Integer, nullable=False, unique=True)
    external_id = Column(String(100))
    product_code = Column(String(100))
    quantity_on_hand = Column(Numeric(14, 4), default=0)
    quantity_reserved = Column(Numeric(14, 4), default=0)
    quantity_available = Column(Numeric(14, 4))  # NULL until the ERP reports a figure
    warehouse_id = Column(String(100))
    warehouse_name = Column(String(255))
    last_updated = Column(UTCDateTime, default=_now)


class InventoryAlert(Base):
    """Low-stock threshold rule for one product.

    is_triggered is derived by the evaluation pass; it is not an
    independently authoritative flag.
    """

    __tablename__ = "inventory_alerts"
    id = Column(Integer, primary_key=True)
    organization_id = Column(String(64), nullable=False, index=True)
    product_id = Column(Integer, nullable=False)
    threshold_quantity = Column(Numeric(14, 4), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    is_triggered = Column(Boolean, nullable=False, default=False)
    last_triggered_at = Column(UTCDateTime)
    last_evaluated_at = Column(UTCDateTime)
    acknowledged_at = Column(UTCDateTime)
    created_at = Column(UTCDateTime, default=_now)
    updated_at = Column(UTCDateTime, default=_now, onupdate=_now)

    acknowledgements = relationship(
        "AlertAcknowledgement", back_populates="alert", cascade="all, delete-orphan"
    )

    __table_args__ = (Index("ix_inventory_alerts_active", "is_active", "product_id"),)


class AlertAcknowledgement(Base):
    __tablename__ = "alert_acknowledgements"
    id = Column(Integer, primary_key=True)
    alert_id = Column(
        Integer, ForeignKey("inventory_alerts.id", ondelete="CASCADE"), nullable=False
    )
    acknowledged_by = Column(String(255))
    note = Column(Text)
    created_at = Column(UTCDateTime, default=_now)

    alert = relationship("InventoryAlert", back_populates="acknowledgements")
