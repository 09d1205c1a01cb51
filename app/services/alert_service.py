"""Inventory alerts — low-stock thresholds evaluated against ERP snapshots.

Each alert is one of four combinations of {active, inactive} ×
{triggered, untriggered}. Only active alerts are evaluated; an inactive
alert keeps whatever is_triggered value it had when it was switched off.

Business Rules:
- Triggered when snapshot.quantity_available <= threshold_quantity
  (inclusive, Decimal comparison, fractional units allowed)
- is_triggered is recomputed on every pass; there is no explicit "untrigger"
- Alerts whose product has no snapshot yet are skipped and left as they are
- Acknowledging records who/when but changes neither is_active nor
  is_triggered; the next pass re-triggers while stock stays low
- Each untriggered → triggered flip is written to the integration log

Called by: routers/inventory.py, scheduler.py
Depends on: models (InventoryAlert, AlertAcknowledgement, InventorySnapshot),
            services/integration_log.py
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy.orm import Session

from ..models import AlertAcknowledgement, InventoryAlert, InventorySnapshot, Product
from ..utils import safe_decimal, safe_str
from . import integration_log

log = logging.getLogger("erpsync.alerts")


class AlertError(ValueError):
    """Invalid alert input (unknown product, negative threshold)."""


def evaluate(threshold, quantity_available) -> bool:
    """True when available stock is at or below the threshold."""
    return Decimal(quantity_available) <= Decimal(threshold)


def run_evaluation_pass(db: Session, organization_id: str | None = None) -> dict:
    """Re-evaluate every active alert against the latest snapshot.

    Scoped to one organization when organization_id is given, otherwise all.
    """
    counts = {"evaluated": 0, "triggered": 0, "cleared": 0, "skipped": 0}
    now = datetime.now(timezone.utc)

    q = (
        db.query(InventoryAlert, InventorySnapshot)
        .outerjoin(InventorySnapshot, InventorySnapshot.product_id == InventoryAlert.product_id)
        .filter(InventoryAlert.is_active.is_(True))
    )
    if organization_id:
        q = q.filter(InventoryAlert.organization_id == organization_id)

    flipped_on = []
    for alert, snap in q.order_by(InventoryAlert.id).all():
        if snap is None or snap.quantity_available is None:
            counts["skipped"] += 1
            continue

        counts["evaluated"] += 1
        triggered = evaluate(alert.threshold_quantity, snap.quantity_available)
        if triggered and not alert.is_triggered:
            alert.last_triggered_at = now
            flipped_on.append((alert, snap.quantity_available))
        if triggered:
            counts["triggered"] += 1
        elif alert.is_triggered:
            counts["cleared"] += 1
        alert.is_triggered = triggered
        alert.last_evaluated_at = now

    db.commit()

    for alert, available in flipped_on:
        integration_log.record(
            db, "warning", "alert",
            f"Low stock: product {alert.product_id} has {safe_str(Decimal(available))} available "
            f"(threshold {safe_str(Decimal(alert.threshold_quantity))})",
            organization_id=alert.organization_id,
            entity_type="product", local_id=alert.product_id,
            details={"alert_id": alert.id},
        )

    if counts["evaluated"] or counts["skipped"]:
        log.info(f"Alert pass: {counts}")
    return counts


# ── CRUD ──────────────────────────────────────────────────────────────


def _threshold(value) -> Decimal:
    threshold = safe_decimal(value)
    if threshold is None or threshold < 0:
        raise AlertError("threshold_quantity must be a non-negative number")
    return threshold


def get_alert(db: Session, organization_id: str, alert_id: int) -> InventoryAlert | None:
    return db.query(InventoryAlert).filter_by(id=alert_id, organization_id=organization_id).first()


def create_alert(db: Session, organization_id: str, product_id: int, threshold_quantity,
                 is_active: bool = True) -> InventoryAlert:
    product = db.query(Product).filter_by(id=product_id, organization_id=organization_id).first()
    if product is None:
        raise AlertError(f"Product {product_id} not found")
    alert = InventoryAlert(
        organization_id=organization_id,
        product_id=product_id,
        threshold_quantity=_threshold(threshold_quantity),
        is_active=is_active,
        is_triggered=False,
    )
    db.add(alert)
    db.commit()
    db.refresh(alert)
    return alert


def update_alert(db: Session, alert: InventoryAlert, threshold_quantity=None,
                 is_active: bool | None = None) -> InventoryAlert:
    """Change threshold or active flag. is_triggered waits for the next pass."""
    if threshold_quantity is not None:
        alert.threshold_quantity = _threshold(threshold_quantity)
    if is_active is not None:
        alert.is_active = is_active
    db.commit()
    db.refresh(alert)
    return alert


def delete_alert(db: Session, alert: InventoryAlert) -> None:
    db.delete(alert)
    db.commit()


def list_alerts(db: Session, organization_id: str, triggered_only: bool = False,
                active_only: bool = False) -> list[InventoryAlert]:
    q = db.query(InventoryAlert).filter(InventoryAlert.organization_id == organization_id)
    if triggered_only:
        q = q.filter(InventoryAlert.is_triggered.is_(True))
    if active_only:
        q = q.filter(InventoryAlert.is_active.is_(True))
    return q.order_by(InventoryAlert.id).all()


def acknowledge_alert(db: Session, alert: InventoryAlert, user: str | None = None,
                      note: str | None = None) -> AlertAcknowledgement:
    ack = AlertAcknowledgement(alert_id=alert.id, acknowledged_by=user, note=note)
    db.add(ack)
    alert.acknowledged_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(ack)
    return ack


def alert_to_dict(alert: InventoryAlert) -> dict:
    return {
        "id": alert.id,
        "product_id": alert.product_id,
        "threshold_quantity": safe_str(Decimal(alert.threshold_quantity)),
        "is_active": bool(alert.is_active),
        "is_triggered": bool(alert.is_triggered),
        "last_triggered_at": alert.last_triggered_at.isoformat() if alert.last_triggered_at else None,
        "last_evaluated_at": alert.last_evaluated_at.isoformat() if alert.last_evaluated_at else None,
        "acknowledged_at": alert.acknowledged_at.isoformat() if alert.acknowledged_at else None,
        "updated_at": alert.updated_at.isoformat() if alert.updated_at else None,
    }
