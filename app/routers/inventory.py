"""
routers/inventory.py — Inventory Snapshot & Alert Routes

Refresh ERP stock figures, read the cached snapshot, and manage low-stock
alerts. POST /alerts/check runs the same evaluation pass the scheduler runs.

Business Rules:
- Organization comes from the X-Organization-Id header
- Snapshot refreshes need ERP credentials (409 without them)
- Acknowledging never changes is_active or is_triggered

Called by: main.py (router mount)
Depends on: dependencies, services/inventory_service.py, services/alert_service.py
"""

from fastapi import APIRouter, Depends, HTTPException, Request
from loguru import logger
from sqlalchemy.orm import Session

from ..connectors.metakocka import MetakockaClient
from ..database import get_db
from ..dependencies import get_erp_client, require_organization
from ..rate_limit import limiter, sync_limit
from ..schemas.inventory import AcknowledgeIn, AlertCreate, AlertUpdate
from ..services import alert_service
from ..services.inventory_service import product_inventory, refresh_all_inventory, refresh_product_inventory

router = APIRouter(tags=["inventory"])


def _alert_or_404(db: Session, org: str, alert_id: int):
    alert = alert_service.get_alert(db, org, alert_id)
    if not alert:
        raise HTTPException(404, "Alert not found")
    return alert


# ── Snapshots ─────────────────────────────────────────────────────────


@router.post("/api/inventory/refresh")
@limiter.limit(sync_limit)
async def refresh_inventory(
    request: Request,
    org: str = Depends(require_organization),
    client: MetakockaClient = Depends(get_erp_client),
    db: Session = Depends(get_db),
):
    return await refresh_all_inventory(db, client, org)


@router.post("/api/inventory/products/{product_id}/refresh")
async def refresh_product(
    product_id: int,
    org: str = Depends(require_organization),
    client: MetakockaClient = Depends(get_erp_client),
    db: Session = Depends(get_db),
):
    return await refresh_product_inventory(db, client, org, product_id)


@router.get("/api/inventory/products/{product_id}")
async def get_product_inventory(
    product_id: int,
    org: str = Depends(require_organization),
    db: Session = Depends(get_db),
):
    data = product_inventory(db, org, product_id)
    if data is None:
        raise HTTPException(404, "Product not found")
    return data


# ── Alerts ────────────────────────────────────────────────────────────


@router.get("/api/inventory/alerts")
async def list_alerts(
    triggered_only: bool = False,
    active_only: bool = False,
    org: str = Depends(require_organization),
    db: Session = Depends(get_db),
):
    alerts = alert_service.list_alerts(db, org, triggered_only=triggered_only, active_only=active_only)
    return {"items": [alert_service.alert_to_dict(a) for a in alerts], "total": len(alerts)}


@router.post("/api/inventory/alerts", status_code=201)
async def create_alert(
    body: AlertCreate,
    org: str = Depends(require_organization),
    db: Session = Depends(get_db),
):
    try:
        alert = alert_service.create_alert(db, org, body.product_id, body.threshold_quantity, body.is_active)
    except alert_service.AlertError as e:
        raise HTTPException(404, str(e))
    logger.info(f"Alert {alert.id} created for product {alert.product_id} ({org})")
    return alert_service.alert_to_dict(alert)


@router.post("/api/inventory/alerts/check")
async def check_alerts(org: str = Depends(require_organization), db: Session = Depends(get_db)):
    return alert_service.run_evaluation_pass(db, organization_id=org)


@router.patch("/api/inventory/alerts/{alert_id}")
async def update_alert(
    alert_id: int,
    body: AlertUpdate,
    org: str = Depends(require_organization),
    db: Session = Depends(get_db),
):
    alert = _alert_or_404(db, org, alert_id)
    alert = alert_service.update_alert(db, alert, body.threshold_quantity, body.is_active)
    return alert_service.alert_to_dict(alert)


@router.delete("/api/inventory/alerts/{alert_id}")
async def delete_alert(
    alert_id: int,
    org: str = Depends(require_organization),
    db: Session = Depends(get_db),
):
    alert_service.delete_alert(db, _alert_or_404(db, org, alert_id))
    return {"ok": True}


@router.post("/api/inventory/alerts/{alert_id}/acknowledge")
async def acknowledge_alert(
    alert_id: int,
    body: AcknowledgeIn | None = None,
    org: str = Depends(require_organization),
    db: Session = Depends(get_db),
):
    alert = _alert_or_404(db, org, alert_id)
    body = body or AcknowledgeIn()
    ack = alert_service.acknowledge_alert(db, alert, user=body.user, note=body.note)
    return {"ok": True, "acknowledgement_id": ack.id, "alert": alert_service.alert_to_dict(alert)}
