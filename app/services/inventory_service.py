"""Inventory snapshots — cached ERP stock figures per product.

Snapshots are refreshed only when asked (API call or the scheduler's
optional refresh job); nothing is pushed from the ERP, so a snapshot is as
old as its last_updated. quantity_available is stored exactly as the ERP
reports it.

Called by: routers/inventory.py, scheduler.py
Depends on: models (InventorySnapshot, Product), services/mapping_store.py,
            services/integration_log.py, connectors/metakocka.py
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy.orm import Session

from ..connectors.metakocka import MetakockaError
from ..models import InventorySnapshot, Product, SyncMapping
from ..utils import safe_decimal, safe_str
from . import integration_log
from .mapping_store import get_mapping

log = logging.getLogger("erpsync.inventory")


def get_snapshot(db: Session, product_id: int) -> InventorySnapshot | None:
    return db.query(InventorySnapshot).filter_by(product_id=product_id).first()


def upsert_snapshot(db: Session, organization_id: str, product_id: int, data: dict) -> InventorySnapshot:
    snap = get_snapshot(db, product_id)
    if snap is None:
        snap = InventorySnapshot(organization_id=organization_id, product_id=product_id)
        db.add(snap)
    snap.external_id = data.get("product_id")
    snap.product_code = data.get("product_code")
    snap.quantity_on_hand = data.get("quantity_on_hand") or Decimal(0)
    snap.quantity_reserved = data.get("quantity_reserved") or Decimal(0)
    snap.quantity_available = data.get("quantity_available")
    snap.warehouse_id = data.get("warehouse_id")
    snap.warehouse_name = data.get("warehouse_name")
    snap.last_updated = datetime.now(timezone.utc)
    db.commit()
    db.refresh(snap)
    return snap


async def refresh_product_inventory(db: Session, client, organization_id: str, product_id: int) -> dict:
    """Fetch one product's stock from the ERP. Never raises."""
    product = db.query(Product).filter_by(id=product_id, organization_id=organization_id).first()
    if product is None:
        return {"success": False, "error": f"Product {product_id} not found"}
    mapping = get_mapping(db, organization_id, "product", product_id)
    if not mapping or not mapping.external_id:
        return {"success": False, "error": "Product is not synced with Metakocka"}

    try:
        data = await client.get_product_inventory(mapping.external_id)
        snap = upsert_snapshot(db, organization_id, product_id, data)
    except MetakockaError as e:
        integration_log.record(
            db, "error", "inventory", f"Inventory refresh failed for product {product_id}: {e.message}",
            organization_id=organization_id, entity_type="product",
            local_id=product_id, external_id=mapping.external_id, details=e.to_dict(),
        )
        return {"success": False, "error": e.message}
    except Exception as e:
        db.rollback()
        log.error(f"Inventory snapshot write failed for product {product_id}: {e}")
        return {"success": False, "error": str(e)}

    return {"success": True, "data": snapshot_to_dict(snap)}


async def refresh_all_inventory(db: Session, client, organization_id: str) -> dict:
    """Refresh every synced product of the organization, one at a time."""
    product_ids = [
        r[0]
        for r in db.query(SyncMapping.local_id)
        .filter(
            SyncMapping.organization_id == organization_id,
            SyncMapping.entity_type == "product",
            SyncMapping.external_id.isnot(None),
        )
        .order_by(SyncMapping.local_id)
        .all()
    ]

    synced = 0
    errors = []
    for product_id in product_ids:
        res = await refresh_product_inventory(db, client, organization_id, product_id)
        if res["success"]:
            synced += 1
        else:
            errors.append({"product_id": product_id, "error": res["error"]})

    if product_ids:
        integration_log.record(
            db, "info" if not errors else "warning", "inventory",
            f"Inventory refresh: {synced} updated, {len(errors)} failed",
            organization_id=organization_id,
        )
    return {
        "success": not errors,
        "synced_count": synced,
        "error_count": len(errors),
        "errors": errors,
    }


def is_product_available(db: Session, product_id: int, quantity=1) -> bool:
    """True when the last snapshot shows at least `quantity` available."""
    snap = get_snapshot(db, product_id)
    if snap is None or snap.quantity_available is None:
        return False
    return Decimal(snap.quantity_available) >= safe_decimal(quantity, Decimal(0))


def product_inventory(db: Session, organization_id: str, product_id: int) -> dict | None:
    product = db.query(Product).filter_by(id=product_id, organization_id=organization_id).first()
    if product is None:
        return None
    snap = get_snapshot(db, product_id)
    return {
        "product_id": product.id,
        "name": product.name,
        "sku": product.sku,
        "snapshot": snapshot_to_dict(snap) if snap else None,
    }


def snapshot_to_dict(snap: InventorySnapshot) -> dict:
    return {
        "product_id": snap.product_id,
        "external_id": snap.external_id,
        "product_code": snap.product_code,
        "quantity_on_hand": safe_str(snap.quantity_on_hand),
        "quantity_reserved": safe_str(snap.quantity_reserved),
        "quantity_available": safe_str(snap.quantity_available),
        "warehouse_id": snap.warehouse_id,
        "warehouse_name": snap.warehouse_name,
        "last_updated": snap.last_updated.isoformat() if snap.last_updated else None,
    }
