"""Mapping store — the sync_mappings table behind a small function API.

Business Rules:
- At most one mapping per (organization_id, entity_type, local_id)
- external_id is unique per (organization_id, entity_type) once set
- Lookups are always scoped to one organization; two organizations may
  link the same ERP id to their own local entities
- Every write is an upsert; concurrent writers race and the last one wins
- Mappings are never cascaded from their entity, so orphans can exist

Called by: services/entity_sync.py, services/discovery.py, routers/integrations.py
Depends on: models (SyncMapping, Contact, Product, SalesDocument), services/sync_state.py
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models import Contact, Product, SalesDocument, SyncMapping
from .sync_state import SyncState, state_columns

log = logging.getLogger("erpsync.mappings")

# order and document both live in sales_documents
ENTITY_MODELS = {
    "contact": Contact,
    "product": Product,
    "order": SalesDocument,
    "document": SalesDocument,
}


def get_mapping(db: Session, organization_id: str, entity_type: str, local_id: int) -> SyncMapping | None:
    return (
        db.query(SyncMapping)
        .filter_by(organization_id=organization_id, entity_type=entity_type, local_id=local_id)
        .first()
    )


def get_mapping_by_external(
    db: Session, organization_id: str, entity_type: str, external_id: str
) -> SyncMapping | None:
    if not external_id:
        return None
    return (
        db.query(SyncMapping)
        .filter_by(organization_id=organization_id, entity_type=entity_type, external_id=str(external_id))
        .first()
    )


def list_mappings(
    db: Session,
    organization_id: str,
    entity_type: str | None = None,
    status: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[SyncMapping]:
    q = db.query(SyncMapping).filter(SyncMapping.organization_id == organization_id)
    if entity_type:
        q = q.filter(SyncMapping.entity_type == entity_type)
    if status:
        q = q.filter(SyncMapping.sync_status == status)
    return q.order_by(SyncMapping.updated_at.desc()).offset(offset).limit(limit).all()


def mapped_external_ids(db: Session, organization_id: str, entity_type: str) -> set[str]:
    """External ids already linked to a local entity (any status)."""
    rows = (
        db.query(SyncMapping.external_id)
        .filter(
            SyncMapping.organization_id == organization_id,
            SyncMapping.entity_type == entity_type,
            SyncMapping.external_id.isnot(None),
        )
        .all()
    )
    return {r[0] for r in rows}


def synced_local_ids(db: Session, organization_id: str, entity_type: str) -> set[int]:
    rows = (
        db.query(SyncMapping.local_id)
        .filter(
            SyncMapping.organization_id == organization_id,
            SyncMapping.entity_type == entity_type,
            SyncMapping.sync_status == "synced",
        )
        .all()
    )
    return {r[0] for r in rows}


def apply_state(
    db: Session,
    organization_id: str,
    entity_type: str,
    local_id: int,
    state: SyncState,
    external_id: str | None = None,
    external_code: str | None = None,
    external_doc_type: str | None = None,
    external_number: str | None = None,
) -> tuple[SyncMapping, bool]:
    """Upsert the mapping row to `state`. Returns (mapping, created).

    Identifying columns are only overwritten when a new value is given, so
    recording an error never erases a known external_id.
    """
    mapping = get_mapping(db, organization_id, entity_type, local_id)
    created = mapping is None
    if created:
        mapping = SyncMapping(
            organization_id=organization_id,
            entity_type=entity_type,
            local_id=local_id,
        )
        db.add(mapping)

    for col, value in state_columns(state).items():
        setattr(mapping, col, value)
    if external_id:
        mapping.external_id = str(external_id)
    if external_code:
        mapping.external_code = external_code
    if external_doc_type:
        mapping.external_doc_type = external_doc_type
    if external_number:
        mapping.external_number = external_number
    mapping.updated_at = datetime.now(timezone.utc)

    db.commit()
    db.refresh(mapping)
    return mapping, created


def find_orphaned_mappings(db: Session, organization_id: str, entity_type: str) -> list[SyncMapping]:
    """Mappings whose local entity no longer exists."""
    model = ENTITY_MODELS[entity_type]
    existing = db.query(model.id).filter(model.organization_id == organization_id)
    return (
        db.query(SyncMapping)
        .filter(
            SyncMapping.organization_id == organization_id,
            SyncMapping.entity_type == entity_type,
            ~SyncMapping.local_id.in_(existing),
        )
        .all()
    )


def mapping_stats(db: Session, organization_id: str) -> dict:
    """{entity_type: {pending, synced, error, total}} for the status surfaces."""
    rows = (
        db.query(SyncMapping.entity_type, SyncMapping.sync_status, func.count(SyncMapping.id))
        .filter(SyncMapping.organization_id == organization_id)
        .group_by(SyncMapping.entity_type, SyncMapping.sync_status)
        .all()
    )
    stats = {
        et: {"pending": 0, "synced": 0, "error": 0, "total": 0}
        for et in ENTITY_MODELS
    }
    for entity_type, status, count in rows:
        bucket = stats.setdefault(entity_type, {"pending": 0, "synced": 0, "error": 0, "total": 0})
        bucket[status] = bucket.get(status, 0) + count
        bucket["total"] += count
    return stats


def mapping_to_dict(m: SyncMapping) -> dict:
    return {
        "id": m.id,
        "entity_type": m.entity_type,
        "local_id": m.local_id,
        "external_id": m.external_id,
        "external_code": m.external_code,
        "external_doc_type": m.external_doc_type,
        "external_number": m.external_number,
        "sync_status": m.sync_status,
        "last_synced_at": m.last_synced_at.isoformat() if m.last_synced_at else None,
        "last_error": m.last_error,
    }
