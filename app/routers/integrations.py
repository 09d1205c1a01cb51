"""
routers/integrations.py — Metakocka Sync Routes

Thin trigger surface for the ERP sync: single push/pull, bulk sync,
unsynced discovery, mapping inspection, outbox sweep, integration log,
and per-organization credentials. Every endpoint returns the JSON summary
the UI renders; failures of individual syncs are reported in the body,
not as HTTP errors.

Business Rules:
- Organization comes from the X-Organization-Id header
- entity_type ∈ contact, product, order, document (404 otherwise)
- Bulk requests above bulk_max_items are rejected with 400
- Discovery failure is ok=false with an error, never an empty success

Called by: main.py (router mount)
Depends on: dependencies, services/*, schemas/sync.py
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from loguru import logger
from sqlalchemy.orm import Session

from ..config import settings
from ..connectors.metakocka import MetakockaClient
from ..database import get_db
from ..dependencies import get_erp_client, require_organization
from ..models.sync import ENTITY_TYPES
from ..rate_limit import limiter, sync_limit
from ..schemas.sync import BulkSyncOut, BulkSyncRequest, CredentialsIn, ResolveLogIn, SyncOutcomeOut
from ..services import integration_log
from ..services.bulk_sync import ALL_UNSYNCED, bulk_sync
from ..services.credential_service import check_connection, credential_to_dict, save_credential
from ..services.discovery import discover_unsynced, discover_unsynced_local
from ..services.entity_sync import TO_EXTERNAL, EntitySyncer
from ..services.intent_service import reconcile_orphaned_intents
from ..services.mapping_store import find_orphaned_mappings, list_mappings, mapping_stats, mapping_to_dict

router = APIRouter(tags=["integrations"])

PREFIX = "/api/integrations/metakocka"


def _entity_type(entity_type: str) -> str:
    if entity_type not in ENTITY_TYPES:
        raise HTTPException(404, f"Unknown entity type: {entity_type}")
    return entity_type


# ── Mappings ──────────────────────────────────────────────────────────


@router.get(f"{PREFIX}/mappings")
async def get_mappings(
    entity_type: str | None = None,
    status: str | None = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    org: str = Depends(require_organization),
    db: Session = Depends(get_db),
):
    if entity_type:
        _entity_type(entity_type)
    rows = list_mappings(db, org, entity_type=entity_type, status=status, limit=limit, offset=offset)
    return {"items": [mapping_to_dict(m) for m in rows], "limit": limit, "offset": offset}


@router.get(f"{PREFIX}/mappings/stats")
async def get_mapping_stats(org: str = Depends(require_organization), db: Session = Depends(get_db)):
    return mapping_stats(db, org)


@router.get(f"{PREFIX}/mappings/orphans")
async def get_orphaned_mappings(
    entity_type: str = "contact",
    org: str = Depends(require_organization),
    db: Session = Depends(get_db),
):
    rows = find_orphaned_mappings(db, org, _entity_type(entity_type))
    return {"entity_type": entity_type, "count": len(rows), "items": [mapping_to_dict(m) for m in rows]}


# ── Outbox ────────────────────────────────────────────────────────────


@router.post(f"{PREFIX}/intents/reconcile")
async def reconcile_intents(
    older_than_minutes: int | None = Query(None, ge=0),
    org: str = Depends(require_organization),
    client: MetakockaClient = Depends(get_erp_client),
    db: Session = Depends(get_db),
):
    return await reconcile_orphaned_intents(db, client, org, older_than_minutes)


# ── Integration log ───────────────────────────────────────────────────


@router.get(f"{PREFIX}/logs")
async def get_logs(
    level: str | None = None,
    category: str | None = None,
    resolved: bool | None = None,
    entity_type: str | None = None,
    local_id: int | None = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    org: str = Depends(require_organization),
    db: Session = Depends(get_db),
):
    rows, total = integration_log.list_logs(
        db, org, level=level, category=category, resolved=resolved,
        entity_type=entity_type, local_id=local_id, limit=limit, offset=offset,
    )
    return {
        "items": [integration_log.log_to_dict(r) for r in rows],
        "total": total,
        "limit": limit,
        "offset": offset,
    }


@router.get(f"{PREFIX}/logs/stats")
async def get_log_stats(
    days: int = Query(7, ge=1, le=365),
    org: str = Depends(require_organization),
    db: Session = Depends(get_db),
):
    return integration_log.error_statistics(db, org, days)


@router.post(f"{PREFIX}/logs/{{log_id}}/resolve")
async def resolve_log(
    log_id: int,
    body: ResolveLogIn | None = None,
    org: str = Depends(require_organization),
    db: Session = Depends(get_db),
):
    entry = integration_log.resolve(db, org, log_id, body.notes if body else None)
    if not entry:
        raise HTTPException(404, "Log entry not found")
    return integration_log.log_to_dict(entry)


# ── Credentials ───────────────────────────────────────────────────────


@router.put(f"{PREFIX}/credentials")
async def put_credentials(
    body: CredentialsIn,
    org: str = Depends(require_organization),
    db: Session = Depends(get_db),
):
    cred = save_credential(db, org, body.company_id, body.secret_key, body.api_endpoint, body.is_active)
    logger.info(f"Metakocka credentials updated for {org}")
    return credential_to_dict(cred)


@router.post(f"{PREFIX}/credentials/test")
async def check_credentials(org: str = Depends(require_organization), db: Session = Depends(get_db)):
    result = await check_connection(db, org)
    if not result["success"]:
        integration_log.record(
            db, "error", "auth", f"Metakocka connection test failed: {result['error']}",
            organization_id=org,
        )
    return result


# ── Sync ──────────────────────────────────────────────────────────────


@router.post(f"{PREFIX}/{{entity_type}}/bulk-sync", response_model=BulkSyncOut)
@limiter.limit(sync_limit)
async def bulk_sync_entities(
    entity_type: str,
    request: Request,
    body: BulkSyncRequest | None = None,
    org: str = Depends(require_organization),
    client: MetakockaClient = Depends(get_erp_client),
    db: Session = Depends(get_db),
):
    _entity_type(entity_type)
    body = body or BulkSyncRequest()
    ids = ALL_UNSYNCED
    if body.ids is not None:
        if len(body.ids) > settings.bulk_max_items:
            raise HTTPException(400, f"Bulk sync is limited to {settings.bulk_max_items} items")
        if body.direction == TO_EXTERNAL:
            try:
                ids = [int(i) for i in body.ids]
            except ValueError:
                raise HTTPException(400, "Local ids must be integers")
        else:
            ids = [str(i) for i in body.ids]

    syncer = EntitySyncer(db, client, org)
    result = await bulk_sync(syncer, entity_type, ids, body.direction, doc_type=body.doc_type)
    logger.info(f"Bulk {body.direction} {entity_type} for {org}: {result.to_dict()}")
    return result.to_dict()


@router.get(f"{PREFIX}/{{entity_type}}/unsynced/local")
async def get_unsynced_local(
    entity_type: str,
    org: str = Depends(require_organization),
    db: Session = Depends(get_db),
):
    rows = discover_unsynced_local(db, org, _entity_type(entity_type))
    return {"ok": True, "error": None, "count": len(rows), "items": [{"id": r.id} for r in rows]}


@router.get(f"{PREFIX}/{{entity_type}}/unsynced")
async def get_unsynced(
    entity_type: str,
    org: str = Depends(require_organization),
    client: MetakockaClient = Depends(get_erp_client),
    db: Session = Depends(get_db),
):
    _entity_type(entity_type)
    result = await discover_unsynced(db, client, org, entity_type)
    return result.to_dict()


@router.post(f"{PREFIX}/{{entity_type}}/pull/{{external_id}}", response_model=SyncOutcomeOut)
@limiter.limit(sync_limit)
async def pull_entity(
    entity_type: str,
    external_id: str,
    request: Request,
    doc_type: str | None = None,
    org: str = Depends(require_organization),
    client: MetakockaClient = Depends(get_erp_client),
    db: Session = Depends(get_db),
):
    _entity_type(entity_type)
    syncer = EntitySyncer(db, client, org)
    outcome = await syncer.sync_from_external(entity_type, external_id, doc_type=doc_type)
    return outcome.to_dict()


@router.post(f"{PREFIX}/{{entity_type}}/{{local_id}}/sync", response_model=SyncOutcomeOut)
@limiter.limit(sync_limit)
async def push_entity(
    entity_type: str,
    local_id: int,
    request: Request,
    org: str = Depends(require_organization),
    client: MetakockaClient = Depends(get_erp_client),
    db: Session = Depends(get_db),
):
    _entity_type(entity_type)
    syncer = EntitySyncer(db, client, org)
    outcome = await syncer.sync_to_external(entity_type, local_id)
    return outcome.to_dict()

