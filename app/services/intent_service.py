"""Sync intents — outbox rows that bracket every ERP call.

The ERP call and the mapping write can't share a transaction, so the
syncer writes an intent before calling out and closes it afterwards. A
crash in between leaves the intent open; the reconciliation sweep finds
those and either repairs the mapping or fails the intent so the entity
can simply be synced again.

Business Rules:
- One intent per attempt, keyed by a random idempotency key
- Open intents older than intent_stale_minutes are considered orphaned
- to-external intents are matched back to the ERP through the deterministic
  count_code written into the payload; documents can't be looked up that
  way and are failed for a manual re-sync
- An ERP error during the sweep leaves the intent open for the next sweep
- A failed push intent turns the pending mapping it left behind into error

Called by: services/entity_sync.py, scheduler.py, routers/integrations.py
Depends on: models (SyncIntent), services/mapping_store.py, connectors/metakocka.py
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from ..config import settings
from ..connectors.metakocka import MetakockaError, NOT_FOUND
from ..models import SyncIntent
from . import integration_log
from .mapping_store import apply_state, get_mapping, get_mapping_by_external
from .sync_state import Failed, Synced, state_from_row, transition

log = logging.getLogger("erpsync.intents")


def open_intent(
    db: Session,
    organization_id: str,
    entity_type: str,
    direction: str,
    local_id: int | None = None,
    external_id: str | None = None,
    external_code: str | None = None,
) -> SyncIntent:
    intent = SyncIntent(
        idempotency_key=uuid.uuid4().hex,
        organization_id=organization_id,
        entity_type=entity_type,
        direction=direction,
        local_id=local_id,
        external_id=external_id,
        external_code=external_code,
        status="open",
    )
    db.add(intent)
    db.commit()
    return intent


def complete_intent(db: Session, intent: SyncIntent, external_id: str | None = None,
                    local_id: int | None = None) -> None:
    intent.status = "completed"
    intent.completed_at = datetime.now(timezone.utc)
    if external_id:
        intent.external_id = str(external_id)
    if local_id:
        intent.local_id = local_id
    db.commit()


def fail_intent(db: Session, intent: SyncIntent, error: str) -> None:
    intent.status = "failed"
    intent.error = error[:2000]
    intent.completed_at = datetime.now(timezone.utc)
    db.commit()


def stale_intents(db: Session, organization_id: str, older_than_minutes: int | None = None) -> list[SyncIntent]:
    minutes = settings.intent_stale_minutes if older_than_minutes is None else older_than_minutes
    cutoff = datetime.now(timezone.utc) - timedelta(minutes=minutes)
    return (
        db.query(SyncIntent)
        .filter(
            SyncIntent.organization_id == organization_id,
            SyncIntent.status == "open",
            SyncIntent.created_at <= cutoff,
        )
        .order_by(SyncIntent.created_at)
        .all()
    )


async def _lookup_by_code(client, entity_type: str, code: str) -> dict | None:
    try:
        if entity_type == "contact":
            return await client.get_partner_by_code(code)
        if entity_type == "product":
            return await client.get_product_by_code(code)
    except MetakockaError as e:
        if e.error_type == NOT_FOUND:
            return None
        raise
    return None


async def reconcile_orphaned_intents(
    db: Session, client, organization_id: str, older_than_minutes: int | None = None
) -> dict:
    """Sweep open intents left behind by a crash. Returns counts."""
    result = {"checked": 0, "completed": 0, "repaired": 0, "failed": 0, "deferred": 0}

    for intent in stale_intents(db, organization_id, older_than_minutes):
        result["checked"] += 1

        if intent.direction == "from-external":
            mapping = get_mapping_by_external(db, organization_id, intent.entity_type, intent.external_id)
            if mapping and mapping.sync_status == "synced":
                complete_intent(db, intent, local_id=mapping.local_id)
                result["completed"] += 1
            else:
                fail_intent(db, intent, "Pull interrupted before the mapping was written")
                result["failed"] += 1
            continue

        mapping = get_mapping(db, organization_id, intent.entity_type, intent.local_id)
        if (
            mapping
            and mapping.sync_status == "synced"
            and mapping.last_synced_at
            and mapping.last_synced_at >= intent.created_at
        ):
            complete_intent(db, intent, external_id=mapping.external_id)
            result["completed"] += 1
            continue

        if intent.entity_type not in ("contact", "product") or not intent.external_code:
            _fail_push(db, organization_id, intent, mapping, "Push interrupted; ERP state unknown, re-sync required")
            result["failed"] += 1
            continue

        try:
            record = await _lookup_by_code(client, intent.entity_type, intent.external_code)
        except MetakockaError as e:
            log.warning(f"Intent {intent.id}: ERP lookup failed, retrying next sweep: {e}")
            result["deferred"] += 1
            continue

        if record and record.get("mk_id"):
            apply_state(
                db, organization_id, intent.entity_type, intent.local_id,
                Synced(at=datetime.now(timezone.utc)),
                external_id=record["mk_id"],
                external_code=intent.external_code,
            )
            complete_intent(db, intent, external_id=record["mk_id"])
            integration_log.record(
                db, "warning", "sync",
                f"Repaired missing {intent.entity_type} mapping for local id {intent.local_id}",
                organization_id=organization_id,
                entity_type=intent.entity_type,
                local_id=intent.local_id,
                external_id=record["mk_id"],
            )
            result["repaired"] += 1
        else:
            _fail_push(db, organization_id, intent, mapping, "Push never reached the ERP; safe to re-sync")
            result["failed"] += 1

    if result["checked"]:
        log.info(f"Intent sweep for {organization_id}: {result}")
    return result


def _fail_push(db: Session, organization_id: str, intent: SyncIntent, mapping, reason: str) -> None:
    """Close a push intent as failed; a mapping left pending by it becomes error."""
    fail_intent(db, intent, reason)
    if mapping is not None and mapping.sync_status == "pending":
        apply_state(
            db, organization_id, intent.entity_type, intent.local_id,
            transition(state_from_row(mapping), Failed(reason=reason)),
        )
