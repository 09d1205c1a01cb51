"""Bulk sync — apply the single-entity syncer to many ids and count outcomes.

Items run sequentially in a deterministic order. There is no fail-fast and
no rollback of partial progress: every item is attempted (unless the caller
cancels) and the summary always comes back.

Business Rules:
- created = no ERP id known before the item, updated = existing mapping refreshed
- An empty id list returns an all-zero successful result without any ERP call
- ALL_UNSYNCED means "every local entity without a synced mapping" when
  pushing, and "every ERP entity not yet mapped" when pulling
- Cancellation is checked between items; items never attempted count as skipped
- The list is walked in chunks of bulk_chunk_size, committing after each chunk

Called by: routers/integrations.py
Depends on: services/entity_sync.py, services/discovery.py
"""

import logging
from dataclasses import asdict, dataclass, field

from ..config import settings
from .discovery import discover_unsynced, discover_unsynced_local
from .entity_sync import DIRECTIONS, TO_EXTERNAL, EntitySyncer

log = logging.getLogger("erpsync.bulk")

ALL_UNSYNCED = object()


@dataclass
class BulkSyncResult:
    total: int = 0
    created: int = 0
    updated: int = 0
    failed: int = 0
    skipped: int = 0
    cancelled: bool = False
    error: str | None = None
    errors: list[dict] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed == 0 and not self.cancelled and self.error is None

    def to_dict(self) -> dict:
        return {"success": self.success, **asdict(self)}


def _chunks(items: list, size: int):
    size = max(1, size)
    for start in range(0, len(items), size):
        yield items[start:start + size]


async def _resolve_targets(syncer: EntitySyncer, entity_type: str, direction: str):
    """Expand ALL_UNSYNCED into concrete ids. Returns (ids, doc_types, error).

    doc_types maps a discovered ERP document id to its doc_type, since a
    pull needs the type to pick the endpoint.
    """
    if direction == TO_EXTERNAL:
        entities = discover_unsynced_local(syncer.db, syncer.organization_id, entity_type)
        return [e.id for e in entities], {}, None

    discovered = await discover_unsynced(syncer.db, syncer.client, syncer.organization_id, entity_type)
    if not discovered.ok:
        return [], {}, discovered.error
    ids = [str(item["mk_id"]) for item in discovered.items]
    doc_types = {str(item["mk_id"]): item.get("doc_type") for item in discovered.items}
    return ids, doc_types, None


async def bulk_sync(
    syncer: EntitySyncer,
    entity_type: str,
    ids=ALL_UNSYNCED,
    direction: str = TO_EXTERNAL,
    cancel_event=None,
    doc_type: str | None = None,
) -> BulkSyncResult:
    """Sync each id in order and return the aggregated counters."""
    if direction not in DIRECTIONS:
        raise ValueError(f"Unknown direction: {direction}")

    result = BulkSyncResult()
    doc_types = {}
    if ids is ALL_UNSYNCED:
        ids, doc_types, error = await _resolve_targets(syncer, entity_type, direction)
        if error:
            result.error = f"Discovery failed: {error}"
            return result
    ids = list(ids)
    result.total = len(ids)
    if not ids:
        return result

    log.info(f"Bulk {direction} sync of {len(ids)} {entity_type} item(s) for {syncer.organization_id}")
    done = 0
    for chunk in _chunks(ids, settings.bulk_chunk_size):
        for item_id in chunk:
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                result.skipped = result.total - done
                log.warning(f"Bulk sync cancelled after {done}/{result.total} items")
                return result

            if direction == TO_EXTERNAL:
                outcome = await syncer.sync_to_external(entity_type, item_id)
            else:
                outcome = await syncer.sync_from_external(
                    entity_type, item_id, doc_type=doc_types.get(item_id) or doc_type
                )
            done += 1

            if not outcome.success:
                result.failed += 1
                result.errors.append({"id": item_id, "error": outcome.error})
            elif outcome.created:
                result.created += 1
            else:
                result.updated += 1
        syncer.db.commit()

    log.info(
        f"Bulk sync done: {result.created} created, {result.updated} updated, "
        f"{result.failed} failed of {result.total}"
    )
    return result
