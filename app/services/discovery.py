"""Unsynced discovery — what exists on one side but isn't mapped yet.

discover_unsynced() asks the ERP for every entity of a type and drops the
ones whose external id is already in the mapping store. A failed ERP call
is NOT an empty result: the DiscoveryResult carries ok=False and the error
so callers can tell "nothing to pull" from "couldn't look".

Called by: services/bulk_sync.py, routers/integrations.py
Depends on: services/mapping_store.py, connectors/metakocka.py
"""

import logging
from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from ..connectors.metakocka import MetakockaError
from .mapping_store import ENTITY_MODELS, mapped_external_ids, synced_local_ids

log = logging.getLogger("erpsync.discovery")

# ERP document types that sync under entity type "document"
DOCUMENT_DOC_TYPES = ("invoice", "offer", "proforma")


@dataclass
class DiscoveryResult:
    items: list[dict] = field(default_factory=list)
    ok: bool = True
    error: str | None = None

    def to_dict(self) -> dict:
        return {"ok": self.ok, "error": self.error, "count": len(self.items), "items": self.items}


async def _list_external(client, entity_type: str) -> list[dict]:
    if entity_type == "contact":
        return await client.list_partners()
    if entity_type == "product":
        return await client.list_products()
    if entity_type == "order":
        return await client.list_sales_documents("order")
    docs = []
    for doc_type in DOCUMENT_DOC_TYPES:
        docs.extend(await client.list_sales_documents(doc_type))
    return docs


async def discover_unsynced(db: Session, client, organization_id: str, entity_type: str) -> DiscoveryResult:
    """ERP entities of the type with no local mapping."""
    if entity_type not in ENTITY_MODELS:
        raise ValueError(f"Unknown entity type: {entity_type}")
    try:
        external = await _list_external(client, entity_type)
    except MetakockaError as e:
        log.warning(f"Discovery of {entity_type} failed: {e}")
        return DiscoveryResult(items=[], ok=False, error=e.message)

    mapped = mapped_external_ids(db, organization_id, entity_type)
    items = [
        row for row in external
        if row.get("mk_id") and str(row["mk_id"]) not in mapped
    ]
    log.info(f"Discovery: {len(items)} of {len(external)} ERP {entity_type} record(s) unmapped")
    return DiscoveryResult(items=items)


def discover_unsynced_local(db: Session, organization_id: str, entity_type: str) -> list:
    """Local entities of the type without a synced mapping, oldest first."""
    model = ENTITY_MODELS[entity_type]
    q = db.query(model).filter(model.organization_id == organization_id)
    if entity_type == "order":
        q = q.filter(model.document_type == "order")
    elif entity_type == "document":
        q = q.filter(model.document_type != "order")

    synced = synced_local_ids(db, organization_id, entity_type)
    return [e for e in q.order_by(model.id).all() if e.id not in synced]
