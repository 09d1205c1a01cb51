"""Single-entity sync — push one local entity to Metakocka or pull one back.

Flow for a push (to-external):
    load entity → transform → open intent → pending mapping (first push only)
    → create/update in ERP
    → upsert mapping (synced, last_synced_at=now) → complete intent

Flow for a pull (from-external):
    open intent → fetch from ERP → transform → upsert local entity
    → upsert mapping → complete intent

Every failure (ERP, transform or local write) is caught here and turned
into SyncOutcome(success=False, error=...). The mapping row is flagged
`error` whenever there is a local id to key it on.
No retry loop lives here; the ERP client owns the retry policy.

Concurrent syncs of the same entity are not locked against each other;
the last mapping write wins.

Business Rules:
- created is True when no ERP id was known before the call
- A contact without a mapping is first looked up by email in the ERP, so
  an existing partner is linked instead of duplicated
- "order" entities are sales documents of type order; "document" covers
  invoice, quote/offer, and proforma

Called by: services/bulk_sync.py, routers/integrations.py
Depends on: connectors/metakocka.py, services/mapping_store.py, services/transforms.py,
            services/intent_service.py, services/integration_log.py
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from ..connectors.metakocka import MetakockaError, NOT_FOUND, VALIDATION
from ..models import Contact, Product, SalesDocument, SalesDocumentItem
from . import integration_log
from .intent_service import complete_intent, fail_intent, open_intent
from .mapping_store import ENTITY_MODELS, apply_state, get_mapping, get_mapping_by_external
from .sync_state import Failed, Started, Succeeded, state_from_row, transition
from .transforms import (
    TransformError,
    contact_to_partner,
    default_count_code,
    document_to_erp,
    erp_to_document_fields,
    erp_to_product_fields,
    partner_to_contact_fields,
    product_to_erp,
)

log = logging.getLogger("erpsync.sync")

TO_EXTERNAL = "to-external"
FROM_EXTERNAL = "from-external"
DIRECTIONS = (TO_EXTERNAL, FROM_EXTERNAL)


@dataclass
class SyncOutcome:
    success: bool
    entity_type: str
    local_id: int | None = None
    external_id: str | None = None
    created: bool = False
    error: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


class EntitySyncer:
    """Syncs single entities for one organization against one ERP client."""

    def __init__(self, db: Session, client, organization_id: str):
        self.db = db
        self.client = client
        self.organization_id = organization_id

    # ── Push ────────────────────────────────────────────────────────

    async def sync_to_external(self, entity_type: str, local_id: int) -> SyncOutcome:
        _check_entity_type(entity_type)
        db = self.db
        mapping = get_mapping(db, self.organization_id, entity_type, local_id)
        known_external_id = mapping.external_id if mapping else None
        outcome = SyncOutcome(success=False, entity_type=entity_type, local_id=local_id,
                              created=known_external_id is None)

        entity = self._load_local(entity_type, local_id)
        if entity is None:
            outcome.error = f"{entity_type} {local_id} not found"
            if mapping:
                self._record_failure(entity_type, local_id, outcome.error)
            return outcome

        count_code = (mapping.external_code if mapping else None) or _count_code_for(entity_type, entity)
        intent = open_intent(
            db, self.organization_id, entity_type, TO_EXTERNAL,
            local_id=local_id, external_id=known_external_id, external_code=count_code,
        )
        if mapping is None:
            mapping, _ = apply_state(
                db, self.organization_id, entity_type, local_id,
                transition(None, Started()), external_code=count_code,
            )

        try:
            if entity_type == "contact":
                external_id, code, doc_type, number = await self._push_contact(entity, known_external_id, count_code)
            elif entity_type == "product":
                external_id, code, doc_type, number = await self._push_product(entity, known_external_id, count_code)
            else:
                external_id, code, doc_type, number = await self._push_document(
                    entity_type, entity, known_external_id, count_code
                )
            if not external_id:
                raise MetakockaError("Failed to get Metakocka ID from response", VALIDATION, "MISSING_ID")

            state = transition(state_from_row(mapping), Succeeded(at=datetime.now(timezone.utc)))
            apply_state(
                db, self.organization_id, entity_type, local_id, state,
                external_id=external_id, external_code=code,
                external_doc_type=doc_type, external_number=number,
            )
        except Exception as e:
            db.rollback()
            outcome.error = _error_text(e)
            fail_intent(db, intent, outcome.error)
            self._record_failure(entity_type, local_id, outcome.error, exc=e)
            return outcome

        complete_intent(db, intent, external_id=external_id)
        outcome.success = True
        outcome.external_id = str(external_id)
        integration_log.record(
            db, "info", "sync",
            f"{'Created' if outcome.created else 'Updated'} {entity_type} {local_id} in Metakocka",
            organization_id=self.organization_id,
            entity_type=entity_type, local_id=local_id, external_id=external_id,
        )
        return outcome

    async def _push_contact(self, contact: Contact, external_id: str | None, count_code: str):
        if not external_id and contact.email:
            existing = await self.client.find_partner_by_email(contact.email)
            if existing and existing.get("mk_id"):
                clash = get_mapping_by_external(self.db, self.organization_id, "contact", existing["mk_id"])
                if clash is None or clash.local_id == contact.id:
                    log.info(f"Linking contact {contact.id} to existing partner {existing['mk_id']} by email")
                    external_id = existing["mk_id"]
                    count_code = existing.get("count_code") or count_code

        partner = contact_to_partner(contact, count_code=count_code, mk_id=external_id)
        if external_id:
            await self.client.update_partner(partner)
        else:
            resp = await self.client.add_partner(partner)
            external_id = resp.get("mk_id")
        return external_id, partner["count_code"], None, None

    async def _push_product(self, product: Product, external_id: str | None, count_code: str):
        payload = product_to_erp(product, count_code=count_code, mk_id=external_id)
        if external_id:
            await self.client.update_product(payload)
        else:
            resp = await self.client.add_product(payload)
            external_id = resp.get("mk_id")
        return external_id, payload["count_code"], None, None

    async def _push_document(self, entity_type: str, doc: SalesDocument,
                             external_id: str | None, count_code: str):
        _check_document_kind(entity_type, doc.document_type)

        partner_mk_id = None
        if doc.customer_id:
            cm = get_mapping(self.db, self.organization_id, "contact", doc.customer_id)
            if cm and cm.external_id:
                partner_mk_id = cm.external_id
            else:
                log.warning(f"Document {doc.id}: customer {doc.customer_id} not synced, sending without partner")

        product_mk_ids = {}
        for item in doc.items:
            if item.product_id and item.product_id not in product_mk_ids:
                pm = get_mapping(self.db, self.organization_id, "product", item.product_id)
                if pm and pm.external_id:
                    product_mk_ids[item.product_id] = pm.external_id

        payload = document_to_erp(doc, partner_mk_id, product_mk_ids, mk_id=external_id)
        if not doc.document_number:
            payload["count_code"] = count_code
        if external_id:
            resp = await self.client.update_sales_document(payload)
        else:
            resp = await self.client.create_sales_document(payload)
            external_id = resp.get("mk_id")
        number = resp.get("count_code") or resp.get("doc_number") or payload["count_code"]
        return external_id, payload["count_code"], payload["doc_type"], number

    # ── Pull ────────────────────────────────────────────────────────

    async def sync_from_external(self, entity_type: str, external_id: str,
                                 doc_type: str | None = None) -> SyncOutcome:
        _check_entity_type(entity_type)
        db = self.db
        external_id = str(external_id)
        mapping = get_mapping_by_external(db, self.organization_id, entity_type, external_id)
        local_id = mapping.local_id if mapping else None
        outcome = SyncOutcome(success=False, entity_type=entity_type, local_id=local_id,
                              external_id=external_id, created=mapping is None)

        intent = open_intent(db, self.organization_id, entity_type, FROM_EXTERNAL,
                             local_id=local_id, external_id=external_id)
        try:
            if entity_type == "contact":
                record = await self.client.get_partner(external_id)
            elif entity_type == "product":
                record = await self.client.get_product(external_id)
            else:
                doc_type = _pull_doc_type(entity_type, doc_type, mapping)
                record = await self.client.get_sales_document(external_id, doc_type)
            if not record:
                raise MetakockaError(f"{entity_type} {external_id} not found in Metakocka", NOT_FOUND)
            record.setdefault("mk_id", external_id)

            entity = self._upsert_local(entity_type, record, local_id)
            db.flush()
            local_id = entity.id

            state = transition(state_from_row(mapping), Succeeded(at=datetime.now(timezone.utc)))
            apply_state(
                db, self.organization_id, entity_type, local_id, state,
                external_id=external_id,
                external_code=record.get("count_code") or record.get("code"),
                external_doc_type=record.get("doc_type") if entity_type in ("order", "document") else None,
                external_number=record.get("count_code") if entity_type in ("order", "document") else None,
            )
        except Exception as e:
            db.rollback()
            outcome.error = _error_text(e)
            fail_intent(db, intent, outcome.error)
            if mapping:
                self._record_failure(entity_type, mapping.local_id, outcome.error, exc=e)
            else:
                integration_log.record(
                    db, "error", integration_log.category_for_error(e),
                    f"Pull of {entity_type} {external_id} failed: {outcome.error}",
                    organization_id=self.organization_id,
                    entity_type=entity_type, external_id=external_id,
                )
            return outcome

        complete_intent(db, intent, local_id=local_id)
        outcome.success = True
        outcome.local_id = local_id
        integration_log.record(
            db, "info", "sync",
            f"{'Created' if outcome.created else 'Updated'} local {entity_type} {local_id} from Metakocka",
            organization_id=self.organization_id,
            entity_type=entity_type, local_id=local_id, external_id=external_id,
        )
        return outcome

    def _upsert_local(self, entity_type: str, record: dict, local_id: int | None):
        model = ENTITY_MODELS[entity_type]
        entity = self._load_local(entity_type, local_id) if local_id else None
        if entity is None:
            entity = model(organization_id=self.organization_id)
            self.db.add(entity)

        if entity_type == "contact":
            fields = partner_to_contact_fields(record)
        elif entity_type == "product":
            fields = erp_to_product_fields(record)
        else:
            fields, items, partner_mk_id = erp_to_document_fields(record)
            _check_document_kind(entity_type, fields["document_type"])
            self._apply_document_links(entity, items, partner_mk_id)

        for key, value in fields.items():
            setattr(entity, key, value)
        return entity

    def _apply_document_links(self, doc: SalesDocument, items: list[dict], partner_mk_id: str | None):
        if partner_mk_id:
            cm = get_mapping_by_external(self.db, self.organization_id, "contact", partner_mk_id)
            doc.customer_id = cm.local_id if cm else None

        doc.items.clear()
        for row in items:
            pm = get_mapping_by_external(self.db, self.organization_id, "product", row.pop("product_mk_id"))
            doc.items.append(SalesDocumentItem(product_id=pm.local_id if pm else None, **row))

    # ── Helpers ─────────────────────────────────────────────────────

    def _load_local(self, entity_type: str, local_id: int):
        model = ENTITY_MODELS[entity_type]
        return (
            self.db.query(model)
            .filter(model.id == local_id, model.organization_id == self.organization_id)
            .first()
        )

    def _record_failure(self, entity_type: str, local_id: int, error: str, exc: Exception | None = None):
        """Flag this organization's mapping as error.

        A local id that neither has a mapping here nor belongs to this
        organization gets only the log entry. Persistence failures are
        logged, not raised.
        """
        db = self.db
        try:
            mapping = get_mapping(db, self.organization_id, entity_type, local_id)
            if mapping is not None or self._load_local(entity_type, local_id) is not None:
                state = transition(state_from_row(mapping), Failed(reason=error))
                apply_state(db, self.organization_id, entity_type, local_id, state)
        except Exception as e:
            db.rollback()
            log.error(f"Failed to save error status for {entity_type} {local_id}: {e}")

        integration_log.record(
            db, "error",
            integration_log.category_for_error(exc) if exc else "sync",
            f"Sync of {entity_type} {local_id} failed: {error}",
            organization_id=self.organization_id,
            entity_type=entity_type, local_id=local_id,
            details=exc.to_dict() if isinstance(exc, MetakockaError) else None,
        )


def _check_entity_type(entity_type: str) -> None:
    if entity_type not in ENTITY_MODELS:
        raise ValueError(f"Unknown entity type: {entity_type}")


def _check_document_kind(entity_type: str, document_type: str) -> None:
    is_order = (document_type or "").lower() == "order"
    if entity_type == "order" and not is_order:
        raise TransformError(f"Document of type {document_type} is not an order")
    if entity_type == "document" and is_order:
        raise TransformError("Orders sync under entity type 'order'")


def _pull_doc_type(entity_type: str, doc_type: str | None, mapping) -> str:
    if entity_type == "order":
        return "order"
    doc_type = doc_type or (mapping.external_doc_type if mapping else None)
    if not doc_type:
        raise TransformError("doc_type is required to pull a document without a mapping")
    return doc_type


def _count_code_for(entity_type: str, entity) -> str:
    if entity_type == "product" and entity.sku:
        return entity.sku
    if entity_type in ("order", "document") and entity.document_number:
        return entity.document_number
    return default_count_code(entity_type, entity.id)


def _error_text(exc: Exception) -> str:
    if isinstance(exc, MetakockaError):
        return exc.message
    return str(exc) or exc.__class__.__name__
