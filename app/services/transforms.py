"""Transforms between local CRM rows and Metakocka payloads.

Pure functions: no DB access and no HTTP. Anything that needs a lookup
(the partner mk_id for a document's customer, product mk_ids for line
items) is passed in by the caller.

Business Rules:
- Default count codes are deterministic (CONT-<id>, PROD-<id>, DOC-<id>)
  so an orphaned sync intent can be matched back to its ERP record
- A contact with a company becomes a business partner ("B"), else a person ("P")
- ERP amounts travel as strings; local amounts are Decimal
- CRM "quote" is an ERP "offer"; unknown CRM document types are rejected

Called by: services/entity_sync.py, services/intent_service.py
Depends on: utils (safe_decimal, safe_str)
"""

from decimal import Decimal

from ..utils import safe_decimal, safe_str


class TransformError(ValueError):
    """Local or ERP record can't be converted to the other side's shape."""


# CRM document_type → ERP doc_type
CRM_TO_ERP_DOC_TYPE = {
    "invoice": "invoice",
    "quote": "offer",
    "offer": "offer",
    "order": "order",
    "proforma": "proforma",
}
ERP_TO_CRM_DOC_TYPE = {
    "invoice": "invoice",
    "offer": "quote",
    "order": "order",
    "proforma": "proforma",
}


def default_count_code(entity_type: str, local_id: int) -> str:
    prefix = {"contact": "CONT", "product": "PROD"}.get(entity_type, "DOC")
    return f"{prefix}-{local_id}"


def _drop_none(d: dict) -> dict:
    return {k: v for k, v in d.items() if v is not None}


def _split_name(name: str) -> tuple[str, str]:
    parts = (name or "").split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


# ── Contacts ⇄ partners ──────────────────────────────────────────────


def contact_to_partner(contact, count_code: str | None = None, mk_id: str | None = None) -> dict:
    person = f"{contact.firstname or ''} {contact.lastname or ''}".strip()
    name = contact.company or contact.display_name
    if not name:
        raise TransformError(f"Contact {contact.id} has no name or company")
    return _drop_none({
        "mk_id": mk_id,
        "count_code": count_code or default_count_code("contact", contact.id),
        "name": name,
        "partner_type": "B" if contact.company else "P",
        "email": contact.email,
        "phone": contact.phone,
        "street": contact.address,
        "place": contact.city,
        "post_number": contact.postal_code,
        "country": contact.country,
        "tax_id_number": contact.tax_id,
        "contact_name": person or None,
        "contact_email": contact.email,
        "contact_phone": contact.phone,
        "customer": "true",
    })


def partner_to_contact_fields(partner: dict) -> dict:
    """Local Contact column values from an ERP partner."""
    if not partner.get("mk_id"):
        raise TransformError("Partner has no mk_id")
    is_business = partner.get("partner_type") == "B"
    if partner.get("contact_name"):
        first, last = _split_name(partner["contact_name"])
    elif not is_business:
        first, last = _split_name(partner.get("name", ""))
    else:
        first, last = "", ""
    return {
        "firstname": first,
        "lastname": last,
        "full_name": partner.get("contact_name") or (None if is_business else partner.get("name")),
        "company": partner.get("name") if is_business else None,
        "email": partner.get("email") or partner.get("contact_email"),
        "phone": partner.get("phone") or partner.get("contact_phone"),
        "address": partner.get("street"),
        "city": partner.get("place"),
        "postal_code": partner.get("post_number"),
        "country": partner.get("country"),
        "tax_id": partner.get("tax_id_number"),
    }


# ── Products ─────────────────────────────────────────────────────────


def product_to_erp(product, count_code: str | None = None, mk_id: str | None = None) -> dict:
    if not product.name:
        raise TransformError(f"Product {product.id} has no name")
    return _drop_none({
        "mk_id": mk_id,
        "count_code": count_code or product.sku or default_count_code("product", product.id),
        "name": product.name,
        "name_desc": product.description,
        "unit": product.unit or "piece",
        "service": "true" if product.is_service else "false",
        "sales": "true",
        "sales_price": safe_str(product.price),
        "tax": safe_str(product.tax_rate),
    })


def erp_to_product_fields(erp_product: dict) -> dict:
    if not erp_product.get("mk_id"):
        raise TransformError("ERP product has no mk_id")
    if not erp_product.get("name"):
        raise TransformError(f"ERP product {erp_product['mk_id']} has no name")
    return {
        "name": erp_product["name"],
        "sku": erp_product.get("count_code") or erp_product.get("code"),
        "description": erp_product.get("name_desc"),
        "unit": erp_product.get("unit") or "piece",
        "price": safe_decimal(erp_product.get("sales_price")),
        "tax_rate": safe_decimal(erp_product.get("tax")),
        "is_service": str(erp_product.get("service", "false")).lower() == "true",
    }


# ── Sales documents ──────────────────────────────────────────────────


def erp_doc_type(crm_type: str) -> str:
    doc_type = CRM_TO_ERP_DOC_TYPE.get((crm_type or "").lower())
    if not doc_type:
        raise TransformError(f"Unsupported document type: {crm_type}")
    return doc_type


def document_to_erp(
    document,
    partner_mk_id: str | None,
    product_mk_ids: dict[int, str],
    mk_id: str | None = None,
) -> dict:
    """ERP sales document. product_mk_ids maps local product id → mk_id."""
    items = []
    for item in document.items:
        items.append(_drop_none({
            "mk_id": product_mk_ids.get(item.product_id) if item.product_id else None,
            "name": item.description or "",
            "amount": safe_str(item.quantity if item.quantity is not None else Decimal(1)),
            "price": safe_str(item.unit_price or Decimal(0)),
            "discount": safe_str(item.discount or Decimal(0)),
            "tax": safe_str(item.tax_rate or Decimal(0)),
        }))
    if not items:
        raise TransformError(f"Document {document.id} has no items")

    doc = {
        "mk_id": mk_id,
        "doc_type": erp_doc_type(document.document_type),
        "count_code": document.document_number or default_count_code("document", document.id),
        "doc_date": document.document_date,
        "due_date": document.due_date,
        "currency_code": document.currency_code,
        "method_of_payment": document.payment_method,
        "notes": document.notes,
        "product_list": items,
    }
    if partner_mk_id:
        doc["partner"] = {"mk_id": partner_mk_id}
    return _drop_none(doc)


def erp_to_document_fields(erp_doc: dict) -> tuple[dict, list[dict], str | None]:
    """(document columns, item dicts with product mk_id, partner mk_id)."""
    if not erp_doc.get("mk_id"):
        raise TransformError("ERP document has no mk_id")
    doc_type = erp_doc.get("doc_type")
    crm_type = ERP_TO_CRM_DOC_TYPE.get(doc_type)
    if not crm_type:
        raise TransformError(f"Unsupported ERP document type: {doc_type}")

    items = []
    total = Decimal(0)
    for row in erp_doc.get("product_list") or []:
        qty = safe_decimal(row.get("amount"), Decimal(1))
        price = safe_decimal(row.get("price"), Decimal(0))
        discount = safe_decimal(row.get("discount"), Decimal(0))
        items.append({
            "product_mk_id": row.get("mk_id"),
            "description": row.get("name") or "",
            "quantity": qty,
            "unit_price": price,
            "discount": discount,
            "tax_rate": safe_decimal(row.get("tax"), Decimal(0)),
        })
        total += qty * price * (Decimal(100) - discount) / Decimal(100)

    partner = erp_doc.get("partner") or {}
    fields = {
        "document_type": crm_type,
        "document_number": erp_doc.get("count_code"),
        "document_date": erp_doc.get("doc_date"),
        "due_date": erp_doc.get("due_date"),
        "status": erp_doc.get("status_code") or "draft",
        "currency_code": erp_doc.get("currency_code") or "EUR",
        "payment_method": erp_doc.get("method_of_payment"),
        "notes": erp_doc.get("notes"),
        "total_amount": safe_decimal(erp_doc.get("sum_all"), total),
    }
    return fields, items, partner.get("mk_id")
