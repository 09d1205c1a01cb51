"""Metakocka ERP client — JSON-over-POST API with retry + error taxonomy.

Every call is a POST to <endpoint>/<method> with the organization's
secret_key and company_id merged into the body. A body with
opr_code != "0" is an application error even when HTTP says 200.

Retry policy: transport errors, HTTP 5xx, and HTTP 429 are retried with
exponential backoff (backoff_base * 2**attempt) up to max_retries attempts
in total. Authentication, validation, and not-found errors fail at once.

Usage:
    from app.connectors.metakocka import MetakockaClient
    client = MetakockaClient.from_credential(cred)
    partner = await client.find_partner_by_email("ana@example.si")
"""

import asyncio
import logging

import httpx

from ..config import settings
from ..utils import safe_decimal

log = logging.getLogger("erpsync.metakocka")

# Error types
NETWORK = "network"
AUTHENTICATION = "authentication"
VALIDATION = "validation"
NOT_FOUND = "not_found"
SERVER = "server"
RATE_LIMITED = "rate_limited"
UNKNOWN = "unknown"

RETRYABLE = {NETWORK, SERVER, RATE_LIMITED}

# Local document type → ERP endpoint stem
DOCUMENT_ENDPOINTS = {
    "invoice": "sales_bill",
    "offer": "sales_offer",
    "order": "sales_order",
    "proforma": "sales_bill_proforma",
}


class MetakockaError(Exception):
    """Any failure talking to Metakocka, classified by error_type."""

    def __init__(self, message: str, error_type: str = UNKNOWN,
                 code: str | None = None, details=None):
        super().__init__(message)
        self.message = message
        self.error_type = error_type
        self.code = code
        self.details = details

    @property
    def retryable(self) -> bool:
        return self.error_type in RETRYABLE

    def to_dict(self) -> dict:
        return {"message": self.message, "type": self.error_type, "code": self.code}


def classify_opr_code(opr_code: str) -> str:
    """Map a non-zero Metakocka opr_code to an error type."""
    if opr_code == "1":
        return AUTHENTICATION
    if opr_code == "2":
        return VALIDATION
    try:
        if int(opr_code) >= 100:  # application errors
            return VALIDATION
    except (TypeError, ValueError):
        pass
    return UNKNOWN


def classify_http_status(status: int) -> tuple[str, str]:
    """Map an HTTP error status to (error_type, message)."""
    if status in (401, 403):
        return AUTHENTICATION, "Authentication failed with Metakocka API"
    if status == 404:
        return NOT_FOUND, "Requested resource not found in Metakocka API"
    if status == 429:
        return RATE_LIMITED, "Metakocka API rate limit hit"
    if status >= 500:
        return SERVER, "Metakocka API server error"
    return UNKNOWN, f"Unexpected HTTP {status} from Metakocka API"


def _extract_list(data: dict, key: str) -> list[dict]:
    """Pull the record list out of a *_list response; tolerate odd shapes."""
    value = data.get(key)
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        return [value]
    for k, v in data.items():
        if k.endswith("_list") and isinstance(v, list):
            return v
    return []


def _extract_single(data: dict, key: str) -> dict | None:
    """Single-record responses carry the fields inline or as a 1-item list."""
    if data.get("mk_id"):
        return data
    rows = _extract_list(data, key)
    return rows[0] if rows else None


def document_endpoint(prefix: str, doc_type: str) -> str:
    stem = DOCUMENT_ENDPOINTS.get(doc_type)
    if not stem:
        raise MetakockaError(f"Unsupported document type: {doc_type}", VALIDATION)
    return f"{prefix}_{stem}"


class MetakockaClient:
    """Thin async wrapper around the Metakocka REST API for one company."""

    def __init__(
        self,
        company_id: str,
        secret_key: str,
        api_endpoint: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_base: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.company_id = company_id
        self.secret_key = secret_key
        self.api_endpoint = (api_endpoint or settings.metakocka_api_endpoint).rstrip("/")
        self.timeout = timeout or settings.metakocka_timeout_seconds
        self.max_retries = max(1, max_retries or settings.erp_max_retries)
        self.backoff_base = settings.erp_backoff_base if backoff_base is None else backoff_base
        self._http = http_client

    @classmethod
    def from_credential(cls, cred, **kwargs) -> "MetakockaClient":
        """Build a client from an ErpCredential row."""
        return cls(
            company_id=cred.company_id,
            secret_key=cred.secret_key,
            api_endpoint=cred.api_endpoint,
            **kwargs,
        )

    # ── Transport ───────────────────────────────────────────────────

    def _client(self) -> httpx.AsyncClient:
        if self._http is not None:
            return self._http
        from ..http_client import http

        return http

    async def request(self, method: str, data: dict | None = None) -> dict:
        """POST one API method with retry. Raises MetakockaError on failure."""
        url = f"{self.api_endpoint}/{method}"
        body = {**(data or {}), "secret_key": self.secret_key, "company_id": self.company_id}
        last_error: MetakockaError | None = None

        for attempt in range(self.max_retries):
            try:
                return await self._request_once(url, method, body)
            except MetakockaError as e:
                last_error = e
                if not e.retryable or attempt == self.max_retries - 1:
                    break
                wait = self.backoff_base * (2 ** attempt)
                log.warning(
                    f"Metakocka {method} {e.error_type} — retry in {wait:.1f}s "
                    f"(attempt {attempt + 1}/{self.max_retries})"
                )
                await asyncio.sleep(wait)

        log.error(f"Metakocka {method} failed: {last_error}")
        raise last_error

    async def _request_once(self, url: str, method: str, body: dict) -> dict:
        try:
            resp = await self._client().post(url, json=body, timeout=self.timeout)
        except (httpx.TimeoutException, httpx.TransportError) as e:
            raise MetakockaError(
                "Network error while connecting to Metakocka API",
                NETWORK, "NETWORK_ERROR", str(e),
            ) from e

        if resp.status_code >= 400:
            error_type, message = classify_http_status(resp.status_code)
            raise MetakockaError(message, error_type, f"HTTP_{resp.status_code}", resp.text[:300])

        try:
            data = resp.json()
        except ValueError as e:
            raise MetakockaError(
                f"Invalid JSON from Metakocka {method}", UNKNOWN, "BAD_JSON", resp.text[:300]
            ) from e

        opr_code = str(data.get("opr_code", "0"))
        if opr_code != "0":
            message = data.get("opr_desc_app") or data.get("opr_desc") or "Unknown Metakocka API error"
            raise MetakockaError(message, classify_opr_code(opr_code), opr_code, data)
        return data

    # ── Partners (contacts) ─────────────────────────────────────────

    async def add_partner(self, partner: dict) -> dict:
        return await self.request("partner_add", partner)

    async def update_partner(self, partner: dict) -> dict:
        if not partner.get("mk_id"):
            raise MetakockaError("Partner ID (mk_id) is required for updates", VALIDATION)
        return await self.request("partner_update", partner)

    async def get_partner(self, mk_id: str) -> dict | None:
        data = await self.request("partner_get", {"mk_id": mk_id})
        return _extract_single(data, "partner_list")

    async def get_partner_by_code(self, count_code: str) -> dict | None:
        data = await self.request("partner_get", {"count_code": count_code})
        return _extract_single(data, "partner_list")

    async def list_partners(self) -> list[dict]:
        data = await self.request("partner_list", {})
        return _extract_list(data, "partner_list")

    async def search_partners(self, query: str) -> list[dict]:
        data = await self.request("partner_search", {"query": query})
        return _extract_list(data, "partner_list")

    async def find_partner_by_email(self, email: str) -> dict | None:
        """Customer lookup by email — exact (case-insensitive) match only."""
        if not email:
            return None
        target = email.strip().lower()
        for p in await self.search_partners(target):
            for field in ("email", "contact_email"):
                if (p.get(field) or "").strip().lower() == target:
                    return p
        return None

    # ── Products & inventory ────────────────────────────────────────

    async def add_product(self, product: dict) -> dict:
        return await self.request("product_add", product)

    async def update_product(self, product: dict) -> dict:
        if not product.get("mk_id"):
            raise MetakockaError("Product ID (mk_id) is required for updates", VALIDATION)
        return await self.request("product_update", product)

    async def get_product(self, mk_id: str) -> dict | None:
        data = await self.request("product_get", {"mk_id": mk_id})
        return _extract_single(data, "product_list")

    async def get_product_by_code(self, count_code: str) -> dict | None:
        data = await self.request("product_get", {"count_code": count_code})
        return _extract_single(data, "product_list")

    async def list_products(self) -> list[dict]:
        data = await self.request("product_list", {})
        return _extract_list(data, "product_list")

    async def check_inventory(self, codes: str | list[str]) -> list[dict]:
        codes = [codes] if isinstance(codes, str) else list(codes)
        data = await self.request(
            "product_check_inventory", {"product_list": [{"code": c} for c in codes]}
        )
        return _extract_list(data, "product_list")

    async def get_product_inventory(self, mk_id: str) -> dict:
        """Stock figures for one product, amounts as Decimal."""
        product = await self.get_product(mk_id)
        if not product:
            raise MetakockaError(f"Product not found with ID: {mk_id}", NOT_FOUND)
        code = product.get("code") or product.get("count_code")

        rows = await self.check_inventory(code)
        if not rows:
            raise MetakockaError(f"Inventory data not found for product: {code}", NOT_FOUND)
        inv = rows[0]
        available = safe_decimal(inv.get("amount_available"))
        if available is None:
            raise MetakockaError(
                f"Inventory for product {code} has no usable amount_available",
                VALIDATION, "MISSING_AMOUNT", details={"amount_available": inv.get("amount_available")},
            )
        return {
            "product_id": mk_id,
            "product_code": code,
            "quantity_on_hand": safe_decimal(inv.get("amount_on_warehouse"), 0),
            "quantity_reserved": safe_decimal(inv.get("amount_reserved"), 0),
            "quantity_available": available,
            "warehouse_id": inv.get("warehouse_id"),
            "warehouse_name": inv.get("warehouse_name"),
        }

    # ── Sales documents ─────────────────────────────────────────────

    async def create_sales_document(self, document: dict) -> dict:
        return await self.request(document_endpoint("put", document.get("doc_type")), document)

    async def update_sales_document(self, document: dict) -> dict:
        if not document.get("mk_id"):
            raise MetakockaError("Document ID (mk_id) is required for updates", VALIDATION)
        return await self.request(document_endpoint("update", document.get("doc_type")), document)

    async def get_sales_document(self, mk_id: str, doc_type: str) -> dict | None:
        data = await self.request(document_endpoint("get", doc_type), {"mk_id": mk_id})
        doc = _extract_single(data, "document_list")
        if doc is not None:
            doc.setdefault("doc_type", doc_type)
        return doc

    async def list_sales_documents(self, doc_type: str, filters: dict | None = None) -> list[dict]:
        data = await self.request(document_endpoint("list", doc_type), filters or {})
        docs = _extract_list(data, "document_list")
        for d in docs:
            d.setdefault("doc_type", doc_type)
        return docs

    async def list_orders_for_partner(self, partner_mk_id: str) -> list[dict]:
        """Order listing by customer."""
        return await self.list_sales_documents("order", {"partner_id": partner_mk_id})

    # ── Health ──────────────────────────────────────────────────────

    async def test_connection(self) -> bool:
        """Lightweight call to verify credentials. Raises MetakockaError on failure."""
        await self.request("product_list", {"limit": 1})
        return True
