"""
conftest.py — Shared Test Fixtures for the ERP sync service

Provides an in-memory SQLite database, a fake Metakocka client that keeps
ERP records in dicts and records every call, a FastAPI TestClient with the
DB and ERP client overridden, and factory fixtures for the local entities.

Business Rules:
- All tests run against an isolated in-memory DB
- No test talks to the network; the ERP is always the fake client
- Each test function gets fresh tables

Called by: all test files via pytest autodiscovery
Depends on: app.models (Base), app.database (get_db), app.dependencies
"""

import os
os.environ["TESTING"] = "1"  # Must be set before importing app modules
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RATE_LIMIT_ENABLED"] = "false"

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.connectors.metakocka import NOT_FOUND, MetakockaError
from app.models import Base, Contact, Product, SalesDocument, SalesDocumentItem

ORG = "org-test"

# ── In-memory SQLite engine ──────────────────────────────────────────

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@event.listens_for(engine, "connect")
def _enable_fk(dbapi_conn, _):
    """SQLite ignores FKs by default — turn them on."""
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


# ── Fake ERP ─────────────────────────────────────────────────────────


class FakeMetakockaClient:
    """In-memory stand-in for MetakockaClient.

    Records live in dicts keyed by mk_id. `calls` lists every method name
    invoked. Put a method name in `fail` (name → MetakockaError) to make it
    raise; put count codes in `fail_codes` to reject only those records.
    """

    def __init__(self):
        self.partners: dict[str, dict] = {}
        self.products: dict[str, dict] = {}
        self.documents: dict[str, dict] = {}
        self.inventory: dict[str, dict] = {}
        self.calls: list[str] = []
        self.fail: dict[str, Exception] = {}
        self.fail_codes: set[str] = set()
        self._next_id = 1000

    def _call(self, name: str, record: dict | None = None):
        self.calls.append(name)
        if name in self.fail:
            raise self.fail[name]
        if record and record.get("count_code") in self.fail_codes:
            raise MetakockaError(f"Rejected {record['count_code']}", "validation", "2")

    def _new_id(self) -> str:
        self._next_id += 1
        return str(self._next_id)

    # partners
    async def add_partner(self, partner):
        self._call("add_partner", partner)
        mk_id = self._new_id()
        self.partners[mk_id] = {**partner, "mk_id": mk_id}
        return {"opr_code": "0", "mk_id": mk_id}

    async def update_partner(self, partner):
        self._call("update_partner", partner)
        self.partners[partner["mk_id"]] = dict(partner)
        return {"opr_code": "0", "mk_id": partner["mk_id"]}

    async def get_partner(self, mk_id):
        self._call("get_partner")
        p = self.partners.get(str(mk_id))
        return dict(p) if p else None

    async def get_partner_by_code(self, count_code):
        self._call("get_partner_by_code")
        for p in self.partners.values():
            if p.get("count_code") == count_code:
                return dict(p)
        raise MetakockaError("Partner not found", NOT_FOUND, "HTTP_404")

    async def list_partners(self):
        self._call("list_partners")
        return [dict(p) for p in self.partners.values()]

    async def find_partner_by_email(self, email):
        self._call("find_partner_by_email")
        for p in self.partners.values():
            if (p.get("email") or "").lower() == email.lower():
                return dict(p)
        return None

    # products
    async def add_product(self, product):
        self._call("add_product", product)
        mk_id = self._new_id()
        self.products[mk_id] = {**product, "mk_id": mk_id}
        return {"opr_code": "0", "mk_id": mk_id}

    async def update_product(self, product):
        self._call("update_product", product)
        self.products[product["mk_id"]] = dict(product)
        return {"opr_code": "0", "mk_id": product["mk_id"]}

    async def get_product(self, mk_id):
        self._call("get_product")
        p = self.products.get(str(mk_id))
        return dict(p) if p else None

    async def get_product_by_code(self, count_code):
        self._call("get_product_by_code")
        for p in self.products.values():
            if p.get("count_code") == count_code:
                return dict(p)
        return None

    async def list_products(self):
        self._call("list_products")
        return [dict(p) for p in self.products.values()]

    async def get_product_inventory(self, mk_id):
        self._call("get_product_inventory")
        inv = self.inventory.get(str(mk_id))
        if inv is None:
            raise MetakockaError(f"Inventory data not found for product: {mk_id}", NOT_FOUND)
        return {"product_id": str(mk_id), "product_code": f"CODE-{mk_id}", **inv}

    # documents
    async def create_sales_document(self, document):
        self._call("create_sales_document", document)
        mk_id = self._new_id()
        self.documents[mk_id] = {**document, "mk_id": mk_id}
        return {"opr_code": "0", "mk_id": mk_id, "count_code": document.get("count_code")}

    async def update_sales_document(self, document):
        self._call("update_sales_document", document)
        self.documents[document["mk_id"]] = dict(document)
        return {"opr_code": "0", "mk_id": document["mk_id"]}

    async def get_sales_document(self, mk_id, doc_type):
        self._call("get_sales_document")
        d = self.documents.get(str(mk_id))
        if d is None or d.get("doc_type") != doc_type:
            return None
        return dict(d)

    async def list_sales_documents(self, doc_type, filters=None):
        self._call("list_sales_documents")
        return [dict(d) for d in self.documents.values() if d.get("doc_type") == doc_type]

    async def test_connection(self):
        self._call("test_connection")
        return True


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def db_session():
    """Create all tables, yield a session, then tear down."""
    Base.metadata.create_all(bind=engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def fake_erp() -> FakeMetakockaClient:
    return FakeMetakockaClient()


@pytest.fixture()
def syncer(db_session: Session, fake_erp: FakeMetakockaClient):
    from app.services.entity_sync import EntitySyncer

    return EntitySyncer(db_session, fake_erp, ORG)


@pytest.fixture()
def make_contact(db_session: Session):
    def _make(**kw) -> Contact:
        fields = {"firstname": "Ana", "lastname": "Novak", "email": "ana@example.com"}
        fields.update(kw)
        c = Contact(organization_id=ORG, **fields)
        db_session.add(c)
        db_session.commit()
        db_session.refresh(c)
        return c

    return _make


@pytest.fixture()
def make_product(db_session: Session):
    def _make(**kw) -> Product:
        fields = {"name": "Widget", "sku": None, "price": Decimal("9.90"), "tax_rate": Decimal("22")}
        fields.update(kw)
        p = Product(organization_id=ORG, **fields)
        db_session.add(p)
        db_session.commit()
        db_session.refresh(p)
        return p

    return _make


@pytest.fixture()
def make_document(db_session: Session):
    def _make(document_type="order", customer=None, products=(), **kw) -> SalesDocument:
        doc = SalesDocument(
            organization_id=ORG,
            document_type=document_type,
            customer_id=customer.id if customer else None,
            document_date="2026-03-01",
            **kw,
        )
        for product in products:
            doc.items.append(SalesDocumentItem(
                product_id=product.id,
                description=product.name,
                quantity=Decimal("2"),
                unit_price=product.price,
            ))
        if not products:
            doc.items.append(SalesDocumentItem(description="Service hour", quantity=Decimal("1"),
                                               unit_price=Decimal("50")))
        db_session.add(doc)
        db_session.commit()
        db_session.refresh(doc)
        return doc

    return _make


@pytest.fixture()
def client(db_session: Session, fake_erp: FakeMetakockaClient) -> TestClient:
    """FastAPI TestClient with the DB and ERP client overridden."""
    from app.database import get_db
    from app.dependencies import get_erp_client
    from app.main import app

    def _override_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_db
    app.dependency_overrides[get_erp_client] = lambda: fake_erp

    with TestClient(app, headers={"X-Organization-Id": ORG}) as c:
        yield c

    app.dependency_overrides.clear()
