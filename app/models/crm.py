"""Local CRM entities — contacts, products, and sales documents.

These are the rows the ERP sync reads from and writes into. The CRM screens
that create them live elsewhere; only the columns sync touches are modeled.
"""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, ForeignKey, Index, Integer, JSON, Numeric, String, Text
from sqlalchemy.orm import relationship

from ..database import UTCDateTime
from .base import Base


def _now():
    return datetime.now(timezone.utc)


class Contact(Base):
    """A person or business the organization sells to (ERP "partner")."""

    __tablename__ = "contacts"
    id = Column(Integer, primary_key=True)
    organization_id = Column(String(64), nullable=False, index=True)
    firstname = Column(String(255), default="")
    lastname = Column(String(255), default="")
    full_name = Column(String(500))
    email = Column(String(255), index=True)
    phone = Column(String(100))
    company = Column(String(255))  # set → business partner in the ERP
    address = Column(String(500))
    city = Column(String(255))
    postal_code = Column(String(50))
    country = Column(String(100))
    tax_id = Column(String(100))
    notes = Column(Text)

    created_at = Column(UTCDateTime, default=_now)
    updated_at = Column(UTCDateTime, default=_now, onupdate=_now)

    @property
    def display_name(self) -> str:
        if self.full_name:
            return self.full_name
        return f"{self.firstname or ''} {self.lastname or ''}".strip()


class Product(Base):
    __tablename__ = "products"
    id = Column(Integer, primary_key=True)
    organization_id = Column(String(64), nullable=False, index=True)
    name = Column(String(500), nullable=False)
    sku = Column(String(100), index=True)
    description = Column(Text)
    unit = Column(String(50), default="piece")
    price = Column(Numeric(14, 4))
    tax_rate = Column(Numeric(6, 2))
    is_service = Column(Boolean, default=False)

    created_at = Column(UTCDateTime, default=_now)
    updated_at = Column(UTCDateTime, default=_now, onupdate=_now)


class SalesDocument(Base):
    """Order, invoice, quote, or proforma — synced as ERP sales documents."""

    __tablename__ = "sales_documents"
    id = Column(Integer, primary_key=True)
    organization_id = Column(String(64), nullable=False, index=True)
    document_type = Column(String(30), nullable=False)  # order | invoice | quote | proforma
    document_number = Column(String(100))
    customer_id = Column(Integer, ForeignKey("contacts.id", ondelete="SET NULL"))
    document_date = Column(String(10))  # ISO date, as the ERP expects it
    due_date = Column(String(10))
    status = Column(String(30), default="draft")
    currency_code = Column(String(3), default="EUR")
    payment_method = Column(String(50))
    notes = Column(Text)
    total_amount = Column(Numeric(14, 4))
    metadata_json = Column("metadata", JSON)

    created_at = Column(UTCDateTime, default=_now)
    updated_at = Column(UTCDateTime, default=_now, onupdate=_now)

    customer = relationship("Contact")
    items = relationship(
        "SalesDocumentItem",
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="SalesDocumentItem.id",
    )

    __table_args__ = (Index("ix_sales_documents_org_type", "organization_id", "document_type"),)


class SalesDocumentItem(Base):
    __tablename__ = "sales_document_items"
    id = Column(Integer, primary_key=True)
    document_id = Column(
        Integer, ForeignKey("sales_documents.id", ondelete="CASCADE"), nullable=False
    )
    product_id = Column(Integer, ForeignKey("products.id", ondelete="SET NULL"))
    description = Column(String(500))
    quantity = Column(Numeric(14, 4), default=1)
    unit_price = Column(Numeric(14, 4), default=0)
    discount = Column(Numeric(6, 2), default=0)
    tax_rate = Column(Numeric(6, 2), default=0)

    document = relationship("SalesDocument", back_populates="items")
