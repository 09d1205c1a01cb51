"""Sync models — ERP mappings, sync intents (outbox), and integration logs."""

from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, Index, Integer, String, Text

from ..database import UTCDateTime
from .base import Base


def _now():
    return datetime.now(timezone.utc)


ENTITY_TYPES = ("contact", "product", "order", "document")
SYNC_STATUSES = ("pending", "synced", "error")


class SyncMapping(Base):
    """Links one local entity to its counterpart in the ERP.

    No foreign key to the entity: a deleted contact or
    product leaves its mapping behind (see find_orphaned_mappings).
    """

    __tablename__ = "sync_mappings"
    id = Column(Integer, primary_key=True)
    organization_id = Column(String(64), nullable=False, index=True)
    entity_type = Column(String(20), nullable=False)  # contact | product | order | document
    local_id = Column(Integer, nullable=False)
    external_id = Column(String(100))  # ERP mk_id; NULL until the first success
    external_code = Column(String(100))  # ERP count_code
    external_doc_type = Column(String(30))  # documents only: order, invoice, offer, proforma
    external_number = Column(String(100))  # documents only: ERP document number
    sync_status = Column(String(20), nullable=False, default="pending")
    last_synced_at = Column(UTCDateTime)
    last_error = Column(Text)

    created_at = Column(UTCDateTime, default=_now)
    updated_at = Column(UTCDateTime, default=_now, onupdate=_now)

    __table_args__ = (
        Index("ix_sync_mapping_local", "organization_id", "entity_type", "local_id", unique=True),
        Index("ix_sync_mapping_external", "organization_id", "entity_type", "external_id", unique=True),
        Index("ix_sync_mapping_status", "organization_id", "entity_type", "sync_status"),
    )


class SyncIntent(Base):
    """Outbox row written before an ERP call and closed after it.

    An intent left open means the process died between the ERP call and the
    mapping write; the reconciliation sweep repairs those.
    """

    __tablename__ = "sync_intents"
    id = Column(Integer, primary_key=True)
    idempotency_key = Column(String(64), nullable=False, unique=True)
    organization_id = Column(String(64), nullable=False)
    entity_type = Column(String(20), nullable=False)
    local_id = Column(Integer)
    external_id = Column(String(100))
    external_code = Column(String(100))
    direction = Column(String(20), nullable=False)  # to-external | from-external
    status = Column(String(20), nullable=False, default="open")  # open | completed | failed
    error = Column(Text)
    created_at = Column(UTCDateTime, default=_now)
    completed_at = Column(UTCDateTime)

    __table_args__ = (Index("ix_sync_intent_status_created", "status", "created_at"),)


class IntegrationLog(Base):
    """Persisted ERP integration event, kept until resolved."""

    __tablename__ = "integration_logs"
    id = Column(Integer, primary_key=True)
    organization_id = Column(String(64), index=True)
    level = Column(String(10), nullable=False)  # debug | info | warning | error
    category = Column(String(20), nullable=False)  # api | sync | auth | mapping | inventory | alert
    message = Column(Text, nullable=False)
    entity_type = Column(String(20))
    local_id = Column(Integer)
    external_id = Column(String(100))
    details = Column(JSON)
    resolved = Column(Boolean, default=False)
    resolution_notes = Column(Text)
    resolved_at = Column(UTCDateTime)
    created_at = Column(UTCDateTime, default=_now)

    __table_args__ = (
        Index("ix_integration_logs_org_created", "organization_id", "created_at"),
        Index("ix_integration_logs_level", "level", "resolved"),
    )
