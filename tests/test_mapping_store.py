"""
test_mapping_store.py — Tests for mapping upserts, orphans, and stats.

Called by: pytest
Depends on: app/services/mapping_store.py
"""

from datetime import datetime, timezone

from app.models import SyncMapping
from app.services.mapping_store import (
    apply_state,
    find_orphaned_mappings,
    get_mapping,
    get_mapping_by_external,
    mapped_external_ids,
    mapping_stats,
    mapping_to_dict,
    synced_local_ids,
)
from app.services.sync_state import Error, Pending, Synced

ORG = "org-test"
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def test_apply_state_upserts_one_row(db_session):
    _, created = apply_state(db_session, ORG, "contact", 1, Pending())
    assert created is True
    mapping, created = apply_state(db_session, ORG, "contact", 1, Synced(at=NOW), external_id="55")
    assert created is False
    assert db_session.query(SyncMapping).count() == 1
    assert mapping.sync_status == "synced"
    assert mapping.external_id == "55"


def test_error_keeps_identifiers(db_session):
    apply_state(db_session, ORG, "product", 3, Synced(at=NOW), external_id="9", external_code="W-1")
    mapping, _ = apply_state(db_session, ORG, "product", 3, Error(reason="boom", last_synced_at=NOW))
    assert mapping.sync_status == "error"
    assert mapping.last_error == "boom"
    assert mapping.external_id == "9"
    assert mapping.external_code == "W-1"


def test_same_local_id_different_types(db_session):
    apply_state(db_session, ORG, "order", 7, Synced(at=NOW), external_id="1")
    apply_state(db_session, ORG, "document", 7, Synced(at=NOW), external_id="1")
    assert get_mapping(db_session, ORG, "order", 7).id != get_mapping(db_session, ORG, "document", 7).id


def test_lookup_by_external(db_session):
    apply_state(db_session, ORG, "contact", 4, Synced(at=NOW), external_id="88")
    assert get_mapping_by_external(db_session, ORG, "contact", "88").local_id == 4
    assert get_mapping_by_external(db_session, ORG, "product", "88") is None
    assert get_mapping_by_external(db_session, ORG, "contact", None) is None


def test_lookups_are_per_organization(db_session):
    apply_state(db_session, ORG, "contact", 4, Synced(at=NOW), external_id="88")
    # another organization may map the same ERP id to its own entity
    apply_state(db_session, "org-B", "contact", 5, Synced(at=NOW), external_id="88")

    assert get_mapping_by_external(db_session, ORG, "contact", "88").local_id == 4
    assert get_mapping_by_external(db_session, "org-B", "contact", "88").local_id == 5
    assert get_mapping(db_session, "org-B", "contact", 4) is None
    assert db_session.query(SyncMapping).count() == 2


def test_id_sets(db_session):
    apply_state(db_session, ORG, "contact", 1, Synced(at=NOW), external_id="a")
    apply_state(db_session, ORG, "contact", 2, Error(reason="x"))
    apply_state(db_session, ORG, "contact", 3, Error(reason="y"), external_id="c")
    assert mapped_external_ids(db_session, ORG, "contact") == {"a", "c"}
    assert synced_local_ids(db_session, ORG, "contact") == {1}


def test_orphaned_mappings(db_session, make_contact):
    kept = make_contact()
    apply_state(db_session, ORG, "contact", kept.id, Synced(at=NOW), external_id="1")
    apply_state(db_session, ORG, "contact", 9999, Synced(at=NOW), external_id="2")

    orphans = find_orphaned_mappings(db_session, ORG, "contact")
    assert [m.local_id for m in orphans] == [9999]


def test_stats(db_session):
    apply_state(db_session, ORG, "contact", 1, Synced(at=NOW), external_id="a")
    apply_state(db_session, ORG, "contact", 2, Error(reason="x"))
    apply_state(db_session, ORG, "product", 1, Pending())
    apply_state(db_session, "other-org", "product", 2, Pending())

    stats = mapping_stats(db_session, ORG)
    assert stats["contact"] == {"pending": 0, "synced": 1, "error": 1, "total": 2}
    assert stats["product"]["pending"] == 1
    assert stats["product"]["total"] == 1
    assert stats["order"]["total"] == 0


def test_mapping_to_dict(db_session):
    mapping, _ = apply_state(db_session, ORG, "document", 5, Synced(at=NOW), external_id="3",
                             external_doc_type="invoice", external_number="R-2026-3")
    data = mapping_to_dict(mapping)
    assert data["external_doc_type"] == "invoice"
    assert data["last_synced_at"].startswith("2026-03-01T12:00")
