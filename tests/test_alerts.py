"""
test_alerts.py — Tests for inventory alert evaluation, acknowledgement, and CRUD.

Covers the inclusive threshold boundary, frozen inactive alerts, the
re-trigger after acknowledgement, and the restock scenario.

Called by: pytest
Depends on: app/services/alert_service.py, app/services/inventory_service.py
"""

from decimal import Decimal

import pytest

from app.models import AlertAcknowledgement, IntegrationLog
from app.services import alert_service
from app.services.alert_service import AlertError, evaluate, run_evaluation_pass
from app.services.inventory_service import upsert_snapshot

ORG = "org-test"


def _stock(db, product_id, available):
    upsert_snapshot(db, ORG, product_id, {
        "product_id": f"mk-{product_id}",
        "quantity_on_hand": Decimal(available),
        "quantity_reserved": Decimal(0),
        "quantity_available": Decimal(available),
    })


@pytest.fixture()
def product(make_product):
    return make_product(name="Bolt")


# ── evaluate() ───────────────────────────────────────────────────────


def test_boundary_is_inclusive():
    assert evaluate(Decimal(5), Decimal(5)) is True
    assert evaluate(Decimal(5), Decimal(6)) is False
    assert evaluate(Decimal(5), Decimal(4)) is True


def test_fractional_quantities():
    assert evaluate(Decimal("0.5"), Decimal("0.5")) is True
    assert evaluate(Decimal("0.5"), Decimal("0.51")) is False
    assert evaluate("2.25", "2.2") is True


# ── Evaluation pass ──────────────────────────────────────────────────


def test_threshold_five(db_session, product):
    alert = alert_service.create_alert(db_session, ORG, product.id, Decimal(5))

    _stock(db_session, product.id, 5)
    run_evaluation_pass(db_session)
    assert alert.is_triggered is True

    _stock(db_session, product.id, 6)
    run_evaluation_pass(db_session)
    assert alert.is_triggered is False


def test_restock_clears_without_explicit_call(db_session, product):
    alert = alert_service.create_alert(db_session, ORG, product.id, Decimal(10))
    _stock(db_session, product.id, 8)
    first = run_evaluation_pass(db_session)
    assert alert.is_triggered is True
    assert first["triggered"] == 1

    _stock(db_session, product.id, 12)
    second = run_evaluation_pass(db_session)
    assert alert.is_triggered is False
    assert second["cleared"] == 1


def test_inactive_alert_is_frozen(db_session, product):
    alert = alert_service.create_alert(db_session, ORG, product.id, Decimal(5))
    _stock(db_session, product.id, 3)
    run_evaluation_pass(db_session)
    assert alert.is_triggered is True

    alert_service.update_alert(db_session, alert, is_active=False)
    for qty in (100, 1, 50, 0):
        _stock(db_session, product.id, qty)
        counts = run_evaluation_pass(db_session)
        assert counts["evaluated"] == 0
        assert alert.is_triggered is True


def test_inactive_untriggered_stays_untriggered(db_session, product):
    alert = alert_service.create_alert(db_session, ORG, product.id, Decimal(5), is_active=False)
    _stock(db_session, product.id, 0)
    run_evaluation_pass(db_session)
    assert alert.is_triggered is False


def test_acknowledge_does_not_clear_and_pass_retriggers(db_session, product):
    alert = alert_service.create_alert(db_session, ORG, product.id, Decimal(5))
    _stock(db_session, product.id, 2)
    run_evaluation_pass(db_session)

    ack = alert_service.acknowledge_alert(db_session, alert, user="maja", note="ordered more")
    assert ack.id is not None
    assert alert.is_active is True
    assert alert.is_triggered is True
    assert alert.acknowledged_at is not None

    run_evaluation_pass(db_session)
    assert alert.is_triggered is True
    assert alert.is_active is True
    assert db_session.query(AlertAcknowledgement).filter_by(alert_id=alert.id).count() == 1


def test_alert_without_snapshot_is_skipped(db_session, product):
    alert = alert_service.create_alert(db_session, ORG, product.id, Decimal(5))
    counts = run_evaluation_pass(db_session)
    assert counts == {"evaluated": 0, "triggered": 0, "cleared": 0, "skipped": 1}
    assert alert.is_triggered is False
    assert alert.last_evaluated_at is None


def test_trigger_is_logged_once(db_session, product):
    alert_service.create_alert(db_session, ORG, product.id, Decimal(5))
    _stock(db_session, product.id, 1)
    run_evaluation_pass(db_session)
    run_evaluation_pass(db_session)

    logs = db_session.query(IntegrationLog).filter_by(category="alert").all()
    assert len(logs) == 1
    assert "product" in logs[0].message


def test_pass_scoped_to_organization(db_session, product):
    alert_service.create_alert(db_session, ORG, product.id, Decimal(5))
    _stock(db_session, product.id, 1)
    counts = run_evaluation_pass(db_session, organization_id="other-org")
    assert counts["evaluated"] == 0


# ── CRUD ─────────────────────────────────────────────────────────────


def test_create_alert_unknown_product(db_session):
    with pytest.raises(AlertError):
        alert_service.create_alert(db_session, ORG, 9999, Decimal(1))


def test_negative_threshold_rejected(db_session, product):
    with pytest.raises(AlertError):
        alert_service.create_alert(db_session, ORG, product.id, Decimal(-1))


def test_list_and_delete(db_session, make_product):
    a = alert_service.create_alert(db_session, ORG, make_product(name="A").id, Decimal(1))
    b_product = make_product(name="B")
    b = alert_service.create_alert(db_session, ORG, b_product.id, Decimal(100))
    _stock(db_session, b_product.id, 50)
    run_evaluation_pass(db_session)

    assert [x.id for x in alert_service.list_alerts(db_session, ORG)] == [a.id, b.id]
    assert [x.id for x in alert_service.list_alerts(db_session, ORG, triggered_only=True)] == [b.id]

    alert_service.delete_alert(db_session, a)
    assert [x.id for x in alert_service.list_alerts(db_session, ORG)] == [b.id]


def test_alert_to_dict(db_session, product):
    alert = alert_service.create_alert(db_session, ORG, product.id, Decimal("2.50"))
    data = alert_service.alert_to_dict(alert)
    assert data["threshold_quantity"] == "2.5"
    assert data["is_active"] is True
    assert data["is_triggered"] is False
