"""Background scheduler — periodic ERP housekeeping owned by the app, not a page.

Runs a one-minute tick loop. Each tick checks what needs to run:
  - Alert pass: every alert_check_interval_minutes — re-evaluates active alerts
  - Inventory refresh: every inventory_refresh_interval_minutes (0 = off),
    per organization with active credentials
  - Intent sweep: every intent_stale_minutes — repairs or fails orphaned intents
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone

log = logging.getLogger("erpsync.scheduler")

TICK_SECONDS = 60

_last_run: dict[str, datetime] = {}


def _due(job: str, interval_minutes: int, now: datetime) -> bool:
    """True if `job` hasn't run within interval_minutes. Zero disables the job."""
    if interval_minutes <= 0:
        return False
    last = _last_run.get(job)
    if last is None or now - last >= timedelta(minutes=interval_minutes):
        _last_run[job] = now
        return True
    return False


def reset_schedule() -> None:
    _last_run.clear()


# ── Main Scheduler Loop ─────────────────────────────────────────────────


async def start_scheduler():
    """Launch the background scheduler loop. Call once on app startup."""
    from .config import settings

    log.info(
        f"Background scheduler started — alert check every {settings.alert_check_interval_minutes} min"
    )

    # Let the app finish booting before the first tick
    await asyncio.sleep(5)

    while True:
        try:
            await _scheduler_tick()
        except Exception as e:
            log.error(f"Scheduler tick error: {e}")
        await asyncio.sleep(TICK_SECONDS)


async def _scheduler_tick(now: datetime | None = None):
    """Check what jobs need to run this tick."""
    from .config import settings

    now = now or datetime.now(timezone.utc)

    if _due("alerts", settings.alert_check_interval_minutes, now):
        await _run_alert_pass()

    if _due("inventory", settings.inventory_refresh_interval_minutes, now):
        await _run_inventory_refresh()

    if _due("intents", settings.intent_stale_minutes, now):
        await _run_intent_sweep()


async def _run_alert_pass():
    from .database import SessionLocal
    from .services.alert_service import run_evaluation_pass

    db = SessionLocal()
    try:
        run_evaluation_pass(db)
    except Exception as e:
        log.error(f"Alert evaluation error: {e}")
        db.rollback()
    finally:
        db.close()


async def _run_inventory_refresh():
    from .database import SessionLocal
    from .services.credential_service import active_organizations, client_for_organization
    from .services.inventory_service import refresh_all_inventory

    db = SessionLocal()
    try:
        for org in active_organizations(db):
            try:
                client = client_for_organization(db, org)
                res = await refresh_all_inventory(db, client, org)
                log.info(f"Inventory refresh for {org}: {res['synced_count']} ok, {res['error_count']} failed")
            except Exception as e:
                log.error(f"Inventory refresh error for {org}: {e}")
                db.rollback()
    finally:
        db.close()


async def _run_intent_sweep():
    from .database import SessionLocal
    from .services.credential_service import active_organizations, client_for_organization
    from .services.intent_service import reconcile_orphaned_intents

    db = SessionLocal()
    try:
        for org in active_organizations(db):
            try:
                client = client_for_organization(db, org)
                await reconcile_orphaned_intents(db, client, org)
            except Exception as e:
                log.error(f"Intent sweep error for {org}: {e}")
                db.rollback()
    finally:
        db.close()
