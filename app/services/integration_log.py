"""Persistent integration log — ERP events and errors stored in the database.

Each entry is also emitted through the normal logger, so the log stream and
the integration_logs table tell the same story. Writing a log entry never
raises: a failure to persist is logged and dropped.

Business Rules:
- Levels: debug, info, warning, error
- Categories: api, sync, auth, mapping, inventory, alert
- Only error entries are meant to be resolved; resolving stamps resolved_at

Called by: services/entity_sync.py, services/bulk_sync.py, services/alert_service.py,
           services/inventory_service.py, routers/integrations.py
Depends on: models (IntegrationLog)
"""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models import IntegrationLog

log = logging.getLogger("erpsync.integration")

LEVELS = ("debug", "info", "warning", "error")
CATEGORIES = ("api", "sync", "auth", "mapping", "inventory", "alert")

_STDLIB_LEVEL = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

# MetakockaError.error_type → log category
_ERROR_CATEGORY = {
    "authentication": "auth",
    "validation": "mapping",
}


def category_for_error(exc: Exception, default: str = "sync") -> str:
    error_type = getattr(exc, "error_type", None)
    if error_type is None:
        return default
    return _ERROR_CATEGORY.get(error_type, "api")


def record(
    db: Session,
    level: str,
    category: str,
    message: str,
    organization_id: str | None = None,
    entity_type: str | None = None,
    local_id: int | None = None,
    external_id: str | None = None,
    details: dict | None = None,
) -> IntegrationLog | None:
    """Log and persist one integration event."""
    log.log(_STDLIB_LEVEL.get(level, logging.INFO), f"[{category}] {message}")
    entry = IntegrationLog(
        organization_id=organization_id,
        level=level,
        category=category,
        message=message[:4000],
        entity_type=entity_type,
        local_id=local_id,
        external_id=str(external_id) if external_id is not None else None,
        details=details,
    )
    try:
        db.add(entry)
        db.commit()
        return entry
    except Exception as e:
        db.rollback()
        log.error(f"Failed to persist integration log entry: {e}")
        return None


def list_logs(
    db: Session,
    organization_id: str,
    level: str | None = None,
    category: str | None = None,
    resolved: bool | None = None,
    entity_type: str | None = None,
    local_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[IntegrationLog], int]:
    """Filtered page of log entries, newest first, plus the total count."""
    q = db.query(IntegrationLog).filter(IntegrationLog.organization_id == organization_id)
    if level:
        q = q.filter(IntegrationLog.level == level)
    if category:
        q = q.filter(IntegrationLog.category == category)
    if resolved is not None:
        q = q.filter(IntegrationLog.resolved.is_(resolved))
    if entity_type:
        q = q.filter(IntegrationLog.entity_type == entity_type)
    if local_id is not None:
        q = q.filter(IntegrationLog.local_id == local_id)
    total = q.count()
    rows = (
        q.order_by(IntegrationLog.created_at.desc(), IntegrationLog.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return rows, total


def resolve(db: Session, organization_id: str, log_id: int, notes: str | None = None) -> IntegrationLog | None:
    entry = db.query(IntegrationLog).filter_by(id=log_id, organization_id=organization_id).first()
    if not entry:
        return None
    entry.resolved = True
    entry.resolution_notes = notes
    entry.resolved_at = datetime.now(timezone.utc)
    db.commit()
    return entry


def error_statistics(db: Session, organization_id: str, days: int = 7) -> dict:
    """Error/warning counts per category over the trailing window."""
    since = datetime.now(timezone.utc) - timedelta(days=days)
    rows = (
        db.query(IntegrationLog.level, IntegrationLog.category, func.count(IntegrationLog.id))
        .filter(
            IntegrationLog.organization_id == organization_id,
            IntegrationLog.created_at >= since,
            IntegrationLog.level.in_(("warning", "error")),
        )
        .group_by(IntegrationLog.level, IntegrationLog.category)
        .all()
    )
    by_category: dict[str, int] = {}
    errors = warnings = 0
    for level, category, count in rows:
        by_category[category] = by_category.get(category, 0) + count
        if level == "error":
            errors += count
        else:
            warnings += count

    unresolved = (
        db.query(func.count(IntegrationLog.id))
        .filter(
            IntegrationLog.organization_id == organization_id,
            IntegrationLog.level == "error",
            IntegrationLog.resolved.is_(False),
        )
        .scalar()
    )
    return {
        "days": days,
        "errors": errors,
        "warnings": warnings,
        "unresolved_errors": unresolved or 0,
        "by_category": by_category,
    }


def log_to_dict(entry: IntegrationLog) -> dict:
    return {
        "id": entry.id,
        "level": entry.level,
        "category": entry.category,
        "message": entry.message,
        "entity_type": entry.entity_type,
        "local_id": entry.local_id,
        "external_id": entry.external_id,
        "details": entry.details,
        "resolved": bool(entry.resolved),
        "resolution_notes": entry.resolution_notes,
        "resolved_at": entry.resolved_at.isoformat() if entry.resolved_at else None,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }
