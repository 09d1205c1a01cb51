"""
dependencies.py — Shared FastAPI Dependencies

Resolves the calling organization and builds its Metakocka client. All
routers import from here instead of reading headers themselves.

Business Rules:
- Every integration/inventory request names its organization in X-Organization-Id
- A missing or blank header is a 400
- get_erp_client raises 409 when the organization has no active credentials

Called by: routers/integrations.py, routers/inventory.py
Depends on: database, services/credential_service.py
"""

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from .connectors.metakocka import MetakockaClient
from .database import get_db
from .services.credential_service import CredentialsMissing, client_for_organization


def require_organization(x_organization_id: str | None = Header(default=None)) -> str:
    """Dependency: organization id from the X-Organization-Id header."""
    org = (x_organization_id or "").strip()
    if not org:
        raise HTTPException(400, "X-Organization-Id header is required")
    return org


def get_erp_client(
    organization_id: str = Depends(require_organization),
    db: Session = Depends(get_db),
) -> MetakockaClient:
    """Dependency: Metakocka client for the organization, 409 if not configured."""
    try:
        return client_for_organization(db, organization_id)
    except CredentialsMissing as e:
        raise HTTPException(409, str(e))
