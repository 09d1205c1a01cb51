"""
credential_service.py — Per-organization Metakocka credentials.

The secret key is encrypted at rest (EncryptedText column). Plaintext is
never returned through the API, only a masked value.

Business Rules:
- One credential row per organization; saving again overwrites it
- An inactive or missing credential means the organization can't sync
- check_connection stamps last_tested_at only on success

Called by: dependencies.py, routers/integrations.py, scheduler.py
Depends on: models (ErpCredential), connectors/metakocka.py
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from ..connectors.metakocka import MetakockaClient
from ..models import ErpCredential
from ..utils.encrypted_type import mask_value

log = logging.getLogger("erpsync.credentials")


class CredentialsMissing(Exception):
    """Organization has no active Metakocka credentials."""


def get_credential(db: Session, organization_id: str) -> ErpCredential | None:
    return db.query(ErpCredential).filter_by(organization_id=organization_id).first()


def save_credential(
    db: Session,
    organization_id: str,
    company_id: str,
    secret_key: str,
    api_endpoint: str | None = None,
    is_active: bool = True,
) -> ErpCredential:
    cred = get_credential(db, organization_id)
    if cred is None:
        cred = ErpCredential(organization_id=organization_id)
        db.add(cred)
    cred.company_id = company_id
    cred.secret_key = secret_key
    cred.api_endpoint = api_endpoint
    cred.is_active = is_active
    db.commit()
    db.refresh(cred)
    log.info(f"Saved Metakocka credentials for organization {organization_id}")
    return cred


def client_for_organization(db: Session, organization_id: str, **kwargs) -> MetakockaClient:
    """Build a MetakockaClient for the organization or raise CredentialsMissing."""
    cred = get_credential(db, organization_id)
    if not cred or not cred.is_active:
        raise CredentialsMissing(f"No active Metakocka credentials for {organization_id}")
    return MetakockaClient.from_credential(cred, **kwargs)


def active_organizations(db: Session) -> list[str]:
    rows = db.query(ErpCredential.organization_id).filter(ErpCredential.is_active.is_(True)).all()
    return [r[0] for r in rows]


async def check_connection(db: Session, organization_id: str) -> dict:
    """Call the ERP with the stored credentials. Never raises."""
    try:
        client = client_for_organization(db, organization_id)
        await client.test_connection()
    except CredentialsMissing as e:
        return {"success": False, "error": str(e)}
    except Exception as e:
        return {"success": False, "error": str(e), "type": getattr(e, "error_type", "unknown")}

    cred = get_credential(db, organization_id)
    cred.last_tested_at = datetime.now(timezone.utc)
    db.commit()
    return {"success": True}


def credential_to_dict(cred: ErpCredential) -> dict:
    return {
        "organization_id": cred.organization_id,
        "company_id": cred.company_id,
        "secret_key": mask_value(cred.secret_key),
        "api_endpoint": cred.api_endpoint,
        "is_active": bool(cred.is_active),
        "last_tested_at": cred.last_tested_at.isoformat() if cred.last_tested_at else None,
    }
