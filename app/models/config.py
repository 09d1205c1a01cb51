"""Per-organization ERP credentials."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, Integer, String

from ..database import UTCDateTime
from ..utils.encrypted_type import EncryptedText
from .base import Base


def _now():
    return datetime.now(timezone.utc)


class ErpCredential(Base):
    """Metakocka company id + secret key for one organization."""

    __tablename__ = "erp_credentials"
    id = Column(Integer, primary_key=True)
    organization_id = Column(String(64), nullable=False, unique=True)
    company_id = Column(String(50), nullable=False)
    secret_key = Column(EncryptedText, nullable=False)
    api_endpoint = Column(String(500))  # overrides settings.metakocka_api_endpoint
    is_active = Column(Boolean, default=True)
    last_tested_at = Column(UTCDateTime)
    created_at = Column(UTCDateTime, default=_now)
    updated_at = Column(UTCDateTime, default=_now, onupdate=_now)
