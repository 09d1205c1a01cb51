"""SQLAlchemy TypeDecorator for transparent Fernet encryption of ERP secrets."""

import base64
import logging

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from sqlalchemy import Text, TypeDecorator

log = logging.getLogger(__name__)


def _get_fernet() -> Fernet:
    """Derive a Fernet key from the app secret key."""
    from ..config import settings

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=b"erpsync-credential-encryption-v1",
        iterations=100_000,
    )
    key = base64.urlsafe_b64encode(kdf.derive(settings.secret_key.encode()))
    return Fernet(key)


def mask_value(plaintext: str) -> str:
    """Mask a secret for display: show last 4 chars only."""
    if not plaintext:
        return ""
    if len(plaintext) <= 4:
        return "****"
    return "●" * min(8, len(plaintext) - 4) + plaintext[-4:]


class EncryptedText(TypeDecorator):
    """Transparently encrypts/decrypts text values stored in the database."""
    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return _get_fernet().encrypt(value.encode()).decode()

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        try:
            return _get_fernet().decrypt(value.encode()).decode()
        except InvalidToken:
            # Plaintext rows written before encryption was turned on
            log.warning("Stored credential is not encrypted; returning as-is")
            return value
