"""Database models — re-exports all models.

Import from here:  from app.models import Contact, SyncMapping, ...
Or from submodules: from app.models.sync import SyncMapping
"""

from .base import Base  # noqa: F401

# Local CRM entities
from .crm import Contact, Product, SalesDocument, SalesDocumentItem  # noqa: F401

# ERP sync state
from .sync import IntegrationLog, SyncIntent, SyncMapping  # noqa: F401

# Inventory
from .inventory import AlertAcknowledgement, InventoryAlert, InventorySnapshot  # noqa: F401

# Credentials
from .config import ErpCredential  # noqa: F401
