"""
schemas/sync.py — Pydantic models for the Metakocka integration endpoints

Business Rules:
- direction is to-external or from-external
- Bulk ids are optional; omitted means "all unsynced"
- Credentials need a non-blank company_id and secret_key

Called by: routers/integrations.py
Depends on: pydantic
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, field_validator


class BulkSyncRequest(BaseModel):
    ids: list[int | str] | None = None
    direction: Literal["to-external", "from-external"] = "to-external"
    doc_type: str | None = None


class SyncOutcomeOut(BaseModel):
    success: bool
    entity_type: str
    local_id: int | None = None
    external_id: str | None = None
    created: bool = False
    error: str | None = None


class BulkSyncOut(BaseModel):
    success: bool
    total: int = 0
    created: int = 0
    updated: int = 0
    failed: int = 0
    skipped: int = 0
    cancelled: bool = False
    error: str | None = None
    errors: list[dict] = []


class CredentialsIn(BaseModel):
    company_id: str
    secret_key: str
    api_endpoint: str | None = None
    is_active: bool = True

    @field_validator("company_id", "secret_key")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class ResolveLogIn(BaseModel):
    notes: str | None = None
