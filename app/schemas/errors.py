"""
schemas/errors.py — Error envelope returned by the API

Input problems (unknown entity type, missing organization header, bulk
over the item limit, validation) come back in this shape. Per-item sync
failures are not HTTP errors; they live in the SyncOutcome/BulkSyncResult
bodies.

Called by: main.py (exception handlers)
Depends on: pydantic
"""

from fastapi import Request
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    error: str
    status_code: int
    request_id: str = ""
    detail: list | None = None


def error_body(request: Request, status_code: int, error: str, detail: list | None = None) -> dict:
    """ErrorResponse as a dict, stamped with the middleware's request id."""
    request_id = getattr(request.state, "request_id", "")
    return ErrorResponse(
        error=error, status_code=status_code, request_id=request_id, detail=detail
    ).model_dump()
