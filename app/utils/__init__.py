"""Shared utility helpers used across connectors and services."""

from decimal import Decimal, InvalidOperation


def safe_decimal(v, default=None):
    """Convert an ERP amount ("12.5", 12.5, None) to Decimal, or default on failure."""
    if v is None or v == "":
        return default
    if isinstance(v, Decimal):
        return v
    try:
        # str() first so floats don't carry binary noise into the Decimal
        return Decimal(str(v).strip().replace(",", "."))
    except (InvalidOperation, ValueError, TypeError):
        return default


def safe_str(v) -> str | None:
    """Stringify a value for ERP payloads; None stays None."""
    if v is None:
        return None
    if isinstance(v, Decimal):
        return format(v.normalize(), "f")
    return str(v)
