"""Sync state as a tagged union with a pure transition function.

A mapping row stores its state in three columns (sync_status,
last_synced_at, last_error). Everything that decides what those columns
should become goes through transition(); the mapping store only converts
between the union and the columns.

    Pending ──Succeeded(at)──▶ Synced(at)
       │                          │
       └──Failed(reason)──▶ Error(reason, last_synced_at)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


# ── States ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Pending:
    status = "pending"


@dataclass(frozen=True)
class Synced:
    at: datetime
    status = "synced"


@dataclass(frozen=True)
class Error:
    reason: str
    last_synced_at: datetime | None = None  # kept from an earlier success
    status = "error"


SyncState = Pending | Synced | Error


# ── Events ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Started:
    pass


@dataclass(frozen=True)
class Succeeded:
    at: datetime


@dataclass(frozen=True)
class Failed:
    reason: str


SyncEvent = Started | Succeeded | Failed


def transition(current: SyncState | None, event: SyncEvent) -> SyncState:
    """Return the next state. Pure: no I/O, no clock."""
    if isinstance(event, Succeeded):
        return Synced(at=event.at)

    if isinstance(event, Failed):
        previous = None
        if isinstance(current, Synced):
            previous = current.at
        elif isinstance(current, Error):
            previous = current.last_synced_at
        return Error(reason=event.reason, last_synced_at=previous)

    if isinstance(event, Started):
        # A first attempt creates a pending row; later attempts leave the
        # visible state alone until they finish.
        return Pending() if current is None else current

    raise TypeError(f"Unknown sync event: {event!r}")


# ── Row conversion ───────────────────────────────────────────────────


def state_from_row(mapping) -> SyncState | None:
    """Read the union back out of a SyncMapping row (None → no row)."""
    if mapping is None:
        return None
    if mapping.sync_status == "synced" and mapping.last_synced_at is not None:
        return Synced(at=mapping.last_synced_at)
    if mapping.sync_status == "error":
        return Error(reason=mapping.last_error or "", last_synced_at=mapping.last_synced_at)
    return Pending()


def state_columns(state: SyncState) -> dict:
    """Column values for a SyncMapping row in the given state."""
    if isinstance(state, Synced):
        return {"sync_status": "synced", "last_synced_at": state.at, "last_error": None}
    if isinstance(state, Error):
        return {
            "sync_status": "error",
            "last_synced_at": state.last_synced_at,
            "last_error": state.reason[:2000],
        }
    return {"sync_status": "pending", "last_error": None}
