"""Multi-tenancy: theater scoping for the current request.

Key components:
  - _theater_ctx        ContextVar holding the theater id of the current request
  - set / get / clear helpers for the ContextVar
  - validate_theater_id()   rejects malformed ids before they reach a query
  - TheaterContextFilter    stamps `theater_id` onto every log record
"""

import logging
import re
from contextvars import ContextVar

from fastapi import HTTPException, status

# ── Request-scoped theater context ──────────────────────────

_theater_ctx: ContextVar[str | None] = ContextVar("_theater_ctx", default=None)


def set_current_theater(theater_id: str) -> None:
    _theater_ctx.set(theater_id)


def get_current_theater() -> str:
    """Return the current theater id or raise if unset."""
    theater_id = _theater_ctx.get()
    if theater_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No theater context: this endpoint requires a theater-scoped path",
        )
    return theater_id


def clear_theater_context() -> None:
    _theater_ctx.set(None)


# ── Validation ──────────────────────────────────────────────

_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


def validate_theater_id(theater_id: str) -> str:
    """Theater and product ids are opaque (Mongo ObjectIds or UUIDs).

    Only allows `[A-Za-z0-9_-]{1,64}`.
    """
    if not _ID_RE.match(theater_id):
        raise ValueError(f"Invalid theater id: {theater_id!r}")
    return theater_id


# ── Logging ─────────────────────────────────────────────────

class TheaterContextFilter(logging.Filter):
    """Attach the current theater id (or "-") to each log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.theater_id = _theater_ctx.get() or "-"
        return True
