"""Lightweight helper for recording activity log entries.

Usage:
    log_activity(
        db, principal, action="stock_added", theater_id=theater_id,
        product_id=product_id, entity_type="stock_entry", entity_id=entry.id,
        summary="Added 100 units (batch B-12)",
    )

The row is added to the current session and committed with the
enclosing transaction; no extra flush is performed.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.activity_log import ActivityLog

if TYPE_CHECKING:
    from app.auth.deps import Principal


def log_activity(
    db: AsyncSession,
    principal: Principal | None,
    *,
    action: str,
    theater_id: str,
    product_id: str | None = None,
    entity_type: str = "stock_entry",
    entity_id: str | None = None,
    summary: str | None = None,
    details: dict | None = None,
) -> ActivityLog:
    """Append an activity log entry to the current DB session."""
    entry = ActivityLog(
        user_id=principal.user_id if principal else None,
        action=action,
        theater_id=theater_id,
        product_id=product_id,
        entity_type=entity_type,
        entity_id=entity_id,
        summary=summary,
        details=details,
    )
    db.add(entry)
    return entry
