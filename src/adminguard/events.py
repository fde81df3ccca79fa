"""Structured audit events for second-factor activity.

Every verification outcome and operator action calls emit(). Events are
always logged; they are also inserted into second_factor_events whenever the
database pool is open. A failed insert is logged and never fails the caller.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from adminguard import db
from adminguard.config import Severity

logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.ERROR: logging.ERROR,
}


async def emit(
    severity: Severity,
    event_type: str,
    message: str,
    *,
    user_id: str | None = None,
    context: dict[str, Any] | None = None,
) -> int | None:
    """Log an event and persist it when a database is available.

    Returns the event ID if stored, None otherwise.
    """
    logger.log(_LOG_LEVELS.get(severity, logging.INFO), "[event] %s: %s (user=%s)",
               event_type, message, user_id or "-")
    if not db.pool_is_open():
        return None
    try:
        row = await db.fetch_one(
            """INSERT INTO second_factor_events
               (severity, event_type, user_id, message, context)
               VALUES (%s, %s, %s, %s, %s)
               RETURNING id""",
            (str(severity), event_type, user_id, message, json.dumps(context or {})),
        )
        return row["id"] if row else None
    except Exception:
        logger.warning("Failed to store event: %s: %s", event_type, message, exc_info=True)
        return None


async def get_events(
    user_id: str | None = None,
    event_type: str | None = None,
    limit: int = 50,
) -> list[dict[str, Any]]:
    """Recent events, newest first."""
    conditions: list[str] = []
    params: list[Any] = []

    if user_id:
        conditions.append("user_id = %s")
        params.append(user_id)
    if event_type:
        conditions.append("event_type = %s")
        params.append(event_type)

    where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
    params.append(limit)

    return await db.fetch_all(
        f"""SELECT id, timestamp, severity, event_type, user_id, message, context
            FROM second_factor_events
            {where}
            ORDER BY timestamp DESC
            LIMIT %s""",
        tuple(params),
    )
