import logging
from collections import deque
from typing import List, Optional, Union
from datetime import datetime, timezone

from sqlalchemy import insert, select

from codesage.core.config import settings
from codesage.core.database import user_security_logs, get_db_session, create_all_tables, get_database_url
from codesage.core.logging import truncate_value
from codesage.models.security_event import SecurityEvent, SecurityEventType

logger = logging.getLogger(__name__)

SECURITY_LOG_MAX = 50

# Fallback only: holds events while no database is configured or a write
# failed. Bounded, so the oldest events are dropped once it is full.
_memory_events: deque = deque(maxlen=max(1, settings.AUDIT_BUFFER_SIZE))


def _as_utc(value: datetime) -> datetime:
    # SQLite hands DateTime columns back naive
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _row_to_event(row) -> SecurityEvent:
    return SecurityEvent(
        user_id=row["user_id"],
        event_type=SecurityEventType(row["event_type"]),
        description=row["event_description"],
        ip_address=row["ip_address"],
        user_agent=row["user_agent"],
        created_at=_as_utc(row["created_at"]),
    )


def record_security_event(
    *,
    user_id: str,
    event_type: Union[SecurityEventType, str],
    description: str,
    ip: Optional[str] = None,
    user_agent: Optional[str] = None,
    now: Optional[datetime] = None,
) -> bool:
    """Append a security event to the database (or fallback buffer).

    Best effort: a failed write is logged and buffered, never raised, so the
    authentication operation that triggered it is not affected. Returns True
    when the event reached the database.
    """

    if not settings.AUDIT_ENABLED:
        return False

    try:
        kind = SecurityEventType(event_type)
    except ValueError:
        logger.warning(f"Unknown security event type: {event_type}")
        return False

    record = {
        "user_id": user_id,
        "event_type": kind.value,
        "event_description": truncate_value(description),
        "ip_address": ip,
        "user_agent": truncate_value(user_agent) if user_agent else None,
        "created_at": _as_utc(now) if now else datetime.now(timezone.utc),
    }

    db_url = get_database_url()
    if not db_url:
        _memory_events.append(record)
        logger.debug("Security event buffered in memory (no DB configured)")
        return False

    try:
        create_all_tables()
        with get_db_session() as session:
            session.execute(insert(user_security_logs).values(**record))
        return True
    except Exception as exc:
        logger.warning(f"Security event write failed: {exc}")
        _memory_events.append(record)
        return False


def _buffered_for(user_id: str) -> List[dict]:
    return [r for r in _memory_events if r["user_id"] == user_id]


def get_security_logs(user_id: str, limit: Optional[int] = None) -> List[SecurityEvent]:
    """Most recent security events for user_id, newest first, at most 50.

    Events still sitting in the fallback buffer (a database write failed)
    are merged with the stored rows.
    """
    configured = limit if limit is not None else settings.SECURITY_LOG_LIMIT
    cap = max(0, min(int(configured), SECURITY_LOG_MAX))
    if cap == 0:
        return []

    events = [_row_to_event(r) for r in reversed(_buffered_for(user_id))]

    if get_database_url():
        with get_db_session() as session:
            rows = session.execute(
                select(user_security_logs)
                .where(user_security_logs.c.user_id == user_id)
                .order_by(user_security_logs.c.created_at.desc(), user_security_logs.c.id.desc())
                .limit(cap)
            ).mappings().all()
        events.extend(_row_to_event(row) for row in rows)

    events.sort(key=lambda e: e.created_at, reverse=True)
    return events[:cap]


def get_buffered_security_events():
    return list(_memory_events)
