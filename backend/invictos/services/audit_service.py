# Overview: Append-only security event logging.

from __future__ import annotations

from ..extensions import db
from ..models import SecurityEvent
from invictos.time_utils import utcnow


def log_security_event(
    *,
    account_id: str | None,
    event_type: str,
    success: bool,
    reason: str | None = None,
    resource: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> SecurityEvent:
    """
    Add a SecurityEvent to the current transaction.

    The caller commits, so the event lands atomically with the state change
    it describes.
    """
    event = SecurityEvent(
        account_id=account_id,
        event_type=event_type,
        resource=resource,
        success=success,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=utcnow(),
    )
    db.session.add(event)
    return event


def recent_events(account_id: str | None = None, limit: int = 50) -> list[SecurityEvent]:
    query = db.session.query(SecurityEvent)
    if account_id is not None:
        query = query.filter(SecurityEvent.account_id == account_id)
    return query.order_by(SecurityEvent.occurred_at.desc(), SecurityEvent.id.desc()).limit(limit).all()
