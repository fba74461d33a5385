"""
Review event sink — fire-and-forget publication of review state transitions.

Services collect ReviewEvent objects while their transaction is open and
hand them to a sink only after the commit succeeded. Sink failures are
logged and swallowed here so that an audit or notification problem can
never mask or undo the primary operation's outcome.

Sinks:
    NullEventSink    discard everything.
    AuditTrailSink   append one AuditLog row per event, in its own commit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from app.models import db
from app.models.audit import write_audit

logger = logging.getLogger(__name__)


@dataclass
class ReviewEvent:
    action: str
    entity_type: str
    entity_id: int
    tenant_id: int | None = None
    actor_name: str | None = None
    actor_id: str | None = None
    payload: dict = field(default_factory=dict)


class NullEventSink:
    def publish(self, event: ReviewEvent) -> None:
        return None


class AuditTrailSink:
    """Persist each event to audit_logs."""

    def publish(self, event: ReviewEvent) -> None:
        write_audit(
            entity_type=event.entity_type,
            entity_id=str(event.entity_id),
            action=event.action,
            actor=event.actor_name or "system",
            actor_id=event.actor_id,
            tenant_id=event.tenant_id,
            diff=event.payload,
        )
        db.session.commit()


def publish_events(sink, events: list[ReviewEvent]) -> None:
    """Deliver committed events; never raises."""
    for event in events:
        try:
            sink.publish(event)
        except Exception:
            db.session.rollback()
            logger.warning(
                "Review event sink failed for %s %s/%s",
                event.action, event.entity_type, event.entity_id,
                exc_info=True,
            )
