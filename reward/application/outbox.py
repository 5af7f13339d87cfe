"""
Outbox relay - publishes committed goal events to the broker.

Only rows whose transaction committed are visible here, which is what makes
publishing happen strictly after the ledger commit. A crash between publish
and marking the row processed re-publishes it: downstream delivery is
at-least-once.
"""
import logging
from datetime import datetime, timezone
from typing import Protocol, Dict, Any

from sqlalchemy.orm import Session

from reward.infrastructure.db.models import OutboxMessage

logger = logging.getLogger(__name__)


class EventPublisher(Protocol):
    def publish(self, event_type: str, payload: Dict[str, Any]) -> str: ...


class OutboxRelay:

    def __init__(self, db: Session, publisher: EventPublisher, batch_size: int = 100):
        self.db = db
        self.publisher = publisher
        self.batch_size = batch_size

    def pending(self) -> list[OutboxMessage]:
        return (
            self.db.query(OutboxMessage)
            .filter(OutboxMessage.processed_at.is_(None))
            .order_by(OutboxMessage.id.asc())
            .limit(self.batch_size)
            .with_for_update(skip_locked=True)
            .all()
        )

    def run(self) -> int:
        """
        Publish one batch of pending outbox rows.

        Returns:
            Number of rows published. Failed rows keep processed_at NULL and
            record the error; they are retried on the next run.
        """
        messages = self.pending()
        published = 0

        for message in messages:
            message.attempts = (message.attempts or 0) + 1
            try:
                self.publisher.publish(message.event_type, message.payload_json)
            except Exception as e:
                logger.exception("Error publishing outbox message %d (%s)", message.id, message.event_type)
                message.error = str(e)
                continue

            message.processed_at = datetime.now(timezone.utc)
            message.error = None
            published += 1
            logger.info("Published %s from outbox message %d", message.event_type, message.id)

        self.db.commit()
        return published
