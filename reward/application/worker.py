"""
Reward worker - consumes journey streams and drives the ingress handler.

Acknowledgement rules:
  processed / duplicate        → XACK
  invalid payload              → dead-letter stream, XACK
  store or unexpected failure  → no XACK, message stays pending and is
                                 reclaimed after the redelivery window
"""
import logging
import threading
from typing import Callable, Dict

import redis
from sqlalchemy.orm import Session

from reward.application.ingress import JourneyEventHandler
from reward.application.outbox import OutboxRelay
from reward.config import Settings, get_settings
from reward.domain.journey_events import InvalidJourneyEvent
from reward.infrastructure.broker.redis_streams import (
    RedisStreamConsumer, RedisStreamPublisher, DeadLetterPublisher, StreamMessage,
)

logger = logging.getLogger(__name__)

BROKER_BACKOFF_SECONDS = 5


class RewardWorker:
    """
    Orchestrates one consumer instance.

    Each message gets its own session and transaction; the session factory is
    injected so tests can hand in a SQLite session.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        consumer: RedisStreamConsumer,
        goal_publisher: RedisStreamPublisher,
        dead_letters: DeadLetterPublisher,
        settings: Settings | None = None,
    ):
        self.session_factory = session_factory
        self.consumer = consumer
        self.goal_publisher = goal_publisher
        self.dead_letters = dead_letters
        self.settings = settings or get_settings()
        self.stream_types: Dict[str, str] = self.settings.inbound_streams()

    def process_message(self, message: StreamMessage) -> bool:
        """
        Handle one stream entry.

        Returns:
            True if the message was acknowledged
        """
        event_type = self.stream_types.get(message.stream)
        db = self.session_factory()
        try:
            if event_type is None:
                raise InvalidJourneyEvent(f"No journey event type bound to stream {message.stream!r}")
            if message.data is None:
                raise InvalidJourneyEvent(f"Message {message.message_id} has no 'data' field")

            JourneyEventHandler(db, self.settings).handle(
                event_type,
                message.data,
                fallback_event_id=f"{message.stream}:{message.message_id}",
            )
        except InvalidJourneyEvent as e:
            logger.error("Dropping invalid message %s from %s: %s", message.message_id, message.stream, e)
            self.dead_letters.send(message, str(e))
        except Exception:
            logger.exception(
                "Failed to process message %s from %s, leaving it pending for redelivery",
                message.message_id, message.stream,
            )
            return False
        finally:
            db.close()

        self.consumer.ack(message)
        return True

    def relay_outbox(self) -> int:
        db = self.session_factory()
        try:
            return OutboxRelay(db, self.goal_publisher, self.settings.OUTBOX_BATCH_SIZE).run()
        except Exception:
            # Rows stay pending; the scheduled relay picks them up
            db.rollback()
            logger.exception("Outbox relay failed")
            return 0
        finally:
            db.close()

    def run_once(self) -> int:
        """
        One poll cycle: reclaimed entries first, then new ones, then the outbox.

        Returns:
            Number of messages acknowledged
        """
        messages = self.consumer.reclaim() + self.consumer.read()
        acked = sum(1 for message in messages if self.process_message(message))
        if messages:
            self.relay_outbox()
        return acked

    def run_forever(self, stop: threading.Event) -> None:
        logger.info(
            "Reward worker consuming %s as %s/%s",
            ", ".join(self.consumer.streams), self.consumer.group, self.consumer.consumer_name,
        )
        while not stop.is_set():
            try:
                self.run_once()
            except redis.RedisError:
                logger.exception("Broker unavailable, retrying in %ds", BROKER_BACKOFF_SECONDS)
                stop.wait(BROKER_BACKOFF_SECONDS)
        logger.info("Reward worker stopped")
