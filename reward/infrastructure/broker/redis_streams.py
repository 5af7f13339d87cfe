"""
Redis Streams broker adapter.

Inbound journey events are read through a consumer group: an entry stays in
the group's pending list until it is XACK'ed, and entries left pending longer
than the redelivery window are reclaimed with XAUTOCLAIM. That is the whole
at-least-once contract the worker relies on.
"""
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import redis

from reward.config import get_settings

logger = logging.getLogger(__name__)


def get_redis_client() -> redis.Redis:
    """Returns a synchronous Redis client."""
    settings = get_settings()
    return redis.from_url(settings.REDIS_URL, decode_responses=True)


@dataclass(frozen=True)
class StreamMessage:
    stream: str
    message_id: str
    fields: Dict[str, str]

    @property
    def data(self) -> Optional[str]:
        return self.fields.get("data")


class RedisStreamConsumer:
    """
    Consumer-group reader over one or more streams.

    Example:
        >>> consumer = RedisStreamConsumer(client, "reward-worker", "host-1",
        ...                                ["reward-journey-created"])
        >>> consumer.ensure_groups()
        >>> for msg in consumer.read():
        ...     consumer.ack(msg)
    """

    def __init__(
        self,
        client: redis.Redis,
        group: str,
        consumer_name: str,
        streams: List[str],
        count: int = 50,
        block_ms: int = 5000,
        idle_ms: int = 60000,
    ):
        self.client = client
        self.group = group
        self.consumer_name = consumer_name
        self.streams = list(streams)
        self.count = count
        self.block_ms = block_ms
        self.idle_ms = idle_ms

    def ensure_groups(self) -> None:
        """Create the consumer group on every stream (idempotent)."""
        for stream in self.streams:
            try:
                self.client.xgroup_create(stream, self.group, id="0", mkstream=True)
                logger.info("Created consumer group %s on %s", self.group, stream)
            except redis.ResponseError as e:
                if "BUSYGROUP" not in str(e):
                    raise

    def read(self) -> List[StreamMessage]:
        """Read new (never delivered) entries, blocking up to block_ms."""
        response = self.client.xreadgroup(
            self.group,
            self.consumer_name,
            {stream: ">" for stream in self.streams},
            count=self.count,
            block=self.block_ms,
        )
        messages = []
        for stream, entries in response or []:
            for message_id, fields in entries:
                messages.append(StreamMessage(stream=stream, message_id=message_id, fields=fields or {}))
        return messages

    def reclaim(self) -> List[StreamMessage]:
        """
        Take over entries another delivery left unacknowledged for longer
        than the redelivery window (crashed consumer, failed processing).
        """
        messages = []
        for stream in self.streams:
            response = self.client.xautoclaim(
                stream,
                self.group,
                self.consumer_name,
                min_idle_time=self.idle_ms,
                start_id="0-0",
                count=self.count,
            )
            # [next_start_id, [(id, fields), ...], (deleted ids on Redis 7+)]
            entries = response[1] if response and len(response) > 1 else []
            for message_id, fields in entries:
                if not fields:
                    # Entry was trimmed from the stream while pending
                    self.client.xack(stream, self.group, message_id)
                    continue
                messages.append(StreamMessage(stream=stream, message_id=message_id, fields=fields))
        if messages:
            logger.info("Reclaimed %d pending message(s) for redelivery", len(messages))
        return messages

    def ack(self, message: StreamMessage) -> None:
        self.client.xack(message.stream, self.group, message.message_id)


class RedisStreamPublisher:
    """Appends JSON events to a stream."""

    def __init__(self, client: redis.Redis, stream: str, maxlen: Optional[int] = None):
        self.client = client
        self.stream = stream
        self.maxlen = maxlen

    def publish(self, event_type: str, payload: Dict[str, Any]) -> str:
        return self.publish_fields({
            "event_type": event_type,
            "data": json.dumps(payload, default=str),
        })

    def publish_fields(self, fields: Dict[str, str]) -> str:
        if self.maxlen:
            return self.client.xadd(self.stream, fields, maxlen=self.maxlen, approximate=True)
        return self.client.xadd(self.stream, fields)


class DeadLetterPublisher(RedisStreamPublisher):
    """Parks messages that can never be processed, with the reason."""

    def send(self, message: StreamMessage, error: str) -> str:
        return self.publish_fields({
            "source_stream": message.stream,
            "message_id": message.message_id,
            "error": error,
            "data": message.data or json.dumps(message.fields),
        })
