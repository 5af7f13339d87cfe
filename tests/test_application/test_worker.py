"""
Tests for RewardWorker acknowledgement rules
"""
import json
import threading
from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
import redis

from reward.application.worker import RewardWorker
from reward.infrastructure.broker.redis_streams import StreamMessage
from reward.infrastructure.db.models import UserReward, OutboxMessage


def _msg(stream, message_id, payload):
    data = payload if isinstance(payload, str) else json.dumps(payload)
    return StreamMessage(stream=stream, message_id=message_id, fields={"data": data})


def _created(event_id, km):
    return {"eventId": event_id, "userId": "user-1", "startTime": "2025-11-20T08:00:00Z", "distanceKm": km}


@pytest.fixture
def consumer():
    c = MagicMock()
    c.reclaim.return_value = []
    c.read.return_value = []
    c.streams = ["reward-journey-created"]
    c.group = "reward-worker"
    c.consumer_name = "test"
    return c


@pytest.fixture
def goal_publisher():
    return MagicMock()


@pytest.fixture
def dead_letters():
    return MagicMock()


@pytest.fixture
def worker(session_factory, consumer, goal_publisher, dead_letters, settings):
    return RewardWorker(session_factory, consumer, goal_publisher, dead_letters, settings)


def test_processed_message_is_acked(worker, consumer, session_factory):
    message = _msg("reward-journey-created", "1-0", _created("e1", 12))

    assert worker.process_message(message) is True

    consumer.ack.assert_called_once_with(message)
    with session_factory() as s:
        entry = s.query(UserReward).one()
        assert entry.total_distance_km == Decimal("12")
        assert entry.reward_date == date(2025, 11, 20)


def test_invalid_message_is_dead_lettered_and_acked(worker, consumer, dead_letters, session_factory):
    message = _msg("reward-journey-created", "2-0", _created("e1", -5))

    assert worker.process_message(message) is True

    dead_letters.send.assert_called_once()
    assert dead_letters.send.call_args.args[0] is message
    consumer.ack.assert_called_once_with(message)
    with session_factory() as s:
        assert s.query(UserReward).count() == 0


def test_message_without_data_is_dead_lettered(worker, consumer, dead_letters):
    message = StreamMessage(stream="reward-journey-created", message_id="3-0", fields={"foo": "bar"})

    assert worker.process_message(message) is True
    dead_letters.send.assert_called_once()
    consumer.ack.assert_called_once_with(message)


def test_unknown_stream_is_dead_lettered(worker, consumer, dead_letters):
    message = _msg("some-other-stream", "4-0", _created("e1", 1))

    assert worker.process_message(message) is True
    dead_letters.send.assert_called_once()


def test_store_failure_leaves_message_pending(worker, consumer, dead_letters, monkeypatch):
    from reward.application import ingress

    def boom(self, event, fallback_event_id=None):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(ingress.JourneyEventHandler, "handle_event", boom)
    message = _msg("reward-journey-created", "5-0", _created("e1", 3))

    assert worker.process_message(message) is False
    consumer.ack.assert_not_called()
    dead_letters.send.assert_not_called()


def test_dead_letter_failure_propagates_without_ack(worker, consumer, dead_letters):
    dead_letters.send.side_effect = redis.ConnectionError("down")
    message = _msg("reward-journey-created", "6-0", "{oops")

    with pytest.raises(redis.ConnectionError):
        worker.process_message(message)
    consumer.ack.assert_not_called()


def test_redelivered_message_is_not_double_counted(worker, consumer, session_factory):
    message = _msg("reward-journey-created", "7-0", {k: v for k, v in _created(None, 6).items() if k != "eventId"})

    worker.process_message(message)
    worker.process_message(message)

    assert consumer.ack.call_count == 2
    with session_factory() as s:
        assert s.query(UserReward).one().total_distance_km == Decimal("6")


def test_run_once_processes_reclaimed_then_new_and_relays(worker, consumer, goal_publisher, session_factory):
    reclaimed = _msg("reward-journey-created", "1-0", _created("e1", 12))
    fresh = _msg("reward-journey-created", "2-0", _created("e2", 10))
    consumer.reclaim.return_value = [reclaimed]
    consumer.read.return_value = [fresh]

    assert worker.run_once() == 2

    assert [c.args[0] for c in consumer.ack.call_args_list] == [reclaimed, fresh]
    goal_publisher.publish.assert_called_once()
    event_type, payload = goal_publisher.publish.call_args.args
    assert event_type == "DailyGoalAchieved"
    assert Decimal(payload["totalDistanceKm"]) == Decimal("22")
    with session_factory() as s:
        assert s.query(OutboxMessage).one().processed_at is not None


def test_goal_event_not_published_when_commit_fails(worker, consumer, goal_publisher, monkeypatch):
    from sqlalchemy.orm import Session

    def failing_commit(self):
        raise RuntimeError("commit failed")

    monkeypatch.setattr(Session, "commit", failing_commit)
    consumer.read.return_value = [_msg("reward-journey-created", "1-0", _created("e1", 25))]

    assert worker.run_once() == 0
    goal_publisher.publish.assert_not_called()
    consumer.ack.assert_not_called()


def test_run_once_idle_does_not_relay(worker, goal_publisher):
    assert worker.run_once() == 0
    goal_publisher.publish.assert_not_called()


def test_run_forever_backs_off_on_broker_error(worker, consumer):
    stop = threading.Event()
    calls = []

    def read():
        calls.append(1)
        if len(calls) == 1:
            raise redis.ConnectionError("down")
        stop.set()
        return []

    consumer.read.side_effect = read
    stop_wait = MagicMock()
    stop.wait = stop_wait

    worker.run_forever(stop)

    assert len(calls) == 2
    stop_wait.assert_called_once()


def test_oversized_distance_is_dead_lettered(worker, consumer, dead_letters, session_factory):
    message = _msg("reward-journey-created", "8-0", _created("huge", "100000000"))

    assert worker.process_message(message) is True

    dead_letters.send.assert_called_once()
    consumer.ack.assert_called_once_with(message)
    with session_factory() as s:
        assert s.query(UserReward).count() == 0
