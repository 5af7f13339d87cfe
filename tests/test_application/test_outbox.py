"""
Tests for OutboxRelay (publish-after-commit)
"""
from datetime import datetime, timezone
from unittest.mock import MagicMock

from reward.application.outbox import OutboxRelay
from reward.infrastructure.db.models import OutboxMessage


def _add_message(db_session, n: int, processed: bool = False) -> OutboxMessage:
    msg = OutboxMessage(
        event_type="DailyGoalAchieved",
        payload_json={"userId": f"user-{n}", "date": "2025-11-20"},
        occurred_at=datetime(2025, 11, 20, 9, n, tzinfo=timezone.utc),
        processed_at=datetime.now(timezone.utc) if processed else None,
        attempts=0,
    )
    db_session.add(msg)
    db_session.commit()
    return msg


def test_publishes_pending_in_order_and_marks_processed(db_session):
    _add_message(db_session, 1)
    _add_message(db_session, 2)
    publisher = MagicMock()

    count = OutboxRelay(db_session, publisher).run()

    assert count == 2
    published_users = [c.args[1]["userId"] for c in publisher.publish.call_args_list]
    assert published_users == ["user-1", "user-2"]
    assert all(c.args[0] == "DailyGoalAchieved" for c in publisher.publish.call_args_list)
    rows = db_session.query(OutboxMessage).all()
    assert all(r.processed_at is not None for r in rows)
    assert all(r.attempts == 1 for r in rows)


def test_skips_already_processed(db_session):
    _add_message(db_session, 1, processed=True)
    publisher = MagicMock()

    assert OutboxRelay(db_session, publisher).run() == 0
    publisher.publish.assert_not_called()


def test_failed_publish_stays_pending_with_error(db_session):
    _add_message(db_session, 1)
    _add_message(db_session, 2)
    publisher = MagicMock()
    publisher.publish.side_effect = [ConnectionError("broker down"), "1-0"]

    count = OutboxRelay(db_session, publisher).run()

    assert count == 1
    first, second = db_session.query(OutboxMessage).order_by(OutboxMessage.id).all()
    assert first.processed_at is None
    assert first.error == "broker down"
    assert first.attempts == 1
    assert second.processed_at is not None


def test_failed_message_is_retried_on_next_run(db_session):
    _add_message(db_session, 1)
    publisher = MagicMock()
    publisher.publish.side_effect = [ConnectionError("broker down"), "1-0"]
    relay = OutboxRelay(db_session, publisher)

    assert relay.run() == 0
    assert relay.run() == 1

    row = db_session.query(OutboxMessage).one()
    assert row.processed_at is not None
    assert row.error is None
    assert row.attempts == 2


def test_batch_size_limits_one_run(db_session):
    for n in range(5):
        _add_message(db_session, n)
    publisher = MagicMock()

    assert OutboxRelay(db_session, publisher, batch_size=2).run() == 2
    assert db_session.query(OutboxMessage).filter(OutboxMessage.processed_at.is_(None)).count() == 3
