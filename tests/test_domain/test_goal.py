"""
Tests for goal crossing detection and the DailyGoalAchieved payload
"""
from datetime import date, datetime, timezone
from decimal import Decimal

from reward.domain.goal import GoalAchieved, crossed_goal

GOAL = Decimal("20")


def test_fires_when_crossing_from_below():
    assert crossed_goal(Decimal("12"), Decimal("22"), GOAL) is True


def test_fires_when_landing_exactly_on_goal():
    assert crossed_goal(Decimal("19.99"), Decimal("20.00"), GOAL) is True


def test_does_not_fire_just_below_goal():
    assert crossed_goal(Decimal("0"), Decimal("19.99"), GOAL) is False


def test_does_not_fire_when_already_at_goal():
    assert crossed_goal(Decimal("20"), Decimal("25"), GOAL) is False


def test_does_not_fire_on_decrease():
    assert crossed_goal(Decimal("25"), Decimal("10"), GOAL) is False
    assert crossed_goal(Decimal("25"), Decimal("20"), GOAL) is False


def test_fires_again_after_dropping_below_and_rising():
    """Stateless: each upward crossing is reported."""
    steps = [Decimal("0"), Decimal("22"), Decimal("10"), Decimal("21")]
    fired = [crossed_goal(a, b, GOAL) for a, b in zip(steps, steps[1:])]
    assert fired == [True, False, True]


def test_goal_achieved_payload_shape():
    occurred = datetime(2025, 11, 20, 9, 0, tzinfo=timezone.utc)
    event = GoalAchieved.create(
        user_id="user-1",
        day=date(2025, 11, 20),
        total_distance_km=Decimal("22.00"),
        goal_distance_km=GOAL,
        points=100,
        occurred_at_utc=occurred,
    )
    assert event.to_payload() == {
        "userId": "user-1",
        "date": "2025-11-20",
        "totalDistanceKm": "22.00",
        "goalDistanceKm": "20",
        "points": 100,
        "occurredAtUtc": "2025-11-20T09:00:00+00:00",
    }


def test_goal_achieved_defaults_occurred_at_to_now_utc():
    event = GoalAchieved.create("u", date(2025, 1, 1), Decimal("20"), GOAL, 0)
    assert event.occurred_at_utc.tzinfo is not None
