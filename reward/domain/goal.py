"""
Daily goal crossing detection and the goal-achieved integration event.
"""
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict

GOAL_ACHIEVED_EVENT_TYPE = "DailyGoalAchieved"


def crossed_goal(old_total_km: Decimal, new_total_km: Decimal, goal_km: Decimal) -> bool:
    """
    True iff one aggregation step moved a day total from below the goal to
    at-or-above it.

    Stateless: a day that drops back below the goal and climbs over it again
    crosses again.
    """
    return old_total_km < goal_km <= new_total_km


@dataclass(frozen=True)
class GoalAchieved:
    """Payload published downstream when a user reaches the daily goal."""
    user_id: str
    date: date
    total_distance_km: Decimal
    goal_distance_km: Decimal
    points: int
    occurred_at_utc: datetime

    @classmethod
    def create(
        cls,
        user_id: str,
        day: date,
        total_distance_km: Decimal,
        goal_distance_km: Decimal,
        points: int,
        occurred_at_utc: datetime | None = None,
    ) -> "GoalAchieved":
        if occurred_at_utc is None:
            occurred_at_utc = datetime.now(timezone.utc)
        return cls(
            user_id=user_id,
            date=day,
            total_distance_km=total_distance_km,
            goal_distance_km=goal_distance_km,
            points=points,
            occurred_at_utc=occurred_at_utc,
        )

    def to_payload(self) -> Dict[str, Any]:
        """JSON-safe wire payload (camelCase, decimals as strings)."""
        return {
            "userId": self.user_id,
            "date": self.date.isoformat(),
            "totalDistanceKm": str(self.total_distance_km),
            "goalDistanceKm": str(self.goal_distance_km),
            "points": self.points,
            "occurredAtUtc": self.occurred_at_utc.isoformat(),
        }
