"""
Reward aggregation: applies journey lifecycle events to the per-user-per-day ledger.

Every mutation is a locked read-modify-write of one (user_id, reward_date) row:
    new_total  = max(0, old_total + distance_delta)
    new_points = old_points + points_delta        (not clamped)

The caller owns the transaction; nothing here commits.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from reward.config import ROUNDING_DELTA
from reward.domain.journey_events import (
    JourneyCreated, JourneyUpdated, JourneyDeleted, JourneyEvent,
)
from reward.domain.points import calculate_points, points_for_change
from reward.infrastructure.db.models import UserReward

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


@dataclass(frozen=True)
class BucketChange:
    """Before/after view of one ledger row touched by an aggregation step."""
    user_id: str
    day: date
    old_total_km: Decimal
    new_total_km: Decimal
    old_points: int
    new_points: int
    points_delta: int
    created: bool = False


class RewardAggregator:
    """
    Aggregation engine over the user_rewards ledger.

    Usage:
        >>> aggregator = RewardAggregator(db, points_per_km=Decimal("10"))
        >>> changes = aggregator.apply(event)
        >>> db.commit()
    """

    def __init__(self, db: Session, points_per_km: Decimal, rounding_mode: str = ROUNDING_DELTA):
        self.db = db
        self.points_per_km = points_per_km
        self.rounding_mode = rounding_mode

    def apply(self, event: JourneyEvent) -> List[BucketChange]:
        if isinstance(event, JourneyCreated):
            return self.on_created(event)
        if isinstance(event, JourneyUpdated):
            return self.on_updated(event)
        if isinstance(event, JourneyDeleted):
            return self.on_deleted(event)
        raise TypeError(f"Unsupported journey event: {type(event).__name__}")

    # ------------------------------------------------------------------
    # Event operations
    # ------------------------------------------------------------------

    def on_created(self, event: JourneyCreated) -> List[BucketChange]:
        points = calculate_points(event.distance_km, self.points_per_km)
        change = self._apply_delta(event.user_id, event.day, event.distance_km, points)
        return [change] if change else []

    def on_updated(self, event: JourneyUpdated) -> List[BucketChange]:
        old_day, new_day = event.old_day, event.day

        if old_day != new_day:
            # Lock both rows in date order so two cross-day updates cannot deadlock
            for day in sorted((old_day, new_day)):
                self._lock_entry(event.user_id, day)

            changes = []
            removed = self._apply_delta(
                event.user_id,
                old_day,
                -event.old_distance_km,
                -calculate_points(event.old_distance_km, self.points_per_km),
            )
            if removed:
                changes.append(removed)
            added = self._apply_delta(
                event.user_id,
                new_day,
                event.distance_km,
                calculate_points(event.distance_km, self.points_per_km),
            )
            if added:
                changes.append(added)
            return changes

        if event.distance_km == event.old_distance_km:
            logger.debug(
                "Journey %s updated without distance or day change, ledger untouched",
                event.journey_id,
            )
            return []

        distance_delta = event.distance_km - event.old_distance_km
        points_delta = points_for_change(
            event.old_distance_km, event.distance_km, self.points_per_km, self.rounding_mode
        )
        change = self._apply_delta(event.user_id, new_day, distance_delta, points_delta)
        return [change] if change else []

    def on_deleted(self, event: JourneyDeleted) -> List[BucketChange]:
        points = calculate_points(event.distance_km, self.points_per_km)
        change = self._apply_delta(event.user_id, event.day, -event.distance_km, -points)
        return [change] if change else []

    # ------------------------------------------------------------------
    # Ledger access
    # ------------------------------------------------------------------

    def _lock_entry(self, user_id: str, day: date) -> Optional[UserReward]:
        """SELECT ... FOR UPDATE on one ledger row (no-op lock on SQLite)."""
        return (
            self.db.query(UserReward)
            .filter(
                UserReward.user_id == user_id,
                UserReward.reward_date == day,
            )
            .with_for_update()
            .first()
        )

    def _apply_delta(
        self,
        user_id: str,
        day: date,
        distance_delta: Decimal,
        points_delta: int,
    ) -> Optional[BucketChange]:
        """
        Read-modify-write one ledger row.

        Returns:
            BucketChange, or None when a non-positive delta hits a missing row
            (nothing to subtract from, and no row is created for it)

        Raises:
            IntegrityError: a concurrent consumer created the same row first;
                the caller rolls back and retries
        """
        entry = self._lock_entry(user_id, day)
        now = datetime.now(timezone.utc)

        if entry is None:
            if distance_delta <= 0:
                logger.warning(
                    "No reward record for user %s on %s, cannot apply %s km; skipping",
                    user_id, day, distance_delta,
                )
                return None

            entry = UserReward(
                user_id=user_id,
                reward_date=day,
                total_distance_km=distance_delta,
                points=points_delta,
                created_at=now,
                last_updated_utc=now,
            )
            self.db.add(entry)
            self.db.flush()
            logger.info(
                "Created reward record for user %s on %s: %s km, %d points",
                user_id, day, distance_delta, points_delta,
            )
            return BucketChange(
                user_id=user_id,
                day=day,
                old_total_km=ZERO,
                new_total_km=distance_delta,
                old_points=0,
                new_points=points_delta,
                points_delta=points_delta,
                created=True,
            )

        old_total = Decimal(entry.total_distance_km)
        old_points = entry.points
        new_total = max(ZERO, old_total + distance_delta)

        entry.total_distance_km = new_total
        entry.points = old_points + points_delta
        entry.last_updated_utc = now
        self.db.flush()

        logger.info(
            "Updated reward for user %s on %s: %s km -> %s km, %d -> %d points",
            user_id, day, old_total, new_total, old_points, entry.points,
        )
        return BucketChange(
            user_id=user_id,
            day=day,
            old_total_km=old_total,
            new_total_km=new_total,
            old_points=old_points,
            new_points=entry.points,
            points_delta=points_delta,
        )
