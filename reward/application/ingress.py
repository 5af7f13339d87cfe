"""
Journey event ingress - one broker message in, one committed ledger transaction out.

Per message:
1. Decode and validate the journey event
2. Skip it if its event id is already in processed_events
3. Apply it to the ledger (RewardAggregator)
4. Detect goal crossings and stage DailyGoalAchieved in the outbox
5. Commit

Goal events never leave this module directly: they are relayed from the
outbox after the commit (OutboxRelay), so a rolled-back transaction can
never produce a notification.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional, Union, Dict, Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from reward.application.aggregation import RewardAggregator, BucketChange
from reward.config import Settings, get_settings
from reward.domain.goal import GoalAchieved, GOAL_ACHIEVED_EVENT_TYPE, crossed_goal
from reward.domain.journey_events import JourneyEvent, parse_journey_event
from reward.infrastructure.db.models import ProcessedEvent, OutboxMessage

logger = logging.getLogger(__name__)

STATUS_APPLIED = "applied"
STATUS_DUPLICATE = "duplicate"


@dataclass
class HandleResult:
    status: str
    event_id: Optional[str] = None
    changes: List[BucketChange] = field(default_factory=list)
    goal_events: List[GoalAchieved] = field(default_factory=list)


class JourneyEventHandler:
    """
    Applies journey lifecycle events to the reward ledger.

    Raises from handle():
        InvalidJourneyEvent: the payload can never be processed (caller dead-letters it)
        SQLAlchemyError: store failure (caller leaves the message for redelivery)
    """

    def __init__(self, db: Session, settings: Settings | None = None):
        self.db = db
        self.settings = settings or get_settings()
        self.aggregator = RewardAggregator(
            db,
            points_per_km=self.settings.POINTS_PER_KM,
            rounding_mode=self.settings.POINTS_ROUNDING_MODE,
        )

    @property
    def goal_km(self) -> Decimal:
        return self.settings.DAILY_GOAL_KM

    def handle(
        self,
        event_type: str,
        raw: Union[str, bytes, Dict[str, Any]],
        fallback_event_id: str | None = None,
    ) -> HandleResult:
        """
        Process one message end to end and commit.

        Args:
            event_type: JourneyCreated / JourneyUpdated / JourneyDeleted
            raw: message payload (JSON text or dict)
            fallback_event_id: identity used for deduplication when the payload
                carries no eventId (the broker message id)
        """
        event = parse_journey_event(event_type, raw)
        return self.handle_event(event, fallback_event_id)

    def handle_event(self, event: JourneyEvent, fallback_event_id: str | None = None) -> HandleResult:
        retries = max(1, self.settings.MAX_CONFLICT_RETRIES)

        for attempt in range(1, retries + 1):
            try:
                result = self._process(event, fallback_event_id)
                self.db.commit()
                return result
            except IntegrityError:
                # Lost a race on a unique key (ledger row or processed event)
                self.db.rollback()
                if attempt == retries:
                    raise
                logger.warning(
                    "Conflict while applying %s for user %s (attempt %d/%d), retrying",
                    event.event_type, event.user_id, attempt, retries,
                )
            except Exception:
                self.db.rollback()
                raise

    def _process(self, event: JourneyEvent, fallback_event_id: str | None) -> HandleResult:
        event_id = event.event_id or fallback_event_id

        logger.info(
            "Processing %s for user %s, journey %s, event %s",
            event.event_type, event.user_id, event.journey_id, event_id,
        )

        if event_id is not None:
            if self._already_processed(event.event_type, event_id):
                logger.info("Event %s (%s) already applied, skipping", event_id, event.event_type)
                return HandleResult(status=STATUS_DUPLICATE, event_id=event_id)
            self.db.add(ProcessedEvent(
                event_type=event.event_type,
                event_id=event_id,
                user_id=event.user_id,
            ))
            self.db.flush()
        else:
            logger.warning("%s for user %s has no event id, cannot deduplicate", event.event_type, event.user_id)

        changes = self.aggregator.apply(event)
        goal_events = [self._stage_goal_event(change) for change in changes if self._crossed(change)]

        return HandleResult(
            status=STATUS_APPLIED,
            event_id=event_id,
            changes=changes,
            goal_events=goal_events,
        )

    def _already_processed(self, event_type: str, event_id: str) -> bool:
        return self.db.query(ProcessedEvent).filter(
            ProcessedEvent.event_type == event_type,
            ProcessedEvent.event_id == event_id,
        ).first() is not None

    def _crossed(self, change: BucketChange) -> bool:
        return crossed_goal(change.old_total_km, change.new_total_km, self.goal_km)

    def _stage_goal_event(self, change: BucketChange) -> GoalAchieved:
        goal_event = GoalAchieved.create(
            user_id=change.user_id,
            day=change.day,
            total_distance_km=change.new_total_km,
            goal_distance_km=self.goal_km,
            points=change.points_delta,
        )
        self.db.add(OutboxMessage(
            event_type=GOAL_ACHIEVED_EVENT_TYPE,
            payload_json=goal_event.to_payload(),
            occurred_at=goal_event.occurred_at_utc,
            attempts=0,
        ))
        self.db.flush()

        logger.info(
            "User %s achieved daily goal on %s with %s km",
            change.user_id, change.day, change.new_total_km,
        )
        return goal_event
