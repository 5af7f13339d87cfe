"""
Journey lifecycle events consumed from the journey service.

Wire format is the journey service's camelCase JSON:
    {"eventId": "...", "journeyId": "...", "userId": "...",
     "startTime": "2025-11-20T08:30:00Z", "distanceKm": 12.5, ...}
"""
import json
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, ClassVar, Dict, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

JOURNEY_CREATED = "JourneyCreated"
JOURNEY_UPDATED = "JourneyUpdated"
JOURNEY_DELETED = "JourneyDeleted"

# user_rewards.total_distance_km is Numeric(10,2)
DISTANCE_QUANTUM = Decimal("0.01")
MAX_DISTANCE_KM = Decimal("99999999.99")


class InvalidJourneyEvent(ValueError):
    """Structurally invalid message; redelivery cannot fix it."""
    pass


def utc_day(moment: datetime) -> date:
    """Calendar day (UTC) of a journey start time. Naive values are taken as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).date()


def quantize_km(value: Decimal) -> Decimal:
    """Round a distance to the ledger precision (0.01 km, half up)."""
    return value.quantize(DISTANCE_QUANTUM, rounding=ROUND_HALF_UP)


class _JourneyEvent(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    event_id: str | None = None
    journey_id: str | None = None
    user_id: str
    start_time: datetime
    distance_km: Decimal = Field(ge=0, le=MAX_DISTANCE_KM)

    @field_validator("user_id")
    @classmethod
    def validate_user_id(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("userId must not be empty")
        return v

    @field_validator("distance_km")
    @classmethod
    def round_distance(cls, v: Decimal) -> Decimal:
        # Points, deltas and goal checks must see the value that gets stored
        return quantize_km(v)

    @field_validator("event_id", "journey_id", mode="before")
    @classmethod
    def stringify_id(cls, v: Any) -> Any:
        # Guid / int identifiers arrive in several shapes; keep them as text
        if v is None or isinstance(v, str):
            return v or None
        return str(v)

    @property
    def day(self) -> date:
        return utc_day(self.start_time)


class JourneyCreated(_JourneyEvent):
    event_type: ClassVar[str] = JOURNEY_CREATED


class JourneyDeleted(_JourneyEvent):
    event_type: ClassVar[str] = JOURNEY_DELETED


class JourneyUpdated(_JourneyEvent):
    event_type: ClassVar[str] = JOURNEY_UPDATED

    old_start_time: datetime
    old_distance_km: Decimal = Field(ge=0, le=MAX_DISTANCE_KM)

    @field_validator("old_distance_km")
    @classmethod
    def round_old_distance(cls, v: Decimal) -> Decimal:
        return quantize_km(v)

    @property
    def old_day(self) -> date:
        return utc_day(self.old_start_time)


JourneyEvent = Union[JourneyCreated, JourneyUpdated, JourneyDeleted]

_EVENT_MODELS = {
    JOURNEY_CREATED: JourneyCreated,
    JOURNEY_UPDATED: JourneyUpdated,
    JOURNEY_DELETED: JourneyDeleted,
}


def parse_journey_event(event_type: str, raw: Union[str, bytes, Dict[str, Any]]) -> JourneyEvent:
    """
    Decode and validate a journey lifecycle event.

    Args:
        event_type: JourneyCreated / JourneyUpdated / JourneyDeleted
        raw: JSON text or an already decoded dict

    Raises:
        InvalidJourneyEvent: unknown type, undecodable JSON, missing
            identifiers, negative or out-of-range distances
    """
    model = _EVENT_MODELS.get(event_type)
    if model is None:
        raise InvalidJourneyEvent(f"Unknown journey event type: {event_type!r}")

    if isinstance(raw, (str, bytes)):
        try:
            # Decimal keeps distances exact (12.1 must not become 12.0999…)
            raw = json.loads(raw, parse_float=Decimal)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise InvalidJourneyEvent(f"{event_type}: payload is not valid JSON: {e}") from e

    if not isinstance(raw, dict):
        raise InvalidJourneyEvent(f"{event_type}: payload must be a JSON object")

    try:
        return model.model_validate(raw)
    except ValidationError as e:
        raise InvalidJourneyEvent(f"{event_type}: {e}") from e
