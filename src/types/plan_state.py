"""
Entitlement state of a user, as supplied by the entitlement source.

Timestamps are validated here, at the boundary. The plan resolver can
then assume any datetime it sees is real.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from .plans import PlanTier
from .usage import as_utc


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    CANCELED = "canceled"
    EXPIRED = "expired"


def coerce_timestamp(value: Any) -> Optional[datetime]:
    """
    Accept the timestamp shapes the entitlement source produces.

    ISO-8601 strings, epoch seconds, {"seconds": ...} mappings (Firestore
    export format) and datetimes. Anything else raises ValueError.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, bool):
        raise ValueError("boolean is not a timestamp")
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, dict) and "seconds" in value:
        seconds = value["seconds"]
        nanos = value.get("nanoseconds", 0) or 0
        return datetime.fromtimestamp(float(seconds) + nanos / 1e9, tz=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return as_utc(datetime.fromisoformat(text))
    raise ValueError(f"unsupported timestamp: {value!r}")


class PendingDowngrade(BaseModel):
    """A scheduled move to a lower tier (e.g. subscription cancelled)."""

    to_plan: PlanTier
    effective_date: datetime

    @field_validator("effective_date", mode="before")
    @classmethod
    def validate_effective_date(cls, v: Any) -> datetime:
        parsed = coerce_timestamp(v)
        if parsed is None:
            raise ValueError("effective_date is required")
        return parsed


class UserPlanState(BaseModel):
    """What the entitlement source knows about a user's subscription."""

    user_id: str = Field(..., min_length=1)
    plan: PlanTier = PlanTier.FREE
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    start_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    pending_downgrade: Optional[PendingDowngrade] = None
    is_test_account: bool = False
    test_override_plan: Optional[PlanTier] = None

    @field_validator("start_date", "created_at", mode="before")
    @classmethod
    def validate_timestamps(cls, v: Any) -> Optional[datetime]:
        return coerce_timestamp(v)
