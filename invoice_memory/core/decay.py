"""
Time-based confidence decay - stale memories lose trust when not reinforced.

Decay is evaluated lazily whenever the store surfaces a memory to the
pipeline; there is no background sweep. The functions here are pure, the
store decides whether to persist the result.
"""

from datetime import datetime, timedelta, timezone

from .config import DECAY_RATE_PER_DAY, MIN_CONFIDENCE
from .errors import MalformedTimestampError
from .schema import Memory

ONE_DAY = timedelta(days=1)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(moment: datetime) -> str:
    """Render a timestamp as ISO-8601 UTC with millisecond precision."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def days_since_update(memory: Memory, now: datetime) -> int:
    """Whole days elapsed since the memory was last updated."""
    try:
        last_updated = parse_timestamp(memory.last_updated)
    except (TypeError, ValueError, AttributeError) as e:
        raise MalformedTimestampError(memory.id, memory.last_updated) from e

    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return (now - last_updated) // ONE_DAY


def decayed_confidence(confidence: float, days_passed: int,
                       rate: float = DECAY_RATE_PER_DAY,
                       floor: float = MIN_CONFIDENCE) -> float:
    """Linear decay clamped at the floor.

    A confidence already under the floor (rejections can push it there)
    is returned as is: decay never raises trust. A plain max(floor, ...)
    clamp would lift such a value back up to the floor.
    """
    if days_passed <= 0:
        return confidence
    return max(min(floor, confidence), confidence - days_passed * rate)


def decay_confidence(memory: Memory, now: datetime) -> Memory:
    """Return the memory as seen at `now`.

    The same instance is returned when nothing changed; otherwise a copy
    with the decayed confidence and a refreshed lastUpdated.
    """
    days_passed = days_since_update(memory, now)
    if days_passed <= 0:
        return memory

    confidence = decayed_confidence(memory.confidence, days_passed)
    if confidence == memory.confidence:
        return memory

    return memory.with_confidence(confidence, isoformat(now))
