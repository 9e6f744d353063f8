"""Due-date arithmetic and ISO-8601 handling for charts."""

from datetime import datetime, timedelta, timezone
from typing import List, Optional

from stc_kernel.errors import InputValidationError


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(moment: datetime) -> datetime:
    """Aware UTC datetime; naive values are taken as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def to_iso(moment: datetime) -> str:
    """UTC ISO-8601 with millisecond precision and a Z suffix."""
    moment = as_utc(moment)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso(value: str, field: str = "date") -> datetime:
    """Parse an ISO-8601 date or datetime; naive values are taken as UTC."""
    if not isinstance(value, str) or not value.strip():
        raise InputValidationError(f"{field} must be a valid ISO date string")
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    try:
        moment = datetime.fromisoformat(text)
    except ValueError:
        raise InputValidationError(
            f"{field} must be a valid ISO date string, got {value!r}"
        ) from None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def try_parse_iso(value: Optional[str]) -> Optional[datetime]:
    """Lenient parse for stored dates; unusable values sort as missing."""
    if not value:
        return None
    try:
        return parse_iso(value)
    except InputValidationError:
        return None


def distribute_action_step_dates(
    start: datetime, end: datetime, count: int
) -> List[datetime]:
    """
    Spread `count` due dates evenly between `start` and `end`.

    The span is cut into count + 1 intervals so the last step still lands
    before `end`: step i (1-indexed) is due at start + i * interval.
    """
    if count <= 0:
        return []
    interval = (end - start) / (count + 1)
    return [start + interval * i for i in range(1, count + 1)]


def midpoint(start: datetime, end: datetime) -> datetime:
    return start + (end - start) / 2


def default_telescope_due_date(now: datetime) -> datetime:
    """Due date for a telescoped step that never had one: a week out."""
    return now + timedelta(days=7)
