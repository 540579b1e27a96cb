"""Date helpers shared by the services and the sync payloads."""
import re
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Tuple, Union

_FRACTION = re.compile(r"\.\d+")


def normalise_date(value: Union[date, datetime]) -> date:
    """Strip the time component so rows keyed by day compare equal."""
    if isinstance(value, datetime):
        return value.date()
    return value


def day_bounds(day: date) -> Tuple[datetime, datetime]:
    """Return [start, end] datetimes covering the whole calendar day."""
    start = datetime(day.year, day.month, day.day)
    return start, start + timedelta(days=1) - timedelta(microseconds=1)


def week_bounds(day: date) -> Tuple[date, date]:
    """Monday..Sunday week containing ``day``."""
    monday = day - timedelta(days=day.weekday())
    return monday, monday + timedelta(days=6)


def parse_iso(value):
    """Parse an ISO date or datetime string into a naive UTC datetime.

    None and date/datetime values pass through unchanged.
    """
    if value is None or isinstance(value, (date, datetime)):
        return value
    # Firestore timestamps may carry nanoseconds; datetime stops at micro.
    text = _FRACTION.sub(
        lambda m: "." + m.group(0)[1:7].ljust(6, "0"),
        str(value).replace("Z", "+00:00"),
    )
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def as_date(value) -> Optional[date]:
    """Coerce a stored date (ISO string, date or datetime) to a date."""
    if value is None:
        return None
    if isinstance(value, str) and len(value) == 10:
        return date.fromisoformat(value)
    return normalise_date(parse_iso(value))
