"""
Timestamp helpers shared by the models, the resolver and the ledger.

Exported graphs carry dates as ISO-8601 strings, local snapshots may hold
epoch milliseconds, and the store hands back datetime objects. Everything
that compares or orders records goes through these helpers so all three
shapes agree.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Annotated, Any, Optional

from pydantic import BeforeValidator


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def coerce_datetime(value: Any) -> datetime:
    """
    Convert a payload value into a datetime.

    Accepts datetime, date, epoch milliseconds and ISO-8601 strings
    (including the trailing 'Z' emitted by JavaScript clients).

    Raises:
        ValueError: If the value cannot be interpreted as a point in time
    """
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, bool):
        raise ValueError(f"Invalid date: {value!r}")
    if isinstance(value, (int, float, Decimal)):
        return datetime.fromtimestamp(float(value) / 1000, tz=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(text)
        except ValueError:
            raise ValueError(f"Invalid date: {value!r}") from None
    raise ValueError(f"Invalid date: {value!r}")


def parse_datetime(value: Any) -> Optional[datetime]:
    """Lenient variant of coerce_datetime: None for anything unparseable."""
    if value is None or value == "":
        return None
    try:
        return coerce_datetime(value)
    except ValueError:
        return None


def to_epoch_ms(value: Any) -> Optional[float]:
    """
    Milliseconds since the epoch, or None if the value is not a time.

    Naive datetimes are read as UTC.
    """
    moment = parse_datetime(value)
    if moment is None:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.timestamp() * 1000


def to_iso_string(moment: datetime) -> str:
    """
    UTC ISO-8601 with millisecond precision and a 'Z' suffix.

    This is the format exported graphs use, so a datetime and the string it
    was parsed from render identically.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


Timestamp = Annotated[datetime, BeforeValidator(coerce_datetime)]
