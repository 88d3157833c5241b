"""
ISO8601 date handling for expiry dates.

Users write ``deleteAfterDate`` in many ISO8601 shapes while the remote API
answers in one. Both sides are parsed here and rendered in a single
canonical UTC profile so they can be compared structurally.
"""

import re
from datetime import UTC, datetime, timedelta, timezone

from ..errors import DateFormatError

_ISO8601_PATTERN = re.compile(
    r"^(?P<year>\d{4})-(?P<month>\d{2})-(?P<day>\d{2})"
    r"(?:[T ](?P<hour>\d{2}):(?P<minute>\d{2})"
    r"(?::(?P<second>\d{2})(?:\.(?P<fraction>\d{1,9}))?)?"
    r"(?P<tz>Z|[+-]\d{2}(?::?\d{2})?)?)?$"
)


def _parse_offset(value: str) -> timezone:
    if value == "Z":
        return UTC
    sign = -1 if value[0] == "-" else 1
    digits = value[1:].replace(":", "")
    hours = int(digits[:2])
    minutes = int(digits[2:4]) if len(digits) > 2 else 0
    return timezone(sign * timedelta(hours=hours, minutes=minutes))


def parse_iso8601(value: str) -> datetime:
    """
    Parse an ISO8601 date or date-time into an aware datetime.

    Accepted layouts: date only, date and time with or without seconds and
    fractional seconds, optionally followed by ``Z``, ``+hh:mm``, ``+hhmm``
    or ``+hh``. Values without a zone are interpreted as UTC.

    Raises:
        DateFormatError: If the value matches none of the accepted layouts
    """
    match = _ISO8601_PATTERN.match(value.strip())
    if not match:
        raise DateFormatError(value)

    parts = match.groupdict()
    fraction = (parts["fraction"] or "0")[:6].ljust(6, "0")
    tz = _parse_offset(parts["tz"]) if parts["tz"] else UTC

    try:
        return datetime(
            int(parts["year"]),
            int(parts["month"]),
            int(parts["day"]),
            int(parts["hour"] or 0),
            int(parts["minute"] or 0),
            int(parts["second"] or 0),
            int(fraction),
            tzinfo=tz,
        )
    except ValueError as e:
        # Well-formed but out of range, e.g. month 13
        raise DateFormatError(value) from e


def format_iso8601(value: datetime) -> str:
    """Render a datetime in the canonical ``YYYY-MM-DDTHH:MM:SS.sssZ`` profile."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    utc_value = value.astimezone(UTC)
    return utc_value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc_value.microsecond // 1000:03d}Z"


def canonicalize_iso8601(value: str) -> str:
    """Parse and re-render a date string in the canonical profile."""
    return format_iso8601(parse_iso8601(value))
