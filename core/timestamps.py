"""Timezone-aware timestamp utilities.

Log records and reports use UTC with an explicit +00:00 offset. Database
timezone checks compare against ``+HH:MM`` offset strings, the format Oracle
reports for DBTIMEZONE.
"""

import re
from datetime import datetime, timedelta, timezone

_OFFSET_RE = re.compile(r"^([+-])(\d{2}):(\d{2})$")


def now() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


def isonow() -> str:
    """Return the current UTC time as an ISO 8601 string with +00:00 offset."""
    return now().isoformat()


def filestamp() -> str:
    """Compact UTC stamp for artefact file names (``20260101T120000Z``)."""
    return now().strftime("%Y%m%dT%H%M%SZ")


def parse_offset(value: str) -> timedelta:
    """Parse a ``+HH:MM`` / ``-HH:MM`` offset.

    Raises:
        ValueError: If the string is not an offset.
    """
    match = _OFFSET_RE.match(value.strip())
    if not match:
        raise ValueError(f"Not a UTC offset: {value!r}")
    sign, hours, minutes = match.groups()
    delta = timedelta(hours=int(hours), minutes=int(minutes))
    return -delta if sign == "-" else delta


def same_offset(left: str, right: str) -> bool:
    """Compare two offsets by value (``+00:00`` equals ``-00:00``)."""
    return parse_offset(left) == parse_offset(right)
