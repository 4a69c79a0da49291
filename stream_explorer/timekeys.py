"""
Clock/key codec.

Record ids are local wall-clock instants truncated to a granularity and
rendered as ``YYYY-MM-DD[THH[:MM[:SS]]]``. Because every component is
zero-padded, ids of the same granularity sort lexicographically in
chronological order, which is what the cache and the chart rely on.
"""

import datetime
import enum
import re
from typing import Optional

from .config import APPROXIMATE_TOLERANCE_MS, MAX_USER_YEAR, MIN_USER_YEAR
from .exceptions import InvalidRangeError, InvalidRecordIdError


class Granularity(enum.Enum):
    DAY = 'd'
    HOUR = 'h'
    MINUTE = 'm'
    SECOND = 's'
    SUBSECOND = 'ss'

    @property
    def unit_seconds(self) -> int:
        return _UNIT_SECONDS[self]

    @property
    def cacheable(self) -> bool:
        """Coarse granularities are always re-fetched, never cached."""
        return self in (Granularity.SECOND, Granularity.SUBSECOND)

    @property
    def supports_autofresh(self) -> bool:
        return self in (Granularity.MINUTE, Granularity.SECOND, Granularity.SUBSECOND)

    @property
    def dataset(self) -> str:
        """Backend dataset: every sample for subsecond, sampled otherwise."""
        return 'all' if self is Granularity.SUBSECOND else 'samp'


_UNIT_SECONDS = {
    Granularity.DAY: 86400,
    Granularity.HOUR: 3600,
    Granularity.MINUTE: 60,
    Granularity.SECOND: 1,
    Granularity.SUBSECOND: 1,
}

_LOOKBACK_UNITS = {
    Granularity.DAY: 30,
    Granularity.HOUR: 30,
    Granularity.MINUTE: 300,
    Granularity.SECOND: 30 * 60,
    Granularity.SUBSECOND: 30 * 60,
}

RECORD_ID_REGEX = re.compile(r'^(\d{4})-(\d{2})-(\d{2})(?:T(\d{2})(?::(\d{2})(?::(\d{2}))?)?)?$')


def to_record_id(instant: datetime.datetime, granularity: Granularity) -> str:
    """Truncate ``instant`` to ``granularity`` and render it as a record id."""
    text = instant.strftime('%Y-%m-%d')
    if granularity is Granularity.DAY:
        return text
    text += instant.strftime('T%H')
    if granularity is Granularity.HOUR:
        return text
    text += instant.strftime(':%M')
    if granularity is Granularity.MINUTE:
        return text
    # Subsecond ids carry second precision, the extra samples share the id space.
    return text + instant.strftime(':%S')


def to_instant(record_id: str) -> datetime.datetime:
    """Parse a (possibly truncated) record id; missing components are zero."""
    match = RECORD_ID_REGEX.match(record_id or '')
    if not match:
        raise InvalidRecordIdError(f"invalid record id {record_id!r}")
    parts = [int(p) if p is not None else 0 for p in match.groups()]
    try:
        return datetime.datetime(*parts)
    except ValueError as e:
        raise InvalidRecordIdError(f"invalid record id {record_id!r}: {e}") from e


def default_lookback(granularity: Granularity) -> int:
    """Width of the default visible window, in granularity units."""
    return _LOOKBACK_UNITS[granularity]


def lookback_span(granularity: Granularity) -> datetime.timedelta:
    return datetime.timedelta(seconds=default_lookback(granularity) * granularity.unit_seconds)


def shift(instant: datetime.datetime, units: int, granularity: Granularity) -> datetime.datetime:
    """Move ``instant`` by whole granularity units, negative means earlier."""
    return instant + datetime.timedelta(seconds=units * granularity.unit_seconds)


def approximately_equal(a: str, b: str) -> bool:
    delta = to_instant(a) - to_instant(b)
    return abs(delta.total_seconds()) * 1000 < APPROXIMATE_TOLERANCE_MS


def now_id(granularity: Granularity, now: Optional[datetime.datetime] = None) -> str:
    return to_record_id(now or datetime.datetime.now(), granularity)


# --- User time entry ---

_DATE_FULL = re.compile(r'^(\d{4})-(\d{2})-(\d{2})')
_DATE_MONTH_DAY = re.compile(r'^(\d{2})-(\d{2})')
_DATE_DAY = re.compile(r'^(\d{2})')
_TIME_HMS = re.compile(r'\d{2}T(\d{2}):(\d{2}):(\d{2})$')
_TIME_HM = re.compile(r'\d{2}T(\d{2}):(\d{2})$')
_TIME_H = re.compile(r'\d{2}T(\d{2})$')


def normalize_user_time(text: str, now: Optional[datetime.datetime] = None) -> str:
    """
    Expand a partially typed time into the full ``YYYY-MM-DDTHH:MM:SS`` form.

    Accepts ``DD``, ``MM-DD`` or ``YYYY-MM-DD``, optionally followed by
    ``THH``, ``THH:MM`` or ``THH:MM:SS``. Year and month default to the
    current ones, the hour to the current hour, minutes and seconds to zero.
    """
    now = now or datetime.datetime.now()
    text = (text or '').strip()
    year = month = day = hour = None
    minute = second = 0

    if match := _DATE_FULL.match(text):
        year, month, day = (int(g) for g in match.groups())
    elif match := _DATE_MONTH_DAY.match(text):
        month, day = (int(g) for g in match.groups())
    elif match := _DATE_DAY.match(text):
        day = int(match.group(1))

    if match := _TIME_HMS.search(text):
        hour, minute, second = (int(g) for g in match.groups())
    elif match := _TIME_HM.search(text):
        hour, minute = (int(g) for g in match.groups())
    elif match := _TIME_H.search(text):
        hour = int(match.group(1))

    if day is None:
        raise InvalidRangeError(f"invalid date time {text}")

    year = now.year if year is None else year
    month = now.month if month is None else month
    hour = now.hour if hour is None else hour

    if not (MIN_USER_YEAR <= year <= MAX_USER_YEAR and 1 <= month <= 12 and 1 <= day <= 31
            and 0 <= hour <= 23 and 0 <= minute <= 59 and 0 <= second <= 59):
        raise InvalidRangeError(f"invalid date time {text}")
    try:
        instant = datetime.datetime(year, month, day, hour, minute, second)
    except ValueError as e:
        raise InvalidRangeError(f"invalid date time {text}") from e
    return to_record_id(instant, Granularity.SECOND)


def resolve_window(start_text: str, end_text: str, granularity: Granularity,
                   current=None, now: Optional[datetime.datetime] = None):
    """
    Turn user-entered start/end text into a VisibleWindow.

    With both fields empty the window ends now and starts one default
    lookback earlier, unless ``current`` already reaches back past that point,
    in which case its start is kept so cached data stays in view. With one
    field empty it is derived from the other using the default lookback.

    Raises InvalidRangeError when the end precedes the start or the span
    exceeds the granularity's default lookback.
    """
    from .models import VisibleWindow

    now = now or datetime.datetime.now()
    start_text = (start_text or '').strip()
    end_text = (end_text or '').strip()
    span = lookback_span(granularity)

    if not start_text and not end_text:
        start = to_record_id(now - span, granularity)
        end = to_record_id(now, granularity)
        if current is not None and start <= current.end and current.start <= end:
            start = current.start
        return VisibleWindow(start, end)

    if start_text:
        start_instant = to_instant(normalize_user_time(start_text, now))
    else:
        start_instant = to_instant(normalize_user_time(end_text, now)) - span
    if end_text:
        end_instant = to_instant(normalize_user_time(end_text, now))
    else:
        end_instant = start_instant + span

    diff = end_instant - start_instant
    if diff < datetime.timedelta(0):
        raise InvalidRangeError(f"end before start\nstart {start_text}\nend {end_text}")
    if diff > span:
        raise InvalidRangeError(
            f"need too many data {int(diff.total_seconds() * 1000)}\n"
            f"start {start_text}\nend   {end_text}\nunit is {granularity.value}"
        )
    return VisibleWindow(to_record_id(start_instant, granularity), to_record_id(end_instant, granularity))
