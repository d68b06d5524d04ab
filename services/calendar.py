"""Business-timezone time authority.

Stored booking dates are naive UTC instants of *business* midnight, so the
calendar day must always be recovered through :class:`BusinessCalendar`, never
by reading the UTC date directly.
"""
import re
from calendar import monthrange
from datetime import date, datetime, time, timezone

import pytz

from services.errors import InvalidInput

DEFAULT_TIMEZONE = "Africa/Mogadishu"

_TIME_RE = re.compile(r"^([01][0-9]|2[0-3]):([0-5][0-9])$")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def utcnow() -> datetime:
    """Naive UTC now, the convention for every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _system_clock() -> datetime:
    return datetime.now(pytz.UTC)


def parse_time_string(value) -> int:
    """Return minutes since midnight for a strict ``HH:MM`` value."""
    if not isinstance(value, str):
        raise InvalidInput("Invalid time format. Use HH:MM in 24-hour format")
    match = _TIME_RE.match(value)
    if not match:
        raise InvalidInput(f"Invalid time '{value}'. Use HH:MM in 24-hour format")
    return int(match.group(1)) * 60 + int(match.group(2))


def compare_time_strings(a: str, b: str) -> int:
    """Signed difference ``a - b`` in minutes."""
    return parse_time_string(a) - parse_time_string(b)


def format_minutes(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def add_months(day: date, months: int) -> date:
    # day is clamped to the last day of the target month (Jan 31 + 1 -> Feb 28/29)
    index = day.month - 1 + months
    year = day.year + index // 12
    month = index % 12 + 1
    return date(year, month, min(day.day, monthrange(year, month)[1]))


def weekday_number(day: date) -> int:
    """0=Sunday .. 6=Saturday."""
    return day.isoweekday() % 7


class BusinessCalendar:
    """Now/today and date normalization for the one configured business timezone.

    Built once by ``create_app`` and handed to every service. ``clock`` returns
    the current instant (aware or naive UTC) and exists so tests can pin time.
    """

    def __init__(self, timezone_name: str = DEFAULT_TIMEZONE, clock=None):
        try:
            self.tz = pytz.timezone(timezone_name)
        except pytz.UnknownTimeZoneError:
            raise ValueError(f"Unknown business timezone: {timezone_name}")
        self.timezone_name = timezone_name
        self._clock = clock or _system_clock

    def __repr__(self):
        return f"BusinessCalendar({self.timezone_name!r})"

    # ---------- now ----------

    def now(self) -> datetime:
        current = self._clock()
        if current.tzinfo is None:
            current = pytz.UTC.localize(current)
        return current.astimezone(self.tz)

    def today(self) -> date:
        return self.now().date()

    def today_key(self) -> str:
        return self.today().isoformat()

    def minutes_now(self) -> int:
        current = self.now()
        return current.hour * 60 + current.minute

    def current_time_string(self) -> str:
        return format_minutes(self.minutes_now())

    @property
    def label(self) -> str:
        return f"{self.timezone_name} ({self.now().tzname()})"

    # ---------- conversions ----------

    def parse_date(self, value) -> date:
        if isinstance(value, datetime):
            raise InvalidInput("Expected a calendar date, not a timestamp")
        if isinstance(value, date):
            return value
        if not isinstance(value, str) or not _DATE_RE.match(value.strip()):
            raise InvalidInput("Invalid date. Use YYYY-MM-DD")
        try:
            return date.fromisoformat(value.strip())
        except ValueError:
            raise InvalidInput(f"Invalid date '{value}'")

    def business_date(self, value) -> date:
        """Calendar date in business time for a date string, date or stored instant."""
        if isinstance(value, datetime):
            instant = value if value.tzinfo else pytz.UTC.localize(value)
            return instant.astimezone(self.tz).date()
        return self.parse_date(value)

    def date_key(self, value) -> str:
        return self.business_date(value).isoformat()

    def to_business_midnight_utc(self, value) -> datetime:
        """Naive UTC instant of 00:00 business time on the given calendar date."""
        day = self.parse_date(value)
        naive = datetime.combine(day, time.min)
        try:
            local = self.tz.localize(naive, is_dst=None)
        except pytz.NonExistentTimeError:
            raise InvalidInput(f"{day.isoformat()} has no midnight in {self.timezone_name}")
        except pytz.AmbiguousTimeError:
            local = self.tz.localize(naive, is_dst=False)
        return local.astimezone(pytz.UTC).replace(tzinfo=None)

    def today_midnight_utc(self) -> datetime:
        return self.to_business_midnight_utc(self.today())

    def is_past(self, value) -> bool:
        return self.business_date(value) < self.today()

    def is_today(self, value) -> bool:
        return self.business_date(value) == self.today()
