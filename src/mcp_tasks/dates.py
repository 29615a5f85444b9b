"""
Natural-language due date resolution.

Turns phrases like "tomorrow at 5pm", "next friday", "in 3 days",
"March 14" or "2026-11-02T10:00" into an absolute UTC timestamp. The parser
is rule based: a phrase either matches one of the known shapes or resolves
to None. An unresolvable phrase is never an error: the task simply has no
due date.

Recognized shapes (case-insensitive, surrounding "on"/"by"/"due" ignored):
- ISO 8601 dates and datetimes
- now, today, tonight, tomorrow, yesterday, day after tomorrow
- in N minutes|hours|days|weeks|months|years, N <unit> from now, N <unit> later
- next week|month|year, end of week|month|year
- [this|next|coming] <weekday>
- <month> <day>[, <year>], <day> [of] <month> [<year>], MM/DD[/YYYY]
each optionally combined with a time of day: "at 5", "5pm", "17:30",
"noon", "midnight", "morning", "afternoon", "evening", "night".

Date-only phrases resolve to 09:00 local time. Relative offsets of days or
more keep the current time of day. Local time is the configured zone.
"""

from __future__ import annotations

import calendar
import re
from collections.abc import Callable
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from mcp_tasks.logging import get_logger

logger = get_logger(__name__)

# ---------------------------------------------------------------------------
# Vocabulary
# ---------------------------------------------------------------------------

_MONTH_NAMES: dict[str, int] = {
    "january": 1, "jan": 1,
    "february": 2, "feb": 2,
    "march": 3, "mar": 3,
    "april": 4, "apr": 4,
    "may": 5,
    "june": 6, "jun": 6,
    "july": 7, "jul": 7,
    "august": 8, "aug": 8,
    "september": 9, "sep": 9, "sept": 9,
    "october": 10, "oct": 10,
    "november": 11, "nov": 11,
    "december": 12, "dec": 12,
}

_WEEKDAYS: dict[str, int] = {
    "monday": 0, "mon": 0,
    "tuesday": 1, "tue": 1, "tues": 1,
    "wednesday": 2, "wed": 2,
    "thursday": 3, "thu": 3, "thurs": 3,
    "friday": 4, "fri": 4,
    "saturday": 5, "sat": 5,
    "sunday": 6, "sun": 6,
}

_NUMBER_WORDS: dict[str, int] = {
    "a": 1, "an": 1, "one": 1, "two": 2, "three": 3, "four": 4, "five": 5,
    "six": 6, "seven": 7, "eight": 8, "nine": 9, "ten": 10, "twelve": 12,
}

_NAMED_TIMES: dict[str, time] = {
    "noon": time(12, 0),
    "midnight": time(0, 0),
    "morning": time(9, 0),
    "afternoon": time(15, 0),
    "evening": time(18, 0),
    "night": time(20, 0),
}

_END_OF_DAY = time(23, 59)

_MONTH_PAT = "|".join(sorted(_MONTH_NAMES, key=len, reverse=True))
_WEEKDAY_PAT = "|".join(sorted(_WEEKDAYS, key=len, reverse=True))
_NUMBER_PAT = r"\d+|" + "|".join(sorted(_NUMBER_WORDS, key=len, reverse=True))
_UNIT_PAT = r"minutes?|mins?|hours?|hrs?|days?|weeks?|months?|years?"
_ORDINAL = r"(?:st|nd|rd|th)?"

# ---------------------------------------------------------------------------
# Time-of-day patterns (matched at either end of the phrase)
# ---------------------------------------------------------------------------

_TIME_CORE = (
    r"(?:at\s+)?(?:"
    r"(?P<hour>\d{1,2})(?::(?P<minute>\d{2}))?\s*(?P<meridiem>am|pm)"
    r"|(?P<hour24>\d{1,2}):(?P<minute24>\d{2})"
    r"|(?P<named>" + "|".join(_NAMED_TIMES) + r")"
    r")"
    r"|at\s+(?P<athour>\d{1,2})"
)
_TIME_SUFFIX = re.compile(r"(?:^|\s)(?:" + _TIME_CORE + r")$")
_TIME_PREFIX = re.compile(r"^(?:" + _TIME_CORE + r")(?:\s|$)")

# ---------------------------------------------------------------------------
# Date patterns
# ---------------------------------------------------------------------------

_RELATIVE = re.compile(
    r"^(?P<in>in\s+)?(?P<n>" + _NUMBER_PAT + r")\s+(?P<unit>" + _UNIT_PAT + r")"
    r"(?P<suffix>\s+(?:from\s+now|later))?$"
)
_NEXT_PERIOD = re.compile(r"^next\s+(?P<period>week|month|year)$")
_END_OF_PERIOD = re.compile(r"^end\s+of\s+(?:the\s+)?(?P<period>week|month|year)$")
_WEEKDAY = re.compile(
    r"^(?:(?P<modifier>this|next|coming)\s+)?(?P<weekday>" + _WEEKDAY_PAT + r")$"
)
_MONTH_DAY = re.compile(
    r"^(?P<month>" + _MONTH_PAT + r")\.?\s+(?P<day>\d{1,2})" + _ORDINAL
    + r"(?:,?\s+(?P<year>\d{4}))?$"
)
_DAY_MONTH = re.compile(
    r"^(?:the\s+)?(?P<day>\d{1,2})" + _ORDINAL + r"\s+(?:of\s+)?(?P<month>" + _MONTH_PAT
    + r")\.?(?:,?\s+(?P<year>\d{4}))?$"
)
_NUMERIC_DATE = re.compile(r"^(?P<month>\d{1,2})/(?P<day>\d{1,2})(?:/(?P<year>\d{2}|\d{4}))?$")

_FILLER = re.compile(r"^(?:on|by|due|before)\s+")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _add_months(d: date, months: int) -> date:
    index = d.month - 1 + months
    year = d.year + index // 12
    month = index % 12 + 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return d.replace(year=year, month=month, day=day)


def _parse_number(token: str) -> int:
    return int(token) if token.isdigit() else _NUMBER_WORDS[token]


def _time_from_match(m: re.Match[str]) -> time | None:
    """Build a time from a _TIME_* match; None if out of range."""
    if m.group("named"):
        return _NAMED_TIMES[m.group("named")]

    if m.group("meridiem"):
        hour = int(m.group("hour"))
        minute = int(m.group("minute") or 0)
        if not 1 <= hour <= 12:
            return None
        hour %= 12
        if m.group("meridiem") == "pm":
            hour += 12
    elif m.group("hour24"):
        hour = int(m.group("hour24"))
        minute = int(m.group("minute24"))
    else:
        hour = int(m.group("athour"))
        minute = 0

    if hour > 23 or minute > 59:
        return None
    return time(hour, minute)


def format_due_date(value: datetime) -> str:
    """Render an aware datetime the way due dates are stored (UTC, seconds)."""
    return value.astimezone(UTC).isoformat(timespec="seconds")


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class DueDateResolver:
    """
    Resolve natural-language due date phrases.

    Usage::

        resolver = DueDateResolver(timezone="Europe/Berlin")
        resolver.parse("tomorrow at 5pm")   # aware UTC datetime or None
        await resolver.resolve("next friday")  # ISO string or None
    """

    def __init__(
        self,
        timezone: str = "UTC",
        default_time: time = time(9, 0),
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """
        Args:
            timezone: IANA zone in which phrases are interpreted.
            default_time: Time of day for date-only phrases.
            clock: Returns the current aware datetime (for deterministic tests).
        """
        self._tz = ZoneInfo(timezone)
        self._default_time = default_time
        self._clock = clock or (lambda: datetime.now(UTC))

    async def resolve(self, text: str | None) -> str | None:
        """Resolve a phrase to the stored ISO form, or None."""
        parsed = self.parse(text)
        if parsed is None:
            if text:
                logger.debug("Unresolvable due date phrase", extra={"phrase": text})
            return None
        return format_due_date(parsed)

    def parse(self, text: str | None, now: datetime | None = None) -> datetime | None:
        """
        Parse a phrase into an aware UTC datetime.

        Args:
            text: The phrase.
            now: Reference time; defaults to the resolver clock.

        Returns:
            The resolved instant, or None if the phrase isn't understood.
        """
        if not text or not text.strip():
            return None

        now_local = (now or self._clock()).astimezone(self._tz)
        try:
            return self._parse(text, now_local)
        except (ValueError, OverflowError):
            # Outside the representable date range
            return None

    def _parse(self, text: str, now_local: datetime) -> datetime | None:
        iso = self._parse_iso(text.strip())
        if iso is not None:
            return iso

        phrase = " ".join(text.lower().replace(",", ", ").split())
        phrase = phrase.replace(" ,", ",")
        phrase = _FILLER.sub("", phrase)

        phrase, time_of_day, valid = self._split_time(phrase)
        if not valid:
            return None
        phrase = _FILLER.sub("", phrase).strip(" ,")

        resolved = self._parse_phrase(phrase, time_of_day, now_local)
        if resolved is None:
            return None
        return resolved.astimezone(UTC)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _parse_iso(self, text: str) -> datetime | None:
        try:
            day = date.fromisoformat(text)
        except ValueError:
            pass
        else:
            return datetime.combine(day, self._default_time, tzinfo=self._tz).astimezone(UTC)

        try:
            value = datetime.fromisoformat(text)
        except ValueError:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=self._tz)
        return value.astimezone(UTC)

    def _split_time(self, phrase: str) -> tuple[str, time | None, bool]:
        """Detach a time of day from either end of the phrase."""
        for pattern in (_TIME_SUFFIX, _TIME_PREFIX):
            m = pattern.search(phrase)
            if m is None:
                continue
            time_of_day = _time_from_match(m)
            if time_of_day is None:
                return phrase, None, False
            remainder = (phrase[: m.start()] + " " + phrase[m.end() :]).strip()
            return remainder, time_of_day, True
        return phrase, None, True

    def _at(self, day: date, time_of_day: time | None, fallback: time | None = None) -> datetime:
        chosen = time_of_day or fallback or self._default_time
        return datetime.combine(day, chosen, tzinfo=self._tz)

    def _parse_phrase(
        self,
        phrase: str,
        time_of_day: time | None,
        now: datetime,
    ) -> datetime | None:
        today = now.date()

        if phrase in ("", "today", "this"):
            if not phrase and time_of_day is None:
                return None
            return self._at(today, time_of_day)
        if phrase in ("now", "right now"):
            return now if time_of_day is None else self._at(today, time_of_day)
        if phrase == "tonight":
            return self._at(today, time_of_day, _NAMED_TIMES["night"])
        if phrase in ("tomorrow", "tmrw", "tmr"):
            return self._at(today + timedelta(days=1), time_of_day)
        if phrase in ("day after tomorrow", "the day after tomorrow"):
            return self._at(today + timedelta(days=2), time_of_day)
        if phrase == "yesterday":
            return self._at(today - timedelta(days=1), time_of_day)

        m = _RELATIVE.match(phrase)
        if m and (m.group("in") or m.group("suffix")):
            return self._relative(now, _parse_number(m.group("n")), m.group("unit"), time_of_day)

        m = _NEXT_PERIOD.match(phrase)
        if m:
            period = m.group("period")
            if period == "week":
                day = today + timedelta(days=7)
            elif period == "month":
                day = _add_months(today, 1)
            else:
                day = _add_months(today, 12)
            return self._at(day, time_of_day)

        m = _END_OF_PERIOD.match(phrase)
        if m:
            period = m.group("period")
            if period == "week":
                day = today + timedelta(days=6 - today.weekday())
            elif period == "month":
                day = today.replace(day=calendar.monthrange(today.year, today.month)[1])
            else:
                day = today.replace(month=12, day=31)
            return self._at(day, time_of_day, _END_OF_DAY)

        m = _WEEKDAY.match(phrase)
        if m:
            days_ahead = (_WEEKDAYS[m.group("weekday")] - today.weekday()) % 7
            if days_ahead == 0 and m.group("modifier") in ("next", "coming"):
                days_ahead = 7
            return self._at(today + timedelta(days=days_ahead), time_of_day)

        for pattern in (_MONTH_DAY, _DAY_MONTH):
            m = pattern.match(phrase)
            if m:
                return self._calendar_date(
                    today,
                    _MONTH_NAMES[m.group("month")],
                    int(m.group("day")),
                    m.group("year"),
                    time_of_day,
                )

        m = _NUMERIC_DATE.match(phrase)
        if m:
            return self._calendar_date(
                today,
                int(m.group("month")),
                int(m.group("day")),
                m.group("year"),
                time_of_day,
            )

        return None

    def _relative(
        self,
        now: datetime,
        amount: int,
        unit: str,
        time_of_day: time | None,
    ) -> datetime:
        if unit.startswith("min"):
            return now + timedelta(minutes=amount)
        if unit.startswith(("hour", "hr")):
            return now + timedelta(hours=amount)

        if unit.startswith("day"):
            day = now.date() + timedelta(days=amount)
        elif unit.startswith("week"):
            day = now.date() + timedelta(weeks=amount)
        elif unit.startswith("month"):
            day = _add_months(now.date(), amount)
        else:
            day = _add_months(now.date(), 12 * amount)
        return self._at(day, time_of_day, now.time().replace(microsecond=0))

    def _calendar_date(
        self,
        today: date,
        month: int,
        day: int,
        year: str | None,
        time_of_day: time | None,
    ) -> datetime | None:
        """A month/day with optional year; without a year the next occurrence wins."""
        try:
            if year is not None:
                full_year = int(year) + 2000 if len(year) == 2 else int(year)
                return self._at(date(full_year, month, day), time_of_day)

            candidate = date(today.year, month, day)
            if candidate < today:
                candidate = date(today.year + 1, month, day)
        except ValueError:
            return None
        return self._at(candidate, time_of_day)
