"""
Usage-limit message parsing and the countdown timer used while waiting.

Recognized reset time formats, tried in order:

    Claude AI usage limit reached|1751234400        epoch seconds
    ... resets 2025-02-09T18:00:00+01:00            ISO timestamp
    ... try again in 2 hours 15 minutes             relative duration
    You've hit your limit · resets Feb 9 at 6pm (America/Toronto)
    5-hour limit reached ∙ resets 3am (Europe/Berlin)
    ... please wait until 18:30                     time of day

Messages without a parseable time fall back to a fixed backoff.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Awaitable, Callable, List, Optional, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

# Time-of-day resets that lie less than this far in the past count as reached
PAST_TOLERANCE = timedelta(hours=1)
# How far after the signature we look for the reset time
SEARCH_SPAN = 400

MONTH_NAMES = {
    "jan": 1, "january": 1, "feb": 2, "february": 2,
    "mar": 3, "march": 3, "apr": 4, "april": 4,
    "may": 5, "jun": 6, "june": 6,
    "jul": 7, "july": 7, "aug": 8, "august": 8,
    "sep": 9, "sept": 9, "september": 9, "oct": 10, "october": 10,
    "nov": 11, "november": 11, "dec": 12, "december": 12,
}

EPOCH_RE = re.compile(r"\|\s*(\d{10})(?!\d)")
ISO_RE = re.compile(
    r"(\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?(?:Z|[+-]\d{2}:?\d{2})?)"
)
RELATIVE_RE = re.compile(
    r"\b(?:in|after)\s+((?:\d+\s*(?:hours?|hrs?|h|minutes?|mins?|m|seconds?|secs?|s)(?![a-z])[\s,]*(?:and\s+)?)+)",
    re.IGNORECASE,
)
RELATIVE_PART_RE = re.compile(r"(\d+)\s*(h|m|s)", re.IGNORECASE)
TIME_PART = r"(\d{1,2})(?:[:.](\d{2}))?\s*([ap])\.?\s*m\b\.?"
DATE_TIME_RE = re.compile(
    r"resets?\s+(?:on\s+)?([A-Za-z]{3,9})\.?\s+(\d{1,2})(?:st|nd|rd|th)?,?\s+(?:at\s+)?" + TIME_PART
    + r"(?:\s*\(([^)]+)\))?",
    re.IGNORECASE,
)
TIME_12H_RE = re.compile(TIME_PART + r"(?:\s*\(([^)]+)\))?", re.IGNORECASE)
TIME_24H_RE = re.compile(
    r"\b(?:at|until|resets?)\s+(\d{1,2}):(\d{2})\b(?:\s*\(([^)]+)\))?",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class UsageLimitInfo:
    """A parsed usage-limit message; immutable once created"""
    raw_message: str
    reset_at: datetime
    explicit: bool = True

    def remaining(self, now: Optional[datetime] = None) -> float:
        now = now or local_now()
        return max(0.0, (self.reset_at - now).total_seconds())


def local_now() -> datetime:
    return datetime.now().astimezone()


def _resolve_zone(name: Optional[str], fallback: tzinfo) -> tzinfo:
    if not name:
        return fallback
    try:
        return ZoneInfo(name.strip())
    except (ZoneInfoNotFoundError, ValueError) as e:
        logger.debug(f"Unknown timezone '{name}', using local time: {e}")
        return fallback


def _hour_24(hour: int, am_pm: str) -> int:
    if am_pm.lower() == "p" and hour != 12:
        return hour + 12
    if am_pm.lower() == "a" and hour == 12:
        return 0
    return hour


def _next_time_of_day(now: datetime, hour: int, minute: int, zone: tzinfo) -> datetime:
    """Today's occurrence unless it is more than PAST_TOLERANCE ago, else tomorrow's"""
    local = now.astimezone(zone)
    candidate = local.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if candidate < local - PAST_TOLERANCE:
        candidate += timedelta(days=1)
    return candidate


def _parse_epoch(text: str, now: datetime) -> Optional[datetime]:
    match = EPOCH_RE.search(text)
    if not match:
        return None
    return datetime.fromtimestamp(int(match.group(1)), tz=timezone.utc).astimezone(now.tzinfo)


def _parse_iso(text: str, now: datetime) -> Optional[datetime]:
    match = ISO_RE.search(text)
    if not match:
        return None
    value = datetime.fromisoformat(match.group(1).replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=now.tzinfo)
    return value


def _parse_relative(text: str, now: datetime) -> Optional[datetime]:
    match = RELATIVE_RE.search(text)
    if not match:
        return None
    seconds = 0
    for amount, unit in RELATIVE_PART_RE.findall(match.group(1)):
        factor = {"h": 3600, "m": 60, "s": 1}[unit.lower()]
        seconds += int(amount) * factor
    return now + timedelta(seconds=seconds)


def _parse_date_time(text: str, now: datetime) -> Optional[datetime]:
    match = DATE_TIME_RE.search(text)
    if not match:
        return None
    month = MONTH_NAMES.get(match.group(1).lower())
    if month is None:
        return None
    day = int(match.group(2))
    hour = _hour_24(int(match.group(3)), match.group(5))
    minute = int(match.group(4) or 0)
    zone = _resolve_zone(match.group(6), now.tzinfo)

    local = now.astimezone(zone)
    reset_at = local.replace(month=month, day=day, hour=hour, minute=minute, second=0, microsecond=0)
    if reset_at < local - PAST_TOLERANCE:
        reset_at = reset_at.replace(year=local.year + 1)
    return reset_at


def _parse_time_of_day(text: str, now: datetime) -> Optional[datetime]:
    match = TIME_12H_RE.search(text)
    if match:
        hour = _hour_24(int(match.group(1)), match.group(3))
        minute = int(match.group(2) or 0)
        zone = _resolve_zone(match.group(4), now.tzinfo)
        return _next_time_of_day(now, hour, minute, zone)

    match = TIME_24H_RE.search(text)
    if match:
        zone = _resolve_zone(match.group(3), now.tzinfo)
        return _next_time_of_day(now, int(match.group(1)), int(match.group(2)), zone)

    return None


PARSERS: List[Callable[[str, datetime], Optional[datetime]]] = [
    _parse_epoch,
    _parse_iso,
    _parse_relative,
    _parse_date_time,
    _parse_time_of_day,
]


def parse_reset_time(text: str, now: Optional[datetime] = None) -> Optional[datetime]:
    """Extract the reset time from a usage-limit message, or None"""
    now = now or local_now()
    for parser in PARSERS:
        try:
            reset_at = parser(text, now)
        except (ValueError, OverflowError) as e:
            logger.debug(f"{parser.__name__} could not parse reset time: {e}")
            continue
        if reset_at is not None:
            return reset_at
    return None


def compile_patterns(patterns: Sequence[str]) -> List["re.Pattern[str]"]:
    return [re.compile(pattern, re.IGNORECASE) for pattern in patterns]


def detect_usage_limit(
    text: str,
    patterns: Sequence["re.Pattern[str]"],
    default_backoff: float,
    now: Optional[datetime] = None,
) -> Optional[UsageLimitInfo]:
    """Return UsageLimitInfo when text carries a usage-limit signature"""
    now = now or local_now()

    for pattern in patterns:
        match = pattern.search(text)
        if not match:
            continue

        message = text[match.start():match.start() + SEARCH_SPAN]
        # Some agents print the reset time just before the signature
        reset_at = parse_reset_time(message, now) or parse_reset_time(text[max(0, match.start() - SEARCH_SPAN):], now)

        if reset_at is None:
            logger.debug(f"No reset time in limit message, backing off {default_backoff:.0f}s")
            return UsageLimitInfo(
                raw_message=message.strip(),
                reset_at=now + timedelta(seconds=default_backoff),
                explicit=False,
            )
        return UsageLimitInfo(raw_message=message.strip(), reset_at=reset_at, explicit=True)

    return None


def format_remaining(seconds: float) -> str:
    """Format a countdown as H:MM:SS"""
    total = int(round(max(0.0, seconds)))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours}:{minutes:02d}:{secs:02d}"


class UsageLimitTimer:
    """Countdown to a usage-limit reset.

    ``remaining()`` never increases, and ``run()`` fires ``on_expire``
    exactly once, immediately when the reset time is already past.
    """

    def __init__(
        self,
        reset_at: datetime,
        interval: float = 30.0,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.reset_at = reset_at
        self.interval = interval
        self.clock = clock or local_now
        self.sleep = sleep or asyncio.sleep
        self._last_remaining: Optional[float] = None
        self._fired = False

    def remaining(self) -> float:
        value = max(0.0, (self.reset_at - self.clock()).total_seconds())
        if self._last_remaining is not None:
            value = min(value, self._last_remaining)
        self._last_remaining = value
        return value

    @property
    def fired(self) -> bool:
        return self._fired

    async def run(self, on_tick: Callable[[float], None], on_expire: Callable[[], None]):
        while True:
            remaining = self.remaining()
            if remaining <= 0:
                break
            on_tick(remaining)
            await self.sleep(min(self.interval, remaining))

        if not self._fired:
            self._fired = True
            on_expire()
