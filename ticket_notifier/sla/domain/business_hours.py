"""
Business Hours
==============

Civil-time resolution for the business calendar.

The resolver answers two questions for a configured calendar:
- is a given instant inside business hours?
- when do business hours next begin?

Zone data is only ever used to *render* an instant's civil fields
(date, weekday, clock) in a named timezone. Going the other way, from a
civil date and clock time back to an instant, is done by searching
candidate UTC offsets and checking each candidate's rendering.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone
from functools import lru_cache
from typing import Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ticket_notifier.core.exceptions import CivilTimeException
from ticket_notifier.sla.domain.value_objects import (
    BusinessCalendar,
    CivilDateTime,
    sunday_based_weekday,
)
from ticket_notifier.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Default clock."""
    return datetime.now(timezone.utc)


def ensure_utc(instant: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


class CivilTimeRenderer(ABC):
    """Renders an instant's calendar and clock fields in a named timezone."""

    @abstractmethod
    def render(self, instant: datetime, timezone_name: str) -> CivilDateTime:
        """
        Render an instant in a timezone.

        Raises:
            CivilTimeException: If the timezone is unknown or rendering fails
        """
        pass


@lru_cache(maxsize=32)
def _load_zone(timezone_name: str) -> ZoneInfo:
    return ZoneInfo(timezone_name)


class ZoneInfoRenderer(CivilTimeRenderer):
    """Renderer backed by the IANA zone data shipped with Python (or tzdata)."""

    def render(self, instant: datetime, timezone_name: str) -> CivilDateTime:
        try:
            local = ensure_utc(instant).astimezone(_load_zone(timezone_name))
        except (ZoneInfoNotFoundError, OSError, ValueError, TypeError, OverflowError) as e:
            raise CivilTimeException(timezone_name, str(e)) from e

        return CivilDateTime(
            year=local.year,
            month=local.month,
            day=local.day,
            weekday=sunday_based_weekday(local.date()),
            hour=local.hour,
            minute=local.minute,
            second=local.second,
        )


class BusinessHoursResolver:
    """
    Business-hours gate for the evaluation loop.

    Args:
        calendar: Business calendar to resolve against
        renderer: Civil time renderer (defaults to ZoneInfoRenderer)
        clock: Current-instant source (defaults to UTC wall clock)
    """

    MAX_SCAN_DAYS = 14
    FALLBACK_WAIT = timedelta(hours=24)

    # Candidate offsets, as hours added to the civil fields read as UTC.
    # Ascending, so the earliest instant wins when a local time occurs twice.
    COARSE_OFFSETS = range(-14, 13)
    FINE_STEP = timedelta(minutes=15)

    def __init__(
        self,
        calendar: BusinessCalendar,
        renderer: Optional[CivilTimeRenderer] = None,
        clock: Optional[Clock] = None
    ):
        self.calendar = calendar
        self.renderer = renderer or ZoneInfoRenderer()
        self._clock = clock or utc_now

    def now(self) -> datetime:
        return ensure_utc(self._clock())

    def is_business_hours(self, instant: Optional[datetime] = None) -> bool:
        """
        Whether an instant (default: now) falls inside business hours.

        Fails open: when the instant cannot be rendered the answer is True,
        so a configuration mistake never silently stops SLA alerting.
        """
        if not self.calendar.enabled:
            return True

        instant = ensure_utc(instant) if instant else self.now()
        try:
            civil = self.renderer.render(instant, self.calendar.timezone)
        except CivilTimeException as e:
            logger.error(
                "Business hours check failed, treating as business hours",
                extra={"timezone": self.calendar.timezone, "error": e.message}
            )
            return True

        if not self.calendar.is_business_day(civil.weekday):
            return False
        return self.calendar.start_seconds <= civil.seconds_of_day < self.calendar.end_seconds

    def next_business_hours_start(self, from_instant: Optional[datetime] = None) -> datetime:
        """
        First instant strictly after from_instant (default: now) at which
        business hours begin.

        Bounded: scans at most MAX_SCAN_DAYS ahead and falls back to
        from_instant + FALLBACK_WAIT when no start can be resolved.
        """
        from_instant = ensure_utc(from_instant) if from_instant else self.now()
        start = self.calendar.start_time

        try:
            civil = self.renderer.render(from_instant, self.calendar.timezone)
        except CivilTimeException as e:
            logger.error(
                "Cannot resolve next business hours start",
                extra={"timezone": self.calendar.timezone, "error": e.message}
            )
            return from_instant + self.FALLBACK_WAIT

        today = civil.to_date()
        candidates = []
        if self.calendar.is_business_day(civil.weekday) and civil.seconds_of_day < self.calendar.start_seconds:
            candidates.append(today)
        candidates.extend(today + timedelta(days=n) for n in range(1, self.MAX_SCAN_DAYS + 1))

        for day in candidates:
            if not self.calendar.is_business_day(sunday_based_weekday(day)):
                continue

            instant = self._civil_to_instant(day, start.hour, start.minute)
            if instant is None:
                logger.warning(
                    "Business hours start does not exist in timezone, using fallback wait",
                    extra={
                        "date": day.isoformat(),
                        "start_time": start.strftime("%H:%M"),
                        "timezone": self.calendar.timezone,
                    }
                )
                return from_instant + self.FALLBACK_WAIT
            if instant > from_instant:
                return instant

        logger.warning(
            "No business day found in scan window, using fallback wait",
            extra={"max_scan_days": self.MAX_SCAN_DAYS, "timezone": self.calendar.timezone}
        )
        return from_instant + self.FALLBACK_WAIT

    def _civil_to_instant(self, target_date: date, hour: int, minute: int) -> Optional[datetime]:
        """
        Find the instant that renders as target_date hour:minute.

        Tries whole-hour offsets first, then a quarter-hour sweep across
        the whole offset range for zones such as +05:30 or +05:45.
        Returns None when no candidate renders exactly (e.g. a local time
        skipped by a DST transition).
        """
        base = datetime(target_date.year, target_date.month, target_date.day, hour, minute, tzinfo=timezone.utc)

        for offset in self.COARSE_OFFSETS:
            candidate = base + timedelta(hours=offset)
            if self._renders_as(candidate, target_date, hour, minute):
                return candidate

        candidate = base + timedelta(hours=self.COARSE_OFFSETS[0])
        end = base + timedelta(hours=self.COARSE_OFFSETS[-1])
        while candidate <= end:
            if self._renders_as(candidate, target_date, hour, minute):
                return candidate
            candidate += self.FINE_STEP

        return None

    def _renders_as(self, candidate: datetime, target_date: date, hour: int, minute: int) -> bool:
        try:
            civil = self.renderer.render(candidate, self.calendar.timezone)
        except CivilTimeException:
            return False
        return civil.matches(target_date, hour, minute)

    def describe(self) -> dict:
        """Calendar as shown to operators."""
        return self.calendar.to_dict()

    def check_timezone(self) -> bool:
        """
        Render the current instant once in the calendar's timezone.

        Returns:
            False (after logging) when the timezone cannot be used; the
            resolver then fails open on every call.
        """
        try:
            self.renderer.render(self.now(), self.calendar.timezone)
        except CivilTimeException as e:
            logger.error(
                "Business hours timezone is unusable, gate will fail open",
                extra={"timezone": self.calendar.timezone, "error": e.message}
            )
            return False
        return True
