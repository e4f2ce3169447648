"""
SLA Value Objects
==================

Immutable value objects for the SLA domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from dataclasses import dataclass
from datetime import date, time
from typing import Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ticket_notifier.config import SLA_BUCKETS, SLABucket, WEEKDAY_NAMES
from ticket_notifier.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class CivilDateTime:
    """
    Calendar and clock fields of an instant as seen in a named timezone.

    Weekdays are numbered 0=Sunday ... 6=Saturday.
    """
    year: int
    month: int
    day: int
    weekday: int
    hour: int
    minute: int
    second: int = 0

    @property
    def seconds_of_day(self) -> int:
        return self.hour * 3600 + self.minute * 60 + self.second

    def to_date(self) -> date:
        return date(self.year, self.month, self.day)

    def matches(self, target_date: date, hour: int, minute: int) -> bool:
        """Exact match on year/month/day/hour/minute."""
        return (
            self.year == target_date.year
            and self.month == target_date.month
            and self.day == target_date.day
            and self.hour == hour
            and self.minute == minute
        )


def sunday_based_weekday(day: date) -> int:
    """Weekday of a calendar date, 0=Sunday ... 6=Saturday."""
    return day.isoweekday() % 7


class BusinessCalendar(BaseModel):
    """
    Civil business calendar: weekday set plus a daily time window in a
    named timezone. Immutable for the lifetime of the process.
    """
    model_config = ConfigDict(frozen=True)

    enabled: bool = Field(default=True, description="When disabled every instant is business hours")
    start_time: time = Field(default=time(9, 0), description="Daily start (inclusive)")
    end_time: time = Field(default=time(17, 0), description="Daily end (exclusive)")
    timezone: str = Field(default="America/New_York", description="IANA timezone name")
    business_days: FrozenSet[int] = Field(
        default=frozenset({1, 2, 3, 4, 5}),
        description="Business weekdays, 0=Sunday ... 6=Saturday"
    )

    @field_validator("business_days")
    @classmethod
    def validate_business_days(cls, v: FrozenSet[int]) -> FrozenSet[int]:
        invalid = [d for d in v if d < 0 or d > 6]
        if invalid:
            raise ValueError(f"business days must be between 0 and 6, got {sorted(invalid)}")
        if not v:
            raise ValueError("at least one business day is required")
        return v

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("timezone must not be empty")
        return v.strip()

    @model_validator(mode="after")
    def validate_window(self) -> "BusinessCalendar":
        if self.start_time >= self.end_time:
            raise ValueError(
                f"start_time {self.start_time:%H:%M} must be before end_time {self.end_time:%H:%M}"
            )
        return self

    @staticmethod
    def parse_time(value: str) -> time:
        """Parse an 'HH:MM' (24-hour) string."""
        try:
            hours, minutes = value.strip().split(":")
            return time(int(hours), int(minutes))
        except (AttributeError, ValueError) as e:
            raise ValueError(f"invalid time of day '{value}', expected HH:MM") from e

    @staticmethod
    def parse_days(value: str) -> FrozenSet[int]:
        """Parse a comma separated weekday list such as '1,2,3,4,5'."""
        try:
            return frozenset(int(part.strip()) for part in value.split(",") if part.strip())
        except ValueError as e:
            raise ValueError(f"invalid business days '{value}'") from e

    @classmethod
    def from_settings(cls, settings) -> "BusinessCalendar":
        """Build the calendar from application settings."""
        return cls(
            enabled=settings.business_hours_enabled,
            start_time=cls.parse_time(settings.business_hours_start),
            end_time=cls.parse_time(settings.business_hours_end),
            timezone=settings.business_hours_timezone,
            business_days=cls.parse_days(settings.business_hours_days),
        )

    def is_business_day(self, weekday: int) -> bool:
        return weekday in self.business_days

    @property
    def start_seconds(self) -> int:
        return self.start_time.hour * 3600 + self.start_time.minute * 60 + self.start_time.second

    @property
    def end_seconds(self) -> int:
        return self.end_time.hour * 3600 + self.end_time.minute * 60 + self.end_time.second

    @property
    def business_day_names(self) -> List[str]:
        return [WEEKDAY_NAMES[d] for d in sorted(self.business_days)]

    def to_dict(self) -> dict:
        return {
            "enabled": self.enabled,
            "start_time": self.start_time.strftime("%H:%M"),
            "end_time": self.end_time.strftime("%H:%M"),
            "timezone": self.timezone,
            "business_days": sorted(self.business_days),
            "business_days_names": self.business_day_names,
        }


DEFAULT_SLA_DURATIONS: Dict[str, int] = {
    SLABucket.FRT: 5 * 60,
    SLABucket.NRT: 5 * 60,
    SLABucket.TTC: 24 * 60 * 60,
}

DEFAULT_SLA_KEYWORDS: Dict[str, List[str]] = {
    SLABucket.FRT: ["first response", "frt"],
    SLABucket.NRT: ["next response", "nrt"],
    SLABucket.TTC: ["close", "ttc"],
}


class DurationPolicy(BaseModel):
    """
    Maps an SLA's display name to a commitment duration.

    Names are classified into buckets by case-insensitive keyword
    containment, checked in bucket order (FRT, NRT, TTC). A name that
    matches no bucket gets the shortest configured duration.
    """
    model_config = ConfigDict(frozen=True)

    durations: Dict[str, int] = Field(
        default_factory=lambda: dict(DEFAULT_SLA_DURATIONS),
        description="Duration in seconds per bucket"
    )
    keywords: Dict[str, List[str]] = Field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_SLA_KEYWORDS.items()},
        description="Lower-case keywords per bucket"
    )

    @field_validator("durations")
    @classmethod
    def validate_durations(cls, v: Dict[str, int]) -> Dict[str, int]:
        """Fill missing buckets with defaults and reject non-positive durations."""
        merged = dict(DEFAULT_SLA_DURATIONS)
        for key, seconds in v.items():
            bucket = key.strip().upper()
            if bucket not in SLA_BUCKETS:
                raise ValueError(f"unknown SLA bucket '{key}', expected one of {SLA_BUCKETS}")
            if int(seconds) <= 0:
                raise ValueError(f"duration for {bucket} must be positive")
            merged[bucket] = int(seconds)
        return merged

    @field_validator("keywords")
    @classmethod
    def validate_keywords(cls, v: Dict[str, List[str]]) -> Dict[str, List[str]]:
        merged = {k: list(words) for k, words in DEFAULT_SLA_KEYWORDS.items()}
        for key, words in v.items():
            bucket = key.strip().upper()
            if bucket not in SLA_BUCKETS:
                raise ValueError(f"unknown SLA bucket '{key}', expected one of {SLA_BUCKETS}")
            for word in words:
                word = word.strip().lower()
                if word and word not in merged[bucket]:
                    merged[bucket].append(word)
        return merged

    @staticmethod
    def parse_overrides(raw: Optional[str]) -> Dict[str, int]:
        """
        Parse an operator mapping such as 'FRT:300,NRT:300,TTC:86400'.

        Malformed items and unknown buckets are skipped with a warning so a
        typo in one entry does not discard the others.
        """
        overrides: Dict[str, int] = {}
        if not raw:
            return overrides

        for item in raw.split(","):
            if not item.strip():
                continue
            key, sep, value = item.partition(":")
            key = key.strip().upper()
            try:
                seconds = int(value.strip()) if sep else None
            except ValueError:
                seconds = None

            if not key or seconds is None or seconds <= 0 or key not in SLA_BUCKETS:
                logger.warning(
                    "Ignoring malformed SLA duration override",
                    extra={"item": item.strip()}
                )
                continue
            overrides[key] = seconds

        return overrides

    @classmethod
    def from_overrides(
        cls,
        raw: Optional[str] = None,
        keywords: Optional[Dict[str, List[str]]] = None
    ) -> "DurationPolicy":
        return cls(durations=cls.parse_overrides(raw), keywords=keywords or {})

    def merged_with(
        self,
        durations: Optional[Dict[str, int]] = None,
        keywords: Optional[Dict[str, List[str]]] = None
    ) -> "DurationPolicy":
        """Return a new policy with the given overrides layered on top."""
        merged_keywords = {k: list(v) for k, v in self.keywords.items()}
        for key, words in (keywords or {}).items():
            merged_keywords.setdefault(key.strip().upper(), []).extend(words)
        return DurationPolicy(
            durations={**self.durations, **(durations or {})},
            keywords=merged_keywords,
        )

    def classify(self, sla_name: Optional[str]) -> Optional[str]:
        """Return the bucket an SLA name falls into, or None."""
        name = (sla_name or "").lower()
        if not name:
            return None
        for bucket in SLA_BUCKETS:
            if any(word in name for word in self.keywords.get(bucket, [])):
                return bucket
        return None

    @property
    def shortest_duration(self) -> int:
        return min(self.durations.values())

    def resolve_duration(self, sla_name: Optional[str]) -> int:
        """Commitment duration in seconds for an SLA name."""
        bucket = self.classify(sla_name)
        if bucket is None:
            return self.shortest_duration
        return self.durations[bucket]
