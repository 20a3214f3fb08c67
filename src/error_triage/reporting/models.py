from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from error_triage.errors import ValidationError


class QueryWindow(Enum):
    ONE_HOUR = ("1h", "PERIOD_1_HOUR", 600)
    SIX_HOURS = ("6h", "PERIOD_6_HOURS", 3600)
    ONE_DAY = ("1d", "PERIOD_1_DAY", 4 * 3600)
    ONE_WEEK = ("1w", "PERIOD_1_WEEK", 24 * 3600)
    THIRTY_DAYS = ("30d", "PERIOD_30_DAYS", 5 * 24 * 3600)

    def __init__(self, short: str, period: str, bucket_seconds: int) -> None:
        self.short = short
        self.period = period
        # Requested as timedCountDuration so each window comes back in ~6 buckets
        self.bucket_seconds = bucket_seconds

    @classmethod
    def parse(cls, value: "QueryWindow | str") -> "QueryWindow":
        """Accept a member, a short name ("1d") or a wire token ("PERIOD_1_DAY")."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            needle = value.strip()
            for window in cls:
                if needle.lower() == window.short or needle.upper() == window.period:
                    return window
        valid = ", ".join(w.period for w in cls)
        raise ValidationError(f"Invalid time period: {value!r} (valid periods: {valid})")


class Trend(str, Enum):
    RISING = "RISING"
    FALLING = "FALLING"
    STABLE = "STABLE"


class Priority(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


@dataclass(frozen=True)
class SourceLocation:
    file_path: str
    line_number: int | None = None
    function_name: str | None = None


@dataclass(frozen=True)
class HttpContext:
    method: str | None = None
    url: str | None = None
    status_code: int | None = None
    user_agent: str | None = None
    referrer: str | None = None
    remote_ip: str | None = None


@dataclass(frozen=True)
class StackFrame:
    file_path: str
    line_number: int
    function_name: str | None = None
    column: int | None = None


@dataclass(frozen=True)
class TimedCount:
    count: int
    start_time: datetime | None
    end_time: datetime | None


@dataclass(frozen=True)
class ErrorGroup:
    group_id: str
    message: str
    service: str
    version: str = ""
    count: int = 0
    affected_users: int = 0
    first_seen: datetime | None = None
    last_seen: datetime | None = None
    name: str = ""
    location: SourceLocation | None = None
    http_context: HttpContext | None = None
    resolution_status: str | None = None
    timed_counts: tuple[TimedCount, ...] = field(default_factory=tuple)
    trend: Trend = Trend.STABLE


@dataclass(frozen=True)
class ErrorEvent:
    event_time: datetime | None
    message: str
    service: str = ""
    version: str = ""
    http_context: HttpContext | None = None
    location: SourceLocation | None = None
    stack_frames: tuple[StackFrame, ...] = field(default_factory=tuple)
    user: str | None = None


@dataclass(frozen=True)
class RankedGroup:
    group: ErrorGroup
    score: int
    priority: Priority
    position: int
