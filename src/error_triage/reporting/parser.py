import re
from datetime import datetime

from error_triage.reporting.models import (
    ErrorEvent,
    ErrorGroup,
    HttpContext,
    SourceLocation,
    StackFrame,
    TimedCount,
    Trend,
)

# "    at getUserById (/app/src/handlers/user.js:89:15)", "at /app/x.js:1:2",
# "at com.app.Foo.bar(Foo.java:12)"
_AT_FRAME = re.compile(
    r"^\s*at\s+(?:(?P<function>[^()]+?)\s*\()?"
    r"(?P<path>[^\s()]+?):(?P<line>\d+)(?::(?P<column>\d+))?\)?\s*$"
)
# '  File "/app/handlers.py", line 42, in get_user'
_PY_FRAME = re.compile(
    r'^\s*File "(?P<path>[^"]+)", line (?P<line>\d+)(?:, in (?P<function>.+?))?\s*$'
)

_FRACTION = re.compile(r"\.(\d+)")

# Relative change between the two halves of a window that still counts as flat
_TREND_TOLERANCE = 0.1


def parse_stack_frames(text: str | None) -> list[StackFrame]:
    """Extract stack frames from free-form error text, in order. Never raises."""
    if not text:
        return []
    frames: list[StackFrame] = []
    for line in text.splitlines():
        match = _AT_FRAME.match(line) or _PY_FRAME.match(line)
        if not match:
            continue
        groups = match.groupdict()
        function = (groups.get("function") or "").strip() or None
        column = groups.get("column")
        frames.append(StackFrame(
            file_path=groups["path"],
            line_number=int(groups["line"]),
            function_name=function,
            column=int(column) if column else None,
        ))
    return frames


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an RFC 3339 timestamp (nanosecond precision, "Z" suffix) into an aware datetime."""
    if not value:
        return None
    # fromisoformat wants exactly six fractional digits on older interpreters
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), value.strip(), count=1)
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def _non_negative(value) -> int:
    # int64 fields arrive as JSON strings
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0


def _optional_int(value) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _object(value) -> dict:
    return value if isinstance(value, dict) else {}


def _location(context: dict) -> SourceLocation | None:
    report = _object(context.get("reportLocation"))
    if not report.get("filePath"):
        return None
    return SourceLocation(
        file_path=report["filePath"],
        line_number=_optional_int(report.get("lineNumber")),
        function_name=report.get("functionName") or None,
    )


def _http_context(context: dict) -> HttpContext | None:
    request = _object(context.get("httpRequest"))
    if not request:
        return None
    return HttpContext(
        method=request.get("method"),
        url=request.get("url"),
        status_code=_optional_int(request.get("responseStatusCode")),
        user_agent=request.get("userAgent"),
        referrer=request.get("referrer"),
        remote_ip=request.get("remoteIp"),
    )


def compute_trend(timed_counts: list[TimedCount] | tuple[TimedCount, ...]) -> Trend:
    """Compare the earlier and later halves of a window's timed buckets."""
    if len(timed_counts) < 2:
        return Trend.STABLE

    ordered = sorted(
        timed_counts,
        key=lambda t: (t.start_time is None, t.start_time or datetime.min),
    )
    half = len(ordered) // 2
    earlier = sum(t.count for t in ordered[:half])
    later = sum(t.count for t in ordered[-half:])

    if later > earlier * (1 + _TREND_TOLERANCE):
        return Trend.RISING
    if later < earlier * (1 - _TREND_TOLERANCE):
        return Trend.FALLING
    return Trend.STABLE


def group_from_stats(payload: dict) -> ErrorGroup:
    """Convert one ``errorGroupStats`` entry into an ErrorGroup."""
    group = _object(payload.get("group"))
    representative = _object(payload.get("representative"))
    service_context = _object(representative.get("serviceContext"))
    context = _object(representative.get("context"))

    timed_counts = tuple(
        TimedCount(
            count=_non_negative(tc.get("count")),
            start_time=parse_timestamp(tc.get("startTime")),
            end_time=parse_timestamp(tc.get("endTime")),
        )
        for tc in payload.get("timedCounts") or []
        if isinstance(tc, dict)
    )

    return ErrorGroup(
        group_id=group.get("groupId", ""),
        name=group.get("name", ""),
        message=representative.get("message", ""),
        service=service_context.get("service", ""),
        version=service_context.get("version", ""),
        count=_non_negative(payload.get("count")),
        affected_users=_non_negative(payload.get("affectedUsersCount")),
        first_seen=parse_timestamp(payload.get("firstSeenTime")),
        last_seen=parse_timestamp(payload.get("lastSeenTime")),
        location=_location(context),
        http_context=_http_context(context),
        resolution_status=group.get("resolutionStatus"),
        timed_counts=timed_counts,
        trend=compute_trend(timed_counts),
    )


def event_from_payload(payload: dict) -> ErrorEvent:
    """Convert one ``errorEvents`` entry into an ErrorEvent."""
    service_context = _object(payload.get("serviceContext"))
    context = _object(payload.get("context"))
    message = payload.get("message") or ""
    if not isinstance(message, str):
        message = str(message)
    location = _location(context)

    frames = parse_stack_frames(message)
    if not frames and location is not None and location.line_number is not None:
        frames = [StackFrame(
            file_path=location.file_path,
            line_number=location.line_number,
            function_name=location.function_name,
        )]

    return ErrorEvent(
        event_time=parse_timestamp(payload.get("eventTime")),
        message=message,
        service=service_context.get("service", ""),
        version=service_context.get("version", ""),
        http_context=_http_context(context),
        location=location,
        stack_frames=tuple(frames),
        user=context.get("user") or None,
    )
