"""Single-line `KEY=VALUE` rendering of request and error events.

Every line starts with a bracketed RFC3339 timestamp followed by segments
joined with ``FIELD_SEPARATOR``. Free text is double-quoted with embedded
quotes doubled, and line breaks are folded into ``STACK_LINE_SEPARATOR`` so
a record always occupies exactly one physical line.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from datetime import datetime, timezone


FIELD_SEPARATOR = " || "
STACK_LINE_SEPARATOR = " | "
MISSING = "-"
NO_STACK = "N/A"

# Every boundary str.splitlines() honours, plus the indentation after it.
_LINE_BREAK = re.compile(r"(?:\r\n|[\n\r\x0b\x0c\x1c-\x1e\x85\u2028\u2029])\s*")


class Severity(str, enum.Enum):
    CLIENT_ERROR = "CLIENT_ERROR"
    SERVER_ERROR = "SERVER_ERROR"


@dataclass(frozen=True)
class RequestRecord:
    method: str
    path: str
    status_code: int
    duration_seconds: float
    remote_address: str | None
    user_agent: str | None
    content_length: int | None
    timestamp: str


@dataclass(frozen=True)
class ErrorRecord:
    request: RequestRecord
    message: str
    stack_trace: str | None
    severity: Severity


def utc_timestamp(moment: datetime | None = None) -> str:
    """Render ``moment`` (default: now) as RFC3339 UTC with millisecond precision."""

    moment = (moment or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def classify(status_code: int) -> Severity | None:
    if status_code >= 500:
        return Severity.SERVER_ERROR
    if 400 <= status_code < 500:
        return Severity.CLIENT_ERROR
    return None


def flatten_stack(stack: str | None) -> str:
    if not stack:
        return NO_STACK
    return _LINE_BREAK.sub(STACK_LINE_SEPARATOR, stack.strip())


def quote(text: str | None) -> str:
    single_line = _LINE_BREAK.sub(STACK_LINE_SEPARATOR, text or "")
    return '"' + single_line.replace('"', '""') + '"'


def _join(timestamp: str, fields: list[tuple[str, object]]) -> str:
    segments = [f"[{timestamp}]"] + [f"{key}={value}" for key, value in fields]
    return FIELD_SEPARATOR.join(segments)


def format_request_line(record: RequestRecord) -> str:
    length = MISSING if record.content_length is None else record.content_length
    return _join(
        record.timestamp,
        [
            ("LEVEL", "INFO"),
            ("STATUS", record.status_code),
            ("METHOD", record.method),
            ("PATH", quote(record.path)),
            ("RES_TIME_MS", f"{record.duration_seconds * 1000.0:.3f}"),
            ("LENGTH", length),
            ("REMOTE_IP", record.remote_address or MISSING),
            ("USER_AGENT", quote(record.user_agent)),
        ],
    )


def format_error_line(record: ErrorRecord) -> str:
    request = record.request
    fields: list[tuple[str, object]] = [
        ("LEVEL", record.severity.value),
        ("STATUS", request.status_code),
        ("METHOD", request.method),
        ("PATH", quote(request.path)),
        ("MESSAGE", quote(record.message)),
    ]
    # Client errors are expected; only server errors carry a stack.
    if record.severity is Severity.SERVER_ERROR:
        fields.append(("STACK", quote(flatten_stack(record.stack_trace))))
    return _join(request.timestamp, fields)
