"""Parsing of PHP, PHP-FPM, Symfony and JSON log records into structured lines."""

from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal

ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)


@dataclass
class LogLine:
    """A parsed log record."""

    level: str = ""
    time: datetime = ZERO_TIME
    source: str = ""
    message: str = ""
    fields: dict[str, str] = field(default_factory=dict)


# [12-Aug-2020 16:34:44] NOTICE: Terminating ...
_FPM_RE = re.compile(
    r"^\[(.+?)\] (DEBUG|NOTICE|WARNING|ERROR|ALERT)\:((?: *?PHP (?:.+?)\:)*) (.+)\s*\Z"
)
# Wed Aug 12 16:39:56 2020 (310): [Debug] ...
_PHP_RE = re.compile(r"^(.+?) \((?:\d+)\)\: \[(.+?)\] (.+)\s*\Z")
# [2018-11-19 12:52:00] console.DEBUG: www {"xxx":"yyy","code":1} []
_SYMFONY_RE = re.compile(
    r"^\[(\d{4}\-\d{2}\-\d{2} \d{2}\:\d{2}\:\d{2}|"
    r"\d{4}\-\d{2}\-\d{2}T\d{2}\:\d{2}\:\d{2}\.\d+\+\d{2}\:\d{2})\] "
    r"([^\.]+)\.([^\:]+)\: (.+) (\[.*?\]|\{.*?\}) (\[.*?\]|\{.*?\})\s*\Z"
)

_FPM_LEVELS = {"notice", "warning", "error", "fatal", "panic", "critical", "emergency"}


def _utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def convert_php_fpm_log(data: str) -> LogLine | None:
    """Parse a PHP-FPM log line; None if it is not one, ValueError on a bad date."""
    match = _FPM_RE.match(data)
    if match is None:
        return None
    level = match.group(2).lower()
    subs = match.group(3)
    if subs:
        for sub in subs.split(":"):
            sub = sub.strip().lower()
            if sub.startswith("php "):
                sub = sub[4:]
            if sub in _FPM_LEVELS:
                level = sub
            elif sub == "warn":
                level = "warning"
            elif sub == "fatal error":
                level = "fatal"
    when = _utc(datetime.strptime(match.group(1), "%d-%b-%Y %H:%M:%S"))
    return LogLine(level=level, time=when, source="FPM", message=match.group(4))


def convert_php_log(data: str) -> LogLine | None:
    """Parse a PHP CLI log line; None if it is not one, ValueError on a bad date."""
    match = _PHP_RE.match(data)
    if match is None:
        return None
    when = _utc(datetime.strptime(match.group(1), "%a %b %d %H:%M:%S %Y"))
    return LogLine(
        level=match.group(2).lower(),
        time=when,
        source="PHP",
        message=match.group(3),
    )


_RFC3339_RE = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})(\.\d+)?(Z|[+-]\d{2}:?\d{2})\Z"
)


def _parse_rfc3339(value: str) -> datetime | None:
    match = _RFC3339_RE.match(value)
    if match is None:
        return None
    year, month, day, hour, minute, second = (int(g) for g in match.groups()[:6])
    fraction = match.group(7)
    micro = int((fraction[1:] + "000000")[:6]) if fraction else 0
    zone = match.group(8)
    if zone == "Z":
        tz = timezone.utc
    else:
        sign = -1 if zone[0] == "-" else 1
        digits = zone[1:].replace(":", "")
        tz = timezone(sign * timedelta(hours=int(digits[:2]), minutes=int(digits[2:])))
    try:
        return datetime(year, month, day, hour, minute, second, micro, tzinfo=tz)
    except ValueError:
        return None


def convert_symfony_log(data: str) -> LogLine | None:
    """Parse a Symfony (Monolog) log line; None if it is not one."""
    match = _SYMFONY_RE.match(data)
    if match is None:
        return None
    line = LogLine()
    stamp = match.group(1)
    try:
        line.time = _utc(datetime.strptime(stamp, "%Y-%m-%d %H:%M:%S"))
    except ValueError:
        parsed = _parse_rfc3339(stamp)
        if parsed is None:
            raise ValueError(f"cannot parse time {stamp!r}") from None
        line.time = parsed
    line.source = match.group(2)
    line.level = match.group(3).lower()
    message = match.group(4)
    idx = message.find(' {"exception":')
    if idx != -1:
        message = message[:idx]
    line.message = message
    for raw in (match.group(5), match.group(6)):
        try:
            decoded = json.loads(raw)
        except ValueError:
            continue
        if raw[0] == "[":
            if not isinstance(decoded, list):
                continue
            args = {str(i): v for i, v in enumerate(decoded)}
        else:
            if not isinstance(decoded, dict):
                continue
            args = decoded
        for key, value in args.items():
            if key == "exception":
                continue
            line.fields[key] = convert_any_value(value)
    return line


def _format_g(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    dec = Decimal(repr(value))
    sign, digits, exponent = dec.as_tuple()
    digit_str = "".join(map(str, digits)).rstrip("0") or "0"
    point = len(digits) + exponent
    if digit_str == "0":
        point = 1
    exp = point - 1
    prefix = "-" if sign else ""
    if exp < -4 or exp >= 6:
        mantissa = digit_str[0] + ("." + digit_str[1:] if len(digit_str) > 1 else "")
        return f"{prefix}{mantissa}e{'-' if exp < 0 else '+'}{abs(exp):02d}"
    if point <= 0:
        return f"{prefix}0.{'0' * -point}{digit_str}"
    if point >= len(digit_str):
        return f"{prefix}{digit_str}{'0' * (point - len(digit_str))}"
    return f"{prefix}{digit_str[:point]}.{digit_str[point:]}"


_QUOTE_ESCAPES = {
    '"': '\\"', "\\": "\\\\", "\a": "\\a", "\b": "\\b", "\f": "\\f",
    "\n": "\\n", "\r": "\\r", "\t": "\\t", "\v": "\\v",
}


def _quote(text: str) -> str:
    out = ['"']
    for ch in text:
        if ch in _QUOTE_ESCAPES:
            out.append(_QUOTE_ESCAPES[ch])
        elif ch.isprintable():
            out.append(ch)
        elif ord(ch) < 0x80:
            out.append(f"\\x{ord(ch):02x}")
        elif ord(ch) < 0x10000:
            out.append(f"\\u{ord(ch):04x}")
        else:
            out.append(f"\\U{ord(ch):08x}")
    out.append('"')
    return "".join(out)


def convert_any_value(value: object) -> str:
    """Render a decoded JSON value as a log field value."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        number = float(value)
        if number - math.floor(number) < 0.000001 and number < 1e9:
            return str(int(number))
        return _format_g(number)
    if isinstance(value, str):
        return _quote(value)
    try:
        encoded = json.dumps(value, separators=(",", ":"), sort_keys=True, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(value)
    return (
        encoded.replace("<", "\\u003c")
        .replace(">", "\\u003e")
        .replace("&", "\\u0026")
        .replace("\u2028", "\\u2028")
        .replace("\u2029", "\\u2029")
    )


_STRPTIME_FORMATS = [
    "%Y-%m-%d %H:%M:%S.%f %z %Z",
    "%Y-%m-%d %H:%M:%S %z %Z",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d %H:%M:%S %z",
    "%Y-%m-%d %H:%M %z",
    "%Y-%m-%d %H:%M:%S %Z",
    "%Y-%m-%d %H:%M %Z",
    "%d %b %y %H:%M %Z",
    "%d %b %y %H:%M %z",
    "%A, %d-%b-%y %H:%M:%S %Z",
    "%a, %d %b %Y %H:%M:%S %Z",
    "%a, %d %b %Y %H:%M:%S %z",
    "%a %b %d %H:%M:%S %Z %Y",
    "%a %b %d %H:%M:%S %z %Y",
    "%a %b %d %H:%M:%S %Y",
    "%I:%M%p",
    "%b %d %H:%M:%S",
    "%b %d %H:%M:%S.%f",
]

_ZONE_RE = re.compile(r"\b[A-Z]{3,5}\b")
_LONG_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


def try_parse_time(value: str) -> datetime | None:
    """Parse a timestamp in one of many common layouts; None if none fits."""
    rfc = _parse_rfc3339(value)
    if rfc is not None:
        return rfc
    normalized = _LONG_FRACTION_RE.sub(r"\1", value)
    zoned = _ZONE_RE.sub("UTC", normalized)
    for layout in _STRPTIME_FORMATS:
        candidate = zoned if "%Z" in layout else normalized
        try:
            return _utc(datetime.strptime(candidate, layout))
        except ValueError:
            continue
    return None