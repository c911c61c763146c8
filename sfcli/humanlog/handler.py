"""Turning raw log lines into human-friendly, colour-tagged output."""

from __future__ import annotations

import json
import re
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TextIO

from .records import (
    LogLine,
    convert_any_value,
    convert_php_fpm_log,
    convert_php_log,
    convert_symfony_log,
    try_parse_time,
)

# [12-Aug-2020 16:31:33] WARNING: [pool web] child 312 said into stdout: "..."
PHP_FPM_LOG_LINE_RE = re.compile(
    r'^\[\d+\-[^\-]+\-\d+ \d+\:\d+\:[\d\.]+\] WARNING\: \[pool [^\]]+\] '
    r'child \d+ said into std(?:err|out)\: "(.*)"\s*\Z'
)

_WARNING_LEVELS = {"notice", "warn", "warning"}
_ERROR_LEVELS = {"error", "fatal", "panic", "critical", "emergency"}


@dataclass
class Options:
    skip_unchanged: bool = False
    light_bg: bool = False
    with_source: bool = False


def unmarshal(data: str) -> LogLine:
    """Build a line from a JSON log record; raises ValueError if it is not one."""
    raw = json.loads(data)
    if not isinstance(raw, dict):
        raise ValueError("log record is not a JSON object")
    line = LogLine()

    time_str = None
    if isinstance(raw.get("time"), str):
        time_str = raw.pop("time")
    elif isinstance(raw.get("ts"), str):
        time_str = raw.pop("ts")
    if time_str is not None:
        parsed = try_parse_time(time_str)
        if parsed is None:
            raise ValueError(f"field time is not a known timestamp: {time_str}")
        line.time = parsed
    elif isinstance(raw.get("ts"), (int, float)) and not isinstance(raw.get("ts"), bool):
        line.time = datetime.fromtimestamp(float(raw.pop("ts")), tz=timezone.utc).astimezone()

    if isinstance(raw.get("source"), str):
        line.source = raw.pop("source")

    if isinstance(raw.get("msg"), str):
        line.message = raw.pop("msg")
    elif isinstance(raw.get("message"), str):
        line.message = raw.pop("message")

    if isinstance(raw.get("level"), str):
        line.level = raw.pop("level")
    else:
        lvl = raw.pop("lvl", None)
        line.level = lvl if isinstance(lvl, str) else "????"

    line.fields = {key: convert_any_value(value) for key, value in raw.items()}
    return line


def tweak_http_log(line: LogLine) -> None:
    """Rewrite an HTTP access line's message in place."""
    status = line.fields.get("status")
    method = line.fields.get("method")
    if status is None or method is None:
        return
    method = method[1:-1]
    url = line.message
    scheme = line.fields.get("scheme")
    host = line.fields.get("host")
    if method == "GET" and scheme is not None and host is not None:
        url = f"<href={scheme[1:-1]}://{host[1:-1]}{line.message}>{line.message}</>"
        del line.fields["scheme"]
        del line.fields["host"]
    del line.fields["status"]
    del line.fields["method"]
    line.message = f"{method:<4} ({status}) <fg=cyan>{url}</>"


def _parse(data: str) -> LogLine | None:
    for converter in (convert_php_log, convert_php_fpm_log):
        try:
            line = converter(data)
        except ValueError:
            line = None
        if line is not None:
            return line
    try:
        line = convert_symfony_log(data)
    except ValueError:
        return None
    if line is not None:
        return line
    if '"time":' not in data and '"ts":' not in data:
        return None
    try:
        return unmarshal(data)
    except ValueError:
        return None


def _format_stamp(when: datetime) -> str:
    return f"{when:%b} {when.day:2d} {when:%H:%M:%S}"


class Handler:
    """Converts log lines, remembering the previous one to skip unchanged fields."""

    def __init__(self, options: Options | None = None) -> None:
        self.options = options or Options()
        self._lock = threading.Lock()
        self._last_line: LogLine | None = None

    def _prepare(self, data: str) -> tuple[str, LogLine | None]:
        data = data.rstrip("\n")
        data = PHP_FPM_LOG_LINE_RE.sub(r"\1", data, count=1)
        line = _parse(data)
        if line is not None:
            tweak_http_log(line)
        return data, line

    def _join_kvs(self, line: LogLine) -> list[str]:
        last = self._last_line
        pairs = []
        for key, value in line.fields.items():
            if self.options.skip_unchanged and last is not None and last.fields.get(key) == value:
                continue
            if key in ("err", "error", "exception"):
                pairs.append(f"<error>{key}</>={value}")
            else:
                pairs.append(f"<fg=cyan>{key}</>={value}")
        return sorted(pairs)

    def simplify(self, data: str) -> str:
        """Return the message followed by its fields, or the input if unparseable."""
        with self._lock:
            data, line = self._prepare(data)
            try:
                if line is None:
                    return data
                return line.message + " " + " ".join(self._join_kvs(line))
            finally:
                self._last_line = line

    def prettify(self, data: str) -> str:
        """Return a timestamped, level-tagged rendering, or the input if unparseable."""
        with self._lock:
            data, line = self._prepare(data)
            try:
                if line is None:
                    return data
                return self._render(line)
            finally:
                self._last_line = line

    def _render(self, line: LogLine) -> str:
        parts = [_format_stamp(line.time), " |"]
        lvl = line.level.upper()
        lvl = lvl[:7] if len(lvl) > 7 else lvl.ljust(7)
        if line.level in _WARNING_LEVELS:
            parts.append("<warning>")
        elif line.level in _ERROR_LEVELS:
            parts.append("<error>")
        parts.append(lvl)
        if line.level in _WARNING_LEVELS or line.level in _ERROR_LEVELS:
            parts.append("</>")
        parts.append("| ")
        if self.options.with_source:
            if not line.source:
                line.source = "       "
            source = line.source.upper()
            source = source[:6] if len(source) > 6 else source.ljust(6)
            parts.append(f"<comment>{source}</> ")
        parts.append(line.message)
        parts.append(" ")
        parts.append(" ".join(self._join_kvs(line)))
        return "".join(parts)


class HumanWriter:
    """A text stream wrapper writing each record prettified on its own line."""

    def __init__(self, stream: TextIO, options: Options | None = None) -> None:
        self.stream = stream
        self.handler = Handler(options)

    def write(self, data: str) -> int:
        self.stream.write(self.handler.prettify(data))
        self.stream.write("\n")
        return len(data)