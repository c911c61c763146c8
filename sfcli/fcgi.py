"""A small FastCGI client speaking the responder role over a stream socket."""

from __future__ import annotations

import io
import os
import re
import secrets
import socket
import struct
import threading
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from enum import IntEnum
from typing import BinaryIO, Union
from urllib.parse import urlencode

FCGI_LISTENSOCK_FILENO = 0
FCGI_HEADER_LEN = 8
VERSION_1 = 1
FCGI_NULL_REQUEST_ID = 0
FCGI_KEEP_CONN = 1

FCGI_MAX_CONNS = "MAX_CONNS"
FCGI_MAX_REQS = "MAX_REQS"
FCGI_MPXS_CONNS = "MPXS_CONNS"

# 65530 may work, but this is the conventional safe size
MAX_WRITE = 65500
MAX_PAD = 255

DEFAULT_CONTENT_TYPE = "application/x-www-form-urlencoded"


class RecordType(IntEnum):
    BEGIN_REQUEST = 1
    ABORT_REQUEST = 2
    END_REQUEST = 3
    PARAMS = 4
    STDIN = 5
    STDOUT = 6
    STDERR = 7
    DATA = 8
    GET_VALUES = 9
    GET_VALUES_RESULT = 10
    UNKNOWN_TYPE = 11


FCGI_MAXTYPE = RecordType.UNKNOWN_TYPE


class Role(IntEnum):
    RESPONDER = 1
    AUTHORIZER = 2
    FILTER = 3


class ProtocolStatus(IntEnum):
    REQUEST_COMPLETE = 0
    CANT_MPX_CONN = 1
    OVERLOADED = 2
    UNKNOWN_ROLE = 3


_HEADER = struct.Struct(">BBHHBB")

Body = Union[bytes, bytearray, memoryview, BinaryIO, None]
FormData = Mapping[str, Union[str, Sequence[str]]]


class FCGIError(Exception):
    """The FastCGI exchange failed or the responder sent something invalid."""


@dataclass
class FCGIResponse:
    """An HTTP response decoded from a responder's output."""

    status: str
    status_code: int
    headers: dict[str, list[str]]
    content_length: int = 0
    transfer_encoding: list[str] = field(default_factory=list)
    body: BinaryIO = field(default_factory=io.BytesIO)


def encode_size(size: int) -> bytes:
    """Encode a name or value length: one byte below 128, else four with the high bit set."""
    if size > 127:
        return struct.pack(">I", (size | (1 << 31)) & 0xFFFFFFFF)
    return bytes([size])


_STATUS_CODE_RE = re.compile(r"[+-]?\d+\Z")


def extract_status(headers: dict[str, list[str]]) -> tuple[str, int]:
    """Remove the Status header and return the status line and code.

    Without a Status header the status is empty and the code is 200.
    Raises FCGIError if the code cannot be parsed.
    """
    values = headers.pop("Status", None)
    status = values[0] if values else ""
    if not status:
        return "", 200
    code_text = status.split(" ", 1)[0]
    if not _STATUS_CODE_RE.match(code_text):
        raise FCGIError(f"invalid FastCGI status header: {status!r}")
    return status, int(code_text)


_TOKEN_CHARS = frozenset(
    "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789!#$%&'*+-.^_`|~"
)


def _canonical_key(name: str) -> str:
    if not name or any(ch not in _TOKEN_CHARS for ch in name):
        return name
    return "-".join(part[:1].upper() + part[1:].lower() for part in name.split("-"))


def _read_mime_header(reader: BinaryIO) -> dict[str, list[str]]:
    headers: dict[str, list[str]] = {}
    key: str | None = None
    while True:
        raw = reader.readline()
        if not raw.endswith(b"\n"):
            raise FCGIError("unexpected EOF while reading response headers")
        line = raw[:-1]
        if line.endswith(b"\r"):
            line = line[:-1]
        if not line:
            return headers
        text = line.decode("utf-8", errors="replace")
        if text[0] in " \t":
            if key is None:
                raise FCGIError(f"malformed MIME header initial line: {text}")
            headers[key][-1] = f"{headers[key][-1]} {text.strip()}".strip()
            continue
        name, sep, value = text.partition(":")
        if not sep:
            raise FCGIError(f"malformed MIME header line: {text}")
        key = _canonical_key(name)
        headers.setdefault(key, []).append(value.strip())


def _is_chunked(transfer_encoding: list[str]) -> bool:
    return bool(transfer_encoding) and transfer_encoding[0] == "chunked"


def _parse_int(value: str) -> int:
    return int(value) if _STATUS_CODE_RE.match(value) else 0


class _RecordReader(io.RawIOBase):
    """Reads the content of incoming records until the request ends."""

    def __init__(self, client: FCGIClient) -> None:
        super().__init__()
        self._client = client
        self._pending = b""
        self._done = False

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        if len(buffer) == 0:
            return 0
        while not self._pending:
            if self._done:
                return 0
            content = self._client._read_record()
            if content is None:
                self._done = True
                return 0
            self._pending = content
        size = min(len(buffer), len(self._pending))
        buffer[:size] = self._pending[:size]
        self._pending = self._pending[size:]
        return size


_CHUNK_SIZE_RE = re.compile(rb"[0-9a-fA-F]+\Z")


class _ChunkedReader(io.RawIOBase):
    """Decodes an HTTP/1.1 chunked body."""

    def __init__(self, source: BinaryIO) -> None:
        super().__init__()
        self._source = source
        self._remaining = 0
        self._done = False

    def readable(self) -> bool:
        return True

    def _next_size(self) -> int:
        line = self._source.readline()
        if not line.endswith(b"\n"):
            raise FCGIError("unexpected EOF in chunked body")
        text = line.strip().split(b";", 1)[0].strip()
        if not _CHUNK_SIZE_RE.match(text):
            raise FCGIError(f"invalid chunk size line: {line!r}")
        return int(text, 16)

    def readinto(self, buffer) -> int:
        if self._done or len(buffer) == 0:
            return 0
        if self._remaining == 0:
            size = self._next_size()
            if size == 0:
                self._done = True
                return 0
            self._remaining = size
        data = self._source.read(min(len(buffer), self._remaining))
        if not data:
            raise FCGIError("unexpected EOF in chunked body")
        count = len(data)
        buffer[:count] = data
        self._remaining -= count
        if self._remaining == 0 and self._source.read(2) != b"\r\n":
            raise FCGIError("malformed chunked encoding")
        return count


def _body_chunks(body: Body) -> Iterator[bytes]:
    if body is None:
        return
    if isinstance(body, (bytes, bytearray, memoryview)):
        data = bytes(body)
        for start in range(0, len(data), MAX_WRITE):
            yield data[start : start + MAX_WRITE]
        return
    for chunk in iter(lambda: body.read(MAX_WRITE), b""):
        if chunk:
            yield bytes(chunk)


def _form_pairs(data: FormData) -> Iterator[tuple[str, str]]:
    for key, values in data.items():
        if isinstance(values, str):
            values = [values]
        for value in values:
            yield key, value


def _escape_quotes(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"')


class FCGIClient:
    """A FastCGI connection that issues requests in the responder role."""

    def __init__(self, connection: socket.socket, request_id: int = 1) -> None:
        self._conn = connection
        self._lock = threading.Lock()
        self.keep_alive = False
        self.request_id = request_id

    def __enter__(self) -> FCGIClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the underlying connection."""
        self._conn.close()

    def _write_record(self, record_type: int, content: bytes = b"") -> None:
        padding = -len(content) & 7
        header = _HEADER.pack(VERSION_1, record_type, self.request_id, len(content), padding, 0)
        with self._lock:
            try:
                self._conn.sendall(header + content + bytes(padding))
            except OSError as exc:
                raise FCGIError(f"unable to write FastCGI record: {exc}") from exc

    def _write_stream(self, record_type: int, chunks: Iterator[bytes]) -> None:
        for chunk in chunks:
            for start in range(0, len(chunk), MAX_WRITE):
                self._write_record(record_type, chunk[start : start + MAX_WRITE])
        # an empty record closes the stream
        self._write_record(record_type)

    def _write_begin_request(self, role: int, flags: int) -> None:
        content = bytes([(role >> 8) & 0xFF, role & 0xFF, flags]) + bytes(5)
        self._write_record(RecordType.BEGIN_REQUEST, content)

    def _encoded_pairs(self, pairs: Mapping[str, str]) -> Iterator[bytes]:
        pending = bytearray()
        for key, value in pairs.items():
            key_bytes = key.encode("utf-8")
            value_bytes = value.encode("utf-8")
            if 8 + len(key_bytes) + len(value_bytes) > MAX_WRITE:
                limit = MAX_WRITE - 8 - len(key_bytes)
                if limit < 0:
                    raise FCGIError(f"parameter name too long: {key[:32]}...")
                value_bytes = value_bytes[:limit]
            encoded = (
                encode_size(len(key_bytes)) + encode_size(len(value_bytes)) + key_bytes + value_bytes
            )
            if len(pending) + len(encoded) > MAX_WRITE:
                yield bytes(pending)
                pending.clear()
            pending += encoded
        if pending:
            yield bytes(pending)

    def _recv_exact(self, size: int) -> bytes:
        data = bytearray()
        while len(data) < size:
            try:
                chunk = self._conn.recv(size - len(data))
            except OSError as exc:
                raise FCGIError(f"unable to read FastCGI record: {exc}") from exc
            if not chunk:
                break
            data += chunk
        return bytes(data)

    def _read_record(self) -> bytes | None:
        """Return the next record's content, or None once the request has ended."""
        header = self._recv_exact(FCGI_HEADER_LEN)
        if not header:
            return None
        if len(header) < FCGI_HEADER_LEN:
            raise FCGIError("unexpected EOF in FastCGI record header")
        version, record_type, _, content_length, padding_length, _ = _HEADER.unpack(header)
        if version != VERSION_1:
            raise FCGIError("fcgi: invalid header version")
        if record_type == RecordType.END_REQUEST:
            return None
        size = content_length + padding_length
        payload = self._recv_exact(size)
        if len(payload) < size:
            raise FCGIError("unexpected EOF in FastCGI record")
        return payload[:content_length]

    def do(self, params: Mapping[str, str], body: Body = None) -> BinaryIO:
        """Send a request and return a reader over the responder's output."""
        self._write_begin_request(Role.RESPONDER, 0)
        self._write_stream(RecordType.PARAMS, self._encoded_pairs(params))
        self._write_stream(RecordType.STDIN, _body_chunks(body))
        return io.BufferedReader(_RecordReader(self))

    def request(self, params: Mapping[str, str], body: Body = None) -> FCGIResponse:
        """Send a request and decode the output as an HTTP response."""
        reader = self.do(params, body)
        headers = _read_mime_header(reader)
        transfer_encoding = list(headers.get("Transfer-Encoding", []))
        length_values = headers.get("Content-Length")
        content_length = _parse_int(length_values[0]) if length_values else 0
        status, status_code = extract_status(headers)
        response_body: BinaryIO = reader
        if _is_chunked(transfer_encoding):
            response_body = io.BufferedReader(_ChunkedReader(reader))
        return FCGIResponse(
            status=status,
            status_code=status_code,
            headers=headers,
            content_length=content_length,
            transfer_encoding=transfer_encoding,
            body=response_body,
        )

    def get(self, params: Mapping[str, str]) -> FCGIResponse:
        """Issue a GET request."""
        params = dict(params)
        params["REQUEST_METHOD"] = "GET"
        params["CONTENT_LENGTH"] = "0"
        return self.request(params, None)

    def post(
        self, params: Mapping[str, str], body_type: str, body: Body, length: int
    ) -> FCGIResponse:
        """Issue a POST (or the given non-GET method) with a request body."""
        params = dict(params)
        if not params.get("REQUEST_METHOD") or params["REQUEST_METHOD"] == "GET":
            params["REQUEST_METHOD"] = "POST"
        params["CONTENT_LENGTH"] = str(length)
        params["CONTENT_TYPE"] = body_type or DEFAULT_CONTENT_TYPE
        return self.request(params, body)

    def post_form(self, params: Mapping[str, str], data: FormData) -> FCGIResponse:
        """POST url-encoded form values, keys in sorted order."""
        pairs = [(key, value) for key in sorted(data) for _, value in _form_pairs({key: data[key]})]
        body = urlencode(pairs).encode("ascii")
        return self.post(params, DEFAULT_CONTENT_TYPE, body, len(body))

    def post_file(
        self, params: Mapping[str, str], data: FormData, files: Mapping[str, str]
    ) -> FCGIResponse:
        """POST form values and files as multipart/form-data."""
        boundary = secrets.token_hex(30)
        parts: list[tuple[list[tuple[str, str]], bytes]] = []
        for key, value in _form_pairs(data):
            disposition = f'form-data; name="{_escape_quotes(key)}"'
            parts.append(([("Content-Disposition", disposition)], value.encode("utf-8")))
        for key, path in files.items():
            with open(path, "rb") as handle:
                content = handle.read()
            disposition = (
                f'form-data; name="{_escape_quotes(key)}"; '
                f'filename="{_escape_quotes(os.path.basename(path))}"'
            )
            parts.append(
                (
                    [("Content-Disposition", disposition), ("Content-Type", "application/octet-stream")],
                    content,
                )
            )

        marker = boundary.encode("ascii")
        body = bytearray()
        for index, (headers, content) in enumerate(parts):
            body += (b"\r\n--" if index else b"--") + marker + b"\r\n"
            for name, value in headers:
                body += f"{name}: {value}\r\n".encode("utf-8")
            body += b"\r\n" + content
        body += (b"\r\n--" if parts else b"--") + marker + b"--\r\n"

        body_type = f"multipart/form-data; boundary={boundary}"
        return self.post(params, body_type, bytes(body), len(body))


def dial(network: str, address: str, timeout: float | None = None) -> FCGIClient:
    """Connect to a FastCGI responder over "tcp" ("host:port") or "unix" (a path)."""
    if network in ("tcp", "tcp4", "tcp6"):
        host, sep, port = address.rpartition(":")
        if not sep:
            raise ValueError(f"missing port in address {address!r}")
        host = host.strip("[]") or "localhost"
        try:
            conn = socket.create_connection((host, int(port)), timeout=timeout)
        except OSError as exc:
            raise FCGIError(f"unable to connect to {address}: {exc}") from exc
    elif network == "unix":
        conn = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            conn.settimeout(timeout)
            conn.connect(address)
        except OSError as exc:
            conn.close()
            raise FCGIError(f"unable to connect to {address}: {exc}") from exc
    else:
        raise ValueError(f"unknown network {network!r}")
    conn.settimeout(None)
    return FCGIClient(conn)