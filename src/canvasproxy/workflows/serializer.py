"""Serialize a completed download as a raw CORS response or a JSONP data URI."""

from __future__ import annotations

import base64
import io
import time
from email.utils import formatdate
from typing import Any, BinaryIO, Callable, List, Optional, Protocol, Tuple
from urllib.parse import quote, quote_from_bytes

from .errors import ErrorCode, ValidationError
from .proxy_utils import is_valid_callback, split_content_type
from .temporary import READ_CHUNK_SIZE, TemporaryBuffer

JSONP_CONTENT_TYPE = "application/javascript"
BASE64_CHUNK_SIZE = 3 * 2730  # multiple of 3 keeps chunked base64 free of padding

CORS_HEADERS: Tuple[Tuple[str, str], ...] = (
    ("Access-Control-Allow-Origin", "*"),
    ("Access-Control-Request-Method", "*"),
    ("Access-Control-Allow-Methods", "OPTIONS, GET"),
    ("Access-Control-Allow-Headers", "*"),
)


class Response(Protocol):
    """Output side of the surrounding request/response collaborator."""

    def set_status(self, code: int) -> None: ...

    def set_header(self, name: str, value: str) -> None: ...

    def write(self, data: bytes) -> Any: ...


class BufferedResponse:
    """Collects status, headers and body in memory."""

    def __init__(self) -> None:
        self.status = 200
        self.headers: List[Tuple[str, str]] = []
        self._body = io.BytesIO()

    def set_status(self, code: int) -> None:
        self.status = int(code)

    def set_header(self, name: str, value: str) -> None:
        lowered = name.lower()
        self.headers = [(k, v) for k, v in self.headers if k.lower() != lowered]
        self.headers.append((name, str(value)))

    def header(self, name: str) -> Optional[str]:
        lowered = name.lower()
        for key, value in self.headers:
            if key.lower() == lowered:
                return value
        return None

    def write(self, data: bytes) -> int:
        return self._body.write(data)

    @property
    def body(self) -> bytes:
        return self._body.getvalue()


class StreamResponse(BufferedResponse):
    """Keeps headers in memory and writes the body straight to ``stream``."""

    def __init__(self, stream: BinaryIO) -> None:
        super().__init__()
        self.stream = stream

    def write(self, data: bytes) -> int:
        return self.stream.write(data)

    @property
    def body(self) -> bytes:
        raise AttributeError("StreamResponse does not retain the body")


def http_date(timestamp: float) -> str:
    return formatdate(timestamp, usegmt=True)


def http_cache_headers(seconds: int, now: float) -> List[Tuple[str, str]]:
    """Browser cache headers; ``seconds <= 0`` forces revalidation."""

    if seconds > 0:
        return [
            ("Cache-Control", f"max-age={seconds}"),
            ("Pragma", f"max-age={seconds}"),
            ("Last-Modified", http_date(now)),
            ("Expires", http_date(now + seconds)),
            ("Access-Control-Max-Age", str(seconds)),
        ]
    return [
        ("Cache-Control", "no-cache"),
        ("Pragma", "no-cache"),
        ("Expires", http_date(now + seconds)),
    ]


class ResponseSerializer:
    """Writes buffered downloads to a :class:`Response`.

    Both paths read the buffer incrementally; the encoded payload is never
    held in memory as a whole.
    """

    def __init__(
        self,
        *,
        base64_chunk_size: int = BASE64_CHUNK_SIZE,
        read_chunk_size: int = READ_CHUNK_SIZE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if base64_chunk_size < 3:
            raise ValueError("base64_chunk_size must be at least 3")
        self.base64_chunk_size = base64_chunk_size - base64_chunk_size % 3
        self.read_chunk_size = read_chunk_size
        self.clock = clock

    @staticmethod
    def check_callback(callback: str) -> None:
        if not is_valid_callback(callback):
            raise ValidationError(f"Invalid callback name: {callback!r}", ErrorCode.INVALID_CALLBACK)

    def write_cache_headers(self, response: Response, seconds: int) -> None:
        for name, value in http_cache_headers(seconds, self.clock()):
            response.set_header(name, value)

    def emit_raw(
        self,
        buffer: TemporaryBuffer,
        content_type: str,
        response: Response,
        *,
        cache_seconds: int,
    ) -> None:
        for name, value in CORS_HEADERS:
            response.set_header(name, value)
        response.set_header("Content-Type", content_type)
        self.write_cache_headers(response, cache_seconds)
        for chunk in buffer.iter_chunks(self.read_chunk_size):
            response.write(chunk)

    def emit_jsonp(
        self,
        buffer: TemporaryBuffer,
        content_type: str,
        callback: str,
        response: Response,
        *,
        is_binary: bool,
        cache_seconds: int,
    ) -> None:
        self.check_callback(callback)
        response.set_header("Content-Type", JSONP_CONTENT_TYPE)
        self.write_cache_headers(response, cache_seconds)

        mime, param = split_content_type(content_type)
        if is_binary:
            response.write(f'{callback}("data:{mime};base64,'.encode("ascii"))
            for chunk in buffer.iter_chunks(self.base64_chunk_size):
                response.write(base64.b64encode(chunk))
        else:
            if param:
                mime = f"{mime};{quote(param.replace(' ', ''), safe='=')}"
            response.write(f'{callback}("data:{mime},'.encode("ascii"))
            for chunk in buffer.iter_chunks(self.read_chunk_size):
                response.write(quote_from_bytes(chunk, safe="").encode("ascii"))
        response.write(b'");')


__all__ = [
    "BASE64_CHUNK_SIZE",
    "BufferedResponse",
    "CORS_HEADERS",
    "JSONP_CONTENT_TYPE",
    "Response",
    "ResponseSerializer",
    "StreamResponse",
    "http_cache_headers",
    "http_date",
]
