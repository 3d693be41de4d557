"""Byte-level fallback transport built on ``socket`` and ``ssl``.

Speaks HTTP/1.0 with ``Connection: close`` so bodies are delimited by EOF,
parses the status line and headers itself, and follows redirects in a
loop with a decrementing counter.
"""

from __future__ import annotations

import base64
import logging
import os
import re
import socket
import time
from typing import BinaryIO, List, Optional, Tuple

from .errors import ErrorCode
from .proxy_config import FetchConfiguration
from .proxy_utils import RequestTarget, absolute_url, is_http_url, split_request_url
from .transports import (
    BODY_CHUNK_SIZE,
    REDIRECT_STATUSES,
    DownloadLimitExceeded,
    FetchOutcome,
    Sink,
    Transport,
    size_exceeded,
)

logger = logging.getLogger(__name__)

try:
    import ssl
except ImportError:  # pragma: no cover - interpreter built without OpenSSL
    ssl = None  # type: ignore

_SSL_ERRORS: Tuple[type, ...] = (ssl.SSLError,) if ssl is not None else ()
_STATUS_RE = re.compile(rb"^HTTP/1\.\d\s+(\d{3})")
MAX_HEAD_SIZE = 65536
MAX_HEADERS = 100


class _Timeout(Exception):
    pass


class _Malformed(Exception):
    pass


class StreamTransport(Transport):
    """Socket fallback used when the client library is unavailable."""

    name = "stream"

    def __init__(self) -> None:
        self._generation = -1
        self._header_lines: List[str] = []
        self._ssl_context: Optional["ssl.SSLContext"] = None
        self._ssl_problem: Optional[str] = None
        self._ssl_ready = False

    def available(self) -> bool:
        return hasattr(socket, "create_connection")

    # Session state -------------------------------------------------------

    def _prepare(self, config: FetchConfiguration) -> None:
        if self._generation == config.generation:
            return
        lines: List[str] = []
        if config.referer:
            lines.append(f"Referer: {config.referer}")
        if config.user_agent:
            lines.append(f"User-Agent: {config.user_agent}")
        self._header_lines = lines
        self._ssl_context = None
        self._ssl_problem = None
        self._ssl_ready = False
        self._generation = config.generation
        logger.debug("stream transport state rebuilt (generation %s)", config.generation)

    def _context(self, config: FetchConfiguration) -> Tuple[Optional["ssl.SSLContext"], Optional[str]]:
        if not self._ssl_ready:
            self._ssl_context, self._ssl_problem = self._build_context(config)
            self._ssl_ready = True
        return self._ssl_context, self._ssl_problem

    @staticmethod
    def _build_context(config: FetchConfiguration) -> Tuple[Optional["ssl.SSLContext"], Optional[str]]:
        if ssl is None:
            return None, "No SSL stream support detected"
        setting = config.ssl_verify
        if isinstance(setting, str):
            if not os.path.isfile(setting):
                return None, f"Not found certificate: {setting}"
            return ssl.create_default_context(cafile=setting), None
        context = ssl.create_default_context()
        if not setting:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context, None

    # Fetch ----------------------------------------------------------------

    def exec(self, url: str, sink: Sink, config: FetchConfiguration) -> FetchOutcome:
        self._prepare(config)
        deadline = time.monotonic() + config.timeout
        current = url
        redirects_left = config.max_redirects

        while True:
            try:
                target = split_request_url(current)
            except ValueError as exc:
                return FetchOutcome.failure(ErrorCode.INVALID_URL, f"Invalid URL: {exc}")
            if target.scheme not in ("http", "https"):
                return FetchOutcome.failure(ErrorCode.INVALID_URL, f"Unsupported scheme: {target.scheme}")

            outcome, location = self._request(target, sink, config, deadline)
            if location is None:
                return outcome

            if redirects_left <= 0:
                return FetchOutcome.failure(
                    ErrorCode.REDIRECT_LIMIT,
                    f"Limit of {config.max_redirects} redirects was exceeded: {current}",
                    http_status=outcome.http_status,
                )
            redirects_left -= 1

            next_url = absolute_url(target.url, location)
            if not is_http_url(next_url):
                return FetchOutcome.failure(
                    ErrorCode.MALFORMED_RESPONSE,
                    f'"Location:" header redirected to a non-http url ({next_url})',
                    http_status=outcome.http_status,
                )
            logger.debug("redirect %s -> %s (%d left)", target.url, next_url, redirects_left)
            current = next_url

    def _request(
        self,
        target: RequestTarget,
        sink: Sink,
        config: FetchConfiguration,
        deadline: float,
    ) -> Tuple[FetchOutcome, Optional[str]]:
        timed_out = FetchOutcome.failure(
            ErrorCode.TIMEOUT, f"Connection timed out after {config.timeout:g} seconds"
        )
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return timed_out, None

        context = None
        if target.secure:
            context, problem = self._context(config)
            if problem:
                return FetchOutcome.failure(ErrorCode.TLS, problem), None

        status: Optional[int] = None
        sock = None
        try:
            sock = socket.create_connection((target.host, target.connect_port), timeout=remaining)
            if context is not None:
                sock = context.wrap_socket(sock, server_hostname=target.host)
            sock.sendall(self._build_request(target))
            reader = sock.makefile("rb")
            try:
                status, content_type, location, length, rest = self._read_head(reader, sock, deadline)
                if status in REDIRECT_STATUSES:
                    if location is None:
                        return FetchOutcome.failure(
                            ErrorCode.MALFORMED_RESPONSE,
                            f"Redirect ({status}) without a Location header",
                            http_status=status,
                        ), None
                    return FetchOutcome(http_status=status, content_type=content_type), location
                if not 200 <= status < 300:
                    return FetchOutcome(http_status=status, content_type=content_type), None
                if length is not None and config.max_download_size and length > config.max_download_size:
                    return size_exceeded(config.max_download_size, status), None
                self._read_body(reader, sock, sink, deadline, rest)
                return FetchOutcome(http_status=status, content_type=content_type), None
            finally:
                reader.close()
        except DownloadLimitExceeded:
            return size_exceeded(config.max_download_size, status), None
        except _Malformed as exc:
            return FetchOutcome.failure(ErrorCode.MALFORMED_RESPONSE, str(exc), http_status=status), None
        except (_Timeout, socket.timeout):
            return timed_out, None
        except _SSL_ERRORS as exc:
            return FetchOutcome.failure(ErrorCode.TLS, f"SSL: {exc}"), None
        except socket.gaierror as exc:
            return FetchOutcome.failure(
                ErrorCode.CONNECTION, f"Could not resolve host {target.host}: {exc}"
            ), None
        except OSError as exc:
            return FetchOutcome.failure(
                ErrorCode.CONNECTION,
                f"SOCKET: {exc} - {target.host}:{target.connect_port}",
                http_status=status,
            ), None
        finally:
            if sock is not None:
                sock.close()

    def _build_request(self, target: RequestTarget) -> bytes:
        lines = [f"GET {target.path} HTTP/1.0", f"Host: {target.host_header}"]
        credentials = target.credentials
        if credentials is not None:
            token = base64.b64encode(f"{credentials[0]}:{credentials[1]}".encode("utf-8")).decode("ascii")
            lines.append(f"Authorization: Basic {token}")
        lines.extend(self._header_lines)
        lines.append("Connection: close")
        return ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1", "replace")

    @staticmethod
    def _recv(reader: BinaryIO, sock: socket.socket, deadline: float) -> bytes:
        """One socket read bounded by the time left before ``deadline``."""
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise _Timeout()
        sock.settimeout(remaining)
        return reader.read1(BODY_CHUNK_SIZE)  # type: ignore[attr-defined]

    def _read_head(
        self, reader: BinaryIO, sock: socket.socket, deadline: float
    ) -> Tuple[int, Optional[str], Optional[str], Optional[int], bytes]:
        """Parse status and headers; also returns body bytes read past the head."""
        buffer = bytearray()
        while True:
            end = _head_end(buffer)
            if end is not None:
                break
            if len(buffer) > MAX_HEAD_SIZE:
                raise _Malformed("Response head too large")
            chunk = self._recv(reader, sock, deadline)
            if not chunk:
                raise _Malformed("This request did not return a valid HTTP response")
            buffer += chunk

        lines = bytes(buffer[:end]).splitlines()
        match = _STATUS_RE.match(lines[0]) if lines else None
        if match is None:
            raise _Malformed("This request did not return a valid HTTP response")
        status = int(match.group(1))
        if len(lines) - 1 > MAX_HEADERS:
            raise _Malformed(f"Response has more than {MAX_HEADERS} headers")

        content_type: Optional[str] = None
        location: Optional[str] = None
        length: Optional[int] = None
        for line in lines[1:]:
            name, sep, value = line.decode("latin-1").partition(":")
            if not sep:
                continue
            key = name.strip().lower()
            value = value.strip()
            if key == "content-type":
                content_type = value or None
            elif key == "location":
                location = value or None
            elif key == "content-length":
                try:
                    length = int(value)
                except ValueError:
                    length = None
        return status, content_type, location, length, bytes(buffer[end:])

    def _read_body(
        self, reader: BinaryIO, sock: socket.socket, sink: Sink, deadline: float, head_rest: bytes = b""
    ) -> None:
        if head_rest:
            sink.write(head_rest)
        while True:
            chunk = self._recv(reader, sock, deadline)
            if not chunk:
                break
            sink.write(chunk)


def _head_end(buffer: bytearray) -> Optional[int]:
    """Offset just past the blank line ending the head, or None when incomplete."""
    ends = []
    for marker in (b"\r\n\r\n", b"\n\n"):
        index = buffer.find(marker)
        if index != -1:
            ends.append(index + len(marker))
    return min(ends) if ends else None


__all__ = ["StreamTransport", "REDIRECT_STATUSES"]
