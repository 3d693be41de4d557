"""Transport contract shared by the client-library and stream transports.

A transport performs one blocking GET into a caller-supplied sink and
reports the outcome; it never raises past :meth:`Transport.exec`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Protocol

from .errors import ErrorCode

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .proxy_config import FetchConfiguration

BODY_CHUNK_SIZE = 8192
REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})


class Sink(Protocol):
    def write(self, data: bytes) -> int: ...


class DownloadLimitExceeded(Exception):
    """Raised by :class:`LimitedSink` when a write would pass the size cap."""

    def __init__(self, limit: int, attempted: int) -> None:
        super().__init__(f"Maximum download size of {limit} bytes exceeded ({attempted} bytes received)")
        self.limit = limit
        self.attempted = attempted


class LimitedSink:
    """Counts bytes written to ``target`` and refuses anything past ``limit``."""

    def __init__(self, target: Sink, limit: int) -> None:
        self.target = target
        self.limit = limit
        self.written = 0

    def write(self, data: bytes) -> int:
        attempted = self.written + len(data)
        if self.limit and attempted > self.limit:
            raise DownloadLimitExceeded(self.limit, attempted)
        self.target.write(data)
        self.written = attempted
        return len(data)


@dataclass
class FetchOutcome:
    """What a transport observed for one fetch."""

    http_status: Optional[int] = None
    content_type: Optional[str] = None
    error_code: Optional[int] = None
    error_message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error_code is None

    @classmethod
    def failure(cls, code: ErrorCode, message: str, *, http_status: Optional[int] = None) -> "FetchOutcome":
        return cls(http_status=http_status, error_code=int(code), error_message=message)


def size_exceeded(limit: int, http_status: Optional[int] = None) -> FetchOutcome:
    return FetchOutcome.failure(
        ErrorCode.SIZE_EXCEEDED,
        f"Maximum download size of {limit} bytes exceeded",
        http_status=http_status,
    )


class Transport:
    """Base class for pluggable fetch strategies."""

    name = "transport"

    def available(self) -> bool:
        """Return True when the underlying mechanism can run here. No network I/O."""
        raise NotImplementedError

    def exec(self, url: str, sink: Sink, config: "FetchConfiguration") -> FetchOutcome:
        raise NotImplementedError

    def close(self) -> None:
        """Release cached session state."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


__all__ = [
    "BODY_CHUNK_SIZE",
    "DownloadLimitExceeded",
    "FetchOutcome",
    "LimitedSink",
    "REDIRECT_STATUSES",
    "Sink",
    "Transport",
    "size_exceeded",
]
