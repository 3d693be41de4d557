"""Exception hierarchy for the relay pipeline.

Every failure carries a numeric :class:`ErrorCode` and a human-readable
message. Transports never raise these; they report ``(code, message)`` in a
:class:`~canvasproxy.workflows.transports.FetchOutcome` and the orchestrator
escalates the outcome with :func:`error_for_code`.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Optional

__all__ = [
    "ErrorCode",
    "ProxyError",
    "ConfigurationError",
    "ValidationError",
    "UrlNotAllowedError",
    "ContentTypeNotAllowedError",
    "TransportError",
    "HTTPStatusError",
    "SerializationStateError",
    "error_for_code",
]


class ErrorCode(IntEnum):
    GENERIC = 1
    CONFIGURATION = 10
    NO_TRANSPORT = 11
    URL_NOT_ALLOWED = 20
    CONTENT_TYPE_NOT_ALLOWED = 21
    INVALID_CALLBACK = 22
    CONNECTION = 30
    TLS = 31
    TIMEOUT = 32
    REDIRECT_LIMIT = 33
    MALFORMED_RESPONSE = 34
    SIZE_EXCEEDED = 35
    INVALID_URL = 36
    HTTP_STATUS = 40
    NO_DOWNLOAD = 50


class ProxyError(RuntimeError):
    """Base exception for relay configuration, validation, and fetch failures."""

    default_code = ErrorCode.GENERIC

    def __init__(self, message: str, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = int(code if code is not None else self.default_code)


class ConfigurationError(ProxyError):
    """Raised when the proxy is missing a temporary buffer or a usable transport."""

    default_code = ErrorCode.CONFIGURATION


class ValidationError(ProxyError):
    """Raised when caller input or fetched metadata fails an allow-list."""

    default_code = ErrorCode.URL_NOT_ALLOWED


class UrlNotAllowedError(ValidationError):
    default_code = ErrorCode.URL_NOT_ALLOWED


class ContentTypeNotAllowedError(ValidationError):
    default_code = ErrorCode.CONTENT_TYPE_NOT_ALLOWED


class TransportError(ProxyError):
    """Raised when a transport reported a network-level failure."""

    default_code = ErrorCode.CONNECTION


class HTTPStatusError(ProxyError):
    """Raised when the upstream answered outside the 2xx range."""

    default_code = ErrorCode.HTTP_STATUS

    def __init__(self, message: str, code: Optional[int] = None, *, http_status: Optional[int] = None) -> None:
        super().__init__(message, code)
        self.http_status = http_status


class SerializationStateError(ProxyError):
    """Raised when output is requested without a completed download."""

    default_code = ErrorCode.NO_DOWNLOAD


_TRANSPORT_CODES = {
    ErrorCode.CONNECTION,
    ErrorCode.TLS,
    ErrorCode.TIMEOUT,
    ErrorCode.REDIRECT_LIMIT,
    ErrorCode.MALFORMED_RESPONSE,
    ErrorCode.SIZE_EXCEEDED,
    ErrorCode.INVALID_URL,
}


def error_for_code(code: int, message: str, *, http_status: Optional[int] = None) -> ProxyError:
    """Build the exception class matching ``code``."""

    if code == ErrorCode.HTTP_STATUS:
        return HTTPStatusError(message, code, http_status=http_status)
    if code == ErrorCode.CONTENT_TYPE_NOT_ALLOWED:
        return ContentTypeNotAllowedError(message, code)
    if code == ErrorCode.URL_NOT_ALLOWED:
        return UrlNotAllowedError(message, code)
    if code == ErrorCode.INVALID_CALLBACK:
        return ValidationError(message, code)
    if code in (ErrorCode.CONFIGURATION, ErrorCode.NO_TRANSPORT):
        return ConfigurationError(message, code)
    if code == ErrorCode.NO_DOWNLOAD:
        return SerializationStateError(message, code)
    if code in _TRANSPORT_CODES:
        return TransportError(message, code)
    return ProxyError(message, code)
