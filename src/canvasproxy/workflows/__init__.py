"""High-level exports for the relay workflows."""

from .client_transport import ClientTransport
from .errors import (
    ConfigurationError,
    ContentTypeNotAllowedError,
    ErrorCode,
    HTTPStatusError,
    ProxyError,
    SerializationStateError,
    TransportError,
    UrlNotAllowedError,
    ValidationError,
)
from .proxy import DEFAULT_TRANSPORTS, Proxy
from .proxy_config import FetchConfiguration
from .serializer import BufferedResponse, ResponseSerializer, StreamResponse
from .stream_transport import StreamTransport
from .transports import FetchOutcome, LimitedSink, Transport

__all__ = [
    "BufferedResponse",
    "ClientTransport",
    "ConfigurationError",
    "ContentTypeNotAllowedError",
    "DEFAULT_TRANSPORTS",
    "ErrorCode",
    "FetchConfiguration",
    "FetchOutcome",
    "HTTPStatusError",
    "LimitedSink",
    "Proxy",
    "ProxyError",
    "ResponseSerializer",
    "SerializationStateError",
    "StreamResponse",
    "StreamTransport",
    "Transport",
    "TransportError",
    "UrlNotAllowedError",
    "ValidationError",
]
