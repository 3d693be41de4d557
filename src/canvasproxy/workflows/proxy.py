"""Fetch orchestrator: validate, fetch through a transport, validate again, hand off.

Usage mirrors the request entry point::

    proxy = Proxy(temporary="temp")
    proxy.set_allowed_urls(["https://*.example.com/"])
    proxy.download(url)          # raises ProxyError on any failure
    proxy.emit_jsonp("cb", response)
    proxy.close()

One instance serves one fetch at a time; concurrent callers need their own
instance.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence, Union

from .client_transport import ClientTransport
from .errors import ErrorCode, SerializationStateError, error_for_code
from .proxy_config import DEFAULT_CONTENT_TYPE, FetchConfiguration
from .proxy_utils import has_foreign_scheme, http_error_message, normalize_content_type, split_request_url
from .serializer import Response, ResponseSerializer
from .stream_transport import StreamTransport
from .temporary import TemporaryBuffer
from .transports import DownloadLimitExceeded, LimitedSink, Transport, size_exceeded

logger = logging.getLogger(__name__)

TransportFactory = Callable[[], Transport]

DEFAULT_TRANSPORTS: Sequence[TransportFactory] = (ClientTransport, StreamTransport)


class Proxy:
    def __init__(
        self,
        config: Optional[FetchConfiguration] = None,
        *,
        transports: Optional[Sequence[TransportFactory]] = None,
        temporary: Optional[Union[str, Path]] = None,
        serializer: Optional[ResponseSerializer] = None,
    ) -> None:
        self.config = config or FetchConfiguration()
        self.serializer = serializer or ResponseSerializer()
        self._transport_factories: List[TransportFactory] = list(
            DEFAULT_TRANSPORTS if transports is None else transports
        )
        self._transport: Optional[Transport] = None
        self._temporary: Optional[TemporaryBuffer] = None
        self._closed = False
        self._reset_result()
        if temporary is not None:
            self.set_temporary(temporary)

    # Configuration -----------------------------------------------------------

    def set_transports(self, transports: Sequence[TransportFactory]) -> None:
        """Set the transports to try, in order of preference."""
        self._release_transport()
        self._transport_factories = list(transports)

    def set_allowed_urls(self, patterns: Sequence[str]) -> List[str]:
        return self.config.set_allowed_urls(patterns)

    def set_allowed_ports(self, ports: Sequence[Union[int, str]]) -> List[int]:
        """Replace the port allow-list; an empty list allows any port."""
        return self.config.set_allowed_ports(ports)

    def set_allowed_content_type(self, mime: str, is_binary: bool) -> None:
        self.config.set_allowed_type(mime, is_binary)

    def remove_allowed_content_type(self, mime: str) -> bool:
        return self.config.remove_allowed_type(mime)

    def set_options(self, key: str, value: Any) -> None:
        self.config.set_option(key, value)

    def get_options(self, key: str) -> Any:
        return self.config.get_option(key)

    def set_response_cache_seconds(self, seconds: int) -> None:
        self.config.set_response_cache_seconds(seconds)

    def set_temporary(self, location: Union[str, Path]) -> None:
        """Use ``memory``, ``temp`` or a directory as the download buffer."""
        if self._temporary is not None:
            self._temporary.close()
        self._temporary = TemporaryBuffer.open(location)
        self._reset_result()

    def get_temporary(self) -> Optional[TemporaryBuffer]:
        return self._temporary

    @property
    def transport(self) -> Optional[Transport]:
        return self._transport

    # Download ------------------------------------------------------------------

    def _reset_result(self) -> None:
        self._http_status: Optional[int] = None
        self._content_type: Optional[str] = None
        self._error_code: Optional[int] = None
        self._error_message: Optional[str] = None
        self._completed = False
        self._emitted = False

    def reset_temporary(self) -> None:
        if self._temporary is not None and not self._temporary.closed:
            self._temporary.reset()

    def _fail(self, code: int, message: Optional[str], *, http_status: Optional[int] = None) -> None:
        self.reset_temporary()
        self._completed = False
        self._error_code = int(code)
        self._error_message = message or "Download failed"
        logger.warning("download failed (%s): %s", self._error_code, self._error_message)
        raise error_for_code(self._error_code, self._error_message, http_status=http_status)

    def _select_transport(self) -> Transport:
        if self._transport is None:
            for factory in self._transport_factories:
                candidate = factory()
                if candidate.available():
                    self._transport = candidate
                    logger.debug("transport selected: %r", candidate)
                    break
                logger.debug("transport unavailable: %r", candidate)
            else:
                self._fail(ErrorCode.NO_TRANSPORT, "The selected transports are not supported")
        return self._transport  # type: ignore[return-value]

    def download(self, url: str) -> None:
        """Fetch ``url`` into the temporary buffer and validate the result.

        Raises a :class:`~canvasproxy.workflows.errors.ProxyError` subclass on
        any failure; the buffer is empty afterwards in that case.
        """
        self._reset_result()
        if self._temporary is None or self._temporary.closed:
            self._fail(ErrorCode.CONFIGURATION, "Temporary not defined, you need to call Proxy.set_temporary()")

        if has_foreign_scheme(url) or not self.config.is_allowed_url(url):
            self._fail(ErrorCode.URL_NOT_ALLOWED, f"URL not allowed: {url}")
        port = split_request_url(url).connect_port
        if not self.config.is_allowed_port(port):
            self._fail(ErrorCode.URL_NOT_ALLOWED, f'"{port}" port is not allowed')

        self.reset_temporary()
        transport = self._select_transport()

        limit = self.config.max_download_size
        sink = LimitedSink(self._temporary, limit)
        try:
            outcome = transport.exec(url, sink, self.config)
        except DownloadLimitExceeded:
            outcome = size_exceeded(limit)

        if not outcome.ok:
            self._fail(outcome.error_code or ErrorCode.GENERIC, outcome.error_message)

        self._http_status = outcome.http_status
        content_type = (outcome.content_type or "").strip() or DEFAULT_CONTENT_TYPE
        self._content_type = content_type
        if not self.config.is_allowed_type(content_type):
            self._fail(
                ErrorCode.CONTENT_TYPE_NOT_ALLOWED,
                f'Content-type "{normalize_content_type(content_type)}" is not allowed',
            )

        status = outcome.http_status
        if status is None or not 200 <= status < 300:
            message = http_error_message(status) if status is not None else "HTTP error: no status received"
            self._fail(ErrorCode.HTTP_STATUS, message, http_status=status)

        self._completed = True
        logger.info("downloaded %s (%d bytes, %s) via %s", url, sink.written, content_type, transport.name)

    # Results -------------------------------------------------------------------

    @property
    def has_completed_result(self) -> bool:
        return self._completed

    def get_content_type(self) -> Optional[str]:
        return self._content_type

    def get_http_status(self) -> Optional[int]:
        return self._http_status

    def get_last_error_code(self) -> Optional[int]:
        return self._error_code

    def get_last_error_message(self) -> Optional[str]:
        return self._error_message

    def get_contents(self, length: int = -1, offset: int = 0) -> Optional[bytes]:
        if self._temporary is None or self._temporary.closed:
            return None
        return self._temporary.read(length, offset)

    # Output --------------------------------------------------------------------

    def _consume(self) -> TemporaryBuffer:
        if not self._completed or self._temporary is None or self._temporary.closed:
            raise SerializationStateError("No successful download yet")
        if self._emitted:
            raise SerializationStateError("The download was already emitted")
        self._emitted = True
        return self._temporary

    def emit_raw(self, response: Response) -> None:
        """Write CORS and cache headers plus the raw body to ``response``."""
        buffer = self._consume()
        self.serializer.emit_raw(
            buffer,
            self._content_type or DEFAULT_CONTENT_TYPE,
            response,
            cache_seconds=self.config.response_cache_seconds,
        )

    def emit_jsonp(self, callback: str, response: Response) -> None:
        """Write ``callback("data:...");`` to ``response``."""
        self.serializer.check_callback(callback)
        buffer = self._consume()
        content_type = self._content_type or DEFAULT_CONTENT_TYPE
        self.serializer.emit_jsonp(
            buffer,
            content_type,
            callback,
            response,
            is_binary=self.config.is_binary_type(content_type),
            cache_seconds=self.config.response_cache_seconds,
        )

    # Teardown ------------------------------------------------------------------

    def _release_transport(self) -> None:
        transport, self._transport = self._transport, None
        if transport is not None:
            transport.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._release_transport()
        temporary, self._temporary = self._temporary, None
        if temporary is not None:
            temporary.close()

    def __enter__(self) -> "Proxy":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


__all__ = ["Proxy", "DEFAULT_TRANSPORTS", "TransportFactory"]
