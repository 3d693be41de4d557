from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Mapping, Optional, Union

from .core.keys import K_CALLBACK, K_HDR_REFERER, K_HDR_USER_AGENT, K_REFERER, K_URL, K_USER_AGENT
from .workflows.errors import (
    ContentTypeNotAllowedError,
    ErrorCode,
    HTTPStatusError,
    ProxyError,
    TransportError,
    UrlNotAllowedError,
    ValidationError,
)
from .workflows.proxy import Proxy
from .workflows.proxy_config import FetchConfiguration, temporary_location_from_env
from .workflows.proxy_utils import is_valid_callback
from .workflows.serializer import JSONP_CONTENT_TYPE, Response, http_cache_headers

logger = logging.getLogger(__name__)

ERROR_PREFIX = "error: canvasproxy: "


def _lookup(mapping: Optional[Mapping[str, str]], key: str) -> Optional[str]:
    if not mapping:
        return None
    value = mapping.get(key)
    if value is None:
        lowered = key.lower()
        for name, candidate in mapping.items():
            if str(name).lower() == lowered:
                value = candidate
                break
    if value is None:
        return None
    cleaned = str(value).strip()
    return cleaned or None


def build_proxy(
    config: Optional[FetchConfiguration] = None,
    temporary: Optional[Union[str, Path]] = None,
) -> Proxy:
    """Proxy configured from the environment unless overrides are given."""
    return Proxy(
        config or FetchConfiguration.from_env(),
        temporary=temporary or temporary_location_from_env(),
    )


def forward_request_headers(proxy: Proxy, headers: Optional[Mapping[str, str]]) -> None:
    """Copy the caller's Referer / User-Agent into the fetch options."""
    for header, option in ((K_HDR_REFERER, K_REFERER), (K_HDR_USER_AGENT, K_USER_AGENT)):
        value = _lookup(headers, header)
        # Unchanged values keep the transport session alive.
        if value and proxy.get_options(option) != value:
            proxy.set_options(option, value)


def status_for_error(exc: ProxyError) -> int:
    if isinstance(exc, HTTPStatusError):
        status = exc.http_status or 0
        return status if 400 <= status < 600 else 502
    if isinstance(exc, UrlNotAllowedError):
        return 403
    if isinstance(exc, ContentTypeNotAllowedError):
        return 415
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, TransportError):
        return 504 if exc.code == ErrorCode.TIMEOUT else 502
    return 500


def render_error(response: Response, status: int, message: str, callback: Optional[str] = None) -> int:
    """Write an error body; JSONP callers get ``cb("error: ...")`` so their script still runs."""
    for name, value in http_cache_headers(0, time.time()):
        response.set_header(name, value)
    if callback and is_valid_callback(callback):
        response.set_status(200)
        response.set_header("Content-Type", JSONP_CONTENT_TYPE)
        payload = json.dumps(ERROR_PREFIX + message)
        response.write(f"{callback}({payload});".encode("utf-8"))
        return 200
    response.set_status(status)
    response.set_header("Content-Type", "text/plain; charset=utf-8")
    response.write(message.encode("utf-8"))
    return status


def handle_request(
    params: Mapping[str, str],
    headers: Optional[Mapping[str, str]],
    response: Response,
    *,
    proxy: Optional[Proxy] = None,
    config: Optional[FetchConfiguration] = None,
    temporary: Optional[Union[str, Path]] = None,
) -> int:
    """Serve one relay request and return the HTTP status written.

    ``params`` carries ``url`` and the optional ``callback``; ``headers`` are
    the inbound request headers. A caller-supplied ``proxy`` is reused and left
    open; otherwise one is built and closed here.
    """
    url = _lookup(params, K_URL)
    callback = _lookup(params, K_CALLBACK)
    if not url:
        return render_error(response, 400, 'No such parameter "url"', callback)

    owns_proxy = proxy is None
    if proxy is None:
        proxy = build_proxy(config, temporary)
    try:
        forward_request_headers(proxy, headers)
        proxy.download(url)
        response.set_status(200)
        if callback:
            proxy.emit_jsonp(callback, response)
        else:
            proxy.emit_raw(response)
        return 200
    except ProxyError as exc:
        logger.info("relay request failed for %s: %s", url, exc.message)
        return render_error(response, status_for_error(exc), exc.message, callback)
    finally:
        if owns_proxy:
            proxy.close()


__all__ = [
    "build_proxy",
    "forward_request_headers",
    "handle_request",
    "render_error",
    "status_for_error",
]
