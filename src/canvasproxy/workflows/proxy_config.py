"""Relay defaults (allowed types, limits, cache time) and the mutable fetch configuration.

Centralizes static defaults so proxy.py has no embedded magic numbers.
Callers build a :class:`FetchConfiguration` (directly or from the
environment) and mutate it through its setters before any download; every
mutation advances ``generation`` so transports know to rebuild sessions.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Pattern, Sequence, Tuple, Union

from ..core.keys import (
    K_CLIENT_OPTIONS,
    K_MAX_DOWNLOAD_SIZE,
    K_MAX_REDIRECTS,
    K_REFERER,
    K_SSL_VERIFY,
    K_TIMEOUT,
    K_USER_AGENT,
)
from .errors import ConfigurationError
from .proxy_utils import compile_url_patterns, normalize_content_type, split_request_url, url_allowed

DEFAULT_CONTENT_TYPE = "application/octet-stream"
DEFAULT_TIMEOUT = 30
DEFAULT_MAX_REDIRECTS = 5
DEFAULT_MAX_DOWNLOAD_SIZE = 10 * 1024 * 1024  # 10MB
DEFAULT_RESPONSE_CACHE_SECONDS = 60
DEFAULT_TEMPORARY = "temp"
DEFAULT_ALLOWED_PORTS: Tuple[int, ...] = (80, 443)

# mime -> is_binary. Binary types are relayed as base64 data URIs, text types percent-encoded.
DEFAULT_ALLOWED_TYPES: Dict[str, bool] = {
    "image/apng": True,
    "image/png": True,
    "image/avif": True,
    "image/webp": True,
    "image/jpeg": True,
    "image/gif": True,
    "image/svg+xml": False,
    "image/svg-xml": False,  # old web servers
}

OPTION_KEYS: Tuple[str, ...] = (
    K_TIMEOUT,
    K_MAX_REDIRECTS,
    K_MAX_DOWNLOAD_SIZE,
    K_REFERER,
    K_USER_AGENT,
    K_SSL_VERIFY,
    K_CLIENT_OPTIONS,
)

# Environment knobs
ENV_TIMEOUT = "CANVASPROXY_TIMEOUT"
ENV_MAX_REDIRECTS = "CANVASPROXY_MAX_REDIRECTS"
ENV_MAX_DOWNLOAD_SIZE = "CANVASPROXY_MAX_DOWNLOAD_SIZE"
ENV_ALLOWED_URLS = "CANVASPROXY_ALLOWED_URLS"
ENV_ALLOWED_PORTS = "CANVASPROXY_ALLOWED_PORTS"
ENV_SSL_VERIFY = "CANVASPROXY_SSL_VERIFY"
ENV_HTTP_CACHE = "CANVASPROXY_HTTP_CACHE"
ENV_TEMPORARY = "CANVASPROXY_TEMP"

ENV_KEYS: Tuple[str, ...] = (
    ENV_TIMEOUT,
    ENV_MAX_REDIRECTS,
    ENV_MAX_DOWNLOAD_SIZE,
    ENV_ALLOWED_URLS,
    ENV_ALLOWED_PORTS,
    ENV_SSL_VERIFY,
    ENV_HTTP_CACHE,
    ENV_TEMPORARY,
)

SslVerify = Union[bool, str]


def _split_env_list(value: str) -> Tuple[str, ...]:
    tokens: List[str] = []
    for token in (value or "").split(","):
        cleaned = token.strip()
        if cleaned and cleaned not in tokens:
            tokens.append(cleaned)
    return tuple(tokens)


def _safe_int(value: Optional[str], default: int) -> int:
    if value is None:
        return default
    try:
        cleaned = value.strip()
        if not cleaned:
            return default
        return int(cleaned)
    except ValueError:
        return default


def _parse_ssl_verify(value: Optional[str]) -> SslVerify:
    if value is None:
        return True
    normalized = value.strip()
    if normalized.lower() in {"", "1", "true", "yes", "on"}:
        return True
    if normalized.lower() in {"0", "false", "no", "off"}:
        return False
    return normalized


def temporary_location_from_env(environ: Optional[Mapping[str, str]] = None) -> str:
    env = os.environ if environ is None else environ
    return (env.get(ENV_TEMPORARY) or "").strip() or DEFAULT_TEMPORARY


@dataclass
class FetchConfiguration:
    """Tuning knobs and allow-lists shared by the orchestrator and its transport.

    Change values through the setters; they validate input and advance
    ``generation``.
    """

    allowed_urls: List[str] = field(default_factory=lambda: ["*"])
    allowed_ports: List[int] = field(default_factory=lambda: list(DEFAULT_ALLOWED_PORTS))
    allowed_types: Dict[str, bool] = field(default_factory=lambda: dict(DEFAULT_ALLOWED_TYPES))
    timeout: float = DEFAULT_TIMEOUT
    max_redirects: int = DEFAULT_MAX_REDIRECTS
    max_download_size: int = DEFAULT_MAX_DOWNLOAD_SIZE
    referer: Optional[str] = None
    user_agent: Optional[str] = None
    ssl_verify: SslVerify = True
    client_options: Dict[str, Any] = field(default_factory=dict)
    response_cache_seconds: int = DEFAULT_RESPONSE_CACHE_SECONDS
    generation: int = 0
    _url_matcher: Optional[Pattern[str]] = field(default=None, init=False, repr=False, compare=False)
    _matcher_stale: bool = field(default=True, init=False, repr=False, compare=False)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "FetchConfiguration":
        env = os.environ if environ is None else environ
        config = cls()
        config.set_option(K_TIMEOUT, _safe_int(env.get(ENV_TIMEOUT), DEFAULT_TIMEOUT))
        config.set_option(K_MAX_REDIRECTS, _safe_int(env.get(ENV_MAX_REDIRECTS), DEFAULT_MAX_REDIRECTS))
        config.set_option(
            K_MAX_DOWNLOAD_SIZE,
            _safe_int(env.get(ENV_MAX_DOWNLOAD_SIZE), DEFAULT_MAX_DOWNLOAD_SIZE),
        )
        config.set_option(K_SSL_VERIFY, _parse_ssl_verify(env.get(ENV_SSL_VERIFY)))
        patterns = _split_env_list(env.get(ENV_ALLOWED_URLS, ""))
        if patterns:
            config.set_allowed_urls(patterns)
        ports = _split_env_list(env.get(ENV_ALLOWED_PORTS, ""))
        if ports:
            config.set_allowed_ports([] if "*" in ports else ports)
        config.set_response_cache_seconds(
            _safe_int(env.get(ENV_HTTP_CACHE), DEFAULT_RESPONSE_CACHE_SECONDS)
        )
        return config

    def _touch(self) -> None:
        self.generation += 1

    # Options -----------------------------------------------------------

    def set_option(self, key: str, value: Any) -> None:
        if key not in OPTION_KEYS:
            raise ConfigurationError(f"Unknown option: {key}")
        try:
            if key == K_TIMEOUT:
                value = float(value)
                if value < 1:
                    value = DEFAULT_TIMEOUT
            elif key == K_MAX_REDIRECTS:
                value = int(value)
                if value < 1:
                    value = DEFAULT_MAX_REDIRECTS
            elif key == K_MAX_DOWNLOAD_SIZE:
                value = int(value)
                if value < 1:
                    value = DEFAULT_MAX_DOWNLOAD_SIZE
            elif key in (K_REFERER, K_USER_AGENT):
                value = str(value).strip() if value else None
                value = value or None
            elif key == K_SSL_VERIFY:
                if not isinstance(value, (bool, str)):
                    raise TypeError("ssl_verify must be a bool or a CA bundle path")
            elif key == K_CLIENT_OPTIONS:
                value = dict(value or {})
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Invalid value for option {key}: {exc}") from exc
        setattr(self, key, value)
        self._touch()

    def get_option(self, key: str) -> Any:
        if key not in OPTION_KEYS:
            return None
        return getattr(self, key)

    def set_response_cache_seconds(self, seconds: int) -> None:
        try:
            self.response_cache_seconds = int(seconds)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Invalid cache time: {seconds!r}") from exc
        self._touch()

    # URL allow-list ----------------------------------------------------

    def set_allowed_urls(self, patterns: Sequence[str]) -> List[str]:
        """Replace the URL allow-list and return the previous one."""

        previous = list(self.allowed_urls)
        self.allowed_urls = [str(p) for p in patterns]
        self._matcher_stale = True
        self._touch()
        return previous

    @property
    def url_matcher(self) -> Optional[Pattern[str]]:
        if self._matcher_stale:
            self._url_matcher = compile_url_patterns(self.allowed_urls)
            self._matcher_stale = False
        return self._url_matcher

    def is_allowed_url(self, url: str) -> bool:
        """Match the parsed ``scheme://host[:port]/path`` form, never the raw string."""
        try:
            target = split_request_url(url)
        except ValueError:
            return False
        if target.scheme not in ("http", "https"):
            return False
        return url_allowed(target.origin_url, self.url_matcher)

    # Port allow-list ---------------------------------------------------

    def set_allowed_ports(self, ports: Sequence[Union[int, str]]) -> List[int]:
        """Replace the port allow-list and return the previous one. Empty allows any port."""

        cleaned: List[int] = []
        for port in ports:
            try:
                value = int(str(port).strip())
            except ValueError as exc:
                raise ConfigurationError(f"Invalid port: {port!r}") from exc
            if not 0 < value < 65536:
                raise ConfigurationError(f"Invalid port: {port!r}")
            if value not in cleaned:
                cleaned.append(value)
        previous = list(self.allowed_ports)
        self.allowed_ports = cleaned
        self._touch()
        return previous

    def is_allowed_port(self, port: int) -> bool:
        return not self.allowed_ports or port in self.allowed_ports

    # Content-type allow-list ---------------------------------------------

    def set_allowed_type(self, mime: str, is_binary: bool) -> None:
        key = normalize_content_type(mime)
        if not key:
            raise ConfigurationError(f"Invalid content-type: {mime!r}")
        self.allowed_types[key] = bool(is_binary)
        self._touch()

    def remove_allowed_type(self, mime: str) -> bool:
        removed = self.allowed_types.pop(normalize_content_type(mime), None) is not None
        if removed:
            self._touch()
        return removed

    def is_allowed_type(self, content_type: Optional[str]) -> bool:
        return normalize_content_type(content_type) in self.allowed_types

    def is_binary_type(self, content_type: Optional[str]) -> bool:
        return bool(self.allowed_types.get(normalize_content_type(content_type), False))


__all__ = [
    "DEFAULT_ALLOWED_PORTS",
    "DEFAULT_ALLOWED_TYPES",
    "DEFAULT_CONTENT_TYPE",
    "DEFAULT_MAX_DOWNLOAD_SIZE",
    "DEFAULT_MAX_REDIRECTS",
    "DEFAULT_RESPONSE_CACHE_SECONDS",
    "DEFAULT_TEMPORARY",
    "DEFAULT_TIMEOUT",
    "ENV_KEYS",
    "FetchConfiguration",
    "OPTION_KEYS",
    "temporary_location_from_env",
]
