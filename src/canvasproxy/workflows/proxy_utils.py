"""Shared helper functions used by the relay workflow."""

from __future__ import annotations

import re
from dataclasses import dataclass
from http import HTTPStatus
from typing import Iterable, Optional, Pattern, Tuple
from urllib.parse import quote, unquote, urljoin, urlsplit

_SCHEME_RE = re.compile(r"^([a-z][a-z0-9+.\-]*):(?!\d)", re.IGNORECASE)
_HTTP_RE = re.compile(r"^https?://.", re.IGNORECASE)
_CALLBACK_RE = re.compile(r"^[A-Za-z_$][\w$]*(?:\.[A-Za-z_$][\w$]*)*$", re.ASCII)
_PATH_SAFE = "!#$%&'()*+,/:;=?@[]~"
MAX_CALLBACK_LENGTH = 128


@dataclass(frozen=True)
class RequestTarget:
    """A URL split into the pieces a wire request needs."""

    scheme: str
    host: str
    port: Optional[int]
    path: str
    username: Optional[str] = None
    password: Optional[str] = None

    @property
    def secure(self) -> bool:
        return self.scheme == "https"

    @property
    def connect_port(self) -> int:
        if self.port:
            return self.port
        return 443 if self.secure else 80

    @property
    def netloc(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"{host}:{self.port}" if self.port else host

    @property
    def host_header(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        if self.port and self.port != (443 if self.secure else 80):
            return f"{host}:{self.port}"
        return host

    @property
    def url(self) -> str:
        """Normalized URL without userinfo or fragment."""
        return f"{self.scheme}://{self.netloc}{self.path}"

    @property
    def origin_url(self) -> str:
        """Like :attr:`url` but with a default port left out; allow-lists match this form."""
        return f"{self.scheme}://{self.host_header}{self.path}"

    @property
    def credentials(self) -> Optional[Tuple[str, str]]:
        if self.username is None:
            return None
        return self.username, self.password or ""


def split_request_url(url: str) -> RequestTarget:
    """Resolve ``url`` into a :class:`RequestTarget`, defaulting missing parts.

    Raises ``ValueError`` when no host can be found or the port is invalid.
    """

    raw = (url or "").strip()
    if not raw:
        raise ValueError("empty URL")
    if raw.startswith("//"):
        raw = f"http:{raw}"
    elif "://" not in raw:
        raw = f"http://{raw}"
    parts = urlsplit(raw)
    host = (parts.hostname or "").rstrip(".")
    if not host:
        raise ValueError(f"URL has no host: {url}")
    port = parts.port
    path = quote(parts.path or "/", safe=_PATH_SAFE)
    if not path.startswith("/"):
        path = f"/{path}"
    if parts.query:
        path = f"{path}?{quote(parts.query, safe=_PATH_SAFE)}"
    username = unquote(parts.username) if parts.username is not None else None
    password = unquote(parts.password) if parts.password is not None else None
    return RequestTarget(
        scheme=(parts.scheme or "http").lower(),
        host=host,
        port=port,
        path=path,
        username=username,
        password=password,
    )


def normalize_request_url(url: str) -> str:
    return split_request_url(url).url


def absolute_url(base: str, location: str) -> str:
    """Resolve a ``Location`` header value against the URL that produced it."""

    return urljoin(base, (location or "").strip())


def is_http_url(url: str) -> bool:
    return _HTTP_RE.match(url or "") is not None


def has_foreign_scheme(url: str) -> bool:
    """Return True when ``url`` names an explicit scheme other than http(s)."""

    match = _SCHEME_RE.match((url or "").strip())
    if match is None:
        return False
    return match.group(1).lower() not in {"http", "https"}


def compile_url_patterns(patterns: Iterable[str]) -> Optional[Pattern[str]]:
    """Build one anchored matcher from glob-like URL prefixes.

    ``*`` stands for one or more characters other than ``/``. Returns ``None``
    when every URL is allowed (no patterns, or a bare ``*``).
    """

    cleaned = [str(p).strip() for p in patterns if p is not None and str(p).strip()]
    if not cleaned or "*" in cleaned:
        return None
    alternatives = [re.escape(p).replace(r"\*", "[^/]+") for p in cleaned]
    return re.compile("^(?:" + "|".join(alternatives) + ")")


def url_allowed(url: str, matcher: Optional[Pattern[str]]) -> bool:
    if matcher is None:
        return True
    return matcher.match(url or "") is not None


def normalize_content_type(value: Optional[str]) -> str:
    """Lowercase MIME type without parameters (``image/png``)."""

    return (value or "").split(";", 1)[0].strip().lower()


def split_content_type(value: Optional[str]) -> Tuple[str, Optional[str]]:
    """Split ``text/svg; charset=UTF-8`` into ``("text/svg", "charset=UTF-8")``."""

    head, _, tail = (value or "").partition(";")
    param = tail.strip()
    return head.strip().lower(), (param or None)


def is_valid_callback(name: Optional[str]) -> bool:
    """Return True for a JavaScript identifier path such as ``html2canvas.cb_1``."""

    if not name or len(name) > MAX_CALLBACK_LENGTH:
        return False
    return _CALLBACK_RE.match(name) is not None


def http_error_message(status: int) -> str:
    try:
        phrase = HTTPStatus(int(status)).phrase
    except ValueError:
        return f"HTTP error: {status}"
    return f"HTTP error: {status} {phrase}"


def sanity_check() -> None:
    assert normalize_content_type(" Image/PNG; charset=x ") == "image/png"
    assert split_content_type("image/svg+xml;charset=utf-8") == ("image/svg+xml", "charset=utf-8")
    matcher = compile_url_patterns(["https://*.example.com/"])
    assert url_allowed("https://img.example.com/a.png", matcher)
    assert not url_allowed("https://example.com.evil.net/a.png", matcher)
    assert compile_url_patterns(["*"]) is None
    assert split_request_url("example.com").url == "http://example.com/"


sanity_check()

__all__ = [
    "RequestTarget",
    "split_request_url",
    "normalize_request_url",
    "absolute_url",
    "is_http_url",
    "has_foreign_scheme",
    "compile_url_patterns",
    "url_allowed",
    "normalize_content_type",
    "split_content_type",
    "is_valid_callback",
    "http_error_message",
    "sanity_check",
]
