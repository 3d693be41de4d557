"""Client-library transport backed by ``requests``."""

from __future__ import annotations

import logging
import os
import socket
import threading
import time
from typing import Any, Dict, Optional, Tuple, Union

from .errors import ErrorCode
from .proxy_config import FetchConfiguration
from .proxy_utils import split_request_url
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

try:  # requests is the preferred transport; the stream transport covers its absence
    import requests  # type: ignore
    from requests import exceptions as requests_exceptions  # type: ignore
except Exception:  # pragma: no cover - environment-specific
    requests = None  # type: ignore
    requests_exceptions = None  # type: ignore


def _content_length(headers: Any) -> Optional[int]:
    raw = headers.get("Content-Length") if headers is not None else None
    if raw is None:
        return None
    try:
        return int(str(raw).strip())
    except ValueError:
        return None


def _timed_out(config: FetchConfiguration, status: Optional[int] = None) -> FetchOutcome:
    return FetchOutcome.failure(
        ErrorCode.TIMEOUT,
        f"Connection timed out after {config.timeout:g} seconds",
        http_status=status,
    )


def _abort_response(response: Any, aborted: threading.Event) -> None:
    """Shut the response socket down so a blocked body read returns at the deadline."""

    aborted.set()
    connection = getattr(response.raw, "connection", None)
    sock = getattr(connection, "sock", None)
    if sock is None:
        return
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError as exc:
        logger.debug("socket already closed at deadline: %s", exc)


class ClientTransport(Transport):
    """Fetch through a reusable ``requests.Session``.

    The session is rebuilt whenever the configuration generation moves, so
    header and redirect changes apply without a new transport instance.
    """

    name = "requests"

    def __init__(self) -> None:
        self._session: Optional["requests.Session"] = None
        self._generation = -1

    def available(self) -> bool:
        return requests is not None

    def _session_for(self, config: FetchConfiguration) -> "requests.Session":
        if self._session is None or self._generation != config.generation:
            self.close()
            session = requests.Session()
            # Only configured headers go upstream.
            session.headers.clear()
            if config.referer:
                session.headers["Referer"] = config.referer
            if config.user_agent:
                session.headers["User-Agent"] = config.user_agent
            session.max_redirects = config.max_redirects
            # No netrc, proxy or CA settings from the environment; client_options can pass them explicitly.
            session.trust_env = False
            self._session = session
            self._generation = config.generation
            logger.debug("requests session rebuilt (generation %s)", config.generation)
        return self._session

    @staticmethod
    def _verify_setting(config: FetchConfiguration) -> Tuple[Union[bool, str], Optional[str]]:
        setting = config.ssl_verify
        if isinstance(setting, str):
            if not os.path.isfile(setting):
                return True, f"Not found certificate: {setting}"
            return setting, None
        return bool(setting), None

    def exec(self, url: str, sink: Sink, config: FetchConfiguration) -> FetchOutcome:
        try:
            target = split_request_url(url)
        except ValueError as exc:
            return FetchOutcome.failure(ErrorCode.INVALID_URL, f"Invalid URL: {exc}")

        verify, problem = self._verify_setting(config)
        if problem:
            return FetchOutcome.failure(ErrorCode.TLS, problem)

        session = self._session_for(config)
        kwargs: Dict[str, Any] = dict(config.client_options)
        kwargs.setdefault("timeout", (config.timeout, config.timeout))
        kwargs.setdefault("verify", verify)
        if target.credentials is not None:
            kwargs.setdefault("auth", target.credentials)
        kwargs["stream"] = True
        kwargs["allow_redirects"] = True

        deadline = time.monotonic() + config.timeout
        status: Optional[int] = None
        response = None
        try:
            response = session.get(target.url, **kwargs)
            status = response.status_code
            content_type = (response.headers.get("Content-Type") or "").strip() or None
            if status in REDIRECT_STATUSES:
                # requests only stops on a redirect it could not follow
                return FetchOutcome.failure(
                    ErrorCode.MALFORMED_RESPONSE,
                    f"Redirect ({status}) without a Location header",
                    http_status=status,
                )
            if not 200 <= status < 300:
                return FetchOutcome(http_status=status, content_type=content_type)

            declared = _content_length(response.headers)
            if declared is not None and config.max_download_size and declared > config.max_download_size:
                return size_exceeded(config.max_download_size, status)

            aborted = threading.Event()
            watchdog = threading.Timer(
                max(0.0, deadline - time.monotonic()), _abort_response, args=(response, aborted)
            )
            watchdog.daemon = True
            watchdog.start()
            try:
                for chunk in response.iter_content(chunk_size=BODY_CHUNK_SIZE):
                    if aborted.is_set() or time.monotonic() > deadline:
                        return _timed_out(config, status)
                    if chunk:
                        sink.write(chunk)
            except (requests_exceptions.RequestException, OSError):
                if aborted.is_set():
                    return _timed_out(config, status)
                raise
            finally:
                watchdog.cancel()
            if aborted.is_set():
                return _timed_out(config, status)
            return FetchOutcome(http_status=status, content_type=content_type)
        except DownloadLimitExceeded:
            return size_exceeded(config.max_download_size, status)
        except requests_exceptions.TooManyRedirects:
            return FetchOutcome.failure(
                ErrorCode.REDIRECT_LIMIT,
                f"Limit of {config.max_redirects} redirects was exceeded: {url}",
            )
        except requests_exceptions.SSLError as exc:
            return FetchOutcome.failure(ErrorCode.TLS, f"requests: {exc}")
        except requests_exceptions.Timeout:
            return _timed_out(config)
        except (
            requests_exceptions.InvalidURL,
            requests_exceptions.InvalidSchema,
            requests_exceptions.MissingSchema,
        ) as exc:
            return FetchOutcome.failure(ErrorCode.INVALID_URL, f"requests: {exc}")
        except (requests_exceptions.ContentDecodingError, requests_exceptions.ChunkedEncodingError) as exc:
            return FetchOutcome.failure(ErrorCode.MALFORMED_RESPONSE, f"requests: {exc}", http_status=status)
        except requests_exceptions.ConnectionError as exc:
            if time.monotonic() > deadline:
                return _timed_out(config)
            return FetchOutcome.failure(ErrorCode.CONNECTION, f"requests: {exc}")
        except requests_exceptions.RequestException as exc:
            return FetchOutcome.failure(ErrorCode.CONNECTION, f"requests: {exc}", http_status=status)
        finally:
            if response is not None:
                response.close()

    def close(self) -> None:
        session, self._session = self._session, None
        if session is not None:
            session.close()


__all__ = ["ClientTransport"]
