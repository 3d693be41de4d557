from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import List, Optional, Tuple

import typer

from .core.keys import K_MAX_DOWNLOAD_SIZE, K_MAX_REDIRECTS, K_REFERER, K_SSL_VERIFY, K_TIMEOUT, K_USER_AGENT
from .tools.cache_cleaner import DEFAULT_MAX_AGE, clean_stale_files
from .workflows.client_transport import ClientTransport
from .workflows.doctor import build_doctor_report, format_doctor_report
from .workflows.errors import ConfigurationError, HTTPStatusError, ProxyError, TransportError, ValidationError
from .workflows.proxy import Proxy
from .workflows.proxy_config import FetchConfiguration, temporary_location_from_env
from .workflows.proxy_utils import is_valid_callback
from .workflows.serializer import StreamResponse
from .workflows.stream_transport import StreamTransport

app = typer.Typer(add_help_option=False, no_args_is_help=False)

TRANSPORT_CHOICES = {
    "client": (ClientTransport,),
    "stream": (StreamTransport,),
}


def _minimal_help() -> str:
    return """canvasproxy (same-origin relay CLI)

Usage:
  canvasproxy get <url> [--callback <NAME>] [--out <FILE>] [--allow <PATTERN>]... [--port <N>]... [--type <MIME>]...
  canvasproxy clean <dir> [--max-age <S>] [--dry-run]
  canvasproxy doctor

Common options:
  --callback <NAME>   Emit a JSONP data URI instead of the raw body.
  --out <FILE>        Write the body to this file instead of stdout.
  --allow <PATTERN>   Allowed URL pattern, `*` matches one path segment (repeatable).
  --port <N>          Allowed port, `*` for any (repeatable, default 80 and 443).
  --type <MIME>       Extra allowed content type, suffix :text for percent-encoding.
  --headers           Print response status and headers to stderr.

Discoverability:
  --help-full     Expanded help + env vars.
  --doctor        Run environment diagnostics and exit.
"""


def _help_full() -> str:
    return """canvasproxy relay CLI

Commands:
  get      Fetch a single URL through the relay pipeline.
  clean    Remove stale on-disk temporaries.
  doctor   Print environment and dependency diagnostics.

Fetch options (get):
  --timeout <S>          Overall request timeout in seconds (default 30).
  --max-redirects <N>    Redirects followed before failing (default 5).
  --max-size <BYTES>     Body size cap (default 10 MiB).
  --referer / --user-agent
  --insecure             Disable TLS certificate verification.
  --cacert <PATH>        Verify TLS against this CA bundle.
  --transport <NAME>     Force `client` (requests) or `stream` (sockets).
  --temp <LOC>           memory, temp, or a directory for the download buffer.

Exit codes:
  0 success, 2 validation error, 3 transport / HTTP error, 4 configuration error.

Important env vars:
  CANVASPROXY_TIMEOUT
  CANVASPROXY_MAX_REDIRECTS
  CANVASPROXY_MAX_DOWNLOAD_SIZE
  CANVASPROXY_ALLOWED_URLS
  CANVASPROXY_ALLOWED_PORTS
  CANVASPROXY_SSL_VERIFY
  CANVASPROXY_HTTP_CACHE
  CANVASPROXY_TEMP
"""


def exit_code_for_error(exc: ProxyError) -> int:
    if isinstance(exc, ValidationError):
        return 2
    if isinstance(exc, (TransportError, HTTPStatusError)):
        return 3
    if isinstance(exc, ConfigurationError):
        return 4
    return 1


def _parse_type(value: str) -> Tuple[str, bool]:
    mime, sep, kind = value.rpartition(":")
    if not sep or kind.lower() not in {"binary", "text"}:
        return value.strip(), True
    return mime.strip(), kind.lower() == "binary"


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    help: bool = typer.Option(False, "--help", "-h", is_eager=True, help="Show minimal help."),
    help_full: bool = typer.Option(False, "--help-full", is_eager=True, help="Show expanded help."),
    doctor: bool = typer.Option(False, "--doctor", is_eager=True, help="Run environment diagnostics and exit."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log pipeline progress to stderr."),
) -> None:
    logging.basicConfig(level=logging.INFO if verbose else logging.WARNING, format="%(message)s")
    if help_full:
        typer.echo(_help_full())
        raise typer.Exit(code=0)
    if doctor:
        report = build_doctor_report()
        typer.echo(format_doctor_report(report))
        raise typer.Exit(code=0 if report.get("ok", True) else 2)
    if help or ctx.invoked_subcommand is None:
        typer.echo(_minimal_help())
        raise typer.Exit(code=0)


@app.command("doctor", add_help_option=True)
def doctor_cmd() -> None:
    """Print environment diagnostics."""
    report = build_doctor_report()
    typer.echo(format_doctor_report(report))
    raise typer.Exit(code=0 if report.get("ok", True) else 2)


@app.command("clean", add_help_option=True)
def clean_cmd(
    directory: Path = typer.Argument(..., help="On-disk temporary directory."),
    max_age: float = typer.Option(DEFAULT_MAX_AGE, "--max-age", help="Remove files older than this many seconds."),
    dry_run: bool = typer.Option(False, "--dry-run", help="List stale files without deleting."),
) -> None:
    """Remove stale `~`-prefixed temporaries."""
    results = clean_stale_files(directory, max_age, dry_run=dry_run)
    for entry in results:
        typer.echo(f"{entry['status']}: {entry['path']} ({entry['age']}s)")
    raise typer.Exit(code=0)


@app.command("get", add_help_option=True)
def get_url(
    url: str = typer.Argument(..., help="URL to fetch."),
    callback: Optional[str] = typer.Option(None, "--callback", help="JSONP callback name."),
    out: Optional[Path] = typer.Option(None, "--out", help="Write the body to this file."),
    allow: Optional[List[str]] = typer.Option(None, "--allow", help="Allowed URL pattern (repeatable)."),
    ports: Optional[List[str]] = typer.Option(None, "--port", help="Allowed port, `*` for any (repeatable)."),
    types: Optional[List[str]] = typer.Option(None, "--type", help="Extra allowed MIME[:binary|:text] (repeatable)."),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Request timeout in seconds."),
    max_redirects: Optional[int] = typer.Option(None, "--max-redirects", help="Redirect limit."),
    max_size: Optional[int] = typer.Option(None, "--max-size", help="Body size cap in bytes."),
    referer: Optional[str] = typer.Option(None, "--referer", help="Referer sent upstream."),
    user_agent: Optional[str] = typer.Option(None, "--user-agent", help="User-Agent sent upstream."),
    insecure: bool = typer.Option(False, "--insecure", help="Disable TLS verification."),
    cacert: Optional[Path] = typer.Option(None, "--cacert", help="CA bundle for TLS verification."),
    transport: Optional[str] = typer.Option(None, "--transport", help="Force `client` or `stream`."),
    temp: Optional[str] = typer.Option(None, "--temp", help="memory, temp, or a directory."),
    headers: bool = typer.Option(False, "--headers", help="Print status and headers to stderr."),
) -> None:
    """Fetch one URL and write the raw body or a JSONP script."""
    if callback is not None and not is_valid_callback(callback):
        typer.echo(f"error: invalid callback name: {callback!r}", err=True)
        raise typer.Exit(code=2)
    if transport is not None and transport not in TRANSPORT_CHOICES:
        typer.echo(f"error: unknown transport {transport!r} (choose client or stream)", err=True)
        raise typer.Exit(code=2)

    try:
        config = FetchConfiguration.from_env()
        if allow:
            config.set_allowed_urls(allow)
        if ports:
            config.set_allowed_ports([] if "*" in ports else ports)
        for value in types or []:
            mime, is_binary = _parse_type(value)
            config.set_allowed_type(mime, is_binary)
        if timeout is not None:
            config.set_option(K_TIMEOUT, timeout)
        if max_redirects is not None:
            config.set_option(K_MAX_REDIRECTS, max_redirects)
        if max_size is not None:
            config.set_option(K_MAX_DOWNLOAD_SIZE, max_size)
        if referer:
            config.set_option(K_REFERER, referer)
        if user_agent:
            config.set_option(K_USER_AGENT, user_agent)
        if insecure:
            config.set_option(K_SSL_VERIFY, False)
        elif cacert is not None:
            config.set_option(K_SSL_VERIFY, str(cacert))

        factories = TRANSPORT_CHOICES[transport] if transport else None
        with Proxy(config, transports=factories, temporary=temp or temporary_location_from_env()) as proxy:
            proxy.download(url)
            if out is not None:
                out.parent.mkdir(parents=True, exist_ok=True)
                with out.open("wb") as fh:
                    response = StreamResponse(fh)
                    _emit(proxy, response, callback)
            else:
                response = StreamResponse(sys.stdout.buffer)
                _emit(proxy, response, callback)
                sys.stdout.buffer.flush()
    except ProxyError as exc:
        typer.echo(f"error: {exc.message}", err=True)
        raise typer.Exit(code=exit_code_for_error(exc))
    except OSError as exc:
        typer.echo(f"fatal: {exc}", err=True)
        raise typer.Exit(code=4)

    if headers:
        typer.echo(f"status: {response.status}", err=True)
        for name, value in response.headers:
            typer.echo(f"{name}: {value}", err=True)
    raise typer.Exit(code=0)


def _emit(proxy: Proxy, response: StreamResponse, callback: Optional[str]) -> None:
    response.set_status(proxy.get_http_status() or 200)
    if callback:
        proxy.emit_jsonp(callback, response)
    else:
        proxy.emit_raw(response)


if __name__ == "__main__":
    app()
