import base64
import re

from typer.testing import CliRunner

from conftest import PNG_BODY
from canvasproxy.cli import _parse_type, app, exit_code_for_error
from canvasproxy.workflows.errors import ConfigurationError, HTTPStatusError, TransportError, UrlNotAllowedError

runner = CliRunner()


def _get(*args):
    return runner.invoke(app, ["get", *args, "--temp", "memory", "--transport", "stream", "--port", "*"])


def test_minimal_help():
    result = runner.invoke(app, [])
    assert result.exit_code == 0
    assert "canvasproxy get <url>" in result.output


def test_help_full_lists_env_vars():
    result = runner.invoke(app, ["--help-full"])
    assert result.exit_code == 0
    assert "CANVASPROXY_ALLOWED_URLS" in result.output


def test_get_writes_raw_body_to_stdout(http_server):
    result = _get(f"{http_server}/image.png")
    assert result.exit_code == 0
    assert result.stdout_bytes == PNG_BODY


def test_get_jsonp_to_file(http_server, tmp_path):
    out = tmp_path / "nested" / "out.js"
    result = _get(f"{http_server}/image.png", "--callback", "cb", "--out", str(out))
    assert result.exit_code == 0
    match = re.fullmatch(rb'cb\("data:image/png;base64,(.*)"\);', out.read_bytes())
    assert base64.b64decode(match.group(1)) == PNG_BODY


def test_get_rejects_bad_callback_before_fetching():
    result = _get("http://127.0.0.1:9/a.png", "--callback", "1bad")
    assert result.exit_code == 2


def test_get_url_not_allowed(http_server):
    result = _get(f"{http_server}/image.png", "--allow", "https://cdn.example.com/")
    assert result.exit_code == 2
    assert "URL not allowed" in result.output


def test_get_rejects_port_outside_default_list(http_server):
    port = http_server.rsplit(":", 1)[1]
    result = runner.invoke(app, ["get", f"{http_server}/image.png", "--temp", "memory", "--transport", "stream"])
    assert result.exit_code == 2
    assert f'"{port}" port is not allowed' in result.output


def test_get_http_error_exit_code(http_server):
    result = _get(f"{http_server}/missing.png")
    assert result.exit_code == 3
    assert "404" in result.output


def test_get_extra_type(http_server):
    blocked = _get(f"{http_server}/page.html")
    assert blocked.exit_code == 2
    allowed = _get(f"{http_server}/page.html", "--type", "text/html:text")
    assert allowed.exit_code == 0
    assert allowed.stdout_bytes == b"<html></html>"


def test_get_size_cap(http_server):
    result = _get(f"{http_server}/big.png", "--max-size", "1000")
    assert result.exit_code == 3
    assert "Maximum download size" in result.output


def test_get_unknown_transport():
    result = runner.invoke(app, ["get", "http://127.0.0.1:9/a.png", "--transport", "carrier-pigeon"])
    assert result.exit_code == 2


def test_clean_command(tmp_path):
    result = runner.invoke(app, ["clean", str(tmp_path), "--dry-run"])
    assert result.exit_code == 0


def test_parse_type():
    assert _parse_type("image/bmp") == ("image/bmp", True)
    assert _parse_type("image/svg+xml:text") == ("image/svg+xml", False)
    assert _parse_type("image/x-icon:binary") == ("image/x-icon", True)


def test_exit_code_for_error():
    assert exit_code_for_error(UrlNotAllowedError("x")) == 2
    assert exit_code_for_error(TransportError("x")) == 3
    assert exit_code_for_error(HTTPStatusError("x", http_status=404)) == 3
    assert exit_code_for_error(ConfigurationError("x")) == 4
