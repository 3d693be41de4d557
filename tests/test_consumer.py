import base64
import json
import re

from conftest import PNG_BODY, SVG_BODY
from canvasproxy.consumer import forward_request_headers, handle_request, status_for_error
from canvasproxy.core.keys import K_REFERER, K_USER_AGENT
from canvasproxy.workflows.errors import ErrorCode, HTTPStatusError, TransportError, UrlNotAllowedError
from canvasproxy.workflows.proxy import Proxy
from canvasproxy.workflows.proxy_config import FetchConfiguration
from canvasproxy.workflows.serializer import BufferedResponse
from canvasproxy.workflows.stream_transport import StreamTransport


def _proxy(**config_kwargs):
    config_kwargs.setdefault("allowed_ports", [])
    return Proxy(FetchConfiguration(**config_kwargs), transports=[StreamTransport], temporary="memory")


def test_missing_url_is_bad_request():
    response = BufferedResponse()
    assert handle_request({}, {}, response) == 400
    assert response.status == 400
    assert response.body == b'No such parameter "url"'
    assert response.header("Cache-Control") == "no-cache"


def test_missing_url_with_callback_reports_through_jsonp():
    response = BufferedResponse()
    assert handle_request({"callback": "cb"}, {}, response) == 200
    assert response.header("Content-Type") == "application/javascript"
    match = re.fullmatch(rb"cb\((.*)\);", response.body)
    assert json.loads(match.group(1)) == 'error: canvasproxy: No such parameter "url"'


def test_raw_relay(http_server):
    response = BufferedResponse()
    status = handle_request({"url": f"{http_server}/image.png"}, {}, response, proxy=_proxy())
    assert status == 200
    assert response.status == 200
    assert response.body == PNG_BODY
    assert response.header("Access-Control-Allow-Origin") == "*"


def test_jsonp_relay_binary_and_text(http_server):
    proxy = _proxy()
    response = BufferedResponse()
    handle_request({"url": f"{http_server}/image.png", "callback": "cb"}, {}, response, proxy=proxy)
    match = re.fullmatch(rb'cb\("data:image/png;base64,(.*)"\);', response.body)
    assert base64.b64decode(match.group(1)) == PNG_BODY

    response = BufferedResponse()
    handle_request({"url": f"{http_server}/drawing.svg", "callback": "cb"}, {}, response, proxy=proxy)
    assert response.body.startswith(b'cb("data:image/svg+xml;charset=utf-8,')
    assert b"%25" in response.body
    assert SVG_BODY not in response.body
    proxy.close()


def test_upstream_status_is_passed_through(http_server):
    response = BufferedResponse()
    status = handle_request({"url": f"{http_server}/missing.png"}, {}, response, proxy=_proxy())
    assert status == 404
    assert response.body == b"HTTP error: 404 Not Found"


def test_disallowed_content_type_is_unsupported_media(http_server):
    response = BufferedResponse()
    assert handle_request({"url": f"{http_server}/page.html"}, {}, response, proxy=_proxy()) == 415


def test_disallowed_url_is_forbidden_and_error_jsonp_keeps_script_alive():
    proxy = _proxy(allowed_urls=["https://cdn.example.com/"])
    response = BufferedResponse()
    status = handle_request({"url": "https://evil.test/a.png", "callback": "cb"}, {}, response, proxy=proxy)
    assert status == 200
    assert response.body.startswith(b'cb("error: canvasproxy: URL not allowed')


def test_invalid_callback_is_plain_text_error(http_server):
    response = BufferedResponse()
    status = handle_request(
        {"url": f"{http_server}/image.png", "callback": "alert(1)"}, {}, response, proxy=_proxy()
    )
    assert status == 400
    assert response.header("Content-Type").startswith("text/plain")


def test_request_headers_are_forwarded_once(http_server):
    proxy = _proxy()
    headers = {"referer": "https://site.test/page", "User-Agent": "Browser/1.0"}
    forward_request_headers(proxy, headers)
    assert proxy.get_options(K_REFERER) == "https://site.test/page"
    assert proxy.get_options(K_USER_AGENT) == "Browser/1.0"
    generation = proxy.config.generation
    forward_request_headers(proxy, headers)
    assert proxy.config.generation == generation

    response = BufferedResponse()
    handle_request({"url": f"{http_server}/echo-headers"}, headers, response, proxy=proxy)
    assert json.loads(response.body)["referer"] == "https://site.test/page"


def test_status_for_error():
    assert status_for_error(UrlNotAllowedError("no")) == 403
    assert status_for_error(HTTPStatusError("x", http_status=503)) == 503
    assert status_for_error(HTTPStatusError("x", http_status=302)) == 502
    assert status_for_error(TransportError("x", ErrorCode.TIMEOUT)) == 504
    assert status_for_error(TransportError("x", ErrorCode.TLS)) == 502


def test_port_outside_allow_list_is_forbidden(http_server):
    proxy = Proxy(FetchConfiguration(), transports=[StreamTransport], temporary="memory")
    response = BufferedResponse()
    assert handle_request({"url": f"{http_server}/image.png"}, {}, response, proxy=proxy) == 403
    assert b"port is not allowed" in response.body
