import base64
import json
import socket
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

PNG_BODY = bytes(range(256)) * 8  # 2048 bytes
BIG_BODY = b"\x89PNG" + b"x" * 19996
SVG_BODY = '<svg xmlns="http://www.w3.org/2000/svg"><text>50% "done" é</text></svg>'.encode("utf-8")


class _Handler(BaseHTTPRequestHandler):
    def log_message(self, format, *args):  # noqa: A002 - stdlib signature
        pass

    def _send(self, status, content_type, body, *, length=True, extra=None):
        self.send_response(status)
        if content_type:
            self.send_header("Content-Type", content_type)
        if length:
            self.send_header("Content-Length", str(len(body)))
        for name, value in (extra or {}).items():
            self.send_header(name, value)
        self.end_headers()
        self.wfile.write(body)

    def do_GET(self):
        path = self.path.split("?", 1)[0]
        if path == "/image.png":
            self._send(200, "image/png", PNG_BODY)
        elif path == "/big.png":
            self._send(200, "image/png", BIG_BODY)
        elif path == "/unsized.png":
            self._send(200, "image/png", BIG_BODY, length=False)
        elif path == "/missing.png":
            self._send(404, "image/png", b"not here")
        elif path == "/page.html":
            self._send(200, "text/html; charset=utf-8", b"<html></html>")
        elif path == "/untyped":
            self._send(200, None, b"????")
        elif path == "/drawing.svg":
            self._send(200, "image/svg+xml; charset=utf-8", SVG_BODY)
        elif path == "/echo-headers":
            seen = {
                "referer": self.headers.get("Referer"),
                "user_agent": self.headers.get("User-Agent"),
                "authorization": self.headers.get("Authorization"),
            }
            self._send(200, "image/png", json.dumps(seen).encode("utf-8"))
        elif path.startswith("/redirect/"):
            remaining = int(path.rsplit("/", 1)[1])
            target = f"/redirect/{remaining - 1}" if remaining > 0 else "/image.png"
            self._send(302, "text/html", b"", extra={"Location": target})
        elif path == "/bad-redirect":
            self._send(302, "text/html", b"", extra={"Location": "ftp://example.com/file.png"})
        elif path == "/no-location":
            self._send(302, "image/png", b"")
        elif path == "/slow.png":
            time.sleep(3)
            self._send(200, "image/png", PNG_BODY)
        else:
            self._send(404, "text/plain", b"unknown route")


@pytest.fixture
def http_server():
    server = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
    server.daemon_threads = True
    server.handle_error = lambda request, client_address: None
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{server.server_address[1]}"
    finally:
        server.shutdown()
        server.server_close()


def basic_auth(user, password):
    token = base64.b64encode(f"{user}:{password}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"


DRIP_HEAD = b"HTTP/1.0 200 OK\r\nContent-Type: image/png\r\n\r\nx"


def _drip(connection):
    try:
        request = b""
        while b"\r\n\r\n" not in request:
            chunk = connection.recv(1024)
            if not chunk:
                return
            request += chunk
        path = request.split(b" ", 2)[1]
        if path == b"/drip-head":
            for byte in DRIP_HEAD:
                connection.sendall(bytes([byte]))
                time.sleep(0.2)
        else:
            connection.sendall(b"HTTP/1.0 200 OK\r\nContent-Type: image/png\r\n\r\n")
            for _ in range(40):
                connection.sendall(b"x")
                time.sleep(0.5)
    except OSError:
        pass
    finally:
        connection.close()


@pytest.fixture
def drip_server():
    """Raw server that trickles one byte at a time: the head on /drip-head, the body elsewhere."""
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    listener.bind(("127.0.0.1", 0))
    listener.listen(8)
    listener.settimeout(0.2)
    stop = threading.Event()

    def serve():
        while not stop.is_set():
            try:
                connection, _ = listener.accept()
            except socket.timeout:
                continue
            except OSError:
                return
            connection.settimeout(None)
            threading.Thread(target=_drip, args=(connection,), daemon=True).start()

    thread = threading.Thread(target=serve, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{listener.getsockname()[1]}"
    finally:
        stop.set()
        thread.join(timeout=2)
        listener.close()
