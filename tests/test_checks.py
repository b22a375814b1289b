import socket
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from unittest import mock

import pytest

from servicekit.checks import CheckError, dns_probe_check, http_get_check

_FAKE_INFO = [(socket.AF_INET, socket.SOCK_STREAM, 6, "", ("192.0.2.10", 0))]


def test_dns_probe_check_resolves():
    with mock.patch("socket.getaddrinfo", return_value=_FAKE_INFO) as lookup:
        result = dns_probe_check("example.com", 5)()
    assert result is None
    lookup.assert_called_once_with("example.com", None)


def test_dns_probe_check_localhost():
    assert dns_probe_check("localhost", 5)() is None


def test_dns_probe_check_lookup_failure():
    with mock.patch("socket.getaddrinfo", side_effect=socket.gaierror("no such host")):
        with pytest.raises(CheckError, match="never.ever.where.com"):
            dns_probe_check("never.ever.where.com", 5)()


def test_dns_probe_check_no_addresses():
    with mock.patch("socket.getaddrinfo", return_value=[]):
        with pytest.raises(CheckError, match="could not resolve host"):
            dns_probe_check("example.com", 5)()


def test_dns_probe_check_timeout():
    def slow(*args):
        time.sleep(1)
        return _FAKE_INFO

    with mock.patch("socket.getaddrinfo", side_effect=slow):
        with pytest.raises(CheckError, match="timed out"):
            dns_probe_check("example.com", 0.05)()


class _Handler(BaseHTTPRequestHandler):
    def do_GET(self):
        if self.path == "/get":
            self._reply(200)
        elif self.path == "/redirect":
            self.send_response(302)
            self.send_header("Location", "/get")
            self.send_header("Content-Length", "0")
            self.end_headers()
        elif self.path == "/created":
            self._reply(201)
        elif self.path == "/slow":
            time.sleep(1)
            self._reply(200)
        else:
            self._reply(404)

    def _reply(self, code):
        body = b"{}"
        self.send_response(code)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        pass


@pytest.fixture
def base_url():
    server = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
    server.daemon_threads = True
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{server.server_address[1]}"
    finally:
        server.shutdown()
        server.server_close()


def test_http_get_check_ok(base_url):
    assert http_get_check(base_url + "/get", 5)() is None


def test_http_get_check_redirect_is_not_followed(base_url):
    with pytest.raises(CheckError, match="^302: 302"):
        http_get_check(base_url + "/redirect", 5)()


def test_http_get_check_not_found(base_url):
    with pytest.raises(CheckError, match="^404: 404 Not Found$"):
        http_get_check(base_url + "/nonexistent", 5)()


def test_http_get_check_other_success_code_fails(base_url):
    with pytest.raises(CheckError, match="^201: 201"):
        http_get_check(base_url + "/created", 5)()


def test_http_get_check_timeout(base_url):
    with pytest.raises(CheckError):
        http_get_check(base_url + "/slow", 0.2)()


def test_http_get_check_connection_refused():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
    with pytest.raises(CheckError, match="GET"):
        http_get_check(f"http://127.0.0.1:{port}/get", 2)()