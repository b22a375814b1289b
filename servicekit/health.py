"""WSGI endpoints for liveness and readiness checks."""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from http import HTTPStatus
from typing import Any

__all__ = ["ChecksHandler", "ContextChecksHandler"]

_NOT_FOUND_BODY = b"404 page not found\n"


def _normalize(path: str) -> str:
    if not path:
        raise ValueError("check path must not be empty")
    return path if path.startswith("/") else "/" + path


class ChecksHandler:
    """Serves a liveness and a readiness endpoint as a WSGI application.

    A check is a callable taking no arguments that raises when unhealthy.
    A GET on an endpoint answers 200 when all its checks pass and 503 when
    any of them raises. With ``fail_fast`` set, the first failing check ends
    the request.
    """

    def __init__(self, health_path: str, ready_path: str, *, fail_fast: bool = False) -> None:
        self.liveness_path = _normalize(health_path)
        self.readiness_path = _normalize(ready_path)
        if self.liveness_path == self.readiness_path:
            raise ValueError(f"multiple registrations for {self.liveness_path}")
        self.fail_fast = fail_fast
        self._liveness: dict[str, Callable[..., Any] | None] = {}
        self._readiness: dict[str, Callable[..., Any] | None] = {}
        self._lock = threading.RLock()

    def add_liveness(self, name: str, check: Callable[..., Any] | None) -> None:
        """Register or replace a liveness check."""
        with self._lock:
            self._liveness[name] = check

    def add_readiness(self, name: str, check: Callable[..., Any] | None) -> None:
        """Register or replace a readiness check."""
        with self._lock:
            self._readiness[name] = check

    def _run(self, check: Callable[..., Any], environ: dict[str, Any]) -> None:
        check()

    def _run_all(self, checks: Iterable[tuple[str, Callable[..., Any] | None]], environ: dict[str, Any]) -> HTTPStatus:
        status = HTTPStatus.OK
        for _name, check in checks:
            if check is None:
                continue
            try:
                self._run(check, environ)
            except Exception:
                status = HTTPStatus.SERVICE_UNAVAILABLE
                if self.fail_fast:
                    return status
        return status

    def handle(self, method: str, path: str, environ: dict[str, Any] | None = None) -> HTTPStatus:
        """Answer a request for ``path`` and return its HTTP status."""
        if path == self.readiness_path:
            checks = self._readiness
        elif path == self.liveness_path:
            checks = self._liveness
        else:
            return HTTPStatus.NOT_FOUND
        if method != "GET":
            return HTTPStatus.METHOD_NOT_ALLOWED
        with self._lock:
            return self._run_all(list(checks.items()), environ if environ is not None else {})

    def __call__(self, environ: dict[str, Any], start_response: Callable[..., Any]) -> list[bytes]:
        method = environ.get("REQUEST_METHOD", "GET")
        path = environ.get("PATH_INFO", "") or "/"
        status = self.handle(method, path, environ)
        if status is HTTPStatus.NOT_FOUND:
            body = _NOT_FOUND_BODY
        elif status is HTTPStatus.METHOD_NOT_ALLOWED:
            body = f"{status.phrase}\n".encode()
        else:
            body = b""
        headers = [("Content-Length", str(len(body)))]
        if body:
            headers += [
                ("Content-Type", "text/plain; charset=utf-8"),
                ("X-Content-Type-Options", "nosniff"),
            ]
        start_response(f"{status.value} {status.phrase}", headers)
        return [body]


class ContextChecksHandler(ChecksHandler):
    """A checks handler whose checks receive the WSGI environ of the request."""

    def _run(self, check: Callable[..., Any], environ: dict[str, Any]) -> None:
        check(environ)