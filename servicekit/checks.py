"""Ready-made health checks.

A check is a callable taking no arguments that returns normally when the
checked thing is healthy and raises otherwise.
"""

from __future__ import annotations

import concurrent.futures
import socket
import urllib.error
import urllib.request
from collections.abc import Callable

__all__ = ["Check", "CheckError", "dns_probe_check", "http_get_check"]

Check = Callable[[], None]


class CheckError(Exception):
    """Raised by a health check that failed."""


def dns_probe_check(host: str, timeout: float) -> Check:
    """Return a check that fails unless ``host`` resolves within ``timeout`` seconds."""

    def check() -> None:
        pool = concurrent.futures.ThreadPoolExecutor(max_workers=1)
        future = pool.submit(socket.getaddrinfo, host, None)
        pool.shutdown(wait=False)
        try:
            infos = future.result(timeout=timeout)
        except concurrent.futures.TimeoutError:
            raise CheckError(f"lookup {host}: timed out") from None
        except OSError as exc:
            raise CheckError(f"lookup {host}: {exc}") from exc
        if not {info[4][0] for info in infos}:
            raise CheckError("could not resolve host")

    return check


class _NoRedirect(urllib.request.HTTPRedirectHandler):
    """Report a redirect response as it is instead of following it."""

    def redirect_request(self, req, fp, code, msg, headers, newurl):  # noqa: D102
        raise urllib.error.HTTPError(req.full_url, code, msg, headers, fp)


def http_get_check(url: str, timeout: float) -> Check:
    """Return a check that GETs ``url`` and fails unless it answers 200 OK.

    Redirects are never followed.
    """
    opener = urllib.request.build_opener(_NoRedirect)

    def check() -> None:
        try:
            with opener.open(url, timeout=timeout) as response:
                status, reason = response.status, response.reason
        except urllib.error.HTTPError as exc:
            status, reason = exc.code, exc.reason
            exc.close()
        except (urllib.error.URLError, OSError) as exc:
            raise CheckError(f"GET {url}: {exc}") from exc
        if status != 200:
            raise CheckError(f"{status}: {status} {reason}")

    return check