"""Loopback HTTP listener that captures the identity provider's redirect.

The handshake's continue URI points at this server. When the browser
lands on ``/callback`` (as a GET redirect, or as a form POST for SAML
HTTP-POST bindings) the full request URL and body are recorded for the
backend to hand to the identity service, and the browser gets a small
confirmation page.
"""

# pylint: disable=logging-too-many-args

# pylint: disable=C0103,W0212

from __future__ import annotations

import html
import logging
import threading

from dataclasses import dataclass, field
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any
from urllib.parse import parse_qs, urlparse


logger = logging.getLogger("fedsignin.backends")

_PAGE_STYLE = """
  body { font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, sans-serif;
         display: flex; align-items: center; justify-content: center;
         height: 100vh; margin: 0; background: #f0f2f5; color: #1a1a2e; }
  .card { text-align: center; padding: 2rem 3rem; background: white;
          border-radius: 12px; box-shadow: 0 2px 12px rgba(0,0,0,.08); }
  h1 { font-size: 1.5rem; margin-bottom: 0.5rem; }
  h1.failed { color: #cc0000; }
  p { color: #666; }
"""

_PAGE = """<!DOCTYPE html>
<html>
<head><title>{title}</title><style>{style}</style></head>
<body><div class="card">
  <h1 class="{css}">{title}</h1>
  <p>{body}</p>
</div></body></html>"""

#: Maximum accepted POST body (SAML responses are a few KB).
MAX_BODY_BYTES = 256 * 1024


def _render(title: str, body: str, css: str = "") -> str:
    return _PAGE.format(title=title, body=html.escape(body, quote=True), css=css, style=_PAGE_STYLE)


@dataclass
class CallbackResult:
    """What the browser delivered to the loopback listener.

    Attributes
    ----------
    url : str
        Absolute callback URL, including the query string.
    params : dict
        Query (and form) parameters, first value per key.
    post_body : str or None
        Raw form body for POST callbacks.
    """

    url: str
    params: dict[str, str] = field(default_factory=dict)
    post_body: str | None = None

    @property
    def error(self) -> str | None:
        """Provider error code, if the redirect carried one."""
        return self.params.get("error")

    @property
    def error_description(self) -> str | None:
        """Human-readable provider error, if any."""
        return self.params.get("error_description")


class CallbackServer:
    """One-shot loopback server for the handshake redirect.

    Parameters
    ----------
    host : str
        Bind address (default ``"127.0.0.1"``).
    port : int
        Port number (``0`` for auto-assign).
    """

    def __init__(self, host: str = "127.0.0.1", port: int = 0) -> None:
        """Initialize the callback server."""
        self._host = host
        self._port = port
        self._server: HTTPServer | None = None
        self._thread: threading.Thread | None = None
        self._result: CallbackResult | None = None
        self._done = threading.Event()
        self._cancelled = False
        self._bound_port = 0

    @property
    def redirect_uri(self) -> str:
        """The continue URI to register with the handshake."""
        return f"http://{self._host}:{self._bound_port}/callback"

    @property
    def cancelled(self) -> bool:
        """Whether ``cancel()`` ended the wait."""
        return self._cancelled

    def start(self) -> str:
        """Bind and serve on a daemon thread.

        Returns
        -------
        str
            The redirect URI.
        """
        owner = self

        class _Handler(BaseHTTPRequestHandler):
            def do_GET(self) -> None:
                """Handle redirect callbacks and the landing page."""
                parsed = urlparse(self.path)
                if parsed.path == "/callback":
                    params = {k: v[0] for k, v in parse_qs(parsed.query).items()}
                    self._capture(CallbackResult(url=owner._absolute(self.path), params=params))
                elif parsed.path == "/":
                    self._send_html(_render("Waiting for sign-in", "Finish signing in in the browser window."))
                else:
                    self.send_error(404)

            def do_POST(self) -> None:
                """Handle form-posted callbacks."""
                parsed = urlparse(self.path)
                if parsed.path != "/callback":
                    self.send_error(404)
                    return
                length = int(self.headers.get("Content-Length") or 0)
                if length > MAX_BODY_BYTES:
                    self.send_error(413)
                    return
                body = self.rfile.read(length).decode("utf-8", errors="replace")
                params = {k: v[0] for k, v in parse_qs(parsed.query).items()}
                params.update({k: v[0] for k, v in parse_qs(body).items()})
                self._capture(CallbackResult(url=owner._absolute(self.path), params=params, post_body=body))

            def _capture(self, result: CallbackResult) -> None:
                # First callback wins; later hits only get a page.
                if owner._done.is_set():
                    self._send_html(_render("Sign-in complete", "You can close this window."))
                    return
                owner._result = result
                if result.error:
                    message = result.error_description or result.error
                    self._send_html(_render("Sign-in failed", message, css="failed"))
                else:
                    self._send_html(_render("Sign-in complete", "You can close this window."))
                owner._done.set()
                threading.Thread(target=owner._shutdown, daemon=True).start()

            def _send_html(self, content: str) -> None:
                encoded = content.encode("utf-8")
                self.send_response(200)
                self.send_header("Content-Type", "text/html; charset=utf-8")
                self.send_header("Content-Length", str(len(encoded)))
                self.send_header("Cache-Control", "no-store")
                self.send_header(
                    "Content-Security-Policy",
                    "default-src 'none'; style-src 'unsafe-inline'",
                )
                self.send_header("X-Content-Type-Options", "nosniff")
                self.end_headers()
                self.wfile.write(encoded)

            def log_message(self, *args: Any) -> None:
                """Route http.server access logs to the package logger."""
                if args:
                    logger.debug("Callback server: %s", args[0] % args[1:])

        self._server = HTTPServer((self._host, self._port), _Handler)
        self._bound_port = self._server.server_address[1]
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()
        logger.debug("Callback server listening on %s", self.redirect_uri)
        return self.redirect_uri

    def wait_for_callback(self, timeout: float = 300.0) -> CallbackResult | None:
        """Block until the redirect arrives, ``cancel()`` is called or time runs out.

        Returns
        -------
        CallbackResult or None
            The captured redirect, or None on timeout or cancellation
            (check ``cancelled`` to tell them apart).
        """
        if self._done.wait(timeout=timeout):
            return self._result
        return None

    def cancel(self) -> None:
        """Abandon the wait; ``wait_for_callback`` returns None."""
        if not self._done.is_set():
            self._cancelled = True
            self._done.set()
        self.stop()

    def stop(self) -> None:
        """Shut the server down."""
        self._shutdown()
        if self._thread and self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=5)
        self._thread = None

    def _shutdown(self) -> None:
        server = self._server
        if server is not None:
            self._server = None
            server.shutdown()
            server.server_close()

    def _absolute(self, path: str) -> str:
        return f"http://{self._host}:{self._bound_port}{path}"
