"""Unit tests for the loopback callback server."""

# pylint: disable=consider-using-with

from __future__ import annotations

import contextlib
import threading
import time

from urllib.error import HTTPError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

import pytest

from fedsignin.backends.callback_server import CallbackResult, CallbackServer


def _send_later(url: str, data: bytes | None = None) -> threading.Thread:
    """Hit ``url`` from a background thread after a short delay."""

    def send_request() -> None:
        time.sleep(0.1)
        with contextlib.suppress(Exception):
            urlopen(Request(url, data=data), timeout=5)  # noqa: S310

    t = threading.Thread(target=send_request, daemon=True)
    t.start()
    return t


class TestCallbackServer:
    """Tests for CallbackServer."""

    def test_start_and_stop(self) -> None:
        """Server starts, binds to a port, and stops cleanly."""
        server = CallbackServer()
        redirect_uri = server.start()

        assert redirect_uri.startswith("http://127.0.0.1:")
        assert redirect_uri.endswith("/callback")
        assert redirect_uri == server.redirect_uri

        server.stop()

    def test_wait_for_callback_timeout(self) -> None:
        """wait_for_callback returns None on timeout."""
        server = CallbackServer()
        server.start()
        try:
            assert server.wait_for_callback(timeout=0.2) is None
            assert not server.cancelled
        finally:
            server.stop()

    def test_get_callback(self) -> None:
        """A GET redirect is captured with its full URL."""
        server = CallbackServer()
        server.start()
        try:
            query = urlencode({"code": "abc", "state": "xyz"})
            _send_later(f"{server.redirect_uri}?{query}")

            result = server.wait_for_callback(timeout=5.0)
            assert result is not None
            assert result.params == {"code": "abc", "state": "xyz"}
            assert result.url == f"{server.redirect_uri}?{query}"
            assert result.post_body is None
            assert result.error is None
        finally:
            server.stop()

    def test_error_callback(self) -> None:
        """Provider errors are exposed on the result."""
        server = CallbackServer()
        server.start()
        try:
            query = urlencode({"error": "access_denied", "error_description": "User cancelled"})
            _send_later(f"{server.redirect_uri}?{query}")

            result = server.wait_for_callback(timeout=5.0)
            assert result is not None
            assert result.error == "access_denied"
            assert result.error_description == "User cancelled"
        finally:
            server.stop()

    def test_post_callback(self) -> None:
        """A form-posted SAML response is captured with its body."""
        server = CallbackServer()
        server.start()
        try:
            body = urlencode({"SAMLResponse": "PHNhbWw+", "RelayState": "r1"})
            _send_later(server.redirect_uri, data=body.encode())

            result = server.wait_for_callback(timeout=5.0)
            assert result is not None
            assert result.post_body == body
            assert result.params["SAMLResponse"] == "PHNhbWw+"
            assert result.params["RelayState"] == "r1"
        finally:
            server.stop()

    def test_cancel(self) -> None:
        """cancel() ends the wait and marks the server cancelled."""
        server = CallbackServer()
        server.start()
        timer = threading.Timer(0.1, server.cancel)
        timer.start()
        try:
            assert server.wait_for_callback(timeout=5.0) is None
            assert server.cancelled
        finally:
            timer.cancel()
            server.stop()

    def test_waiting_page(self) -> None:
        """Root path returns the waiting page."""
        server = CallbackServer()
        server.start()
        try:
            base = server.redirect_uri.rsplit("/", 1)[0]
            resp = urlopen(f"{base}/", timeout=5)  # noqa: S310
            content = resp.read().decode("utf-8")
            assert "Waiting for sign-in" in content
            assert resp.headers["X-Content-Type-Options"] == "nosniff"
        finally:
            server.stop()

    def test_unknown_path(self) -> None:
        """Unknown paths get a 404."""
        server = CallbackServer()
        server.start()
        try:
            base = server.redirect_uri.rsplit("/", 1)[0]
            with pytest.raises(HTTPError) as exc_info:
                urlopen(f"{base}/elsewhere", timeout=5)  # noqa: S310
            assert exc_info.value.code == 404
        finally:
            server.stop()

    def test_only_first_callback_captured(self) -> None:
        """Only the first callback result is captured."""
        server = CallbackServer()
        server.start()
        try:
            resp = urlopen(f"{server.redirect_uri}?code=first", timeout=5)  # noqa: S310
            assert "Sign-in complete" in resp.read().decode("utf-8")
            result = server.wait_for_callback(timeout=1.0)
            assert result is not None
            assert result.params["code"] == "first"
        finally:
            server.stop()


class TestCallbackResult:
    """Tests for CallbackResult."""

    def test_defaults(self) -> None:
        """A result without parameters has no error."""
        result = CallbackResult(url="http://127.0.0.1/callback")
        assert result.params == {}
        assert result.error is None
        assert result.error_description is None
