"""One-shot loopback HTTP listener that captures an OAuth redirect."""

from __future__ import annotations

import concurrent.futures
import contextvars
import logging
import threading
import time
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Callable

import httpx

from loopauth.log_utils import log_event
from loopauth.pages import FAILURE_HTML, SUCCESS_HTML
from loopauth.ports import LOOPBACK_HOST
from loopauth.types import FlowFailure, FlowResult, FlowSuccess, FlowTimeout

logger = logging.getLogger(__name__)

SERVER_START_FAILED = "server start failed"
CALLBACK_PARSE_FAILED = "callback URL parse failed"
FLOW_CANCELLED = "flow cancelled"
UNSPECIFIED_ERROR = "unspecified"

POLL_INTERVAL_S = 0.1
DRAIN_LIMIT = 8
DRAIN_BUDGET_S = 0.5
REQUEST_READ_TIMEOUT_S = 5.0
DRAIN_READ_TIMEOUT_S = 0.2


@dataclass(frozen=True)
class OAuthCallbackListenerConfig:
    port: int
    redirect_uri: str
    timeout_s: float
    success_html: str = SUCCESS_HTML
    failure_html: str = FAILURE_HTML
    listen_host: str = LOOPBACK_HOST


def parse_callback(target: str, config: OAuthCallbackListenerConfig) -> FlowResult:
    """Classify one redirect request target (path and query).

    Repeated query keys resolve to their last value. A `code` wins over an
    `error` sent alongside it; an `error` is carried as sent, even when empty.
    """
    try:
        url = httpx.URL(f"http://{config.listen_host}:{config.port}{target}")
    except httpx.InvalidURL as exc:
        log_event(logger, "callback.parse_failed", level=logging.WARNING, error=str(exc))
        return FlowFailure(CALLBACK_PARSE_FAILED, config.redirect_uri)

    params = dict(url.params.multi_items())
    code = params.get("code")
    if code is not None:
        return FlowSuccess(code=code, state=params.get("state"), redirect_uri=config.redirect_uri)
    error = params.get("error")
    return FlowFailure(UNSPECIFIED_ERROR if error is None else error, config.redirect_uri)


class _OneShotHTTPServer(HTTPServer):
    def __init__(self, config: OAuthCallbackListenerConfig) -> None:
        self.config = config
        self.captured: FlowResult | None = None
        self.connections = 0
        self.request_timeout = REQUEST_READ_TIMEOUT_S
        super().__init__((config.listen_host, config.port), _CallbackHandler)

    def process_request(self, request: Any, client_address: Any) -> None:
        self.connections += 1
        super().process_request(request, client_address)

    def handle_error(self, request: Any, client_address: Any) -> None:
        logger.warning("Error while handling OAuth callback from %s", client_address, exc_info=True)


class _CallbackHandler(BaseHTTPRequestHandler):
    server: _OneShotHTTPServer

    def setup(self) -> None:
        self.timeout = self.server.request_timeout
        super().setup()

    def do_GET(self) -> None:  # noqa: N802
        self._answer()

    def do_POST(self) -> None:  # noqa: N802
        length = self.headers.get("Content-Length", "")
        if length.isdigit():
            self.rfile.read(int(length))
        self._answer()

    def do_HEAD(self) -> None:  # noqa: N802
        self._answer(with_body=False)

    def _answer(self, *, with_body: bool = True) -> None:
        server = self.server
        if server.captured is None:
            server.captured = parse_callback(self.path, server.config)
            log_event(logger, "callback.received", outcome=server.captured.outcome)
        else:
            log_event(logger, "callback.extra_request_discarded", level=logging.DEBUG)

        captured = server.captured
        body = server.config.success_html if isinstance(captured, FlowSuccess) else server.config.failure_html
        self._send_html(body, with_body=with_body)

    def log_message(self, format: str, *args: object) -> None:  # noqa: A002
        logger.debug("callback http: " + format, *args)

    def _send_html(self, body: str, *, with_body: bool = True) -> None:
        payload = body.encode("utf-8")
        try:
            self.send_response(200)
            self.send_header("Content-Type", "text/html; charset=utf-8")
            self.send_header("Content-Length", str(len(payload)))
            self.send_header("Connection", "close")
            self.end_headers()
            if with_body:
                self.wfile.write(payload)
        except OSError as exc:
            log_event(logger, "callback.response_failed", level=logging.WARNING, error=str(exc))


class OAuthCallbackListener:
    """Serve exactly one OAuth redirect on a loopback port.

    `start()` binds the socket in the caller's thread and hands the wait to a
    daemon thread. The outcome is published once on `result`, after the
    browser has been answered and the socket closed.
    """

    def __init__(
        self,
        config: OAuthCallbackListenerConfig,
        *,
        cancel_event: threading.Event | None = None,
        on_close: Callable[[], None] | None = None,
    ) -> None:
        self._config = config
        self._cancel = cancel_event or threading.Event()
        self._on_close = on_close
        self._future: concurrent.futures.Future[FlowResult] = concurrent.futures.Future()
        self._thread: threading.Thread | None = None
        self._started = False

    @property
    def config(self) -> OAuthCallbackListenerConfig:
        return self._config

    @property
    def result(self) -> concurrent.futures.Future[FlowResult]:
        return self._future

    def start(self) -> concurrent.futures.Future[FlowResult]:
        if self._started:
            return self._future
        self._started = True

        config = self._config
        try:
            server = _OneShotHTTPServer(config)
        except OSError as exc:
            log_event(logger, "callback.start_failed", level=logging.WARNING, port=config.port, error=str(exc))
            self._close(None)
            self._publish(FlowFailure(SERVER_START_FAILED, config.redirect_uri))
            return self._future

        log_event(logger, "callback.listening", port=config.port, timeout_s=config.timeout_s)
        deadline = time.monotonic() + config.timeout_s
        context = contextvars.copy_context()
        thread = threading.Thread(
            target=context.run,
            args=(self._serve, server, deadline),
            name=f"loopauth-callback-{config.port}",
            daemon=True,
        )
        self._thread = thread
        thread.start()
        return self._future

    def wait(self, timeout: float | None = None) -> FlowResult:
        """Block until the result is published; for callers without an event loop."""
        return self._future.result(timeout=timeout)

    def cancel(self) -> None:
        self._cancel.set()

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def _serve(self, server: _OneShotHTTPServer, deadline: float) -> None:
        try:
            result = self._wait(server, deadline)
        except Exception as exc:
            logger.warning("OAuth callback server failed", exc_info=True)
            result = FlowFailure(f"server error: {exc}", self._config.redirect_uri)
        finally:
            self._close(server)
        self._publish(result)

    def _wait(self, server: _OneShotHTTPServer, deadline: float) -> FlowResult:
        redirect_uri = self._config.redirect_uri
        while True:
            if self._cancel.is_set():
                log_event(logger, "callback.cancelled")
                return FlowFailure(FLOW_CANCELLED, redirect_uri)
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                log_event(logger, "callback.timeout", timeout_s=self._config.timeout_s)
                return FlowTimeout(redirect_uri)

            server.timeout = min(remaining, POLL_INTERVAL_S)
            server.handle_request()
            if server.captured is not None:
                self._drain(server)
                return server.captured

    def _drain(self, server: _OneShotHTTPServer) -> None:
        # Connections already queued (browser retry, preconnect) get the same page.
        # An idle one only costs DRAIN_READ_TIMEOUT_S before it is dropped.
        server.timeout = 0
        server.request_timeout = DRAIN_READ_TIMEOUT_S
        stop_at = time.monotonic() + DRAIN_BUDGET_S
        for _ in range(DRAIN_LIMIT):
            before = server.connections
            server.handle_request()
            if server.connections == before or time.monotonic() >= stop_at:
                return

    def _close(self, server: _OneShotHTTPServer | None) -> None:
        if server is not None:
            server.server_close()
        if self._on_close is not None:
            self._on_close()

    def _publish(self, result: FlowResult) -> None:
        try:
            self._future.set_result(result)
        except concurrent.futures.InvalidStateError:
            log_event(logger, "callback.result_discarded", level=logging.DEBUG, outcome=result.outcome)
            return
        log_event(logger, "callback.published", outcome=result.outcome)
