"""Loopback OAuth authorization code flow coordinator."""

from __future__ import annotations

import asyncio
import functools
import logging
import threading
import uuid
from typing import Any, Callable

from loopauth.authorize import build_authorize_url, loopback_redirect_uri, parse_base_url, redirect_uri_template
from loopauth.browser import BrowserLauncher, open_in_browser
from loopauth.callback_server import OAuthCallbackListener, OAuthCallbackListenerConfig
from loopauth.errors import BrowserLaunchError
from loopauth.log_utils import log_context, log_event
from loopauth.pages import FAILURE_HTML, SUCCESS_HTML
from loopauth.ports import LOOPBACK_HOST, PortAllocator, shared_allocator
from loopauth.settings import FlowSettings, load_flow_settings
from loopauth.types import FlowFailure, FlowRequest, FlowResult, FlowState, FlowTimeout

logger = logging.getLogger(__name__)

NO_AVAILABLE_PORT = "no available port"


class LoopbackFlowCoordinator:
    """Run OAuth authorization code flows through a loopback redirect.

    One instance can serve any number of sequential or concurrent flows; it
    holds no per-flow state. Each `start_flow` call owns its port, listener
    thread and cancel event until it returns.
    """

    def __init__(
        self,
        *,
        settings: FlowSettings | None = None,
        launcher: BrowserLauncher = open_in_browser,
        focus_window: Callable[[], Any] | None = None,
        allocator: PortAllocator | None = None,
        success_html: str = SUCCESS_HTML,
        failure_html: str = FAILURE_HTML,
    ) -> None:
        self.settings = settings or load_flow_settings()
        self._launcher = launcher
        self._focus_window = focus_window
        self._allocator = allocator or shared_allocator(LOOPBACK_HOST, self.settings.port_start, self.settings.port_end)
        self._success_html = success_html
        self._failure_html = failure_html

    def redirect_uri_template(self) -> str:
        return redirect_uri_template(self._allocator.host)

    async def start_flow(self, request: FlowRequest) -> FlowResult:
        """Drive one authorization attempt and return its single outcome.

        Raises `MalformedBaseURLError` before touching any port, and
        `BrowserLaunchError` when the authorization page could not be opened.
        Everything else (provider errors, listener failures, timeouts) comes
        back as a `FlowResult`.
        """
        with log_context(flow_id=uuid.uuid4().hex[:12]):
            self._enter(FlowState.IDLE)
            parse_base_url(request.auth_base_url)

            port = self._allocator.allocate()
            if port is None:
                return self._complete(FlowFailure(NO_AVAILABLE_PORT))

            with log_context(port=port):
                self._enter(FlowState.PORT_ALLOCATED)
                try:
                    redirect_uri = loopback_redirect_uri(port, self._allocator.host)
                    auth_url = build_authorize_url(
                        request.auth_base_url, request.client_id, request.scope, request.state, redirect_uri
                    )
                except Exception:
                    self._allocator.release(port)
                    raise
                return await self._await_callback(port, redirect_uri, auth_url)

    async def _await_callback(self, port: int, redirect_uri: str, auth_url: str) -> FlowResult:
        settings = self.settings
        listener = OAuthCallbackListener(
            OAuthCallbackListenerConfig(
                port=port,
                redirect_uri=redirect_uri,
                timeout_s=settings.timeout_s,
                success_html=self._success_html,
                failure_html=self._failure_html,
                listen_host=self._allocator.host,
            ),
            cancel_event=threading.Event(),
            on_close=functools.partial(self._allocator.release, port),
        )
        published = listener.start()
        if published.done():
            return self._complete(published.result())
        pending = asyncio.wrap_future(published)
        self._enter(FlowState.AWAITING_CALLBACK)

        try:
            await self._launch(auth_url)
            self._schedule_focus()
            result = await asyncio.wait_for(pending, timeout=settings.wait_s)
        except asyncio.TimeoutError:
            listener.cancel()
            log_event(logger, "flow.wait_expired", level=logging.WARNING, wait_s=settings.wait_s)
            result = FlowTimeout(redirect_uri)
        except BaseException:
            listener.cancel()
            pending.cancel()
            raise
        return self._complete(result)

    async def _launch(self, auth_url: str) -> None:
        try:
            opened = await asyncio.to_thread(self._launcher, auth_url)
        except Exception as exc:
            log_event(logger, "flow.launch_failed", level=logging.WARNING, error=str(exc))
            raise BrowserLaunchError(f"Failed to open browser: {exc}") from exc
        if not opened:
            log_event(logger, "flow.launch_failed", level=logging.WARNING, error="launcher returned false")
            raise BrowserLaunchError("Failed to open browser")
        log_event(logger, "flow.browser_opened")

    def _schedule_focus(self) -> None:
        focus_window = self._focus_window
        if focus_window is None:
            return
        timer = threading.Timer(self.settings.focus_delay_s, self._focus, args=(focus_window,))
        timer.daemon = True
        timer.start()

    def _focus(self, focus_window: Callable[[], Any]) -> None:
        try:
            focus_window()
        except Exception as exc:
            log_event(logger, "flow.focus_failed", level=logging.WARNING, error=str(exc))

    def _enter(self, state: FlowState) -> None:
        log_event(logger, "flow.state", level=logging.DEBUG, state=state.value)

    def _complete(self, result: FlowResult) -> FlowResult:
        self._enter(FlowState.COMPLETED)
        log_event(logger, "flow.completed", outcome=result.outcome, redirect_uri=result.redirect_uri)
        return result


async def start_oauth_flow(
    auth_base_url: str,
    client_id: str,
    scope: str,
    state: str,
    **kwargs: Any,
) -> FlowResult:
    """Run a single flow with a throwaway coordinator."""
    coordinator = LoopbackFlowCoordinator(**kwargs)
    return await coordinator.start_flow(
        FlowRequest(auth_base_url=auth_base_url, client_id=client_id, scope=scope, state=state)
    )


def get_oauth_redirect_uri() -> str:
    return redirect_uri_template()
