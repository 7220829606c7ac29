from __future__ import annotations

import asyncio
import socket
import threading
import time
from unittest.mock import MagicMock

import httpx
import pytest

from loopauth.errors import BrowserLaunchError, MalformedBaseURLError
from loopauth.flow import LoopbackFlowCoordinator, get_oauth_redirect_uri, start_oauth_flow
from loopauth.ports import PortAllocator
from loopauth.settings import FlowSettings
from loopauth.types import FlowFailure, FlowRequest, FlowSuccess, FlowTimeout
from tests.utils import can_bind, send_callback

BASE_URL = "https://provider.example/auth"


def _request(state: str = "xyz123") -> FlowRequest:
    return FlowRequest(auth_base_url=BASE_URL, client_id="abc", scope="read write", state=state)


def _settings(timeout_s: float = 5.0, grace_s: float = 1.0, focus_delay_s: float = 0.05) -> FlowSettings:
    return FlowSettings(timeout_s=timeout_s, grace_s=grace_s, focus_delay_s=focus_delay_s)


def _redirecting_launcher(**callback_params: str):
    """Launcher that plays the provider: redirect straight back to the loopback URI."""
    launched: list[str] = []

    def _launch(url: str) -> bool:
        launched.append(url)
        redirect_uri = httpx.URL(url).params["redirect_uri"]
        threading.Thread(target=send_callback, args=(redirect_uri,), kwargs=callback_params, daemon=True).start()
        return True

    return _launch, launched


@pytest.mark.asyncio
async def test_start_flow_success_returns_code_and_state() -> None:
    launcher, launched = _redirecting_launcher(code="AUTH123", state="xyz123")
    allocator = PortAllocator()
    coordinator = LoopbackFlowCoordinator(settings=_settings(), launcher=launcher, allocator=allocator)

    result = await coordinator.start_flow(_request())

    assert len(launched) == 1
    redirect_uri = httpx.URL(launched[0]).params["redirect_uri"]
    assert redirect_uri.startswith("http://127.0.0.1:")
    assert result == FlowSuccess(code="AUTH123", state="xyz123", redirect_uri=redirect_uri)
    assert allocator.reserved == frozenset()


@pytest.mark.asyncio
async def test_start_flow_builds_authorization_url() -> None:
    launcher, launched = _redirecting_launcher(code="AUTH123", state="xyz123")
    coordinator = LoopbackFlowCoordinator(settings=_settings(), launcher=launcher, allocator=PortAllocator())

    result = await coordinator.start_flow(_request())

    url = httpx.URL(launched[0])
    assert (url.scheme, url.host, url.path) == ("https", "provider.example", "/auth")
    assert url.params["client_id"] == "abc"
    assert url.params["response_type"] == "code"
    assert url.params["scope"] == "read write"
    assert url.params["access_type"] == "offline"
    assert url.params["prompt"] == "consent"
    assert url.params["state"] == "xyz123"
    assert url.params["redirect_uri"] == result.redirect_uri


@pytest.mark.asyncio
async def test_start_flow_provider_error_is_failure() -> None:
    launcher, _ = _redirecting_launcher(error="access_denied", state="xyz123")
    coordinator = LoopbackFlowCoordinator(settings=_settings(), launcher=launcher, allocator=PortAllocator())

    result = await coordinator.start_flow(_request())

    assert isinstance(result, FlowFailure)
    assert result.error == "access_denied"
    assert result.redirect_uri is not None


@pytest.mark.asyncio
async def test_start_flow_times_out_and_frees_port() -> None:
    launcher = MagicMock(return_value=True)
    allocator = PortAllocator()
    coordinator = LoopbackFlowCoordinator(
        settings=_settings(timeout_s=0.2), launcher=launcher, allocator=allocator
    )

    result = await coordinator.start_flow(_request())

    assert isinstance(result, FlowTimeout)
    launcher.assert_called_once()
    port = httpx.URL(result.redirect_uri).port
    assert port is not None
    assert can_bind(port)
    assert allocator.reserved == frozenset()


@pytest.mark.asyncio
async def test_start_flow_own_wait_expiring_cancels_listener() -> None:
    launcher = MagicMock(return_value=True)
    allocator = PortAllocator()
    coordinator = LoopbackFlowCoordinator(
        settings=_settings(timeout_s=5, grace_s=-4.8), launcher=launcher, allocator=allocator
    )
    started = time.monotonic()

    result = await coordinator.start_flow(_request())

    assert isinstance(result, FlowTimeout)
    assert time.monotonic() - started < 3
    launcher.assert_called_once()
    for _ in range(50):
        if not allocator.reserved:
            break
        await asyncio.sleep(0.05)
    assert allocator.reserved == frozenset()
    port = httpx.URL(result.redirect_uri).port
    assert port is not None and can_bind(port)


@pytest.mark.asyncio
async def test_start_flow_malformed_base_url_touches_nothing() -> None:
    launcher = MagicMock(return_value=True)
    allocator = MagicMock(spec=PortAllocator)
    allocator.host = "127.0.0.1"
    coordinator = LoopbackFlowCoordinator(settings=_settings(), launcher=launcher, allocator=allocator)

    with pytest.raises(MalformedBaseURLError):
        await coordinator.start_flow(
            FlowRequest(auth_base_url="not a url", client_id="abc", scope="read", state="xyz123")
        )

    allocator.allocate.assert_not_called()
    launcher.assert_not_called()


@pytest.mark.asyncio
async def test_start_flow_no_port_is_failure_without_browser() -> None:
    launcher = MagicMock(return_value=True)
    allocator = MagicMock(spec=PortAllocator)
    allocator.host = "127.0.0.1"
    allocator.allocate.return_value = None
    coordinator = LoopbackFlowCoordinator(settings=_settings(), launcher=launcher, allocator=allocator)

    result = await coordinator.start_flow(_request())

    assert result == FlowFailure(error="no available port", redirect_uri=None)
    launcher.assert_not_called()


@pytest.mark.asyncio
@pytest.mark.parametrize("outcome", ["false", "raise"])
async def test_start_flow_launch_failure_raises_and_cancels_listener(outcome: str) -> None:
    launched: list[str] = []

    def _launcher(url: str) -> bool:
        launched.append(url)
        if outcome == "raise":
            raise OSError("no display")
        return False

    allocator = PortAllocator()
    coordinator = LoopbackFlowCoordinator(settings=_settings(timeout_s=30), launcher=_launcher, allocator=allocator)

    with pytest.raises(BrowserLaunchError):
        await coordinator.start_flow(_request())

    port = httpx.URL(httpx.URL(launched[0]).params["redirect_uri"]).port
    for _ in range(50):
        if not allocator.reserved:
            break
        await asyncio.sleep(0.05)
    assert allocator.reserved == frozenset()
    assert port is not None and can_bind(port)


@pytest.mark.asyncio
async def test_start_flow_listener_start_failure_skips_browser() -> None:
    launcher = MagicMock(return_value=True)
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as holder:
        holder.bind(("127.0.0.1", 0))
        holder.listen(1)
        port = holder.getsockname()[1]
        allocator = MagicMock(spec=PortAllocator)
        allocator.host = "127.0.0.1"
        allocator.allocate.return_value = port
        coordinator = LoopbackFlowCoordinator(settings=_settings(), launcher=launcher, allocator=allocator)

        result = await coordinator.start_flow(_request())

    assert result == FlowFailure(error="server start failed", redirect_uri=f"http://127.0.0.1:{port}")
    launcher.assert_not_called()
    allocator.release.assert_called_once_with(port)


@pytest.mark.asyncio
async def test_start_flow_focuses_window_after_launch() -> None:
    launcher, _ = _redirecting_launcher(code="AUTH123")
    focused = threading.Event()
    coordinator = LoopbackFlowCoordinator(
        settings=_settings(), launcher=launcher, focus_window=focused.set, allocator=PortAllocator()
    )

    result = await coordinator.start_flow(_request())

    assert isinstance(result, FlowSuccess)
    assert await asyncio.to_thread(focused.wait, 2)


@pytest.mark.asyncio
async def test_start_flow_focus_errors_do_not_change_outcome() -> None:
    launcher, _ = _redirecting_launcher(code="AUTH123")
    called = threading.Event()

    def _focus() -> None:
        called.set()
        raise RuntimeError("no window")

    coordinator = LoopbackFlowCoordinator(
        settings=_settings(), launcher=launcher, focus_window=_focus, allocator=PortAllocator()
    )

    result = await coordinator.start_flow(_request())

    assert isinstance(result, FlowSuccess)
    assert await asyncio.to_thread(called.wait, 2)


@pytest.mark.asyncio
async def test_concurrent_flows_get_distinct_ports() -> None:
    launched: list[str] = []
    coordinator = LoopbackFlowCoordinator(
        settings=_settings(), launcher=lambda url: launched.append(url) or True, allocator=PortAllocator()
    )
    states = ["s0", "s1", "s2", "s3"]

    tasks = [asyncio.create_task(coordinator.start_flow(_request(state))) for state in states]
    for _ in range(100):
        if len(launched) == len(states):
            break
        await asyncio.sleep(0.02)

    redirect_uris = {httpx.URL(url).params["state"]: httpx.URL(url).params["redirect_uri"] for url in launched}
    assert len(set(redirect_uris.values())) == len(states)

    async with httpx.AsyncClient(trust_env=False, timeout=5) as client:
        for state, redirect_uri in redirect_uris.items():
            await client.get(redirect_uri, params={"code": f"code-{state}", "state": state})

    results = await asyncio.gather(*tasks)
    for state, result in zip(states, results):
        assert result == FlowSuccess(code=f"code-{state}", state=state, redirect_uri=redirect_uris[state])


@pytest.mark.asyncio
async def test_sequential_flows_reuse_one_coordinator() -> None:
    coordinator = LoopbackFlowCoordinator(
        settings=_settings(), launcher=_redirecting_launcher(code="AUTH123")[0], allocator=PortAllocator()
    )

    first = await coordinator.start_flow(_request("one"))
    second = await coordinator.start_flow(_request("two"))

    assert isinstance(first, FlowSuccess)
    assert isinstance(second, FlowSuccess)


@pytest.mark.asyncio
async def test_cancelling_the_caller_cancels_the_listener() -> None:
    allocator = PortAllocator()
    coordinator = LoopbackFlowCoordinator(
        settings=_settings(timeout_s=30), launcher=MagicMock(return_value=True), allocator=allocator
    )

    task = asyncio.create_task(coordinator.start_flow(_request()))
    for _ in range(100):
        if allocator.reserved:
            break
        await asyncio.sleep(0.01)
    await asyncio.sleep(0.1)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    for _ in range(50):
        if not allocator.reserved:
            break
        await asyncio.sleep(0.05)
    assert allocator.reserved == frozenset()


@pytest.mark.asyncio
async def test_start_oauth_flow_helper(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOOPAUTH_TIMEOUT_S", "0.2")
    monkeypatch.setenv("LOOPAUTH_GRACE_S", "1")

    result = await start_oauth_flow(BASE_URL, "abc", "read", "xyz123", launcher=MagicMock(return_value=True))

    assert isinstance(result, FlowTimeout)
    assert result.to_dict()["error"] == "OAuth timeout - no callback received"


def test_redirect_uri_template_is_host_only() -> None:
    assert get_oauth_redirect_uri() == "http://127.0.0.1"
    coordinator = LoopbackFlowCoordinator(settings=_settings(), allocator=PortAllocator())
    assert coordinator.redirect_uri_template() == "http://127.0.0.1"
