from __future__ import annotations

import socket
from typing import Any

import httpx

from loopauth.callback_server import OAuthCallbackListener, OAuthCallbackListenerConfig
from loopauth.ports import find_available_port
from loopauth.authorize import loopback_redirect_uri


def send_callback(redirect_uri: str, **params: Any) -> httpx.Response:
    """Play the browser: follow the provider redirect back to the listener."""
    return httpx.get(redirect_uri, params=params, timeout=5, trust_env=False)


def make_listener(timeout_s: float = 5.0, **kwargs: Any) -> OAuthCallbackListener:
    port = find_available_port()
    assert port is not None
    config = OAuthCallbackListenerConfig(port=port, redirect_uri=loopback_redirect_uri(port), timeout_s=timeout_s)
    return OAuthCallbackListener(config, **kwargs)


def can_bind(port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind(("127.0.0.1", port))
        except OSError:
            return False
    return True
