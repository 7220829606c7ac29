"""Loopback OAuth authorization code capture for native applications."""

from loopauth.authorize import build_authorize_url, loopback_redirect_uri, redirect_uri_template
from loopauth.callback_server import OAuthCallbackListener, OAuthCallbackListenerConfig
from loopauth.errors import BrowserLaunchError, LoopbackOAuthError, MalformedBaseURLError
from loopauth.flow import LoopbackFlowCoordinator, get_oauth_redirect_uri, start_oauth_flow
from loopauth.ports import PortAllocator, find_available_port
from loopauth.settings import FlowSettings, load_flow_settings
from loopauth.types import FlowFailure, FlowRequest, FlowResult, FlowState, FlowSuccess, FlowTimeout

__all__ = [
    "BrowserLaunchError",
    "FlowFailure",
    "FlowRequest",
    "FlowResult",
    "FlowSettings",
    "FlowState",
    "FlowSuccess",
    "FlowTimeout",
    "LoopbackFlowCoordinator",
    "LoopbackOAuthError",
    "MalformedBaseURLError",
    "OAuthCallbackListener",
    "OAuthCallbackListenerConfig",
    "PortAllocator",
    "build_authorize_url",
    "find_available_port",
    "get_oauth_redirect_uri",
    "load_flow_settings",
    "loopback_redirect_uri",
    "redirect_uri_template",
    "start_oauth_flow",
]
