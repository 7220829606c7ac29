"""Authorization URL and loopback redirect URI helpers."""

from __future__ import annotations

import httpx

from loopauth.errors import MalformedBaseURLError
from loopauth.ports import LOOPBACK_HOST


def redirect_uri_template(host: str = LOOPBACK_HOST) -> str:
    """Scheme and host of the redirect URI; the port is only known per flow."""
    return f"http://{host}"


def loopback_redirect_uri(port: int, host: str = LOOPBACK_HOST) -> str:
    return f"{redirect_uri_template(host)}:{port}"


def parse_base_url(base: str) -> httpx.URL:
    try:
        url = httpx.URL(base)
    except (httpx.InvalidURL, TypeError) as exc:
        raise MalformedBaseURLError(f"Invalid authorization URL {base!r}: {exc}") from exc
    if not url.scheme or not url.host:
        raise MalformedBaseURLError(f"Authorization URL must be absolute: {base!r}")
    return url


def build_authorize_url(base: str, client_id: str, scope: str, state: str, redirect_uri: str) -> str:
    """Append the authorization code parameters to `base`.

    Query parameters already present on `base` are kept ahead of the new ones.
    Empty values are still sent.
    """
    url = parse_base_url(base)
    params = [
        *url.params.multi_items(),
        ("client_id", client_id),
        ("redirect_uri", redirect_uri),
        ("response_type", "code"),
        ("scope", scope),
        ("access_type", "offline"),
        ("prompt", "consent"),
        ("state", state),
    ]
    return str(url.copy_with(params=httpx.QueryParams(params)))
