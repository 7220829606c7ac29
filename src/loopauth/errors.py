"""Errors raised to callers of the loopback flow."""

from __future__ import annotations


class LoopbackOAuthError(RuntimeError):
    """Base class for invocation errors that are not a flow outcome."""


class MalformedBaseURLError(LoopbackOAuthError, ValueError):
    """Raised when the authorization endpoint is not an absolute URL."""


class BrowserLaunchError(LoopbackOAuthError):
    """Raised when the authorization URL could not be opened."""
