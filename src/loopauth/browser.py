"""Browser launchers used to show the authorization page."""

from __future__ import annotations

import logging
import os
import webbrowser
from typing import Callable

from rich.console import Console

from loopauth.log_utils import log_event

logger = logging.getLogger(__name__)

BrowserLauncher = Callable[[str], bool]


def open_in_browser(url: str) -> bool:
    if os.getenv("LOOPAUTH_NO_BROWSER"):
        log_event(logger, "browser.disabled")
        return False
    try:
        return webbrowser.open(url)
    except Exception as exc:
        log_event(logger, "browser.open_failed", level=logging.WARNING, error=str(exc))
        return False


def print_url_launcher(console: Console) -> BrowserLauncher:
    """Launcher that asks the user to open the URL themselves."""

    def _launch(url: str) -> bool:
        console.print("Open this URL in your browser to continue:", style="cyan")
        console.print(url, markup=False, highlight=False, soft_wrap=True)
        return True

    return _launch
