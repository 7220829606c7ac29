"""Command-line host for a single loopback OAuth flow."""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import secrets
import sys

from rich.console import Console
from rich.table import Table
from rich.text import Text

from loopauth.browser import BrowserLauncher, open_in_browser, print_url_launcher
from loopauth.errors import LoopbackOAuthError
from loopauth.flow import LoopbackFlowCoordinator
from loopauth.log_utils import build_log_config, configure_logging, log_event
from loopauth.settings import load_flow_settings
from loopauth.types import FlowFailure, FlowRequest, FlowResult, FlowSuccess

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_TIMEOUT = 3
EXIT_INVOCATION_ERROR = 4


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="loopauth",
        description="Run an OAuth authorization code flow through a loopback redirect.",
    )
    parser.add_argument("auth_url", help="Provider authorization endpoint, e.g. https://accounts.example/o/oauth2/auth")
    parser.add_argument("--client-id", required=True, help="OAuth client identifier")
    parser.add_argument("--scope", default="", help="Space separated scopes to request")
    parser.add_argument("--state", help="Anti-forgery state to send (random when omitted)")
    parser.add_argument("--timeout", type=float, help="Seconds to wait for the redirect (LOOPAUTH_TIMEOUT_S)")
    parser.add_argument("--no-browser", action="store_true", help="Print the URL instead of opening a browser")
    parser.add_argument("--json", action="store_true", help="Print the result as JSON")
    return parser


def _exit_code(result: FlowResult) -> int:
    if isinstance(result, FlowSuccess):
        return EXIT_SUCCESS
    if isinstance(result, FlowFailure):
        return EXIT_FAILURE
    return EXIT_TIMEOUT


def render_result(console: Console, result: FlowResult, *, as_json: bool = False) -> None:
    if as_json:
        console.print_json(data={"outcome": result.outcome, **result.to_dict()})
        return

    style = {"success": "green", "failure": "red", "timeout": "yellow"}[result.outcome]
    console.print(Text(f"OAuth flow {result.outcome}", style=f"bold {style}"))
    table = Table(show_header=False, box=None)
    for key, value in result.to_dict().items():
        if value is not None:
            table.add_row(key, str(value))
    console.print(table)


async def main(argv: list[str], *, console: Console | None = None) -> int:
    args = build_parser().parse_args(argv[1:])
    console = console or Console()
    configure_logging(build_log_config(log_file_name="loopauth.log"))

    settings = load_flow_settings()
    if args.timeout is not None and args.timeout > 0:
        settings = dataclasses.replace(settings, timeout_s=args.timeout)

    launcher: BrowserLauncher = print_url_launcher(console) if args.no_browser else open_in_browser
    coordinator = LoopbackFlowCoordinator(settings=settings, launcher=launcher)
    request = FlowRequest(
        auth_base_url=args.auth_url,
        client_id=args.client_id,
        scope=args.scope,
        state=args.state or secrets.token_urlsafe(24),
    )

    try:
        result = await coordinator.start_flow(request)
    except LoopbackOAuthError as exc:
        log_event(logger, "cli.invocation_error", level=logging.ERROR, error=str(exc))
        console.print(Text(f"[error] {exc}", style="red"))
        return EXIT_INVOCATION_ERROR

    render_result(console, result, as_json=args.json)
    return _exit_code(result)


def main_entry() -> None:
    try:
        raise SystemExit(asyncio.run(main(sys.argv)))
    except KeyboardInterrupt:
        raise SystemExit(130)
