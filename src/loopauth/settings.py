"""Runtime settings for loopback flows, read from the environment and `.env`."""

from __future__ import annotations

import contextlib
import os
from dataclasses import dataclass

from dotenv import load_dotenv

from loopauth.paths import env_file

DEFAULT_TIMEOUT_S = 300.0
DEFAULT_GRACE_S = 2.0
DEFAULT_FOCUS_DELAY_S = 0.5
DYNAMIC_PORT_START = 49152
DYNAMIC_PORT_END = 65535


@dataclass(frozen=True)
class FlowSettings:
    """Timing and port range for one coordinator.

    `timeout_s` is the only deadline: the listener stops waiting after it and
    the coordinator waits `timeout_s + grace_s` for the listener to publish.
    """

    timeout_s: float = DEFAULT_TIMEOUT_S
    grace_s: float = DEFAULT_GRACE_S
    focus_delay_s: float = DEFAULT_FOCUS_DELAY_S
    port_start: int = DYNAMIC_PORT_START
    port_end: int = DYNAMIC_PORT_END

    @property
    def wait_s(self) -> float:
        return self.timeout_s + self.grace_s


def load_runtime_env() -> None:
    load_dotenv(env_file(), override=False)
    load_dotenv()


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    with contextlib.suppress(ValueError):
        parsed = float(value)
        if parsed > 0:
            return parsed
    return default


def _env_port(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    with contextlib.suppress(ValueError):
        parsed = int(value)
        if 0 < parsed <= 65535:
            return parsed
    return default


def load_flow_settings() -> FlowSettings:
    load_runtime_env()
    port_start = _env_port("LOOPAUTH_PORT_START", DYNAMIC_PORT_START)
    port_end = _env_port("LOOPAUTH_PORT_END", DYNAMIC_PORT_END)
    if port_end <= port_start:
        port_start, port_end = DYNAMIC_PORT_START, DYNAMIC_PORT_END
    return FlowSettings(
        timeout_s=_env_float("LOOPAUTH_TIMEOUT_S", DEFAULT_TIMEOUT_S),
        grace_s=_env_float("LOOPAUTH_GRACE_S", DEFAULT_GRACE_S),
        focus_delay_s=_env_float("LOOPAUTH_FOCUS_DELAY_S", DEFAULT_FOCUS_DELAY_S),
        port_start=port_start,
        port_end=port_end,
    )
