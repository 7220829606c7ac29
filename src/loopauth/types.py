"""Flow request and result types."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

TIMEOUT_MESSAGE = "OAuth timeout - no callback received"


class FlowState(str, Enum):
    IDLE = "idle"
    PORT_ALLOCATED = "port_allocated"
    AWAITING_CALLBACK = "awaiting_callback"
    COMPLETED = "completed"


@dataclass(frozen=True)
class FlowRequest:
    auth_base_url: str
    client_id: str
    scope: str
    state: str


@dataclass(frozen=True)
class FlowSuccess:
    code: str
    state: str | None
    redirect_uri: str

    outcome = "success"

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "state": self.state, "error": None, "redirect_uri": self.redirect_uri}


@dataclass(frozen=True)
class FlowFailure:
    error: str
    redirect_uri: str | None = None

    outcome = "failure"

    def to_dict(self) -> dict[str, Any]:
        return {"code": None, "state": None, "error": self.error, "redirect_uri": self.redirect_uri}


@dataclass(frozen=True)
class FlowTimeout:
    redirect_uri: str

    outcome = "timeout"

    def to_dict(self) -> dict[str, Any]:
        return {"code": None, "state": None, "error": TIMEOUT_MESSAGE, "redirect_uri": self.redirect_uri}


FlowResult = Union[FlowSuccess, FlowFailure, FlowTimeout]
