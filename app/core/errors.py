"""Error taxonomy shared by the chat API and the services behind it.

Every error that crosses the HTTP boundary is a ``ChatError``. The ``code``
is ``<kind>:<surface>`` (for example ``forbidden:chat``) and the message is a
fixed, user-facing string; internal causes stay in the server log.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    BAD_REQUEST = "bad_request"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    UPSTREAM_FAILURE = "upstream_failure"
    PERSISTENCE_FAILURE = "persistence_failure"
    OFFLINE_OR_UNEXPECTED = "offline"
    GATEWAY_TIMEOUT = "timeout"


_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.BAD_REQUEST: 400,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.UPSTREAM_FAILURE: 502,
    ErrorKind.PERSISTENCE_FAILURE: 500,
    ErrorKind.OFFLINE_OR_UNEXPECTED: 503,
    ErrorKind.GATEWAY_TIMEOUT: 504,
}

_MESSAGE_BY_KIND: dict[ErrorKind, str] = {
    ErrorKind.BAD_REQUEST: "The request couldn't be processed. Please check your input and try again.",
    ErrorKind.UNAUTHORIZED: "You need to sign in before continuing.",
    ErrorKind.FORBIDDEN: "You don't have access to this resource.",
    ErrorKind.NOT_FOUND: "The requested resource was not found.",
    ErrorKind.UPSTREAM_FAILURE: "An upstream service failed while processing your request.",
    ErrorKind.PERSISTENCE_FAILURE: "Your data couldn't be saved. Please try again later.",
    ErrorKind.OFFLINE_OR_UNEXPECTED: "We're having trouble processing your request. Please try again later.",
    ErrorKind.GATEWAY_TIMEOUT: "The request timed out.",
}


class ChatError(Exception):
    """Boundary-crossing error mapped to one of the fixed taxonomy kinds."""

    def __init__(self, kind: ErrorKind, surface: str = "api", message: str | None = None) -> None:
        self.kind = kind
        self.surface = surface
        self.message = message or _MESSAGE_BY_KIND[kind]
        super().__init__(self.code)

    @property
    def code(self) -> str:
        return f"{self.kind.value}:{self.surface}"

    @property
    def status_code(self) -> int:
        return _STATUS_BY_KIND[self.kind]

    def to_payload(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


class ChannelClosed(RuntimeError):
    """Raised when an event is emitted after the run reached a terminal state."""


class NoAssistantMessage(RuntimeError):
    """Raised when a finished generation produced no assistant-authored message."""


class InvalidStateTransition(RuntimeError):
    """Raised when the generation driver is driven through an illegal transition."""
