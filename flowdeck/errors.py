"""Exceptions raised by the flowdeck client."""

from __future__ import annotations

from typing import Any, Optional

STREAM_DISCONNECTED_MESSAGE = "Event stream disconnected"


class FlowdeckError(RuntimeError):
    """Base class for client errors."""


class ApiError(FlowdeckError):
    """Raised when a request fails or the backend reports an error.

    ``status_code`` is ``None`` for transport level failures where no
    response was received.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.body = body

    def __str__(self) -> str:
        return self.message


class StreamDisconnected(FlowdeckError):
    """Raised by an event stream iterator when its connection fails."""

    def __init__(self, message: str = STREAM_DISCONNECTED_MESSAGE) -> None:
        super().__init__(message)
