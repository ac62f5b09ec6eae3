"""Stream events and the closed error taxonomy surfaced to callers.

A completion request produces zero or more ``ContentDelta`` events followed
by exactly one terminal event, ``Completed`` or ``Failed``.
"""

from dataclasses import dataclass
from enum import Enum

import httpx


class ErrorCode(str, Enum):
    INVALID_CONFIGURATION = "invalid_configuration"
    NETWORK_ERROR = "network_error"
    INVALID_RESPONSE = "invalid_response"
    API_ERROR = "api_error"
    DECODING_ERROR = "decoding_error"


@dataclass(frozen=True)
class ErrorKind:
    code: ErrorCode
    message: str | None = None
    cause: BaseException | None = None

    @classmethod
    def invalid_configuration(cls) -> "ErrorKind":
        return cls(ErrorCode.INVALID_CONFIGURATION)

    @classmethod
    def network_error(cls, cause: BaseException) -> "ErrorKind":
        return cls(ErrorCode.NETWORK_ERROR, cause=cause)

    @classmethod
    def invalid_response(cls) -> "ErrorKind":
        return cls(ErrorCode.INVALID_RESPONSE)

    @classmethod
    def api_error(cls, message: str) -> "ErrorKind":
        return cls(ErrorCode.API_ERROR, message=message)

    @classmethod
    def decoding_error(cls) -> "ErrorKind":
        return cls(ErrorCode.DECODING_ERROR)

    def user_message(self) -> str:
        """Short text for the presentation layer. No URLs, keys or tracebacks."""
        if self.code == ErrorCode.INVALID_CONFIGURATION:
            return "AI is not configured. Please check your API key and settings."
        if self.code == ErrorCode.NETWORK_ERROR:
            if isinstance(self.cause, httpx.TimeoutException):
                return "Network error: the AI service timed out."
            return "Network error: could not reach the AI service."
        if self.code == ErrorCode.INVALID_RESPONSE:
            return "Invalid response from AI service."
        if self.code == ErrorCode.API_ERROR:
            return f"API error: {self.message}"
        return "Failed to decode response."


class GatewayError(Exception):
    """Raised by helpers that return a value instead of an event stream."""

    def __init__(self, error: ErrorKind):
        super().__init__(error.user_message())
        self.error = error


# ---------------------------------------------------------------------------
# Stream events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ContentDelta:
    text: str

    @property
    def is_terminal(self) -> bool:
        return False


@dataclass(frozen=True)
class Completed:
    @property
    def is_terminal(self) -> bool:
        return True


@dataclass(frozen=True)
class Failed:
    error: ErrorKind

    @property
    def is_terminal(self) -> bool:
        return True


StreamEvent = ContentDelta | Completed | Failed
