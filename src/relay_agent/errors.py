"""Error taxonomy.

LLM errors are retryable by category, tool errors are converted into
error-flagged tool results, run errors end the run.
"""

from enum import Enum


class ErrorCategory(Enum):
    """Classification used by the retry wrapper."""

    NETWORK = "network"
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    SERVER = "server"
    API = "api"
    AUTH = "auth"
    INVALID_RESPONSE = "invalid_response"
    UNKNOWN = "unknown"


class AgentError(Exception):
    """Base class for all errors raised by relay_agent."""


class ConfigError(AgentError):
    """Invalid or missing configuration."""


# =============================================================================
# LLM errors
# =============================================================================


class LLMError(AgentError):
    """Failure at the model call boundary."""

    category: ErrorCategory = ErrorCategory.UNKNOWN


class NetworkError(LLMError):
    """Connection-level failure talking to the backend."""

    category = ErrorCategory.NETWORK


class LLMTimeoutError(NetworkError):
    """The backend did not answer in time."""

    category = ErrorCategory.TIMEOUT


class ApiError(LLMError):
    """The backend answered with an error status."""

    category = ErrorCategory.API

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        if status_code is not None and status_code >= 500:
            self.category = ErrorCategory.SERVER


class RateLimitError(ApiError):
    """The backend throttled the request."""

    category = ErrorCategory.RATE_LIMIT

    def __init__(self, message: str, status_code: int | None = 429) -> None:
        super().__init__(message, status_code)
        self.category = ErrorCategory.RATE_LIMIT


class AuthenticationError(ApiError):
    """Credentials missing or rejected."""

    category = ErrorCategory.AUTH

    def __init__(self, message: str, status_code: int | None = 401) -> None:
        super().__init__(message, status_code)
        self.category = ErrorCategory.AUTH


class InvalidResponseError(LLMError):
    """The backend response could not be interpreted."""

    category = ErrorCategory.INVALID_RESPONSE


class StreamFailedError(LLMError):
    """The backend reported an error in the middle of a stream."""

    def __init__(self, message: str, retryable: bool = True) -> None:
        super().__init__(message)
        self.category = ErrorCategory.SERVER if retryable else ErrorCategory.API


# =============================================================================
# Tool errors
# =============================================================================


class ToolError(AgentError):
    """Failure raised by a tool. Never fatal to a run."""


class InvalidArgumentsError(ToolError):
    """Arguments did not match the tool's schema or could not be parsed."""


class ExecutionFailedError(ToolError):
    """The tool ran but failed."""


class ToolNotFoundError(ToolError):
    """No tool is registered under the requested name."""


class BridgeError(AgentError):
    """Connection or protocol failure in an external tool bridge."""


# =============================================================================
# Run errors
# =============================================================================


class InvariantViolation(AgentError):
    """An internal invariant of the message model or session was broken."""


class RunCancelled(AgentError):
    """The run was cancelled through its cancellation signal."""
