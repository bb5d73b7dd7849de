"""
Exception hierarchy for the quiz attempt engine.

Local errors (encoding, validation, session state) are raised before any
network call is made. Gateway errors wrap failures reported by the remote
attempt service and carry a ``retryable`` flag so callers can offer a
"try again" affordance.
"""
from typing import Any, Optional


class AttemptEngineError(Exception):
    """Base exception for attempt engine errors."""
    pass


class EncodingError(AttemptEngineError):
    """Raised when an answer cannot be mapped to a valid wire response."""
    pass


class UnsupportedQuestionType(EncodingError):
    """Raised when a question type has no registered codec."""

    def __init__(self, question_type: Any):
        self.question_type = question_type
        super().__init__(f"Unsupported question type: {question_type}")


class ValidationError(AttemptEngineError):
    """Raised when a pre-flight check blocks a submission."""
    pass


class InvalidSessionStateError(AttemptEngineError):
    """Raised when the session is in an invalid state for the requested operation."""
    pass


class UnknownQuestionError(AttemptEngineError, KeyError):
    """Raised when an answer operation references a question that was never registered."""

    def __init__(self, question_id: Any):
        self.question_id = question_id
        super().__init__(f"Unknown question: {question_id}")

    def __str__(self) -> str:
        return f"Unknown question: {self.question_id}"


class GatewayError(AttemptEngineError):
    """Base exception for failures reported by the remote attempt service."""

    retryable = False

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class NetworkError(GatewayError):
    """Raised when the service could not be reached (connection failure, timeout)."""

    retryable = True


class TransientServerError(NetworkError):
    """Raised for 5xx responses."""
    pass


class StateConflictError(GatewayError):
    """Raised when the server reports an attempt status inconsistent with the request."""
    pass


class BadRequestError(GatewayError):
    """Raised when the server rejects a request as invalid."""
    pass


class AuthenticationError(GatewayError):
    """Raised when the request is not authenticated."""
    pass


class PermissionDeniedError(GatewayError):
    """Raised when the user may not operate on the attempt."""
    pass


class AttemptNotFoundError(GatewayError):
    """Raised when the attempt (or quiz) does not exist on the server."""
    pass


def user_message(error: Exception, operation: str) -> str:
    """
    Generate a user-friendly message for an error raised during an operation.

    Args:
        error: The exception that occurred
        operation: Description of the operation that failed

    Returns:
        Message suitable for showing next to the action that failed
    """
    if isinstance(error, UnsupportedQuestionType):
        return "❌ This question type is not supported. Your answer cannot be submitted."

    elif isinstance(error, EncodingError):
        return f"❌ Your answer could not be prepared for submission: {error}"

    elif isinstance(error, ValidationError):
        return f"⚠️ {error}"

    elif isinstance(error, InvalidSessionStateError):
        return f"❌ This action is not available right now: {error}"

    elif isinstance(error, StateConflictError):
        return "❌ The attempt changed on the server. Reload it to see its current state."

    elif isinstance(error, AuthenticationError):
        return "❌ Authentication required. Please sign in again."

    elif isinstance(error, PermissionDeniedError):
        return "❌ You do not have permission to access this attempt."

    elif isinstance(error, AttemptNotFoundError):
        return "❌ Attempt not found. It may have been deleted."

    elif isinstance(error, TransientServerError):
        return "❌ Server error occurred. Your answers are kept locally, please try again."

    elif isinstance(error, NetworkError):
        return "❌ Connection problem. Your answers are kept locally, please try again."

    elif isinstance(error, BadRequestError):
        return f"❌ The server rejected the request: {error}"

    else:
        return f"❌ An unexpected error occurred during {operation}. Please try again."
