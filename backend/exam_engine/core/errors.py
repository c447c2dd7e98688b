from enum import Enum


class ErrorKind(str, Enum):
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    VALIDATION_ERROR = "validation_error"


class EngineError(Exception):
    """Base error of the session engine. `message` is safe to show to the candidate."""

    kind: ErrorKind = ErrorKind.NETWORK_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class RateLimitedError(EngineError):
    kind = ErrorKind.RATE_LIMITED

    def __init__(
        self,
        message: str = "Rate limit exceeded. Please wait before submitting more requests.",
        reset_at: int | None = None,
    ) -> None:
        super().__init__(message)
        self.reset_at = reset_at


class JudgeTimeoutError(EngineError):
    kind = ErrorKind.TIMEOUT

    def __init__(self, message: str = "Code execution timed out.") -> None:
        super().__init__(message)


class NetworkError(EngineError):
    kind = ErrorKind.NETWORK_ERROR

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ValidationError(EngineError):
    kind = ErrorKind.VALIDATION_ERROR


class ExecutionBusyError(ValidationError):
    def __init__(self, question_id: str) -> None:
        super().__init__(f"An execution is already in progress for question {question_id}")
        self.question_id = question_id


def describe_error(exc: Exception) -> str:
    if isinstance(exc, EngineError):
        return exc.message
    return f"Unexpected error: {exc}"
