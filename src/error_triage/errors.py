class ErrorTriageError(Exception):
    """Base class for every error raised by error_triage."""


class AuthError(ErrorTriageError):
    """No usable credential: nothing configured, expired, or the helper failed."""


class ValidationError(ErrorTriageError):
    """Invalid caller input, raised before any request is sent."""


class ParseError(ErrorTriageError):
    """The API answered with a body that is not a JSON object."""


class NetworkError(ErrorTriageError):
    """The request never produced an HTTP response (timeout, refused, reset)."""


class ApiError(ErrorTriageError):
    """Non-2xx response or an ``error`` envelope in the response body."""

    def __init__(self, code: int, message: str, status: str | None = None) -> None:
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message
        self.status = status

    @property
    def is_rate_limit(self) -> bool:
        return self.code == 429 or self.status == "RESOURCE_EXHAUSTED"
