from error_triage.auth.tokens import (
    AmbientCliProvider,
    CredentialFileProvider,
    StaticTokenProvider,
    TokenProvider,
    default_token_provider,
)
from error_triage.errors import (
    ApiError,
    AuthError,
    ErrorTriageError,
    NetworkError,
    ParseError,
    ValidationError,
)
from error_triage.ranking.ranker import ErrorGroupRanker, rank
from error_triage.reporting.client import ErrorReportingClient
from error_triage.reporting.models import (
    ErrorEvent,
    ErrorGroup,
    Priority,
    QueryWindow,
    RankedGroup,
    StackFrame,
    Trend,
)

__all__ = [
    "AmbientCliProvider",
    "ApiError",
    "AuthError",
    "CredentialFileProvider",
    "ErrorEvent",
    "ErrorGroup",
    "ErrorGroupRanker",
    "ErrorReportingClient",
    "ErrorTriageError",
    "NetworkError",
    "ParseError",
    "Priority",
    "QueryWindow",
    "RankedGroup",
    "StackFrame",
    "StaticTokenProvider",
    "TokenProvider",
    "Trend",
    "ValidationError",
    "default_token_provider",
    "rank",
]
