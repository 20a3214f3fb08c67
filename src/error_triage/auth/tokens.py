import logging
import os
import subprocess
import threading
from abc import ABC, abstractmethod
from collections.abc import Sequence
from datetime import datetime, timedelta, timezone

import google.auth.exceptions
from google.auth.transport.requests import Request
from google.oauth2 import service_account

from error_triage.errors import AuthError

logger = logging.getLogger(__name__)

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"
CREDENTIALS_ENV = "GOOGLE_APPLICATION_CREDENTIALS"
GCLOUD_TOKEN_COMMAND = ("gcloud", "auth", "application-default", "print-access-token")

_LOGIN_HINT = "Please authenticate first: gcloud auth application-default login"


class TokenProvider(ABC):
    """
    Produces a currently-valid bearer token for the Error Reporting API.

    Subclasses implement ``_fetch_token``; the base class keeps the last token
    and only fetches a new one once it is within ``expiry_margin`` of expiring.
    """

    def __init__(self, expiry_margin: timedelta = timedelta(minutes=5)) -> None:
        self.expiry_margin = expiry_margin
        self._token: str | None = None
        self._expiry: datetime | None = None
        self._lock = threading.Lock()

    def get_access_token(self) -> str:
        with self._lock:
            if self._token and not self._is_expiring():
                return self._token
            token, expiry = self._fetch_token()
            if not token:
                raise AuthError(f"Credential source returned an empty access token. {_LOGIN_HINT}")
            self._token, self._expiry = token, expiry
            return token

    def _is_expiring(self) -> bool:
        if self._expiry is None:
            return False
        return datetime.now(timezone.utc) + self.expiry_margin >= self._expiry

    @abstractmethod
    def _fetch_token(self) -> tuple[str, datetime | None]:
        """Return ``(token, expiry)``; expiry is None when the token does not expire."""


class StaticTokenProvider(TokenProvider):
    """Always returns the same token. Useful for tests and pre-issued tokens."""

    def __init__(self, token: str) -> None:
        super().__init__()
        self.token = token

    def _fetch_token(self) -> tuple[str, datetime | None]:
        return self.token, None


class CredentialFileProvider(TokenProvider):
    """Exchanges a service-account key file for a short-lived bearer token."""

    def __init__(
        self,
        path: str | None = None,
        *,
        scopes: Sequence[str] = (CLOUD_PLATFORM_SCOPE,),
        expiry_margin: timedelta = timedelta(minutes=5),
    ) -> None:
        super().__init__(expiry_margin)
        self.path = path or os.environ.get(CREDENTIALS_ENV)
        self.scopes = tuple(scopes)

    def _fetch_token(self) -> tuple[str, datetime | None]:
        if not self.path:
            raise AuthError(f"No service-account key configured; set {CREDENTIALS_ENV}")

        try:
            credentials = service_account.Credentials.from_service_account_file(
                self.path, scopes=list(self.scopes)
            )
            credentials.refresh(Request())
        except FileNotFoundError as e:
            raise AuthError(f"Service-account key not found: {self.path}") from e
        except (ValueError, google.auth.exceptions.GoogleAuthError) as e:
            raise AuthError(f"Could not obtain token from {self.path}: {e}") from e

        logger.debug("Refreshed service-account token for %s", self.path)
        expiry = credentials.expiry
        # google-auth reports expiry as naive UTC
        if expiry is not None and expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=timezone.utc)
        return credentials.token, expiry


class AmbientCliProvider(TokenProvider):
    """Asks a pre-authenticated CLI helper (gcloud by default) to print a token."""

    def __init__(
        self,
        command: Sequence[str] = GCLOUD_TOKEN_COMMAND,
        *,
        timeout: float = 30.0,
        token_lifetime: timedelta = timedelta(minutes=55),
        expiry_margin: timedelta = timedelta(minutes=5),
    ) -> None:
        super().__init__(expiry_margin)
        self.command = tuple(command)
        self.timeout = timeout
        self.token_lifetime = token_lifetime

    def _fetch_token(self) -> tuple[str, datetime | None]:
        logger.debug("Fetching access token via %s", self.command[0])
        try:
            result = subprocess.run(
                list(self.command),
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            raise AuthError(f"{self.command[0]} is not installed or not on PATH") from e
        except subprocess.TimeoutExpired as e:
            raise AuthError(f"{self.command[0]} did not print a token within {self.timeout}s") from e

        if result.returncode != 0:
            raise AuthError(
                f"Failed to get access token (rc={result.returncode}): "
                f"{result.stderr.strip()}. {_LOGIN_HINT}"
            )

        # The helper does not report an expiry; assume the usual one-hour lifetime
        return result.stdout.strip(), datetime.now(timezone.utc) + self.token_lifetime


def default_token_provider(
    credentials_path: str | None = None,
    access_token: str | None = None,
) -> TokenProvider:
    """Pick a provider: explicit token, then key file, then the gcloud helper."""
    if access_token:
        return StaticTokenProvider(access_token)
    if credentials_path or os.environ.get(CREDENTIALS_ENV):
        return CredentialFileProvider(credentials_path)
    return AmbientCliProvider()
