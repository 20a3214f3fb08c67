import subprocess
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import google.auth.exceptions
import pytest

from error_triage.auth.tokens import (
    AmbientCliProvider,
    CredentialFileProvider,
    StaticTokenProvider,
    TokenProvider,
    default_token_provider,
)
from error_triage.errors import AuthError


def _completed(stdout="ya29.token\n", returncode=0, stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


class TestStaticTokenProvider:
    def test_returns_token(self):
        assert StaticTokenProvider("abc").get_access_token() == "abc"

    def test_empty_token_is_auth_error(self):
        with pytest.raises(AuthError):
            StaticTokenProvider("").get_access_token()


class TestCaching:
    class _Provider(TokenProvider):
        def __init__(self, lifetimes):
            super().__init__(expiry_margin=timedelta(minutes=5))
            self.lifetimes = list(lifetimes)
            self.calls = 0

        def _fetch_token(self):
            self.calls += 1
            return f"token-{self.calls}", datetime.now(timezone.utc) + self.lifetimes.pop(0)

    def test_reuses_fresh_token(self):
        provider = self._Provider([timedelta(hours=1)])
        assert provider.get_access_token() == "token-1"
        assert provider.get_access_token() == "token-1"
        assert provider.calls == 1

    def test_refreshes_within_expiry_margin(self):
        provider = self._Provider([timedelta(minutes=2), timedelta(hours=1)])
        assert provider.get_access_token() == "token-1"
        assert provider.get_access_token() == "token-2"
        assert provider.calls == 2


class TestAmbientCliProvider:
    def test_runs_gcloud(self):
        with patch("error_triage.auth.tokens.subprocess.run", return_value=_completed()) as run:
            token = AmbientCliProvider().get_access_token()
        assert token == "ya29.token"
        args = run.call_args.args[0]
        assert args == ["gcloud", "auth", "application-default", "print-access-token"]

    def test_missing_binary(self):
        with patch("error_triage.auth.tokens.subprocess.run", side_effect=FileNotFoundError):
            with pytest.raises(AuthError, match="not installed"):
                AmbientCliProvider().get_access_token()

    def test_nonzero_exit(self):
        result = _completed(stdout="", returncode=1, stderr="Reauthentication required")
        with patch("error_triage.auth.tokens.subprocess.run", return_value=result):
            with pytest.raises(AuthError, match="gcloud auth application-default login"):
                AmbientCliProvider().get_access_token()

    def test_empty_output(self):
        with patch("error_triage.auth.tokens.subprocess.run", return_value=_completed(stdout="  \n")):
            with pytest.raises(AuthError):
                AmbientCliProvider().get_access_token()

    def test_timeout(self):
        error = subprocess.TimeoutExpired(cmd="gcloud", timeout=1)
        with patch("error_triage.auth.tokens.subprocess.run", side_effect=error):
            with pytest.raises(AuthError):
                AmbientCliProvider(timeout=1).get_access_token()

    def test_caches_between_calls(self):
        with patch("error_triage.auth.tokens.subprocess.run", return_value=_completed()) as run:
            provider = AmbientCliProvider()
            provider.get_access_token()
            provider.get_access_token()
        assert run.call_count == 1


class TestCredentialFileProvider:
    def test_no_path_configured(self, monkeypatch):
        monkeypatch.delenv("GOOGLE_APPLICATION_CREDENTIALS", raising=False)
        with pytest.raises(AuthError, match="GOOGLE_APPLICATION_CREDENTIALS"):
            CredentialFileProvider().get_access_token()

    def test_missing_file(self, tmp_path):
        with pytest.raises(AuthError, match="not found"):
            CredentialFileProvider(str(tmp_path / "missing.json")).get_access_token()

    def test_reads_path_from_env(self, monkeypatch):
        monkeypatch.setenv("GOOGLE_APPLICATION_CREDENTIALS", "/keys/sa.json")
        assert CredentialFileProvider().path == "/keys/sa.json"

    def test_exchanges_key_for_token(self):
        credentials = MagicMock()
        credentials.token = "ya29.sa-token"
        credentials.expiry = datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(hours=1)
        with patch(
            "error_triage.auth.tokens.service_account.Credentials.from_service_account_file",
            return_value=credentials,
        ) as from_file:
            token = CredentialFileProvider("/keys/sa.json").get_access_token()

        assert token == "ya29.sa-token"
        assert from_file.call_args.args[0] == "/keys/sa.json"
        assert from_file.call_args.kwargs["scopes"] == ["https://www.googleapis.com/auth/cloud-platform"]
        credentials.refresh.assert_called_once()

    def test_refresh_failure(self):
        credentials = MagicMock()
        credentials.refresh.side_effect = google.auth.exceptions.RefreshError("invalid_grant")
        with patch(
            "error_triage.auth.tokens.service_account.Credentials.from_service_account_file",
            return_value=credentials,
        ):
            with pytest.raises(AuthError, match="invalid_grant"):
                CredentialFileProvider("/keys/sa.json").get_access_token()


class TestDefaultTokenProvider:
    def test_explicit_token(self):
        assert isinstance(default_token_provider(access_token="abc"), StaticTokenProvider)

    def test_key_file(self, monkeypatch):
        monkeypatch.delenv("GOOGLE_APPLICATION_CREDENTIALS", raising=False)
        assert isinstance(default_token_provider(credentials_path="/k.json"), CredentialFileProvider)

    def test_env_key_file(self, monkeypatch):
        monkeypatch.setenv("GOOGLE_APPLICATION_CREDENTIALS", "/k.json")
        assert isinstance(default_token_provider(), CredentialFileProvider)

    def test_falls_back_to_gcloud(self, monkeypatch):
        monkeypatch.delenv("GOOGLE_APPLICATION_CREDENTIALS", raising=False)
        assert isinstance(default_token_provider(), AmbientCliProvider)
