import httpx
import pytest

from error_triage.auth.tokens import StaticTokenProvider
from error_triage.reporting.client import ErrorReportingClient


class FakeApi:
    """Serves queued responses in order and records every request it receives."""

    def __init__(self) -> None:
        self.responses: list[httpx.Response] = []
        self.requests: list[httpx.Request] = []

    def queue(self, body=None, status_code: int = 200, content: bytes | None = None) -> None:
        if content is not None:
            self.responses.append(httpx.Response(status_code, content=content))
        else:
            self.responses.append(httpx.Response(status_code, json=body if body is not None else {}))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.responses:
            raise AssertionError(f"unexpected request: {request.url}")
        return self.responses.pop(0)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def fake_api():
    return FakeApi()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def client(fake_api, sleeps):
    """A client wired to FakeApi that records backoff delays instead of sleeping."""
    return ErrorReportingClient(
        StaticTokenProvider("test-token"),
        transport=fake_api.transport(),
        sleep=sleeps.append,
    )


def _group_stats(group_id: str, count=10, affected_users=2, **extra) -> dict:
    """Build an ``errorGroupStats`` entry shaped like the real API's."""
    entry = {
        "group": {"name": f"projects/my-project/groups/{group_id}", "groupId": group_id},
        "count": str(count),
        "affectedUsersCount": str(affected_users),
        "firstSeenTime": "2026-10-01T08:00:00.123456789Z",
        "lastSeenTime": "2026-10-19T08:00:00Z",
        "representative": {
            "message": f"TypeError: boom in {group_id}",
            "serviceContext": {"service": "api", "version": "v42"},
            "context": {
                "reportLocation": {
                    "filePath": "/app/src/handlers/user.js",
                    "lineNumber": 89,
                    "functionName": "getUserById",
                },
            },
        },
    }
    entry.update(extra)
    return entry


@pytest.fixture
def group_stats():
    """Factory for ``errorGroupStats`` entries shaped like the real API's."""
    return _group_stats
