import json
import logging
import time
from collections.abc import Callable, Iterator

import httpx
from opentelemetry import trace
from opentelemetry.trace import SpanKind, StatusCode
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from error_triage.auth.tokens import TokenProvider
from error_triage.errors import ApiError, NetworkError, ParseError, ValidationError
from error_triage.reporting.models import ErrorEvent, ErrorGroup, QueryWindow
from error_triage.reporting.parser import event_from_payload, group_from_stats

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://clouderrorreporting.googleapis.com"
MAX_PAGE_SIZE = 100


def clamp_page_size(page_size: int) -> int:
    """Clamp to the API's accepted range instead of rejecting."""
    return max(1, min(MAX_PAGE_SIZE, int(page_size)))


def _is_rate_limit(exception: BaseException) -> bool:
    return isinstance(exception, ApiError) and exception.is_rate_limit


def _api_error_from(body: dict, default_code: int) -> ApiError:
    error = body.get("error")
    if not isinstance(error, dict):
        return ApiError(default_code, str(error))
    try:
        code = int(error.get("code", default_code))
    except (TypeError, ValueError):
        code = default_code
    return ApiError(code, error.get("message", ""), error.get("status"))


class ErrorReportingClient:
    """
    Read-only client for the Cloud Error Reporting v1beta1 REST API.

    Holds configuration only. Every ``list_*`` call opens its own HTTP
    connection, so one instance can be shared across threads.

    Usage::

        client = ErrorReportingClient(default_token_provider())
        for group in client.list_groups("my-project", QueryWindow.ONE_DAY):
            print(group.group_id, group.count)
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        max_attempts: int = 4,
        backoff_base: float = 1.0,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
        tracer_provider: trace.TracerProvider | None = None,
    ) -> None:
        self.token_provider = token_provider
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self._transport = transport
        self._sleep = sleep
        self._tracer = trace.get_tracer(__name__, tracer_provider=tracer_provider)

    def list_groups(
        self,
        project_id: str,
        window: QueryWindow | str = QueryWindow.ONE_DAY,
        service: str | None = None,
        page_size: int = MAX_PAGE_SIZE,
        max_items: int | None = None,
    ) -> Iterator[ErrorGroup]:
        """Lazily yield error group stats for a project, following page tokens."""
        _require("project_id", project_id)
        window = QueryWindow.parse(window)
        _check_max_items(max_items)

        params = {
            "timeRange.period": window.period,
            "timedCountDuration": f"{window.bucket_seconds}s",
            "pageSize": clamp_page_size(page_size),
        }
        if service:
            params["serviceFilter.service"] = service

        items = self._paginate(project_id, "groupStats", params, "errorGroupStats", max_items)
        return (group_from_stats(item) for item in items)

    def list_events(
        self,
        project_id: str,
        group_id: str,
        page_size: int = MAX_PAGE_SIZE,
        max_items: int | None = None,
        window: QueryWindow | str | None = None,
        service: str | None = None,
    ) -> Iterator[ErrorEvent]:
        """Lazily yield the individual events of one error group."""
        _require("project_id", project_id)
        _require("group_id", group_id)
        _check_max_items(max_items)

        params = {"groupId": group_id, "pageSize": clamp_page_size(page_size)}
        if window is not None:
            params["timeRange.period"] = QueryWindow.parse(window).period
        if service:
            params["serviceFilter.service"] = service

        items = self._paginate(project_id, "events", params, "errorEvents", max_items)
        return (event_from_payload(item) for item in items)

    def _paginate(
        self,
        project_id: str,
        resource: str,
        params: dict,
        items_key: str,
        max_items: int | None,
    ) -> Iterator[dict]:
        path = f"/v1beta1/projects/{project_id}/{resource}"
        yielded = 0

        with httpx.Client(
            base_url=self.base_url, timeout=self.timeout, transport=self._transport
        ) as http:
            page_params = dict(params)
            while True:
                body = self._get_with_retry(http, path, page_params, project_id)
                items = body.get(items_key) or []
                # Check the whole page before yielding any of it
                if not isinstance(items, list) or not all(isinstance(i, dict) for i in items):
                    raise ParseError(f"Expected {items_key} to be a list of objects in {path}")
                for item in items:
                    yield item
                    yielded += 1
                    if max_items is not None and yielded >= max_items:
                        return

                next_token = body.get("nextPageToken")
                if not next_token:
                    break
                page_params["pageToken"] = next_token

    def _get_with_retry(self, http: httpx.Client, path: str, params: dict, project_id: str) -> dict:
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            # backoff_base, x2 per attempt: 1s -> 2s -> 4s
            wait=wait_exponential(multiplier=self.backoff_base, min=self.backoff_base),
            retry=retry_if_exception(_is_rate_limit),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
            reraise=True,
        )
        return retrying(self._get, http, path, params, project_id)

    def _get(self, http: httpx.Client, path: str, params: dict, project_id: str) -> dict:
        resource = path.rsplit("/", 1)[-1]
        with self._tracer.start_as_current_span(
            f"GET {resource}",
            kind=SpanKind.CLIENT,
            attributes={
                "http.request.method": "GET",
                "url.path": path,
                "gcp.project_id": project_id,
            },
        ) as span:
            # Fresh token per attempt; the provider decides whether to refresh
            token = self.token_provider.get_access_token()
            logger.debug("GET %s params=%s", path, params)
            try:
                response = http.get(
                    path, params=params, headers={"Authorization": f"Bearer {token}"}
                )
            except httpx.TimeoutException as e:
                span.set_status(StatusCode.ERROR, "timeout")
                raise NetworkError(f"Request to {path} timed out after {self.timeout}s") from e
            except httpx.TransportError as e:
                span.set_status(StatusCode.ERROR, type(e).__name__)
                raise NetworkError(f"Request to {path} failed: {e}") from e

            span.set_attribute("http.response.status_code", response.status_code)
            try:
                body = self._decode(response)
            except ApiError as e:
                span.set_status(StatusCode.ERROR, f"{e.code}")
                raise
            return body

    @staticmethod
    def _decode(response: httpx.Response) -> dict:
        try:
            body = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            if response.is_success:
                raise ParseError(f"Malformed JSON from {response.url.path}: {e}") from e
            raise ApiError(response.status_code, response.text.strip() or response.reason_phrase) from e

        if not isinstance(body, dict):
            if response.is_success:
                raise ParseError(f"Expected a JSON object from {response.url.path}")
            raise ApiError(response.status_code, response.text.strip())

        if "error" in body:
            raise _api_error_from(body, response.status_code)
        if not response.is_success:
            raise ApiError(response.status_code, response.reason_phrase)
        return body


def _require(name: str, value: str | None) -> None:
    if not value or not str(value).strip():
        raise ValidationError(f"{name} is required")


def _check_max_items(max_items: int | None) -> None:
    if max_items is not None and max_items < 1:
        raise ValidationError(f"max_items must be at least 1, got {max_items}")
