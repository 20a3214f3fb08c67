import dataclasses
import json
import logging
import sys
from datetime import datetime
from enum import Enum
from pathlib import Path

import click

from error_triage.auth.tokens import default_token_provider
from error_triage.errors import ErrorTriageError
from error_triage.locator.filesystem import FilesystemLocator, locate_frames
from error_triage.ranking.ranker import rank as rank_groups
from error_triage.reporting.client import DEFAULT_BASE_URL, ErrorReportingClient, clamp_page_size

logger = logging.getLogger(__name__)


def _json_default(value):
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Path):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _emit(records: list[dict]) -> None:
    click.echo(json.dumps(records, indent=2, default=_json_default))


def _fail(error: ErrorTriageError):
    click.echo(f"Error: {error}", err=True)
    raise click.exceptions.Exit(1)


def _make_client(ctx: click.Context) -> ErrorReportingClient:
    opts = ctx.obj
    provider = default_token_provider(
        credentials_path=opts["credentials"],
        access_token=opts["access_token"],
    )
    return ErrorReportingClient(provider, base_url=opts["base_url"], timeout=opts["timeout"])


@click.group()
@click.version_option(package_name="gcp-error-triage")
@click.option("--access-token", envvar="ERROR_TRIAGE_ACCESS_TOKEN", help="Pre-issued bearer token")
@click.option(
    "--credentials", envvar="GOOGLE_APPLICATION_CREDENTIALS", type=click.Path(dir_okay=False),
    help="Service-account key file (default: gcloud application-default credentials)",
)
@click.option("--base-url", envvar="ERROR_TRIAGE_BASE_URL", default=DEFAULT_BASE_URL, show_default=True)
@click.option("--timeout", envvar="ERROR_TRIAGE_TIMEOUT", default=30.0, show_default=True, type=float)
@click.option("-v", "--verbose", is_flag=True, help="Log requests and retries to stderr")
@click.pass_context
def cli(ctx, access_token, credentials, base_url, timeout, verbose):
    """Fetch and triage Google Cloud Error Reporting data for local debugging."""
    logging.basicConfig(
        stream=sys.stderr,
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = {
        "access_token": access_token,
        "credentials": credentials,
        "base_url": base_url,
        "timeout": timeout,
    }


@cli.command()
@click.argument("project_id", envvar="GOOGLE_CLOUD_PROJECT")
@click.argument("period", default="PERIOD_1_DAY")
@click.argument("page_size", default=10, type=int)
@click.option("--service", help="Only groups reported by this service")
@click.option("--max-items", type=int, help="Stop after this many groups [default: PAGE_SIZE]")
@click.pass_context
def groups(ctx, project_id, period, page_size, service, max_items):
    """List error groups for PROJECT_ID over PERIOD."""
    click.echo(f"Fetching error groups from project: {project_id}", err=True)
    click.echo(f"Time period: {period}", err=True)
    try:
        found = list(_make_client(ctx).list_groups(
            project_id, period, service=service,
            page_size=page_size, max_items=max_items or clamp_page_size(page_size),
        ))
    except ErrorTriageError as e:
        _fail(e)

    _emit([dataclasses.asdict(g) for g in found])
    click.echo(f"Found {len(found)} error groups", err=True)


@cli.command()
@click.argument("project_id", envvar="GOOGLE_CLOUD_PROJECT")
@click.argument("group_id")
@click.argument("page_size", default=5, type=int)
@click.option("--max-items", type=int, help="Stop after this many events [default: PAGE_SIZE]")
@click.option(
    "--source-root", type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Local checkout used to resolve stack frames to files",
)
@click.pass_context
def events(ctx, project_id, group_id, page_size, max_items, source_root):
    """List the individual events of GROUP_ID."""
    click.echo(f"Fetching error events for group: {group_id}", err=True)
    try:
        found = list(_make_client(ctx).list_events(
            project_id, group_id,
            page_size=page_size, max_items=max_items or clamp_page_size(page_size),
        ))
    except ErrorTriageError as e:
        _fail(e)

    locator = FilesystemLocator(source_root) if source_root else None
    records = []
    for event in found:
        record = dataclasses.asdict(event)
        if locator is not None:
            record["stack_frames"] = [
                {**dataclasses.asdict(frame), "local_path": path}
                for frame, path in locate_frames(event.stack_frames, locator)
            ]
        records.append(record)

    _emit(records)
    click.echo(f"Found {len(found)} error events", err=True)


@cli.command()
@click.argument("project_id", envvar="GOOGLE_CLOUD_PROJECT")
@click.argument("period", default="PERIOD_1_DAY")
@click.argument("page_size", default=100, type=int)
@click.option("--service", help="Only groups reported by this service")
@click.option("--max-items", type=int, help="Stop after this many groups")
@click.pass_context
def rank(ctx, project_id, period, page_size, service, max_items):
    """Rank error groups for PROJECT_ID by priority."""
    try:
        found = _make_client(ctx).list_groups(
            project_id, period, service=service, page_size=page_size, max_items=max_items,
        )
        ranked = rank_groups(found)
    except ErrorTriageError as e:
        _fail(e)

    _emit([
        {
            "position": r.position,
            "priority": r.priority,
            "score": r.score,
            **dataclasses.asdict(r.group),
        }
        for r in ranked
    ])
    counts = {p: sum(1 for r in ranked if r.priority.value == p) for p in ("HIGH", "MEDIUM", "LOW")}
    click.echo(
        f"Ranked {len(ranked)} error groups "
        f"(HIGH={counts['HIGH']}, MEDIUM={counts['MEDIUM']}, LOW={counts['LOW']})",
        err=True,
    )
