import asyncio
from collections.abc import Callable
from datetime import date, datetime, timedelta, timezone
from functools import wraps
from logging import getLogger
from typing import Any

import typer
from rich.console import Console

from .services.cache import configure_caches
from .services.dashboard import Dashboard
from .services.errors import PulseboardError
from .services.formatter import (
    format_contributors,
    format_feedback,
    format_issue_metrics,
    format_pr_report,
    show_progress,
)
from .services.github.issues import AnalysisProgress
from .services.leancloud import FeedbackStoreClient
from .services.metrics import compute_doc_metrics
from .settings import settings

# Configure caches on module load
configure_caches()

app = typer.Typer()
logger = getLogger(__name__)
console = Console()


def syncify(f: Callable[..., Any]) -> Callable[..., Any]:
    """This simple decorator converts an async function into a sync function,
    allowing it to work with Typer.
    """

    @wraps(f)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        return asyncio.run(f(*args, **kwargs))

    return wrapper


REPOS_ARGUMENT_HELP = "Repositories to query (owner/name). Defaults to the configured catalog."
SINCE_HELP = "Start date (ISO format YYYY-MM-DD, default: 30 days ago)"
UNTIL_HELP = "End date, inclusive (ISO format YYYY-MM-DD, default: today)"
TOKEN_HELP = "GitHub Personal Access Token (overrides env var)"


@app.command(help=f"Display the current installed version of {settings.project_name}.")
def version() -> None:
    from . import __version__

    typer.echo(f"{settings.project_name} - {__version__}")


@app.command(help="Analyze issue response times across repositories.")
@syncify
async def issues(
    repos: list[str] | None = typer.Argument(None, help=REPOS_ARGUMENT_HELP),
    since: str | None = typer.Option(None, "--since", help=SINCE_HELP),
    until: str | None = typer.Option(None, "--until", help=UNTIL_HELP),
    token: str | None = typer.Option(None, "--token", help=TOKEN_HELP),
    show_issues: bool = typer.Option(False, "--show-issues", help="List every analyzed issue"),
    show_urls: bool = typer.Option(False, "--show-urls", help="Display issue URLs (implies --show-issues)"),
    fast: bool = typer.Option(
        False,
        "--fast",
        help="Skip comment and timeline lookups; only closing or maintainer authorship count as a response",
    ),
) -> None:
    """Analyze issue response times across repositories."""
    try:
        since_date, until_date = _parse_range(since, until)
        repo_list = list(repos) if repos else list(settings.github_repositories)

        async with Dashboard.open(settings, token_override=token) as dashboard:
            dashboard.aggregator.fetch_details = not fast
            with show_progress(f"Analyzing issues in {len(repo_list)} repositories...") as progress:
                task_id = progress.task_ids[0]

                def report(update: AnalysisProgress) -> None:
                    progress.update(
                        task_id,
                        description=f"Analyzing {update.repository}: {update.completed}/{update.total} issues",
                    )

                result = await dashboard.issue_metrics.get_issue_metrics(
                    repo_list, since_date, until_date, on_progress=report
                )

        if result is None:
            console.print("[yellow]Request cancelled.[/yellow]")
            return

        format_issue_metrics(
            result,
            show_issues=show_issues or show_urls,
            show_urls=show_urls,
            sla_hours=settings.sla_hours,
        )

    except (ValueError, PulseboardError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    except Exception as e:
        logger.exception("Unexpected error during issue analysis")
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


@app.command(help="Summarize pull requests across repositories.")
@syncify
async def prs(
    repos: list[str] | None = typer.Argument(None, help=REPOS_ARGUMENT_HELP),
    since: str | None = typer.Option(None, "--since", help=SINCE_HELP),
    until: str | None = typer.Option(None, "--until", help=UNTIL_HELP),
    token: str | None = typer.Option(None, "--token", help=TOKEN_HELP),
    show_urls: bool = typer.Option(False, "--show-urls", help="Display PR URLs in output"),
) -> None:
    """Summarize pull requests across repositories."""
    from .services.aggregation import validate_query

    try:
        since_date, until_date = _parse_range(since, until)
        repo_list = validate_query(
            repos or settings.github_repositories,
            since_date,
            until_date,
            max_repos=settings.max_repos_per_query,
            max_range_days=settings.max_query_range_days,
        )

        async with Dashboard.open(settings, token_override=token) as dashboard:
            with show_progress(f"Collecting pull requests for {len(repo_list)} repositories..."):
                report = await dashboard.pull_requests.build_report(repo_list, since_date, until_date)

        format_pr_report(report, show_urls=show_urls)

    except (ValueError, PulseboardError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    except Exception as e:
        logger.exception("Unexpected error during PR collection")
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


@app.command(help="List contributors across repositories.")
@syncify
async def contributors(
    repos: list[str] | None = typer.Argument(None, help=REPOS_ARGUMENT_HELP),
    since: str | None = typer.Option(None, "--since", help=SINCE_HELP),
    until: str | None = typer.Option(None, "--until", help=UNTIL_HELP),
    token: str | None = typer.Option(None, "--token", help=TOKEN_HELP),
) -> None:
    """List contributors across repositories."""
    try:
        since_date, until_date = _parse_range(since, until)
        repo_list = list(repos) if repos else list(settings.github_repositories)

        async with Dashboard.open(settings, token_override=token) as dashboard:
            with show_progress(f"Collecting contributors for {len(repo_list)} repositories..."):
                merged = await dashboard.contributors.collect_contributors(repo_list, since_date, until_date)

        format_contributors(merged)

    except (ValueError, PulseboardError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    except Exception as e:
        logger.exception("Unexpected error during contributor collection")
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


@app.command(help="Show documentation feedback and how much of it has been handled.")
@syncify
async def feedback(
    since: str | None = typer.Option(None, "--since", help=SINCE_HELP),
    until: str | None = typer.Option(None, "--until", help=UNTIL_HELP),
    repo: str | None = typer.Option(None, "--repo", help="Only show feedback for this repository"),
) -> None:
    """Show documentation feedback and how much of it has been handled."""
    try:
        since_date, until_date = _parse_range(since, until)

        with show_progress("Loading documentation feedback..."):
            async with FeedbackStoreClient.from_settings(settings) as store:
                records = await store.list_feedback(since_date, until_date, repo=repo)

        format_feedback(records, compute_doc_metrics(records))

    except (ValueError, PulseboardError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    except Exception as e:
        logger.exception("Unexpected error while loading feedback")
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


def _parse_date(date_str: str | None, default_days_ago: int) -> date:
    """Parse date string or return default.

    Args:
        date_str: ISO format date string or None
        default_days_ago: Days ago to use if date_str is None

    Returns:
        Parsed calendar date (UTC)

    Raises:
        ValueError: If date string is invalid
    """
    if date_str is None:
        return (datetime.now(timezone.utc) - timedelta(days=default_days_ago)).date()

    try:
        parsed = datetime.fromisoformat(date_str.replace("Z", "+00:00"))
    except ValueError as e:
        raise ValueError(
            f"Invalid date format: {date_str}. Expected ISO format (YYYY-MM-DD or YYYY-MM-DDTHH:MM:SS)"
        ) from e
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.date()


def _parse_range(since: str | None, until: str | None) -> tuple[date, date]:
    since_date = _parse_date(since, default_days_ago=30)
    until_date = _parse_date(until, default_days_ago=0)
    if since_date > until_date:
        raise ValueError("--since date must be before --until date")
    return since_date, until_date


if __name__ == "__main__":
    app()
