from collections.abc import Sequence
from logging import getLogger

from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .aggregation import IssueMetricsResult
from .github.contributors import compute_contributor_stats
from .github.models import AnalyzedIssue, Contributor, Feedback, ResponseSource
from .github.pullrequests import PR_TYPES, PullRequestReport
from .metrics import DocFeedbackMetrics

logger = getLogger(__name__)


def _rate(value: int, good_at: int = 80) -> str:
    color = "green" if value >= good_at else "yellow" if value >= good_at // 2 else "red"
    return f"[{color}]{value}%[/{color}]"


def _hours(value: float | None, sla_hours: float) -> str:
    if value is None:
        return "-"
    color = "green" if value <= sla_hours else "red"
    return f"[{color}]{value:.1f}h[/{color}]"


def _no_results(console: Console, message: str) -> None:
    console.print(Panel(f"[yellow]{message}[/yellow]", title="No Results", border_style="yellow"))


def format_issue_metrics(
    result: IssueMetricsResult,
    show_issues: bool = False,
    show_urls: bool = False,
    sla_hours: float = 48,
) -> None:
    """Display issue response metrics using Rich library.

    Args:
        result: Merged metrics for the requested repositories
        show_issues: Whether to list every analyzed issue
        show_urls: Whether to include issue URLs in the issue list
        sla_hours: Response time target used to color response times
    """
    console = Console()

    summary = result.summary
    summary_lines = [
        f"[bold]Total Issues:[/bold] {summary.total_issues} "
        f"({summary.resolved_issues} closed, {summary.open_issues} open)",
        f"[bold]Resolve Rate:[/bold] {_rate(summary.resolve_rate)}",
        f"[bold]Response Rate:[/bold] {_rate(summary.response_rate)}",
        f"[bold]{sla_hours:g}h Response Rate:[/bold] {_rate(summary.response_48h_rate)}",
        f"[bold]Average Response Time:[/bold] {_hours(summary.avg_response_time_in_hours, sla_hours)}",
        f"[bold]Median Response Time:[/bold] {_hours(summary.median_response_time_in_hours, sla_hours)}",
    ]
    failed = [status for status in result.statuses if not status.ok]
    if failed:
        summary_lines.append("")
        summary_lines.append("[bold red]Incomplete results:[/bold red]")
        for status in failed:
            summary_lines.append(f"  {status.repository}: {status.message}")
    console.print(Panel("\n".join(summary_lines), title="Summary", border_style="cyan"))
    console.print()

    table = Table(title="Issue Response by Repository", show_header=True, header_style="bold magenta")
    table.add_column("Repository", style="white")
    table.add_column("Issues", justify="right")
    table.add_column("Resolved", justify="right")
    table.add_column("Resolve Rate", justify="right")
    table.add_column("Avg Response", justify="right")
    table.add_column("Response Rate", justify="right")
    table.add_column(f"Within {sla_hours:g}h", justify="right")
    for metrics in result.per_repo:
        table.add_row(
            metrics.repository,
            str(metrics.total_issues),
            f"{metrics.resolved_issues}/{metrics.total_issues}",
            _rate(metrics.resolve_rate),
            _hours(metrics.avg_response_time_in_hours, sla_hours),
            _rate(metrics.response_rate),
            f"{metrics.responded_48h_issues}/{metrics.total_issues} ({_rate(metrics.response_48h_rate)})",
        )
    console.print(table)

    if show_issues:
        console.print()
        _display_issue_list(console, result.issues, show_urls, sla_hours)


def _display_issue_list(
    console: Console,
    issues: Sequence[AnalyzedIssue],
    show_urls: bool,
    sla_hours: float,
) -> None:
    if not issues:
        _no_results(console, "No issues found for the specified criteria.")
        return

    table = Table(title="Issues", show_header=True, header_style="bold magenta")
    table.add_column("Repository", style="white")
    table.add_column("#", style="cyan", no_wrap=True)
    table.add_column("Title", style="white")
    table.add_column("State", no_wrap=True)
    table.add_column("Created", style="dim", no_wrap=True)
    table.add_column("Response", no_wrap=True)
    table.add_column("Source", style="dim", no_wrap=True)
    if show_urls:
        table.add_column("URL", style="dim")

    for issue in issues:
        state = "[green]closed[/green]" if issue.state == "closed" else "[blue]open[/blue]"
        if issue.has_response:
            response = _hours(issue.response_time_in_hours, sla_hours)
        else:
            response = f"[red]waiting {issue.response_time_in_hours or 0:.1f}h[/red]"
        source = issue.response_source.value if isinstance(issue.response_source, ResponseSource) else "-"
        row = [
            issue.repository,
            str(issue.number),
            issue.title,
            state,
            issue.created_at.strftime("%Y-%m-%d"),
            response,
            source,
        ]
        if show_urls:
            row.append(issue.url)
        table.add_row(*row)

    console.print(table)
    console.print(f"\n[bold]Total:[/bold] {len(issues)} issues")


def format_pr_report(report: PullRequestReport, show_urls: bool = False) -> None:
    """Display pull request statistics for the requested window."""
    console = Console()

    prs = sorted(report.filtered_prs, key=lambda pr: pr.created_at, reverse=True)
    if not prs:
        _no_results(console, "No pull requests found for the specified criteria.")
        return

    stats = report.filtered
    summary_lines = [
        f"[bold]Total Pull Requests:[/bold] {stats.total}",
        f"  [green]{stats.merged}[/green] merged, [blue]{stats.open}[/blue] open, "
        f"[yellow]{stats.closed}[/yellow] closed without merging",
        f"[bold]Merge Rate:[/bold] {_rate(stats.merge_rate)}",
        "",
        "[bold]By Type:[/bold]",
    ]
    for pr_type in PR_TYPES:
        count = stats.type_distribution.get(pr_type, 0)
        if count:
            summary_lines.append(f"  {pr_type}: {count}")
    console.print(Panel("\n".join(summary_lines), title="Summary", border_style="cyan"))
    console.print()

    table = Table(title="Pull Requests", show_header=True, header_style="bold magenta")
    table.add_column("Repository", style="white")
    table.add_column("PR #", style="cyan", no_wrap=True)
    table.add_column("Title", style="white")
    table.add_column("Type", no_wrap=True)
    table.add_column("State", no_wrap=True)
    table.add_column("Author", style="white")
    table.add_column("Created", style="dim", no_wrap=True)
    table.add_column("Merged", style="dim", no_wrap=True)
    if show_urls:
        table.add_column("URL", style="dim")

    for pr in prs:
        display_state = pr.get_display_state()
        if display_state == "merged":
            state_display = "[green]merged[/green]"
        elif display_state == "open":
            state_display = "[blue]open[/blue]"
        else:
            state_display = "[yellow]closed[/yellow]"
        row = [
            pr.repository,
            str(pr.number),
            pr.title,
            pr.pr_type,
            state_display,
            pr.author or "-",
            pr.created_at.strftime("%Y-%m-%d"),
            pr.merged_at.strftime("%Y-%m-%d") if pr.merged_at else "-",
        ]
        if show_urls:
            row.append(pr.url)
        table.add_row(*row)

    console.print(table)
    console.print(f"\n[bold]Total:[/bold] {len(prs)} pull requests")


def _format_role_badge(role: str) -> str:
    """Format repository role with color for Rich display."""
    color_map = {
        "OWNER": "magenta",
        "MEMBER": "blue",
        "CONTRIBUTOR": "green",
        "COLLABORATOR": "cyan",
        "FIRST_TIME_CONTRIBUTOR": "yellow",
    }

    color = color_map.get(role, "white")
    return f"[{color}]{role}[/{color}]"


def format_contributors(contributors: Sequence[Contributor]) -> None:
    """Display merged contributors, most active first."""
    console = Console()

    if not contributors:
        _no_results(console, "No contributors found for the specified criteria.")
        return

    stats = compute_contributor_stats(contributors)
    console.print(
        Panel(
            f"[bold]Contributors:[/bold] {stats.total} "
            f"({stats.maintainers} maintainers, {stats.contributors} community)\n"
            f"[bold]Contributions:[/bold] {stats.total_contributions}\n"
            f"[bold]Pull Requests:[/bold] {stats.total_pull_requests}",
            title="Summary",
            border_style="cyan",
        )
    )
    console.print()

    table = Table(title="Contributors", show_header=True, header_style="bold magenta")
    table.add_column("Login", style="white")
    table.add_column("Role", no_wrap=True)
    table.add_column("Contributions", justify="right")
    table.add_column("PRs", justify="right")
    table.add_column("Repositories", style="dim")
    for contributor in contributors:
        table.add_row(
            contributor.login,
            _format_role_badge(contributor.role.value),
            str(contributor.contributions),
            str(contributor.pull_requests),
            ", ".join(contributor.repositories),
        )
    console.print(table)


def format_feedback(feedback: Sequence[Feedback], metrics: DocFeedbackMetrics) -> None:
    """Display documentation suggestions and their processing status."""
    console = Console()

    console.print(
        Panel(
            f"[bold]Suggestions:[/bold] {metrics.total} "
            f"([green]{metrics.resolved}[/green] resolved, [yellow]{metrics.pending}[/yellow] pending)\n"
            f"[bold]Resolve Rate:[/bold] {_rate(metrics.resolve_rate)}",
            title="Documentation Feedback",
            border_style="cyan",
        )
    )

    suggestions = [item for item in feedback if item.is_suggestion]
    if not suggestions:
        return

    table = Table(title="Suggestions", show_header=True, header_style="bold magenta")
    table.add_column("Submitted", style="dim", no_wrap=True)
    table.add_column("Repository", style="white")
    table.add_column("Section", style="white")
    table.add_column("Suggestion", style="white")
    table.add_column("Status", no_wrap=True)
    for item in sorted(suggestions, key=lambda f: f.created_at, reverse=True):
        table.add_row(
            item.created_at.strftime("%Y-%m-%d"),
            item.repo or "-",
            item.title or "-",
            item.comment or "-",
            "[green]resolved[/green]" if item.is_resolved else "[yellow]pending[/yellow]",
        )
    console.print(table)


def show_progress(message: str) -> Progress:
    """Create and return a progress spinner.

    Args:
        message: Message to display with spinner

    Returns:
        Progress context manager
    """
    progress = Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        transient=True,
    )
    progress.add_task(description=message, total=None)
    return progress
