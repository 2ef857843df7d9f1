"""Tests for CLI application."""

import asyncio
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import typer
from typer.testing import CliRunner

from pulseboard.cli import _parse_date, _parse_range, app, syncify
from pulseboard.services.aggregation import IssueMetricsResult
from pulseboard.services.errors import ErrorCategory, UpstreamError
from pulseboard.settings import settings

runner = CliRunner()


def fake_open(dashboard: MagicMock) -> MagicMock:
    """Stand-in for Dashboard.open yielding a prepared mock dashboard."""

    @asynccontextmanager
    async def open_dashboard(config, token_override=None):
        yield dashboard

    return MagicMock(side_effect=open_dashboard)


@pytest.fixture
def mock_dashboard() -> MagicMock:
    dashboard = MagicMock()
    dashboard.issue_metrics.get_issue_metrics = AsyncMock(return_value=IssueMetricsResult())
    dashboard.pull_requests.build_report = AsyncMock(return_value=MagicMock())
    dashboard.contributors.collect_contributors = AsyncMock(return_value=[])
    return dashboard


def test_cli_app_exists():
    """Test that Typer app is properly instantiated."""
    assert app is not None
    assert hasattr(app, "command")


def test_help_lists_commands():
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    for command in ("version", "issues", "prs", "contributors", "feedback"):
        assert command in result.stdout


def test_version_output_format():
    """Test that version command outputs correct format."""
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert settings.project_name in result.stdout
    assert "-" in result.stdout


def test_syncify_converts_async_to_sync():
    """Test that syncify runs the coroutine to completion."""

    @syncify
    async def add(x, y):
        await asyncio.sleep(0)
        return x + y

    assert add(2, 3) == 5
    assert add.__name__ == "add"


def test_parse_date_default():
    expected = (datetime.now(timezone.utc) - timedelta(days=30)).date()
    assert _parse_date(None, default_days_ago=30) == expected


def test_parse_date_iso_formats():
    assert _parse_date("2024-03-01", 0) == date(2024, 3, 1)
    assert _parse_date("2024-03-01T23:30:00Z", 0) == date(2024, 3, 1)
    # Offsets are converted to UTC before taking the day
    assert _parse_date("2024-03-02T01:00:00+02:00", 0) == date(2024, 3, 1)


def test_parse_date_invalid():
    with pytest.raises(ValueError, match="Invalid date format"):
        _parse_date("March 1st", 0)


def test_parse_range_order():
    with pytest.raises(ValueError):
        _parse_range("2024-03-31", "2024-03-01")


@patch("pulseboard.cli.format_issue_metrics")
@patch("pulseboard.cli.Dashboard")
def test_issues_command_defaults(
    mock_dashboard_class: MagicMock,
    mock_format: MagicMock,
    mock_dashboard: MagicMock,
) -> None:
    """Test that the configured catalog is analyzed by default."""
    mock_dashboard_class.open = fake_open(mock_dashboard)

    result = runner.invoke(app, ["issues", "--since", "2024-03-01", "--until", "2024-03-31"])

    assert result.exit_code == 0, result.stdout
    args = mock_dashboard.issue_metrics.get_issue_metrics.call_args.args
    assert args == (list(settings.github_repositories), date(2024, 3, 1), date(2024, 3, 31))
    assert mock_dashboard.aggregator.fetch_details is True
    mock_format.assert_called_once()
    assert mock_format.call_args.kwargs["show_issues"] is False


@patch("pulseboard.cli.format_issue_metrics")
@patch("pulseboard.cli.Dashboard")
def test_issues_command_options(
    mock_dashboard_class: MagicMock,
    mock_format: MagicMock,
    mock_dashboard: MagicMock,
) -> None:
    """Test repository arguments, token override and display flags."""
    mock_dashboard_class.open = fake_open(mock_dashboard)

    result = runner.invoke(
        app,
        ["issues", "antvis/g2", "antvis/g6", "--token", "tok", "--show-urls", "--fast"],
    )

    assert result.exit_code == 0, result.stdout
    assert mock_dashboard_class.open.call_args.kwargs["token_override"] == "tok"
    assert mock_dashboard.issue_metrics.get_issue_metrics.call_args.args[0] == ["antvis/g2", "antvis/g6"]
    assert mock_dashboard.aggregator.fetch_details is False
    assert mock_format.call_args.kwargs["show_issues"] is True
    assert mock_format.call_args.kwargs["show_urls"] is True


@patch("pulseboard.cli.Dashboard")
def test_issues_command_upstream_error(mock_dashboard_class: MagicMock, mock_dashboard: MagicMock) -> None:
    """Test that upstream failures exit with a readable message."""
    mock_dashboard_class.open = fake_open(mock_dashboard)
    mock_dashboard.issue_metrics.get_issue_metrics.side_effect = UpstreamError(
        "GitHub API rate limit exceeded, please retry later.", category=ErrorCategory.RATE_LIMITED
    )

    result = runner.invoke(app, ["issues", "antvis/g2"])

    assert result.exit_code == 1
    assert "rate limit" in result.stdout


@patch("pulseboard.cli.format_issue_metrics")
@patch("pulseboard.cli.Dashboard")
def test_issues_command_cancelled(
    mock_dashboard_class: MagicMock,
    mock_format: MagicMock,
    mock_dashboard: MagicMock,
) -> None:
    mock_dashboard_class.open = fake_open(mock_dashboard)
    mock_dashboard.issue_metrics.get_issue_metrics.return_value = None

    result = runner.invoke(app, ["issues", "antvis/g2"])

    assert result.exit_code == 0
    assert "cancelled" in result.stdout
    mock_format.assert_not_called()


def test_issues_command_invalid_date() -> None:
    result = runner.invoke(app, ["issues", "--since", "yesterday"])

    assert result.exit_code == 1
    assert "Invalid date format" in result.stdout


@patch("pulseboard.cli.Dashboard")
def test_issues_command_since_after_until(mock_dashboard_class: MagicMock) -> None:
    result = runner.invoke(app, ["issues", "--since", "2024-03-31", "--until", "2024-03-01"])

    assert result.exit_code == 1
    mock_dashboard_class.open.assert_not_called()


@patch("pulseboard.cli.format_pr_report")
@patch("pulseboard.cli.Dashboard")
def test_prs_command(
    mock_dashboard_class: MagicMock,
    mock_format: MagicMock,
    mock_dashboard: MagicMock,
) -> None:
    mock_dashboard_class.open = fake_open(mock_dashboard)

    result = runner.invoke(
        app, ["prs", "antvis/g2", "antvis/g2", "--since", "2024-03-01", "--until", "2024-03-31", "--show-urls"]
    )

    assert result.exit_code == 0, result.stdout
    mock_dashboard.pull_requests.build_report.assert_called_once_with(
        ["antvis/g2"], date(2024, 3, 1), date(2024, 3, 31)
    )
    assert mock_format.call_args.kwargs["show_urls"] is True


@patch("pulseboard.cli.Dashboard")
def test_prs_command_invalid_repository(mock_dashboard_class: MagicMock) -> None:
    result = runner.invoke(app, ["prs", "not-a-repo"])

    assert result.exit_code == 1
    assert "Invalid repository name" in result.stdout
    mock_dashboard_class.open.assert_not_called()


@patch("pulseboard.cli.format_contributors")
@patch("pulseboard.cli.Dashboard")
def test_contributors_command(
    mock_dashboard_class: MagicMock,
    mock_format: MagicMock,
    mock_dashboard: MagicMock,
) -> None:
    mock_dashboard_class.open = fake_open(mock_dashboard)

    result = runner.invoke(app, ["contributors", "antvis/g2", "--since", "2024-03-01", "--until", "2024-03-31"])

    assert result.exit_code == 0, result.stdout
    mock_dashboard.contributors.collect_contributors.assert_called_once_with(
        ["antvis/g2"], date(2024, 3, 1), date(2024, 3, 31)
    )
    mock_format.assert_called_once_with([])


@patch("pulseboard.cli.format_feedback")
@patch("pulseboard.cli.FeedbackStoreClient")
def test_feedback_command(mock_store_class: MagicMock, mock_format: MagicMock) -> None:
    store = MagicMock()
    store.__aenter__ = AsyncMock(return_value=store)
    store.__aexit__ = AsyncMock(return_value=None)
    store.list_feedback = AsyncMock(return_value=[])
    mock_store_class.from_settings.return_value = store

    result = runner.invoke(app, ["feedback", "--since", "2024-03-01", "--until", "2024-03-31", "--repo", "antvis/g2"])

    assert result.exit_code == 0, result.stdout
    store.list_feedback.assert_called_once_with(date(2024, 3, 1), date(2024, 3, 31), repo="antvis/g2")
    mock_format.assert_called_once()


@patch("pulseboard.cli.FeedbackStoreClient")
def test_feedback_command_not_configured(mock_store_class: MagicMock) -> None:
    mock_store_class.from_settings.side_effect = ValueError("LeanCloud credentials not configured")

    result = runner.invoke(app, ["feedback"])

    assert result.exit_code == 1
    assert "LeanCloud credentials not configured" in result.stdout


def test_fast_option_help_describes_remaining_rules() -> None:
    """Test that --fast help names every rule still applied without details."""
    command = typer.main.get_command(app).commands["issues"]
    fast = next(param for param in command.params if param.name == "fast")

    assert "only closing or maintainer authorship count as a response" in fast.help
