"""Tests for run report rendering and Slack notifications."""

import httpx
from datetime import datetime
from unittest.mock import Mock, patch

from rich.console import Console

from seo_autofix.models import (
    ApplyResult,
    ConsistencyReport,
    FixErrorCode,
    RollbackResult,
    RunError,
    RunReport,
)
from seo_autofix.notifications import SlackNotifier
from seo_autofix.reporting import print_rollback_result, print_run_report


def sample_report(**fields):
    defaults = dict(
        run_id="20240501-120000-abc123",
        started_at=datetime(2024, 5, 1, 12, 0, 0),
        completed_at=datetime(2024, 5, 1, 12, 1, 30),
        applied=2,
        failed=1,
        rejected=1,
        revised=1,
        revision_approved=1,
        consistency=ConsistencyReport(score=88, consistent=True, recommendations=["Keep titles under 60 chars"]),
        results=[
            ApplyResult(issue_id=1, fix_id=10, success=True),
            ApplyResult(
                issue_id=3,
                fix_id=11,
                success=False,
                error_code=FixErrorCode.WRITE_FAILED,
                error_message="No attachment for https://example.com/a.jpg",
            ),
        ],
        errors=[RunError(issue_id=4, code=FixErrorCode.TIMEOUT, message="Request timed out")],
        message="Applied 2 of 3 approved fixes",
    )
    defaults.update(fields)
    return RunReport(**defaults)


def render(fn, *args) -> str:
    console = Console(record=True, width=160)
    fn(*args, console=console)
    return console.export_text()


class TestPrintRunReport:
    """Tests for rich run report output."""

    def test_summary_and_tables(self):
        text = render(print_run_report, sample_report())
        assert "Fix Run: 20240501-120000-abc123" in text
        assert "88/100" in text
        assert "No attachment for https://example.com/a.jpg" in text
        assert "timeout" in text
        assert "Keep titles under 60 chars" in text

    def test_empty_run(self):
        report = RunReport(run_id="r-empty", message="No valid fixes to process")
        text = render(print_run_report, report)
        assert "No valid fixes to process" in text
        assert "Applied Fixes" not in text
        assert "Errors" not in text


class TestPrintRollbackResult:
    def test_success(self):
        result = RollbackResult(
            fix_id=10, success=True, message="ok", issue_id=1, reversal_fix_id=12, restored_value="Old Title"
        )
        text = render(print_rollback_result, result)
        assert "Rollback: fix 10" in text
        assert "Old Title" in text

    def test_failure(self):
        result = RollbackResult(
            fix_id=10, success=False, message="Fix 10 has already been rolled back",
            error_code=FixErrorCode.ALREADY_ROLLED_BACK,
        )
        text = render(print_rollback_result, result)
        assert "already_rolled_back" in text


class TestSlackNotifier:
    """Tests for Slack webhook notifications."""

    def test_disabled_without_webhook(self):
        with patch("seo_autofix.notifications.httpx.post") as post:
            assert SlackNotifier(None).notify(sample_report()) is False
        post.assert_not_called()

    def test_posts_payload(self):
        client = Mock()
        client.post.return_value = Mock(status_code=200)
        notifier = SlackNotifier("https://hooks.slack.com/services/T/B/X", client=client)

        assert notifier.notify(sample_report()) is True

        url = client.post.call_args.args[0]
        payload = client.post.call_args.kwargs["json"]
        assert url == "https://hooks.slack.com/services/T/B/X"
        assert "With Errors" in payload["blocks"][0]["text"]["text"]
        assert "*Applied:* 2" in payload["blocks"][1]["text"]["text"]

    def test_clean_run_title(self):
        payload = SlackNotifier("https://hooks.example").build_payload(sample_report(failed=0, errors=[]))
        assert "Completed" in payload["blocks"][0]["text"]["text"]

    def test_http_error_returns_false(self):
        client = Mock()
        client.post.side_effect = httpx.ConnectError("refused")
        notifier = SlackNotifier("https://hooks.example", client=client)
        assert notifier.notify(sample_report()) is False
