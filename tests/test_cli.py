"""Tests for the command-line interface."""

import pytest
from unittest.mock import Mock, patch

from rich.console import Console

from seo_autofix.cli import create_parser, main
from seo_autofix.models import IssueStatus, IssueType

from conftest import build_orchestrator, make_issue


class TestCli:
    """Tests for the run, rollback and stats commands."""

    @pytest.fixture(autouse=True)
    def _setup(self, store, content_store, post):
        self.store = store
        self.content_store = content_store
        self.gateway = Mock()
        # No profile and a threshold of 70 lets local fixes through without the gateway
        self.orchestrator = build_orchestrator(store, content_store, self.gateway, None, threshold=70)
        self.console = Console(record=True, width=160)

        with patch("seo_autofix.cli.FixOrchestrator.from_settings", return_value=self.orchestrator), \
                patch("seo_autofix.cli.console", self.console), \
                patch("seo_autofix.cli.configure_logging"):
            yield

    def output(self) -> str:
        return self.console.export_text(clear=False)

    def test_parser(self):
        args = create_parser().parse_args(["run", "3", "5", "--limit", "2"])
        assert args.issue_ids == [3, 5]
        assert args.limit == 2

    def test_no_command(self):
        with pytest.raises(SystemExit):
            main([])

    def test_run_open_issues(self):
        issue = make_issue(self.store, IssueType.MISSING_SCHEMA)

        main(["run"])

        assert self.store.get_issue(issue.id).status == IssueStatus.FIXED
        assert "Fix Run:" in self.output()
        assert "Applied Fixes" in self.output()
        self.gateway.generate.assert_not_called()

    def test_run_nothing_open(self):
        main(["run"])
        assert "No open issues to fix" in self.output()

    def test_rollback(self):
        issue = make_issue(self.store, IssueType.MISSING_H1)
        report = self.orchestrator.run_pipeline([issue.id])

        main(["rollback", str(report.results[0].fix_id)])

        assert "Reversal Record" in self.output()
        assert self.store.get_issue(issue.id).status == IssueStatus.PENDING

    def test_rollback_failure_exits(self):
        with pytest.raises(SystemExit) as exc:
            main(["rollback", "999"])
        assert exc.value.code == 1
        assert "fix_not_found" in self.output()

    def test_stats(self):
        issue = make_issue(self.store, IssueType.MISSING_SCHEMA)
        self.orchestrator.run_pipeline([issue.id])

        main(["stats"])

        assert "Fix Statistics" in self.output()
        assert "100.0%" in self.output()
