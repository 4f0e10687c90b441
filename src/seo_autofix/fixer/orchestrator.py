"""Fix orchestrator for the SEO autofix pipeline.

Coordinates one run:
1. Generates a fix for every submitted issue
2. Reviews the batch through the quality gate
3. Gives needs-revision fixes exactly one revision and re-review
4. Checks consistency across the final approved set
5. Applies approved fixes one at a time through the applier

Per-issue failures are collected in the RunReport; they never abort the run.
"""

import logging
import uuid
from datetime import datetime
from typing import Optional

from ..config import Settings, get_settings
from ..gateway import OpenAIGateway
from ..models import (
    FixCandidate,
    FixErrorCode,
    PipelineState,
    ReviewOutcome,
    RollbackResult,
    RunError,
    RunReport,
)
from ..notifications import RunNotifier, SlackNotifier
from ..profile import JsonProfileProvider, SiteContextProvider
from ..storage import SQLiteContentStore, SQLiteStore
from .applier import FixApplier, ResourceLocks
from .generator import FixGenerator
from .reviewer import QualityGate

logger = logging.getLogger(__name__)


def _new_run_id() -> str:
    return f"{datetime.now().strftime('%Y%m%d-%H%M%S')}-{uuid.uuid4().hex[:6]}"


class FixOrchestrator:
    """Runs issues through generation, review, revision and application."""

    def __init__(
        self,
        store: SQLiteStore,
        generator: FixGenerator,
        gate: QualityGate,
        applier: FixApplier,
        profile_provider: SiteContextProvider,
        max_fixes_per_run: int = 50,
        notifier: Optional[RunNotifier] = None,
    ):
        """Initialize the orchestrator.

        Args:
            store: Issue store
            generator: Produces and revises fixes
            gate: Reviews fixes
            applier: The only component allowed to mutate content
            profile_provider: Site profile passed to the generator
            max_fixes_per_run: Issues beyond this count are left pending
            notifier: Receives the report when a run finishes
        """
        self.store = store
        self.generator = generator
        self.gate = gate
        self.applier = applier
        self.profile_provider = profile_provider
        self.max_fixes_per_run = max_fixes_per_run
        self.notifier = notifier

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "FixOrchestrator":
        """Wire the default SQLite/OpenAI stack from configuration."""
        settings = settings or get_settings()
        store = SQLiteStore(settings.database_path)
        content_store = SQLiteContentStore(settings.database_path)
        gateway = OpenAIGateway.from_settings(settings)
        profile_provider = JsonProfileProvider(settings.profile_path)

        return cls(
            store=store,
            generator=FixGenerator(
                gateway,
                content_store,
                target_word_count=settings.target_word_count,
                rate_limit_seconds=settings.rate_limit_seconds,
            ),
            gate=QualityGate(
                gateway,
                profile_provider,
                threshold=settings.pm_quality_threshold,
                fail_mode=settings.review_fail_mode,
                sample_size=settings.consistency_sample_size,
            ),
            applier=FixApplier(
                store,
                content_store,
                principal=settings.acting_principal,
                locks=ResourceLocks(timeout=settings.lock_timeout_seconds),
            ),
            profile_provider=profile_provider,
            max_fixes_per_run=settings.max_fixes_per_run,
            notifier=SlackNotifier(settings.slack_webhook_url) if settings.slack_webhook_url else None,
        )

    def pending_issue_ids(self, limit: Optional[int] = None) -> list[int]:
        """Open auto-fixable issues, highest priority first."""
        return self.store.get_open_issue_ids(limit or self.max_fixes_per_run)

    def _error(self, report: RunReport, issue_id: int, code: FixErrorCode, message: str, stage: str):
        report.errors.append(RunError(issue_id=issue_id, code=code, message=message, stage=stage))

    def _generate(self, report: RunReport, issue_ids: list[int]) -> list[FixCandidate]:
        profile = self.profile_provider.get_profile()
        candidates: list[FixCandidate] = []

        for issue_id in issue_ids:
            issue = self.store.get_issue(issue_id)
            if issue is None:
                self._error(report, issue_id, FixErrorCode.ISSUE_NOT_FOUND, f"Issue {issue_id} not found", "select")
                report.outcomes[issue_id] = PipelineState.SKIPPED
                continue
            if not issue.is_open:
                self._error(
                    report,
                    issue_id,
                    FixErrorCode.ISSUE_NOT_OPEN,
                    f"Issue {issue_id} is {issue.status.value}",
                    "select",
                )
                report.outcomes[issue_id] = PipelineState.SKIPPED
                continue

            result = self.generator.generate_fix(issue, profile)
            if not result.success:
                self._error(report, issue_id, result.error, result.message, "generate")
                report.outcomes[issue_id] = PipelineState.GENERATION_FAILED
                continue

            candidates.append(FixCandidate(issue=issue, fix=result.fix))

        return candidates

    def run_pipeline(self, issue_ids: list[int]) -> RunReport:
        """Run the full pipeline over a batch of issues.

        Args:
            issue_ids: Issues to process, in review order

        Returns:
            RunReport with counts, per-fix apply results and the error list
        """
        report = RunReport(run_id=_new_run_id())
        logger.info(f"Starting fix run {report.run_id} with {len(issue_ids)} issues")

        unique_ids = list(dict.fromkeys(issue_ids))
        batch_ids = unique_ids[: self.max_fixes_per_run]
        for issue_id in unique_ids[self.max_fixes_per_run:]:
            self._error(
                report,
                issue_id,
                FixErrorCode.OVER_RUN_LIMIT,
                f"Run limit of {self.max_fixes_per_run} fixes reached",
                "select",
            )
            report.outcomes[issue_id] = PipelineState.SKIPPED

        candidates = self._generate(report, batch_ids)
        if not candidates:
            report.message = "No valid fixes to process"
            return self._finish(report)

        batch = self.gate.review_all_fixes(candidates)
        report.review_summary = batch.stats
        report.rejected = len(batch.rejected)
        for rejected in batch.rejected:
            report.outcomes[rejected.candidate.issue_id] = PipelineState.REJECTED

        approved = list(batch.approved)
        for entry in batch.needs_revision:
            candidate = entry.candidate
            report.revised += 1

            revision = self.generator.revise_fix(candidate.fix, entry.improvements)
            if not revision.success:
                self._error(report, candidate.issue_id, revision.error, revision.message, "revise")
                report.dropped += 1
                report.outcomes[candidate.issue_id] = PipelineState.DROPPED
                continue

            verdict = self.gate.review_fix(candidate.issue, revision.fix)
            if self.gate.classify(verdict) == ReviewOutcome.APPROVED:
                approved.append(FixCandidate(issue=candidate.issue, fix=revision.fix))
                report.revision_approved += 1
            else:
                logger.info(
                    f"Dropping fix for issue {candidate.issue_id} after revision "
                    f"({verdict.decision}, score {verdict.score})"
                )
                report.dropped += 1
                report.outcomes[candidate.issue_id] = PipelineState.DROPPED

        report.consistency = self.gate.ensure_consistency(approved)
        if not report.consistency.consistent:
            logger.warning(
                f"Approved fixes look inconsistent (score {report.consistency.score}): "
                f"{'; '.join(report.consistency.recommendations)}"
            )

        for candidate in approved:
            result = self.applier.apply(candidate.issue_id, candidate.issue, candidate.fix)
            report.results.append(result)
            if result.success:
                report.applied += 1
                report.outcomes[candidate.issue_id] = PipelineState.FIXED
            else:
                report.failed += 1
                report.outcomes[candidate.issue_id] = PipelineState.FAILED
                self._error(report, candidate.issue_id, result.error_code, result.error_message or "", "apply")

        report.message = f"Applied {report.applied} of {len(approved)} approved fixes"
        return self._finish(report)

    def _finish(self, report: RunReport) -> RunReport:
        report.completed_at = datetime.utcnow()
        logger.info(
            f"Fix run {report.run_id} finished: {report.applied} applied, {report.failed} failed, "
            f"{report.rejected} rejected, {report.revised} revised, {len(report.errors)} errors"
        )
        if self.notifier is not None:
            self.notifier.notify(report)
        return report

    def rollback(self, fix_id: int) -> RollbackResult:
        """Roll back one applied fix by its record ID."""
        return self.applier.rollback(fix_id)

    def fix_stats(self) -> dict:
        return self.applier.fix_stats()
