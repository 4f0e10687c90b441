"""Quality gate.

Simulates an editorial reviewer with the site's voice in mind and decides
whether a proposed fix may be published. Reviewer outages fall back to a
policy verdict instead of raising: by default ``{approve, 70}`` (fail-open),
or ``{reject, 0}`` when the gate runs fail-closed.
"""

import json
import logging
from dataclasses import dataclass

from pydantic import ValidationError

from ..gateway import ContentGateway, GenerationMode, GenerationRequest
from ..models import (
    BatchReview,
    ConsistencyReport,
    ContentFormat,
    FixCandidate,
    Issue,
    IssueType,
    NeedsRevision,
    ProposedFix,
    RejectedFix,
    ReviewDecision,
    ReviewOutcome,
    ReviewVerdict,
    SiteProfile,
)
from ..profile import SiteContextProvider
from .strategies import FaqStrategy

logger = logging.getLogger(__name__)

REVIEWER_PERSONA = "You are a quality control manager for an SEO agency. Respond with JSON only."
FALLBACK_SCORE = 70


@dataclass
class ReviewStats:
    """Running totals for one gate instance."""
    total_reviews: int = 0
    approved: int = 0
    rejected: int = 0
    revised: int = 0
    avg_score: float = 0.0

    def record(self, verdict: ReviewVerdict):
        self.total_reviews += 1
        if verdict.decision == ReviewDecision.APPROVE.value:
            self.approved += 1
        elif verdict.decision == ReviewDecision.REVISE.value:
            self.revised += 1
        else:
            self.rejected += 1
        self.avg_score += (verdict.score - self.avg_score) / self.total_reviews


class QualityGate:
    """Reviews proposed fixes and partitions them by the threshold policy."""

    def __init__(
        self,
        gateway: ContentGateway,
        profile_provider: SiteContextProvider,
        threshold: int = 80,
        fail_mode: str = "open",
        sample_size: int = 10,
    ):
        """Initialize the gate.

        Args:
            gateway: Content generation gateway used in JSON mode
            profile_provider: Source of the site profile
            threshold: Minimum score for a direct approval
            fail_mode: "open" approves at 70 on outage, "closed" rejects at 0
            sample_size: Number of approved fixes sent to the consistency check
        """
        if fail_mode not in ("open", "closed"):
            raise ValueError(f"Unknown review fail mode: {fail_mode}")
        self.gateway = gateway
        self.profile_provider = profile_provider
        self.threshold = threshold
        self.fail_mode = fail_mode
        self.sample_size = sample_size
        self.stats = ReviewStats()

    def _fallback(self, reasoning: str) -> ReviewVerdict:
        if self.fail_mode == "closed":
            verdict = ReviewVerdict(
                decision=ReviewDecision.REJECT, score=0, reasoning=f"{reasoning}, rejecting", fallback=True
            )
        else:
            verdict = ReviewVerdict(
                decision=ReviewDecision.APPROVE,
                score=FALLBACK_SCORE,
                reasoning=f"{reasoning}, defaulting to approval",
                fallback=True,
            )
        logger.warning(f"Review fallback ({self.fail_mode}): {reasoning}")
        return verdict

    def _review_prompt(self, issue: Issue, fix: ProposedFix, profile: SiteProfile) -> str:
        issue_json = json.dumps(
            issue.model_dump(mode="json", include={"id", "issue_type", "severity", "url", "element", "description"}),
            indent=2,
        )
        return (
            "CLIENT SITE PROFILE:\n"
            f"Niche: {profile.niche}\n"
            f"Audience: {profile.audience}\n"
            f"Tone: {profile.tone}\n"
            f"Voice: {profile.voice}\n\n"
            f"ISSUE:\n{issue_json}\n\n"
            f"PROPOSED FIX:\n{fix.as_text()}\n\n"
            "EVALUATE:\n"
            "1. Does this fix match the site's brand voice and tone?\n"
            "2. Is the content quality high enough for publication?\n"
            "3. Does it serve the target audience appropriately?\n"
            "4. Are there any red flags or quality issues?\n"
            "5. Overall assessment\n\n"
            "Return JSON:\n"
            "{\n"
            '  "decision": "approve/revise/reject",\n'
            '  "score": 1-100,\n'
            '  "reasoning": "explanation",\n'
            '  "improvements": ["suggestion1", "suggestion2"],\n'
            '  "risks": ["risk1", "risk2"]\n'
            "}"
        )

    def review_fix(self, issue: Issue, fix: ProposedFix) -> ReviewVerdict:
        """Review one proposed fix.

        Args:
            issue: The issue being fixed
            fix: The proposed fix

        Returns:
            The reviewer's verdict, or the policy fallback when no profile
            exists, the gateway fails, or the verdict can't be parsed
        """
        profile = self.profile_provider.get_profile()
        if profile is None:
            verdict = ReviewVerdict(
                decision=ReviewDecision.APPROVE,
                score=FALLBACK_SCORE,
                reasoning="No site profile available - using default approval",
                fallback=True,
            )
            self.stats.record(verdict)
            return verdict

        result = self.gateway.generate(
            GenerationRequest(
                prompt=self._review_prompt(issue, fix, profile),
                mode=GenerationMode.JSON,
                persona=REVIEWER_PERSONA,
                max_tokens=2000,
                temperature=0.2,
            )
        )

        if not result.success:
            verdict = self._fallback(f"Review failed ({result.error.value if result.error else 'unknown'})")
        elif not isinstance(result.data, dict):
            verdict = self._fallback("Could not parse review")
        else:
            try:
                verdict = ReviewVerdict(**result.data)
            except (ValidationError, TypeError, OverflowError) as e:
                logger.debug(f"Invalid verdict payload: {e}")
                verdict = self._fallback("Could not parse review")
            else:
                problems = self.validate_fix_format(fix)
                if problems:
                    verdict.risks.extend(problems)

        self.stats.record(verdict)
        return verdict

    def classify(self, verdict: ReviewVerdict) -> ReviewOutcome:
        """Apply the threshold policy to a verdict."""
        if verdict.decision == ReviewDecision.APPROVE.value:
            if verdict.score >= self.threshold:
                return ReviewOutcome.APPROVED
            return ReviewOutcome.NEEDS_REVISION
        if verdict.decision == ReviewDecision.REVISE.value:
            return ReviewOutcome.NEEDS_REVISION
        return ReviewOutcome.REJECTED

    def review_all_fixes(self, candidates: list[FixCandidate]) -> BatchReview:
        """Review a batch, preserving input order within each partition."""
        batch = BatchReview()
        for candidate in candidates:
            verdict = self.review_fix(candidate.issue, candidate.fix)
            outcome = self.classify(verdict)
            if outcome == ReviewOutcome.APPROVED:
                batch.approved.append(candidate)
            elif outcome == ReviewOutcome.NEEDS_REVISION:
                batch.needs_revision.append(NeedsRevision(candidate=candidate, verdict=verdict))
            else:
                batch.rejected.append(RejectedFix(candidate=candidate, verdict=verdict))

        logger.info(
            f"Reviewed {len(candidates)} fixes: {len(batch.approved)} approved, "
            f"{len(batch.needs_revision)} need revision, {len(batch.rejected)} rejected"
        )
        return batch

    def ensure_consistency(self, approved: list[FixCandidate]) -> ConsistencyReport:
        """Advisory check of tone and patterns across the approved set."""
        profile = self.profile_provider.get_profile()
        if profile is None or not approved:
            return ConsistencyReport()

        sample = [
            {
                "issue_id": candidate.issue_id,
                "issue_type": candidate.fix.issue_type.value,
                "fix": candidate.fix.content,
            }
            for candidate in approved[: self.sample_size]
        ]
        prompt = (
            "You're reviewing SEO fixes for consistency across a website.\n\n"
            "SITE PROFILE:\n"
            f"Niche: {profile.niche}\n"
            f"Tone: {profile.tone}\n\n"
            "ALL FIXES (sample):\n"
            f"{json.dumps(sample, indent=2, ensure_ascii=False)}\n\n"
            "CHECK:\n"
            "1. Are meta descriptions consistent in tone?\n"
            "2. Do alt texts follow a pattern?\n"
            "3. Is keyword usage natural across content?\n"
            "4. Any conflicting approaches?\n\n"
            "Return JSON:\n"
            "{\n"
            '  "score": 1-100,\n'
            '  "consistent": true/false,\n'
            '  "recommendations": ["rec1", "rec2"]\n'
            "}"
        )
        result = self.gateway.generate(
            GenerationRequest(prompt=prompt, mode=GenerationMode.JSON, persona=REVIEWER_PERSONA, max_tokens=2500)
        )

        if not result.success or not isinstance(result.data, dict):
            logger.warning("Consistency check unavailable, assuming consistent")
            return ConsistencyReport(fallback=True)

        try:
            return ConsistencyReport(**result.data)
        except (ValidationError, TypeError, OverflowError) as e:
            logger.warning(f"Could not parse consistency report: {e}")
            return ConsistencyReport(fallback=True)

    def validate_fix_format(self, fix: ProposedFix) -> list[str]:
        """Mechanical format checks. Returns a list of problems, empty if none."""
        errors: list[str] = []
        text = fix.content if isinstance(fix.content, str) else ""

        if fix.issue_type == IssueType.MISSING_META_DESCRIPTION:
            if not text:
                errors.append("Meta description must be a non-empty string")
            elif not 120 <= len(text) <= 160:
                errors.append(f"Meta description length ({len(text)}) should be between 120-160 characters")
        elif fix.issue_type == IssueType.MISSING_ALT_TEXT:
            if not text:
                errors.append("Alt text must be a non-empty string")
            else:
                words = len(text.split())
                if not 5 <= words <= 20:
                    errors.append(f"Alt text word count ({words}) should be between 5-20 words")
        elif fix.issue_type == IssueType.MISSING_DIRECT_ANSWER:
            words = len(text.split())
            if not 40 <= words <= 80:
                errors.append(f"Direct answer word count ({words}) should be between 40-80 words")
        elif fix.issue_type == IssueType.MISSING_FAQ:
            if not FaqStrategy.pairs(fix.content):
                errors.append("FAQ must contain at least one question and answer")
        elif fix.format == ContentFormat.HTML and not text.strip():
            errors.append("Content must be a non-empty string")

        return errors

    def review_stats(self) -> dict[str, float]:
        return {
            "total_reviews": self.stats.total_reviews,
            "approved": self.stats.approved,
            "rejected": self.stats.rejected,
            "revised": self.stats.revised,
            "avg_score": round(self.stats.avg_score, 2),
        }
