"""Tests for the quality gate."""

import pytest
from unittest.mock import Mock

from seo_autofix.fixer.reviewer import QualityGate
from seo_autofix.gateway import GenerationMode, GenerationResult
from seo_autofix.models import (
    FixCandidate,
    FixErrorCode,
    Issue,
    IssueType,
    ProposedFix,
    ReviewOutcome,
    ReviewVerdict,
)
from seo_autofix.profile import StaticProfileProvider

from conftest import json_result

GOOD_META = (
    "Learn how to grow juicy tomatoes in containers with our friendly step-by-step guide, "
    "from picking pots to watering and feeding."
)


def candidate(issue_id, content="Tomato Growing Guide", issue_type=IssueType.MISSING_TITLE):
    issue = Issue(id=issue_id, issue_type=issue_type, post_id=1, auto_fixable=True)
    fix = ProposedFix(issue_id=issue_id, issue_type=issue_type, content=content)
    return FixCandidate(issue=issue, fix=fix)


class TestReviewFix:
    """Tests for single-fix review."""

    @pytest.fixture(autouse=True)
    def _setup(self, profile):
        self.gateway = Mock()
        self.gate = QualityGate(self.gateway, StaticProfileProvider(profile))
        self.item = candidate(1)

    def test_parsed_verdict(self):
        self.gateway.generate.return_value = json_result(
            {"decision": "Approve", "score": 92, "reasoning": "On brand", "improvements": [], "risks": []}
        )

        verdict = self.gate.review_fix(self.item.issue, self.item.fix)

        assert verdict.decision == "approve"
        assert verdict.score == 92
        assert not verdict.fallback
        request = self.gateway.generate.call_args.args[0]
        assert request.mode == GenerationMode.JSON
        assert request.persona
        assert "Niche: home gardening" in request.prompt
        assert "PROPOSED FIX:\nTomato Growing Guide" in request.prompt

    def test_no_profile_defaults_to_approval(self):
        gate = QualityGate(self.gateway, StaticProfileProvider(None))

        verdict = gate.review_fix(self.item.issue, self.item.fix)

        assert (verdict.decision, verdict.score) == ("approve", 70)
        assert verdict.fallback
        self.gateway.generate.assert_not_called()

    @pytest.mark.parametrize(
        "code", [FixErrorCode.TIMEOUT, FixErrorCode.UPSTREAM_ERROR, FixErrorCode.MALFORMED_OUTPUT]
    )
    def test_gateway_failure_fails_open(self, code):
        """Test a reviewer outage degrades to approval at score 70."""
        self.gateway.generate.return_value = GenerationResult.failure(code, "down")

        verdict = self.gate.review_fix(self.item.issue, self.item.fix)

        assert (verdict.decision, verdict.score) == ("approve", 70)
        assert verdict.fallback

    def test_unparsable_verdict_fails_open(self):
        self.gateway.generate.return_value = json_result(["approve"])
        verdict = self.gate.review_fix(self.item.issue, self.item.fix)
        assert (verdict.decision, verdict.score) == ("approve", 70)

    def test_invalid_score_fails_open(self):
        self.gateway.generate.return_value = json_result({"decision": "approve", "score": "great"})
        verdict = self.gate.review_fix(self.item.issue, self.item.fix)
        assert verdict.fallback
        assert verdict.score == 70

    def test_overflowing_score_fails_open(self):
        """Test a score that decodes to infinity is treated as an unparsable verdict."""
        self.gateway.generate.return_value = json_result({"decision": "approve", "score": float("inf")})
        verdict = self.gate.review_fix(self.item.issue, self.item.fix)
        assert verdict.fallback
        assert (verdict.decision, verdict.score) == ("approve", 70)

    def test_fail_closed(self, profile):
        gate = QualityGate(self.gateway, StaticProfileProvider(profile), fail_mode="closed")
        self.gateway.generate.return_value = GenerationResult.failure(FixErrorCode.TIMEOUT, "down")

        verdict = gate.review_fix(self.item.issue, self.item.fix)

        assert (verdict.decision, verdict.score) == ("reject", 0)
        assert gate.classify(verdict) == ReviewOutcome.REJECTED

    def test_unknown_fail_mode(self, profile):
        with pytest.raises(ValueError):
            QualityGate(self.gateway, StaticProfileProvider(profile), fail_mode="maybe")

    def test_format_problems_added_to_risks(self):
        """Test format checks add risks without changing the decision."""
        item = candidate(2, content="Too short", issue_type=IssueType.MISSING_META_DESCRIPTION)
        self.gateway.generate.return_value = json_result(
            {"decision": "approve", "score": 90, "risks": ["Generic wording"]}
        )

        verdict = self.gate.review_fix(item.issue, item.fix)

        assert verdict.decision == "approve"
        assert verdict.risks[0] == "Generic wording"
        assert "should be between 120-160 characters" in verdict.risks[1]

    def test_stats(self):
        self.gateway.generate.side_effect = [
            json_result({"decision": "approve", "score": 90}),
            json_result({"decision": "revise", "score": 60}),
            json_result({"decision": "reject", "score": 30}),
        ]
        for _ in range(3):
            self.gate.review_fix(self.item.issue, self.item.fix)

        assert self.gate.review_stats() == {
            "total_reviews": 3,
            "approved": 1,
            "rejected": 1,
            "revised": 1,
            "avg_score": 60.0,
        }


class TestClassify:
    """Tests for the threshold decision policy."""

    def setup_method(self):
        self.gate = QualityGate(Mock(), StaticProfileProvider(None), threshold=80)

    @pytest.mark.parametrize("score", [0, 1, 50, 79, 80, 81, 99, 100])
    def test_threshold_monotonicity(self, score):
        """Test approve reaches the approved partition only at or above the threshold."""
        outcome = self.gate.classify(ReviewVerdict(decision="approve", score=score))
        if score >= 80:
            assert outcome == ReviewOutcome.APPROVED
        else:
            assert outcome == ReviewOutcome.NEEDS_REVISION

    @pytest.mark.parametrize("score", [0, 80, 100])
    def test_revise_always_needs_revision(self, score):
        assert self.gate.classify(ReviewVerdict(decision="revise", score=score)) == ReviewOutcome.NEEDS_REVISION

    @pytest.mark.parametrize("decision", ["reject", "escalate", ""])
    def test_everything_else_rejected(self, decision):
        assert self.gate.classify(ReviewVerdict(decision=decision, score=100)) == ReviewOutcome.REJECTED


class TestReviewAllFixes:
    """Tests for batch review."""

    @pytest.fixture(autouse=True)
    def _setup(self, profile):
        self.gateway = Mock()
        self.gate = QualityGate(self.gateway, StaticProfileProvider(profile), threshold=80)

    def test_partitions_are_total_and_ordered(self):
        verdicts = [
            {"decision": "approve", "score": 90},
            {"decision": "revise", "score": 60, "improvements": ["Be specific"]},
            {"decision": "reject", "score": 30, "reasoning": "Off topic"},
            {"decision": "approve", "score": 75},
            {"decision": "approve", "score": 80},
            {"decision": "nonsense", "score": 99},
        ]
        self.gateway.generate.side_effect = [json_result(v) for v in verdicts]
        candidates = [candidate(i) for i in range(1, 7)]

        batch = self.gate.review_all_fixes(candidates)

        assert [c.issue_id for c in batch.approved] == [1, 5]
        assert [e.candidate.issue_id for e in batch.needs_revision] == [2, 4]
        assert [e.candidate.issue_id for e in batch.rejected] == [3, 6]
        assert batch.needs_revision[0].improvements == ["Be specific"]
        assert batch.rejected[0].reasoning == "Off topic"
        assert batch.stats == {"total": 6, "approved": 2, "needs_revision": 2, "rejected": 2}

    def test_empty_batch(self):
        batch = self.gate.review_all_fixes([])
        assert batch.stats["total"] == 0
        self.gateway.generate.assert_not_called()


class TestEnsureConsistency:
    """Tests for the advisory consistency check."""

    @pytest.fixture(autouse=True)
    def _setup(self, profile):
        self.gateway = Mock()
        self.gate = QualityGate(self.gateway, StaticProfileProvider(profile), sample_size=10)

    def test_empty_set(self):
        report = self.gate.ensure_consistency([])
        assert (report.score, report.consistent) == (100, True)
        self.gateway.generate.assert_not_called()

    def test_no_profile(self):
        gate = QualityGate(self.gateway, StaticProfileProvider(None))
        report = gate.ensure_consistency([candidate(1)])
        assert (report.score, report.consistent) == (100, True)
        self.gateway.generate.assert_not_called()

    def test_samples_first_ten(self):
        self.gateway.generate.return_value = json_result(
            {"score": 72, "consistent": False, "recommendations": ["Unify tone"]}
        )
        approved = [candidate(i, content=f"Title number {i}") for i in range(1, 16)]

        report = self.gate.ensure_consistency(approved)

        assert report.score == 72
        assert not report.consistent
        assert report.recommendations == ["Unify tone"]
        prompt = self.gateway.generate.call_args.args[0].prompt
        assert "Title number 10" in prompt
        assert "Title number 11" not in prompt

    def test_failure_is_advisory(self):
        self.gateway.generate.return_value = GenerationResult.failure(FixErrorCode.TIMEOUT, "slow")
        report = self.gate.ensure_consistency([candidate(1)])
        assert (report.score, report.consistent) == (100, True)
        assert report.fallback

    def test_overflowing_score_is_advisory(self):
        self.gateway.generate.return_value = json_result({"score": float("inf"), "consistent": True})
        report = self.gate.ensure_consistency([candidate(1)])
        assert report.fallback
        assert report.score == 100


class TestValidateFixFormat:
    """Tests for mechanical format checks."""

    def setup_method(self):
        self.gate = QualityGate(Mock(), StaticProfileProvider(None))

    def _fix(self, issue_type, content):
        return ProposedFix(issue_id=1, issue_type=issue_type, content=content)

    def test_meta_description_in_range(self):
        assert self.gate.validate_fix_format(self._fix(IssueType.MISSING_META_DESCRIPTION, GOOD_META)) == []

    def test_meta_description_too_long(self):
        problems = self.gate.validate_fix_format(self._fix(IssueType.MISSING_META_DESCRIPTION, "x" * 200))
        assert problems == ["Meta description length (200) should be between 120-160 characters"]

    def test_alt_text_word_count(self):
        assert self.gate.validate_fix_format(self._fix(IssueType.MISSING_ALT_TEXT, "Tomatoes")) == [
            "Alt text word count (1) should be between 5-20 words"
        ]
        ok = "Ripe red tomatoes growing in a terracotta pot"
        assert self.gate.validate_fix_format(self._fix(IssueType.MISSING_ALT_TEXT, ok)) == []

    def test_other_types_unchecked(self):
        assert self.gate.validate_fix_format(self._fix(IssueType.MISSING_TITLE, "Anything")) == []

    def test_direct_answer_word_count(self):
        problems = self.gate.validate_fix_format(self._fix(IssueType.MISSING_DIRECT_ANSWER, "Use a big pot."))
        assert problems == ["Direct answer word count (4) should be between 40-80 words"]
        ok = " ".join(["word"] * 50)
        assert self.gate.validate_fix_format(self._fix(IssueType.MISSING_DIRECT_ANSWER, ok)) == []

    def test_faq_needs_pairs(self):
        empty = self._fix(IssueType.MISSING_FAQ, {"faqs": []})
        assert self.gate.validate_fix_format(empty) == ["FAQ must contain at least one question and answer"]
        ok = self._fix(IssueType.MISSING_FAQ, {"faqs": [{"question": "Why?", "answer": "Because."}]})
        assert self.gate.validate_fix_format(ok) == []
