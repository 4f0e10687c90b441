"""Pydantic models for the SEO autofix pipeline.

Defines issues, proposed fixes, review verdicts, audit records and run reports.
"""

import json
import math
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, Field, field_validator


class Severity(str, Enum):
    """Issue severity levels."""
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


class IssueStatus(str, Enum):
    """Lifecycle status of a detected issue."""
    PENDING = "pending"
    FIXED = "fixed"
    IGNORED = "ignored"
    FAILED = "failed"


class IssueType(str, Enum):
    """Kinds of issues emitted by the technical analyzer."""
    MISSING_META_DESCRIPTION = "missing_meta_description"
    THIN_CONTENT = "thin_content"
    MISSING_ALT_TEXT = "missing_alt_text"
    MISSING_TITLE = "missing_title"
    MISSING_SCHEMA = "missing_schema"
    MISSING_H1 = "missing_h1"
    DUPLICATE_TITLE = "duplicate_title"
    BROKEN_INTERNAL_LINK = "broken_internal_link"
    # AI search readiness
    MISSING_DIRECT_ANSWER = "missing_direct_answer"
    MISSING_FAQ = "missing_faq"
    # Detection-only: reported by the analyzer, never auto-fixed
    MULTIPLE_H1 = "multiple_h1"
    SLOW_LOAD_TIME = "slow_load_time"


class ContentFormat(str, Enum):
    """How the content of a proposed fix should be interpreted."""
    TEXT = "text"
    HTML = "html"
    JSON = "json"


class ReviewDecision(str, Enum):
    """Decisions the reviewer can return."""
    APPROVE = "approve"
    REVISE = "revise"
    REJECT = "reject"


class ReviewOutcome(str, Enum):
    """Partition a reviewed fix lands in after applying the threshold policy."""
    APPROVED = "approved"
    NEEDS_REVISION = "needs_revision"
    REJECTED = "rejected"


class FixErrorCode(str, Enum):
    """Error taxonomy for generation, application and rollback."""
    # Gateway
    NO_CREDENTIAL = "no_credential"
    UPSTREAM_ERROR = "upstream_error"
    MALFORMED_OUTPUT = "malformed_output"
    TIMEOUT = "timeout"
    # Generation
    NO_PROFILE = "no_profile"
    POST_NOT_FOUND = "post_not_found"
    UNSUPPORTED_ISSUE_TYPE = "unsupported_issue_type"
    LINK_NOT_FOUND = "link_not_found"
    # Batch selection
    ISSUE_NOT_FOUND = "issue_not_found"
    NOT_AUTO_FIXABLE = "not_auto_fixable"
    ISSUE_NOT_OPEN = "issue_not_open"
    OVER_RUN_LIMIT = "over_run_limit"
    # Application / rollback
    NO_APPLY_LOGIC = "no_apply_logic"
    RESOURCE_LOCKED = "resource_locked"
    WRITE_FAILED = "write_failed"
    FIX_NOT_FOUND = "fix_not_found"
    ALREADY_ROLLED_BACK = "already_rolled_back"


class PipelineState(str, Enum):
    """Terminal state of an issue within one pipeline run."""
    GENERATION_FAILED = "generation_failed"
    REJECTED = "rejected"
    DROPPED = "dropped"
    FIXED = "fixed"
    FAILED = "failed"
    SKIPPED = "skipped"


def _bounded_score(value: Any) -> int:
    """Round a reviewer score into 0-100; NaN and infinities are invalid."""
    score = float(value)
    if not math.isfinite(score):
        raise ValueError(f"Score must be a finite number, got {value!r}")
    return max(0, min(100, int(round(score))))


class Issue(BaseModel):
    """A detected problem awaiting remediation."""
    id: Optional[int] = None
    issue_type: IssueType
    severity: Severity = Severity.WARNING
    post_id: Optional[int] = Field(None, description="Post the issue was found on")
    url: Optional[str] = Field(None, description="Page or asset URL the issue refers to")
    element: Optional[str] = Field(None, description="Offending element, e.g. a broken href")
    description: str = ""
    auto_fixable: bool = False
    status: IssueStatus = IssueStatus.PENDING
    priority_score: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.status in (IssueStatus.PENDING, IssueStatus.FAILED)


class Post(BaseModel):
    """A piece of site content targeted by fixes."""
    id: int
    title: str
    content: str = ""
    category: str = "General"
    author: Optional[str] = None
    published_at: Optional[datetime] = None
    modified_at: Optional[datetime] = None


class SiteProfile(BaseModel):
    """Brand-voice context for generation and review."""
    niche: str = "general"
    audience: str = "general readers"
    tone: str = "professional"
    voice: str = "third person"
    content_approach: str = "informational"
    site_name: Optional[str] = None


class ProposedFix(BaseModel):
    """Generated remediation content for a single issue."""
    issue_id: int
    issue_type: IssueType
    content: Union[dict[str, Any], str]
    format: ContentFormat = ContentFormat.TEXT
    revision: int = 0

    def as_text(self) -> str:
        """Serialized form stored in the audit log."""
        if isinstance(self.content, str):
            return self.content
        return json.dumps(self.content, indent=2, ensure_ascii=False)


class FixCandidate(BaseModel):
    """An issue paired with its proposed fix while it moves through review."""
    issue: Issue
    fix: ProposedFix

    @property
    def issue_id(self) -> int:
        return self.issue.id


class ReviewVerdict(BaseModel):
    """Reviewer output for one proposed fix."""
    decision: str = ReviewDecision.REJECT.value
    score: int = Field(0, ge=0, le=100)
    reasoning: str = ""
    improvements: list[str] = Field(default_factory=list)
    risks: list[str] = Field(default_factory=list)
    fallback: bool = Field(False, description="True when produced by a policy default")

    @field_validator("decision", mode="before")
    @classmethod
    def _normalize_decision(cls, value: Any) -> str:
        if isinstance(value, Enum):
            value = value.value
        return str(value or "").strip().lower()

    @field_validator("score", mode="before")
    @classmethod
    def _clamp_score(cls, value: Any) -> int:
        if value is None:
            return 0
        return _bounded_score(value)

    @field_validator("improvements", "risks", mode="before")
    @classmethod
    def _as_list(cls, value: Any) -> list:
        if value is None:
            return []
        if isinstance(value, str):
            return [value] if value.strip() else []
        return [str(item) for item in value]


class NeedsRevision(BaseModel):
    candidate: FixCandidate
    verdict: ReviewVerdict

    @property
    def improvements(self) -> list[str]:
        return self.verdict.improvements


class RejectedFix(BaseModel):
    candidate: FixCandidate
    verdict: ReviewVerdict

    @property
    def reasoning(self) -> str:
        return self.verdict.reasoning or "Quality too low"


class BatchReview(BaseModel):
    """Partitions produced by reviewing a batch of fixes."""
    approved: list[FixCandidate] = Field(default_factory=list)
    needs_revision: list[NeedsRevision] = Field(default_factory=list)
    rejected: list[RejectedFix] = Field(default_factory=list)

    @property
    def stats(self) -> dict[str, int]:
        return {
            "total": len(self.approved) + len(self.needs_revision) + len(self.rejected),
            "approved": len(self.approved),
            "needs_revision": len(self.needs_revision),
            "rejected": len(self.rejected),
        }


class ConsistencyReport(BaseModel):
    """Advisory cross-fix consistency assessment."""
    score: int = Field(100, ge=0, le=100)
    consistent: bool = True
    recommendations: list[str] = Field(default_factory=list)
    fallback: bool = False

    @field_validator("score", mode="before")
    @classmethod
    def _clamp_score(cls, value: Any) -> int:
        if value is None:
            return 100
        return _bounded_score(value)

    @field_validator("recommendations", mode="before")
    @classmethod
    def _as_list(cls, value: Any) -> list:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return [str(item) for item in value]


class FixRecord(BaseModel):
    """Append-only audit row for every attempted mutation."""
    id: Optional[int] = None
    issue_id: int
    fix_type: IssueType
    applied_at: datetime = Field(default_factory=datetime.utcnow)
    applied_by: str
    before_value: Optional[str] = None
    after_value: Optional[str] = None
    success: bool
    error_message: Optional[str] = None
    rollback_available: bool = False
    reverts_fix_id: Optional[int] = Field(None, description="Set on records written by a rollback")


class ApplyResult(BaseModel):
    """Outcome of applying one approved fix."""
    issue_id: int
    fix_id: Optional[int] = None
    success: bool
    error_code: Optional[FixErrorCode] = None
    error_message: Optional[str] = None


class RollbackResult(BaseModel):
    """Outcome of rolling back one fix record."""
    fix_id: int
    success: bool
    message: str
    issue_id: Optional[int] = None
    reversal_fix_id: Optional[int] = None
    restored_value: Optional[str] = None
    error_code: Optional[FixErrorCode] = None


class RunError(BaseModel):
    """A per-issue error contained within a pipeline run."""
    issue_id: int
    code: FixErrorCode
    message: str
    stage: str = "generate"


class RunReport(BaseModel):
    """Aggregate result of one pipeline run."""
    run_id: str
    started_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    message: str = ""
    applied: int = 0
    failed: int = 0
    rejected: int = 0
    revised: int = 0
    revision_approved: int = 0
    dropped: int = 0
    consistency: Optional[ConsistencyReport] = None
    results: list[ApplyResult] = Field(default_factory=list)
    outcomes: dict[int, PipelineState] = Field(default_factory=dict)
    errors: list[RunError] = Field(default_factory=list)
    review_summary: dict[str, int] = Field(default_factory=dict)

    @property
    def consistency_score(self) -> int:
        return self.consistency.score if self.consistency else 100

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.completed_at and self.started_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None
