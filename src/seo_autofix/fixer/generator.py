"""Fix generator.

Turns an Issue into a ProposedFix by dispatching on its type to a
FixStrategy. Unsupported types fail before any gateway call. The generator
never inspects fix quality and never writes to the content store.
"""

import json
import logging
import time
from dataclasses import dataclass
from typing import Optional

from ..gateway import ContentGateway, GenerationMode, GenerationRequest
from ..models import ContentFormat, FixErrorCode, Issue, ProposedFix, SiteProfile
from ..storage import SQLiteContentStore
from .strategies import GenerationError, build_content_context, clean_generated_text, get_strategy

logger = logging.getLogger(__name__)


@dataclass
class FixGenerationResult:
    """Result of attempting to generate (or revise) a fix."""
    success: bool
    message: str
    fix: Optional[ProposedFix] = None
    error: Optional[FixErrorCode] = None
    gateway_called: bool = False

    @classmethod
    def failure(cls, error: FixErrorCode, message: str, gateway_called: bool = False):
        return cls(success=False, message=message, error=error, gateway_called=gateway_called)


class FixGenerator:
    """Generates proposed fixes for issues."""

    def __init__(
        self,
        gateway: ContentGateway,
        content_store: SQLiteContentStore,
        target_word_count: int = 800,
        rate_limit_seconds: float = 0.0,
    ):
        """Initialize the generator.

        Args:
            gateway: Content generation gateway
            content_store: Read access to the posts being fixed
            target_word_count: Word count thin content is expanded to
            rate_limit_seconds: Minimum spacing between gateway calls
        """
        self.gateway = gateway
        self.content_store = content_store
        self.target_word_count = target_word_count
        self.rate_limit_seconds = rate_limit_seconds
        self._last_call: Optional[float] = None

    def _throttle(self):
        if self.rate_limit_seconds <= 0:
            return
        if self._last_call is not None:
            wait = self.rate_limit_seconds - (time.monotonic() - self._last_call)
            if wait > 0:
                time.sleep(wait)
        self._last_call = time.monotonic()

    def generate_fix(self, issue: Issue, profile: Optional[SiteProfile]) -> FixGenerationResult:
        """Generate a fix for one issue.

        Args:
            issue: The issue to fix; must be auto-fixable
            profile: Site profile, or None if it hasn't been built yet

        Returns:
            FixGenerationResult with the proposed fix or a typed failure
        """
        if not issue.auto_fixable:
            return FixGenerationResult.failure(
                FixErrorCode.NOT_AUTO_FIXABLE, f"Issue {issue.id} is not auto-fixable"
            )

        strategy = get_strategy(issue.issue_type)
        if strategy is None:
            return FixGenerationResult.failure(
                FixErrorCode.UNSUPPORTED_ISSUE_TYPE,
                f"Unsupported issue type: {issue.issue_type.value}",
            )

        if strategy.requires_profile and profile is None:
            return FixGenerationResult.failure(FixErrorCode.NO_PROFILE, "Site profile not built yet")

        post = self.content_store.get_post(issue.post_id) if issue.post_id is not None else None
        if post is None:
            return FixGenerationResult.failure(
                FixErrorCode.POST_NOT_FOUND, f"Post {issue.post_id} not found"
            )

        context = build_content_context(post, profile, self.content_store, self.target_word_count)

        if not strategy.uses_gateway:
            try:
                content = strategy.propose_locally(issue, context)
            except GenerationError as e:
                return FixGenerationResult.failure(e.code, e.message)
            return FixGenerationResult(
                success=True,
                message=f"Generated {issue.issue_type.value} fix locally",
                fix=strategy.make_fix(issue, content),
            )

        self._throttle()
        result = self.gateway.generate(strategy.build_request(issue, context))
        if not result.success:
            logger.warning(f"Generation failed for issue {issue.id}: {result.error} {result.message}")
            return FixGenerationResult.failure(
                result.error or FixErrorCode.UPSTREAM_ERROR, result.message, gateway_called=True
            )

        try:
            content = strategy.parse_result(result)
        except GenerationError as e:
            return FixGenerationResult.failure(e.code, e.message, gateway_called=True)

        logger.info(f"Generated {issue.issue_type.value} fix for issue {issue.id}")
        return FixGenerationResult(
            success=True,
            message=f"Generated {issue.issue_type.value} fix",
            fix=strategy.make_fix(issue, content),
            gateway_called=True,
        )

    def revise_fix(self, fix: ProposedFix, improvements: list[str]) -> FixGenerationResult:
        """Ask the gateway to rework a fix using reviewer feedback.

        Returns the original fix unchanged when there is nothing to act on,
        or when its strategy marks the content as not revisable.
        """
        if not improvements:
            return FixGenerationResult(success=True, message="No improvements requested", fix=fix)

        strategy = get_strategy(fix.issue_type)
        if strategy is not None and not strategy.revisable:
            logger.info(f"Keeping {fix.issue_type.value} fix for issue {fix.issue_id} as generated")
            return FixGenerationResult(
                success=True, message=f"{fix.issue_type.value} fixes are not revisable", fix=fix
            )

        structured = fix.format == ContentFormat.JSON
        prompt = (
            "Improve this SEO fix based on feedback:\n\n"
            f"ORIGINAL:\n{fix.as_text()}\n\n"
            "IMPROVEMENTS NEEDED:\n" + "\n".join(f"- {item}" for item in improvements) + "\n\n"
        )
        if structured:
            prompt += "Return the improved JSON object ONLY, no explanation."
        else:
            prompt += "Return the improved version ONLY, no explanation."

        self._throttle()
        result = self.gateway.generate(
            GenerationRequest(
                prompt=prompt,
                mode=GenerationMode.JSON if structured else GenerationMode.TEXT,
                max_tokens=4000 if fix.format == ContentFormat.HTML else 1000,
            )
        )
        if not result.success:
            logger.warning(f"Revision failed for issue {fix.issue_id}: {result.error} {result.message}")
            return FixGenerationResult.failure(
                result.error or FixErrorCode.UPSTREAM_ERROR, result.message, gateway_called=True
            )

        if structured:
            content = result.data
            if not isinstance(content, dict):
                return FixGenerationResult.failure(
                    FixErrorCode.MALFORMED_OUTPUT,
                    f"Revised fix is not a JSON object: {json.dumps(content)[:100]}",
                    gateway_called=True,
                )
        else:
            content = clean_generated_text(result.content or "")
            if not content:
                return FixGenerationResult.failure(
                    FixErrorCode.MALFORMED_OUTPUT, "Revision was empty", gateway_called=True
                )

        return FixGenerationResult(
            success=True,
            message="Fix revised",
            fix=fix.model_copy(update={"content": content, "revision": fix.revision + 1}),
            gateway_called=True,
        )
