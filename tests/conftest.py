"""Shared fixtures for the autofix tests."""

import json
from typing import Callable, Optional

import pytest

from seo_autofix.fixer import FixApplier, FixGenerator, FixOrchestrator, QualityGate, ResourceLocks
from seo_autofix.gateway import GenerationRequest, GenerationResult
from seo_autofix.models import Issue, IssueType, Post, SiteProfile
from seo_autofix.profile import StaticProfileProvider
from seo_autofix.storage import SQLiteContentStore, SQLiteStore


def text_result(text: str) -> GenerationResult:
    return GenerationResult(success=True, content=text)


def json_result(data) -> GenerationResult:
    return GenerationResult(success=True, content=json.dumps(data), data=data)


def proposed_fix_text(request: GenerationRequest) -> str:
    """The fix text embedded in a review prompt."""
    return request.prompt.split("PROPOSED FIX:\n", 1)[1].split("\n\nEVALUATE", 1)[0]


Handler = Callable[[GenerationRequest], GenerationResult]


class ScriptedGateway:
    """Routes requests to per-purpose handlers and records every call."""

    def __init__(
        self,
        generate: Optional[Handler] = None,
        review: Optional[Handler] = None,
        revise: Optional[Handler] = None,
        consistency: Optional[Handler] = None,
    ):
        self.handlers = {
            "generate": generate,
            "review": review,
            "revise": revise,
            "consistency": consistency,
        }
        self.requests: list[tuple[str, GenerationRequest]] = []

    def _purpose(self, request: GenerationRequest) -> str:
        if request.prompt.startswith("Improve this SEO fix"):
            return "revise"
        if "consistency across a website" in request.prompt:
            return "consistency"
        if "PROPOSED FIX:" in request.prompt:
            return "review"
        return "generate"

    def calls(self, purpose: str) -> list[GenerationRequest]:
        return [request for kind, request in self.requests if kind == purpose]

    def generate(self, request: GenerationRequest) -> GenerationResult:
        purpose = self._purpose(request)
        self.requests.append((purpose, request))
        handler = self.handlers[purpose]
        if handler is None:
            raise AssertionError(f"Unexpected {purpose} request")
        return handler(request)


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "autofix.db"


@pytest.fixture
def store(db_path):
    return SQLiteStore(db_path)


@pytest.fixture
def content_store(db_path):
    return SQLiteContentStore(db_path)


@pytest.fixture
def profile():
    return SiteProfile(
        niche="home gardening",
        audience="beginner gardeners",
        tone="friendly",
        voice="second person",
        content_approach="how-to guides",
        site_name="Green Thumb Weekly",
    )


@pytest.fixture
def post(content_store):
    return content_store.save_post(
        Post(
            id=1,
            title="How to Grow Tomatoes in Containers",
            content="<p>Tomatoes love sun. Pick a big pot.</p>",
            category="Vegetables",
            author="Dana Reyes",
        )
    )


def make_issue(store: SQLiteStore, issue_type: IssueType, post_id: Optional[int] = 1, **fields) -> Issue:
    fields.setdefault("auto_fixable", True)
    fields.setdefault("url", "https://example.com/tomatoes")
    return store.save_issue(Issue(issue_type=issue_type, post_id=post_id, **fields))


def build_orchestrator(
    store: SQLiteStore,
    content_store: SQLiteContentStore,
    gateway,
    profile: Optional[SiteProfile],
    threshold: int = 80,
    max_fixes_per_run: int = 50,
    notifier=None,
) -> FixOrchestrator:
    provider = StaticProfileProvider(profile)
    return FixOrchestrator(
        store=store,
        generator=FixGenerator(gateway, content_store),
        gate=QualityGate(gateway, provider, threshold=threshold),
        applier=FixApplier(store, content_store, locks=ResourceLocks(timeout=1.0)),
        profile_provider=provider,
        max_fixes_per_run=max_fixes_per_run,
        notifier=notifier,
    )
