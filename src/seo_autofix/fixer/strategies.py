"""Per-issue-type fix strategies.

Each auto-fixable IssueType maps to exactly one FixStrategy, which knows how
to produce a fix (via the gateway or locally), which resource it mutates, and
how to read, write and restore that resource. The generator and the applier
dispatch through STRATEGIES; detection-only types are listed in UNSUPPORTED.
"""

import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from ..gateway import GenerationMode, GenerationRequest, GenerationResult
from ..models import (
    ContentFormat,
    FixErrorCode,
    Issue,
    IssueType,
    Post,
    ProposedFix,
    SiteProfile,
)
from ..storage import ResourceError, SQLiteContentStore

STOP_WORDS = {
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
    "with", "by", "from", "as", "is", "was", "are", "were", "been", "be", "have",
    "has", "had", "do", "does", "did", "will", "would", "should", "could", "may",
    "might", "must", "can", "this", "that", "these", "those", "i", "you", "he",
    "she", "it", "we", "they", "what", "which", "who", "when", "where", "why", "how",
}


class GenerationError(Exception):
    """A strategy could not produce a fix for an issue."""

    def __init__(self, code: FixErrorCode, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


@dataclass
class ContentContext:
    """What the prompts know about the post being fixed."""
    post: Post
    profile: Optional[SiteProfile]
    keywords: list[str] = field(default_factory=list)
    related_topics: list[str] = field(default_factory=list)
    summary: str = ""
    word_count: int = 0
    target_word_count: int = 800


def strip_html(html: str) -> str:
    return BeautifulSoup(html or "", "html.parser").get_text(" ", strip=True)


def trim_words(text: str, limit: int) -> str:
    words = text.split()
    if len(words) <= limit:
        return " ".join(words)
    return " ".join(words[:limit]) + "..."


def extract_keywords(title: str, limit: int = 5) -> list[str]:
    """Title words minus stop words, in order, deduplicated."""
    keywords: list[str] = []
    for word in re.findall(r"[a-z0-9][a-z0-9'-]*", title.lower()):
        if word not in STOP_WORDS and word not in keywords:
            keywords.append(word)
    return keywords[:limit]


def build_content_context(
    post: Post,
    profile: Optional[SiteProfile],
    content_store: SQLiteContentStore,
    target_word_count: int = 800,
) -> ContentContext:
    text = strip_html(post.content)
    return ContentContext(
        post=post,
        profile=profile,
        keywords=extract_keywords(post.title),
        related_topics=content_store.related_titles(post.id, post.category),
        summary=trim_words(text, 50),
        word_count=len(text.split()),
        target_word_count=target_word_count,
    )


def clean_generated_text(text: str) -> str:
    """Strip code fences and wrapping quotes models like to add."""
    text = text.strip()
    fenced = re.match(r"^```[a-zA-Z]*\s*(.*?)\s*```$", text, re.DOTALL)
    if fenced:
        text = fenced.group(1).strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in "\"'":
        text = text[1:-1].strip()
    return text


# -- mutation targets ---------------------------------------------------------


class ResourceTarget(ABC):
    """One mutable field of the content store."""

    @abstractmethod
    def key(self, issue: Issue) -> str:
        """Lock key identifying the resource."""

    @abstractmethod
    def read(self, issue: Issue, store: SQLiteContentStore) -> str:
        ...

    @abstractmethod
    def write(self, issue: Issue, store: SQLiteContentStore, value: str) -> None:
        ...


def _require_post_id(issue: Issue) -> int:
    if issue.post_id is None:
        raise ResourceError(f"Issue {issue.id} has no target post")
    return issue.post_id


class PostMetaTarget(ResourceTarget):
    def __init__(self, meta_key: str):
        self.meta_key = meta_key

    def key(self, issue: Issue) -> str:
        return f"post:{issue.post_id}:meta:{self.meta_key}"

    def read(self, issue, store):
        return store.get_post_meta(_require_post_id(issue), self.meta_key)

    def write(self, issue, store, value):
        store.set_post_meta(_require_post_id(issue), self.meta_key, value)


class PostBodyTarget(ResourceTarget):
    def key(self, issue: Issue) -> str:
        return f"post:{issue.post_id}:body"

    def read(self, issue, store):
        post = store.get_post(_require_post_id(issue))
        if post is None:
            raise ResourceError(f"Post {issue.post_id} not found")
        return post.content

    def write(self, issue, store, value):
        store.update_post_content(_require_post_id(issue), value)


class PostBodyWithMetaTarget(PostBodyTarget):
    """Post body plus one meta field, snapshotted together as a JSON object.

    Shares the body lock key: only strategies on this target write the meta field.
    """

    def __init__(self, meta_key: str):
        self.meta_key = meta_key

    def read(self, issue, store):
        body = super().read(issue, store)
        meta = store.get_post_meta(_require_post_id(issue), self.meta_key)
        return json.dumps({"body": body, "meta": meta}, ensure_ascii=False)

    def write(self, issue, store, value):
        snapshot = json.loads(value)
        super().write(issue, store, snapshot["body"])
        store.set_post_meta(_require_post_id(issue), self.meta_key, snapshot["meta"])


class AttachmentAltTarget(ResourceTarget):
    def key(self, issue: Issue) -> str:
        return f"attachment:{issue.url}:alt"

    def read(self, issue, store):
        if not issue.url:
            raise ResourceError(f"Issue {issue.id} has no image URL")
        return store.get_attachment_alt(issue.url)

    def write(self, issue, store, value):
        if not issue.url:
            raise ResourceError(f"Issue {issue.id} has no image URL")
        store.set_attachment_alt(issue.url, value)


# -- strategies ---------------------------------------------------------------


class FixStrategy(ABC):
    """Generation and apply/rollback logic for one issue type."""

    issue_type: IssueType
    target: ResourceTarget
    output_format: ContentFormat = ContentFormat.TEXT
    requires_profile: bool = False
    uses_gateway: bool = True
    # False when the content is an identifier the apply step must find again
    revisable: bool = True
    max_tokens: int = 300

    def build_request(self, issue: Issue, context: ContentContext) -> GenerationRequest:
        """Prompt for gateway-backed strategies."""
        raise NotImplementedError(f"{type(self).__name__} does not call the gateway")

    def propose_locally(self, issue: Issue, context: ContentContext) -> Any:
        """Content for strategies that need no gateway call."""
        raise NotImplementedError(f"{type(self).__name__} requires the gateway")

    def parse_result(self, result: GenerationResult) -> Any:
        content = clean_generated_text(result.content or "")
        if not content:
            raise GenerationError(FixErrorCode.MALFORMED_OUTPUT, "Gateway returned empty content")
        return content

    def make_fix(self, issue: Issue, content: Any, revision: int = 0) -> ProposedFix:
        return ProposedFix(
            issue_id=issue.id,
            issue_type=self.issue_type,
            content=content,
            format=self.output_format,
            revision=revision,
        )

    def resource_key(self, issue: Issue) -> str:
        return self.target.key(issue)

    def read_current(self, issue: Issue, store: SQLiteContentStore) -> str:
        return self.target.read(issue, store)

    def build_value(self, issue: Issue, current: str, fix: ProposedFix) -> str:
        """Value written to the target given its current value."""
        return fix.as_text()

    def write(self, issue: Issue, store: SQLiteContentStore, value: str) -> None:
        self.target.write(issue, store, value)

    def rollback(self, issue: Issue, store: SQLiteContentStore, before_value: str) -> None:
        """Restore a snapshot through the same write path used to apply."""
        self.write(issue, store, before_value)


def _site_context_lines(profile: SiteProfile) -> str:
    return (
        f"- Audience: {profile.audience}\n"
        f"- Tone: {profile.tone}\n"
        f"- Content Approach: {profile.content_approach}\n"
    )


class MetaDescriptionStrategy(FixStrategy):
    issue_type = IssueType.MISSING_META_DESCRIPTION
    target = PostMetaTarget("meta_description")
    requires_profile = True

    def build_request(self, issue, context):
        post, profile = context.post, context.profile
        prompt = (
            f"You are an SEO expert for a {profile.niche} website.\n\n"
            "SITE CONTEXT:\n"
            f"{_site_context_lines(profile)}\n"
            "ARTICLE CONTEXT:\n"
            f"- Title: {post.title}\n"
            f"- Category: {post.category}\n"
            f"- Related Topics: {', '.join(context.related_topics[:3])}\n"
            f"- Primary Keywords: {', '.join(context.keywords[:3])}\n"
            f"- Content Summary: {context.summary}\n\n"
            "Write a compelling 150-160 character meta description that:\n"
            "1. Matches our site's tone and audience\n"
            "2. Includes the primary keyword naturally\n"
            "3. Addresses user search intent\n"
            "4. Encourages clicks\n\n"
            "Return ONLY the meta description, no explanation."
        )
        return GenerationRequest(prompt=prompt, max_tokens=self.max_tokens)


class ThinContentStrategy(FixStrategy):
    issue_type = IssueType.THIN_CONTENT
    target = PostBodyTarget()
    output_format = ContentFormat.HTML
    requires_profile = True
    max_tokens = 4000

    def build_request(self, issue, context):
        post, profile = context.post, context.profile
        prompt = (
            f"You are a content writer for a {profile.niche} website.\n\n"
            "BRAND VOICE:\n"
            f"- Tone: {profile.tone}\n"
            f"- Voice: {profile.voice}\n\n"
            "TARGET AUDIENCE:\n"
            f"{profile.audience}\n\n"
            "CURRENT ARTICLE:\n"
            f"Title: {post.title}\n"
            f"Current word count: {context.word_count}\n"
            f"Current content:\n{trim_words(strip_html(post.content), 500)}\n\n"
            "TASK:\n"
            f"Expand this article to approximately {context.target_word_count} words by adding:\n"
            "1. Missing information a reader would expect\n"
            "2. Practical examples relevant to our audience\n"
            "3. Data or statistics where relevant\n"
            "4. An FAQ section if helpful\n"
            "5. Actionable takeaways\n\n"
            "Match the existing writing style exactly.\n"
            "Return the expanded content in HTML, ready to replace the current content."
        )
        return GenerationRequest(prompt=prompt, max_tokens=self.max_tokens, temperature=0.7)


class AltTextStrategy(FixStrategy):
    issue_type = IssueType.MISSING_ALT_TEXT
    target = AttachmentAltTarget()
    requires_profile = True
    max_tokens = 200

    def build_request(self, issue, context):
        post, profile = context.post, context.profile
        prompt = (
            f"Write alt text for an image on a {profile.niche} website.\n\n"
            "CONTEXT:\n"
            f"- Image URL: {issue.url}\n"
            f"- Article Title: {post.title}\n"
            f"- Article Summary: {context.summary}\n"
            f"- Keywords: {', '.join(context.keywords[:3])}\n\n"
            "Create alt text that:\n"
            "1. Describes the image accurately in 5-20 words\n"
            "2. Relates it to the article topic\n"
            "3. Includes a keyword only where natural\n"
            "4. Helps visually impaired users\n\n"
            "Return ONLY the alt text, no explanation."
        )
        return GenerationRequest(prompt=prompt, max_tokens=self.max_tokens)


class TitleTagStrategy(FixStrategy):
    issue_type = IssueType.MISSING_TITLE
    target = PostMetaTarget("seo_title")
    requires_profile = True
    max_tokens = 200

    def build_request(self, issue, context):
        post, profile = context.post, context.profile
        prompt = (
            "Create an SEO-optimized title tag for this article.\n\n"
            "CONTEXT:\n"
            f"- Niche: {profile.niche}\n"
            f"- Current Title: {post.title}\n"
            f"- Category: {post.category}\n"
            f"- Keywords: {', '.join(context.keywords[:3])}\n\n"
            "Create a title tag that:\n"
            "1. Is 50-60 characters\n"
            "2. Includes the primary keyword\n"
            "3. Is compelling for clicks\n"
            "4. Accurately represents the content\n\n"
            "Return ONLY the title tag, no explanation."
        )
        return GenerationRequest(prompt=prompt, max_tokens=self.max_tokens)


class DuplicateTitleStrategy(FixStrategy):
    issue_type = IssueType.DUPLICATE_TITLE
    target = PostMetaTarget("seo_title")
    max_tokens = 200

    def build_request(self, issue, context):
        prompt = (
            f"Create a unique SEO title variation for: '{context.post.title}'\n\n"
            "Keep the same meaning but make it unique. 50-60 characters.\n"
            "Return ONLY the title, no explanation."
        )
        return GenerationRequest(prompt=prompt, max_tokens=self.max_tokens)


class SchemaMarkupStrategy(FixStrategy):
    issue_type = IssueType.MISSING_SCHEMA
    target = PostMetaTarget("schema_markup")
    output_format = ContentFormat.JSON
    uses_gateway = False

    def propose_locally(self, issue, context):
        post = context.post
        schema: dict[str, Any] = {
            "@context": "https://schema.org",
            "@type": "Article",
            "headline": post.title,
            "description": context.summary,
        }
        if post.published_at:
            schema["datePublished"] = post.published_at.isoformat()
        if post.modified_at:
            schema["dateModified"] = post.modified_at.isoformat()
        if post.author:
            schema["author"] = {"@type": "Person", "name": post.author}
        if context.profile and context.profile.site_name:
            schema["publisher"] = {"@type": "Organization", "name": context.profile.site_name}
        return schema


class HeadingStrategy(FixStrategy):
    """Uses the post title as the H1 and inserts it at the top of the body."""

    issue_type = IssueType.MISSING_H1
    target = PostBodyTarget()
    uses_gateway = False

    def propose_locally(self, issue, context):
        return context.post.title

    def build_value(self, issue, current, fix):
        soup = BeautifulSoup(current or "", "html.parser")
        heading = soup.find("h1")
        if heading is not None:
            heading.string = fix.as_text()
        else:
            heading = soup.new_tag("h1")
            heading.string = fix.as_text()
            soup.insert(0, heading)
        return str(soup)


def _same_link(href: str, target: str, base: Optional[str]) -> bool:
    def normalize(value: str) -> str:
        return urljoin(base or "", value.strip()).rstrip("/")
    return normalize(href) == normalize(target)


class BrokenLinkStrategy(FixStrategy):
    """Unlinks anchors pointing at a broken internal URL, keeping their text."""

    issue_type = IssueType.BROKEN_INTERNAL_LINK
    target = PostBodyTarget()
    uses_gateway = False
    revisable = False

    def _matching_anchors(self, soup: BeautifulSoup, href: str, base: Optional[str]):
        return [a for a in soup.find_all("a", href=True) if _same_link(a["href"], href, base)]

    def propose_locally(self, issue, context):
        if not issue.element:
            raise GenerationError(FixErrorCode.LINK_NOT_FOUND, "Issue does not name the broken link")
        soup = BeautifulSoup(context.post.content, "html.parser")
        if not self._matching_anchors(soup, issue.element, issue.url):
            raise GenerationError(
                FixErrorCode.LINK_NOT_FOUND,
                f"Link {issue.element} not found in post {context.post.id}",
            )
        return issue.element

    def build_value(self, issue, current, fix):
        soup = BeautifulSoup(current or "", "html.parser")
        anchors = self._matching_anchors(soup, fix.as_text(), issue.url)
        if not anchors:
            raise ResourceError(f"Link {fix.as_text()} no longer present")
        for anchor in anchors:
            anchor.unwrap()
        return str(soup)


class DirectAnswerStrategy(FixStrategy):
    """Puts a short answer box at the top of the body for AI search summaries."""

    issue_type = IssueType.MISSING_DIRECT_ANSWER
    target = PostBodyTarget()
    requires_profile = True
    max_tokens = 500
    box_class = "direct-answer"

    def build_request(self, issue, context):
        post, profile = context.post, context.profile
        prompt = (
            "Create a direct answer paragraph for this article.\n\n"
            "CONTEXT:\n"
            f"Site Niche: {profile.niche}\n"
            f"Tone: {profile.tone}\n"
            f"Article Title: {post.title}\n\n"
            "Article Content Summary:\n"
            f"{trim_words(strip_html(post.content), 200)}\n\n"
            "REQUIREMENTS:\n"
            "1. 40-80 words (this is critical for AI search)\n"
            "2. Start with THE ANSWER immediately (no fluff)\n"
            "3. Answer the implicit question in the title\n"
            "4. Be specific and actionable\n"
            f"5. Match the site's tone: {profile.tone}\n"
            "6. If the title has 'best', start with 'The best...'\n"
            "7. If the title has 'how to', start with the process\n"
            "8. If the title has 'what is', start with the definition\n\n"
            "BAD EXAMPLE: 'In this comprehensive guide, we'll explore...'\n\n"
            "Return ONLY the direct answer paragraph, no explanation."
        )
        return GenerationRequest(prompt=prompt, max_tokens=self.max_tokens)

    def build_value(self, issue, current, fix):
        soup = BeautifulSoup(current or "", "html.parser")
        box = soup.new_tag("div", attrs={"class": self.box_class})
        paragraph = soup.new_tag("p")
        label = soup.new_tag("strong")
        label.string = "Quick Answer:"
        paragraph.append(label)
        paragraph.append(" " + strip_html(fix.as_text()))
        box.append(paragraph)

        existing = soup.find("div", class_=self.box_class)
        if existing is not None:
            existing.replace_with(box)
        else:
            soup.insert(0, box)
        return str(soup)


CONCLUSION_HEADING = re.compile(r"^(conclusion|summary|final thoughts|wrap up)", re.IGNORECASE)


class FaqStrategy(FixStrategy):
    """Generates question/answer pairs, inserts an FAQ section and stores FAQPage schema."""

    issue_type = IssueType.MISSING_FAQ
    target = PostBodyWithMetaTarget("faq_schema")
    output_format = ContentFormat.JSON
    requires_profile = True
    max_tokens = 3000
    question_count = 10
    section_class = "faq-section"

    def build_request(self, issue, context):
        post, profile = context.post, context.profile
        prompt = (
            "You are an SEO expert creating an FAQ section for AI search optimization.\n\n"
            "CONTEXT:\n"
            f"Site Niche: {profile.niche}\n"
            f"Target Audience: {profile.audience}\n"
            f"Article Title: {post.title}\n"
            f"Category: {post.category}\n"
            f"Related Topics: {', '.join(context.related_topics[:5])}\n\n"
            "ARTICLE SUMMARY:\n"
            f"{trim_words(strip_html(post.content), 150)}\n\n"
            "TASK:\n"
            f"Generate {self.question_count} questions that people would ask AI assistants about this topic.\n\n"
            "REQUIREMENTS:\n"
            "1. Questions should be natural and conversational\n"
            "2. Mix definitions, procedures, explanations and recommendations\n"
            "3. Answers should be direct and concise (2-4 sentences), answer first, then expand\n"
            f"4. Match our brand tone: {profile.tone}\n\n"
            "Return JSON:\n"
            "{\n"
            '  "faqs": [{"question": "question text?", "answer": "direct answer..."}]\n'
            "}\n\n"
            "Make questions progressively more specific from basic to advanced."
        )
        return GenerationRequest(
            prompt=prompt, mode=GenerationMode.JSON, max_tokens=self.max_tokens, temperature=0.7
        )

    @staticmethod
    def pairs(content: Any) -> list[dict[str, str]]:
        """Well-formed question/answer pairs from a fix's content."""
        items = content.get("faqs") if isinstance(content, dict) else content
        if not isinstance(items, list):
            return []
        pairs = []
        for item in items:
            if not isinstance(item, dict):
                continue
            question = str(item.get("question") or "").strip()
            answer = str(item.get("answer") or "").strip()
            if question and answer:
                pairs.append({"question": question, "answer": answer})
        return pairs

    def parse_result(self, result):
        pairs = self.pairs(result.data)
        if not pairs:
            raise GenerationError(FixErrorCode.MALFORMED_OUTPUT, "FAQ response has no question/answer pairs")
        return {"faqs": pairs}

    def schema(self, pairs: list[dict[str, str]]) -> dict[str, Any]:
        return {
            "@context": "https://schema.org",
            "@type": "FAQPage",
            "mainEntity": [
                {
                    "@type": "Question",
                    "name": pair["question"],
                    "acceptedAnswer": {"@type": "Answer", "text": strip_html(pair["answer"])},
                }
                for pair in pairs
            ],
        }

    def build_value(self, issue, current, fix):
        pairs = self.pairs(fix.content)
        if not pairs:
            raise ValueError("FAQ fix has no question/answer pairs")
        snapshot = json.loads(current)

        soup = BeautifulSoup(snapshot["body"] or "", "html.parser")
        section = soup.new_tag("div", attrs={"class": self.section_class})
        title = soup.new_tag("h2")
        title.string = "Frequently Asked Questions"
        section.append(title)
        for pair in pairs:
            item = soup.new_tag("div", attrs={"class": "faq-item"})
            question = soup.new_tag("h3")
            question.string = pair["question"]
            answer = soup.new_tag("p")
            answer.string = strip_html(pair["answer"])
            item.append(question)
            item.append(answer)
            section.append(item)

        existing = soup.find("div", class_=self.section_class)
        conclusion = next(
            (h for h in soup.find_all(["h2", "h3"]) if CONCLUSION_HEADING.match(h.get_text(strip=True))),
            None,
        )
        if existing is not None:
            existing.replace_with(section)
        elif conclusion is not None:
            conclusion.insert_before(section)
        else:
            soup.append(section)

        return json.dumps(
            {"body": str(soup), "meta": json.dumps(self.schema(pairs), indent=2, ensure_ascii=False)},
            ensure_ascii=False,
        )


STRATEGIES: dict[IssueType, FixStrategy] = {
    strategy.issue_type: strategy
    for strategy in (
        MetaDescriptionStrategy(),
        ThinContentStrategy(),
        AltTextStrategy(),
        TitleTagStrategy(),
        DuplicateTitleStrategy(),
        SchemaMarkupStrategy(),
        HeadingStrategy(),
        BrokenLinkStrategy(),
        DirectAnswerStrategy(),
        FaqStrategy(),
    )
}

UNSUPPORTED: frozenset[IssueType] = frozenset({IssueType.MULTIPLE_H1, IssueType.SLOW_LOAD_TIME})


def get_strategy(issue_type: IssueType) -> Optional[FixStrategy]:
    return STRATEGIES.get(IssueType(issue_type))
