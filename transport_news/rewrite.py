"""
Newsletter rewriting of ranked articles.

The language model turns each selected article into a segment-specific
title, summary and action tip. Its output is never trusted for identity:
ids are reattached by position, URLs are restored from the originals and
categories are coerced to the known set. Any failure falls back to
deterministic copy so an issue can still be assembled.
"""

import logging
import re
from collections.abc import Iterable, Sequence

import orjson
from pydantic import ValidationError

from .config import PipelineConfig, Settings, get_pipeline_config, get_settings
from .ingest.article_types import Article, RewrittenArticle, Segment
from .models.llm_client import ChatMessage, LLMClient, LLMError, create_llm_client
from .utils import extract_domain

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)

_ITEM_SCHEMA = """Return ONLY a JSON array with one object per input article, in the same order:
{{
  "title": "{title}",
  "summary": "{summary}",
  "tip": "{tip}",
  "url": "the exact original URL, unchanged",
  "source": "the original source name",
  "category": "one of: {categories}"
}}"""

SEGMENT_BRIEFS: dict[str, dict[str, str]] = {
    "pro": {
        "role": (
            "You are an Australian Chain of Responsibility compliance adviser writing a weekly "
            "briefing for fleet managers, compliance officers and transport executives."
        ),
        "title": "a professional headline focused on the compliance impact",
        "summary": "2-3 sentences covering what happened and what it means for CoR duty holders",
        "tip": "one supportive, practical suggestion with a realistic timeframe",
    },
    "driver": {
        "role": (
            "You are a veteran truck driver and safety mentor writing a weekly newsletter "
            "for professional drivers and owner-operators."
        ),
        "title": "a plain-spoken headline about what this means on the road",
        "summary": "2-3 conversational sentences on how this affects a driver's day",
        "tip": "one friendly, practical suggestion a driver can act on before the next trip",
    },
}

FALLBACK_SUMMARIES: dict[str, str] = {
    "pro": (
        "Regulatory development from {source} that warrants a compliance review. Operators "
        "should check the implications for their Chain of Responsibility obligations and "
        "update risk controls where needed."
    ),
    "driver": (
        "Safety and compliance update from {source} that may change how you work day to day. "
        "Stay across it to keep yourself and others safe on the road."
    ),
}

FALLBACK_TIPS: dict[str, str] = {
    "pro": (
        "Consider scheduling a safety management system review within the next week to "
        "assess whether training, procedures or records need updating."
    ),
    "driver": (
        "Have a quick chat with your supervisor before your next shift about how this "
        "affects your routine."
    ),
}


def strip_code_fences(content: str) -> str:
    return _FENCE.sub("", content.strip()).strip().strip("`").strip()


class ArticleRewriter:
    """Rewrites selected articles for one newsletter segment."""

    def __init__(
        self,
        llm_client: LLMClient | None,
        categories: Sequence[str],
        allowed_domains: Iterable[str],
        default_category: str = "Industry News",
    ):
        self.llm_client = llm_client
        self.categories = tuple(categories)
        self.allowed_domains = tuple(d.lower() for d in allowed_domains)
        self.default_category = default_category

    @classmethod
    def from_config(
        cls,
        llm_client: LLMClient | None,
        config: PipelineConfig,
    ) -> "ArticleRewriter":
        return cls(
            llm_client,
            categories=config.rewrite_categories,
            allowed_domains=config.rewrite_domains,
            default_category=config.default_category,
        )

    def build_messages(self, articles: Sequence[Article], segment: Segment) -> list[ChatMessage]:
        brief = SEGMENT_BRIEFS[segment]
        system = "\n\n".join([
            brief["role"],
            "Write in Australian English with British spelling.",
            "Never modify, invent or shorten URLs. Copy each original URL exactly.",
            _ITEM_SCHEMA.format(
                title=brief["title"],
                summary=brief["summary"],
                tip=brief["tip"],
                categories=", ".join(self.categories),
            ),
            "No markdown, no code fences, no commentary.",
        ])

        payload = [
            {
                "title": a.title,
                "summary": a.summary,
                "url": a.url,
                "source": a.source,
                "category": a.content_category or self.default_category,
            }
            for a in articles
        ]
        user = (
            f"Rewrite these {len(articles)} Australian transport articles. "
            f"Keep every URL exactly as given:\n\n"
            f"{orjson.dumps(payload, option=orjson.OPT_INDENT_2).decode()}"
        )
        return [ChatMessage(role="system", content=system), ChatMessage(role="user", content=user)]

    def is_allowed_url(self, url: str) -> bool:
        host = extract_domain(url)
        return bool(host) and any(domain in host for domain in self.allowed_domains)

    def coerce_category(self, category: str | None) -> str:
        return category if category in self.categories else self.default_category

    def parse_response(self, content: str, originals: Sequence[Article]) -> list[RewrittenArticle]:
        """Parse model output and enforce identity, URL and category rules.

        Raises:
            LLMError: If the output is not a JSON array matching the input length,
                or an item has fields of the wrong type
        """
        try:
            items = orjson.loads(strip_code_fences(content))
        except orjson.JSONDecodeError as e:
            raise LLMError(f"Rewriter returned invalid JSON: {e}") from e

        if not isinstance(items, list):
            raise LLMError("Rewriter response is not a JSON array")
        if len(items) != len(originals):
            raise LLMError(
                f"Rewriter returned {len(items)} items for {len(originals)} articles"
            )

        rewritten: list[RewrittenArticle] = []
        for index, (item, original) in enumerate(zip(items, originals)):
            if not isinstance(item, dict):
                raise LLMError(f"Rewriter item {index} is not an object")

            url = item.get("url")
            if url != original.url or not self.is_allowed_url(url):
                logger.warning(f"Restoring original URL for article {index + 1}: {original.url}")
                url = original.url

            try:
                rewritten.append(RewrittenArticle(
                    id=original.id,
                    title=item.get("title") or original.title,
                    summary=item.get("summary") or original.summary,
                    tip=item.get("tip") or "",
                    url=url,
                    source=item.get("source") or original.source,
                    category=self.coerce_category(item.get("category")),
                ))
            except ValidationError as e:
                raise LLMError(f"Rewriter item {index} has invalid fields: {e}") from e

        return rewritten

    def fallback(self, articles: Sequence[Article], segment: Segment) -> list[RewrittenArticle]:
        """Deterministic copy used when the model cannot be used."""
        return [
            RewrittenArticle(
                id=a.id,
                title=a.title,
                summary=FALLBACK_SUMMARIES[segment].format(source=a.source),
                tip=FALLBACK_TIPS[segment],
                url=a.url,
                source=a.source,
                category=self.coerce_category(a.content_category),
            )
            for a in articles
        ]

    async def rewrite(self, articles: Sequence[Article], segment: Segment) -> list[RewrittenArticle]:
        """Rewrite articles for a segment, one output item per input article."""
        if not articles:
            return []
        if self.llm_client is None:
            return self.fallback(articles, segment)

        try:
            response = await self.llm_client.chat(self.build_messages(articles, segment))
            rewritten = self.parse_response(response.content, articles)
        except LLMError as e:
            logger.error(f"Rewriting failed, using fallback copy: {e}")
            return self.fallback(articles, segment)

        logger.info(f"Rewrote {len(rewritten)} articles for {segment} segment")
        return rewritten


async def rewrite_articles(
    articles: Sequence[Article],
    segment: Segment,
    settings: Settings | None = None,
    config: PipelineConfig | None = None,
) -> list[RewrittenArticle]:
    """Convenience function for rewriting with a client built from settings."""
    settings = settings or get_settings()
    config = config or get_pipeline_config()
    try:
        client = create_llm_client(settings)
    except LLMError as e:
        logger.error(f"LLM client unavailable, using fallback copy: {e}")
        client = None
    return await ArticleRewriter.from_config(client, config).rewrite(articles, segment)
