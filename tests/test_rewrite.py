"""Tests for newsletter rewriting and its fallbacks."""

import orjson
import pytest

from transport_news.models.llm_client import LLMClient, LLMError, LLMResponse, MockLLMClient, create_llm_client
from transport_news.rewrite import ArticleRewriter, rewrite_articles, strip_code_fences


class ScriptedClient(MockLLMClient):
    """Returns a fixed response, or raises when given an exception."""

    def __init__(self, settings, response):
        super().__init__(settings)
        self.response = response

    async def chat(self, messages, temperature=None, max_tokens=None):
        self.calls.append(self._normalize_messages(messages))
        if isinstance(self.response, Exception):
            raise self.response
        return LLMResponse(content=self.response, model=self.model)


@pytest.fixture
def articles(make_article):
    return [
        make_article(
            id="ARTICLE-AAAAAAAAAAAA",
            title="NHVR announces new fatigue rules",
            url="https://www.nhvr.gov.au/news/fatigue",
            summary="Work and rest hour changes start in March.",
            content_category="Regulatory Update",
        ),
        make_article(
            id="ARTICLE-BBBBBBBBBBBB",
            title="Tyre recall issued for trailer axles",
            url="https://bigrigs.com.au/tyre-recall",
            summary="A manufacturer has recalled tyres.",
            source="Big Rigs Magazine",
            content_category="Driver Wellness",
        ),
    ]


def rewritten_item(**overrides):
    item = {
        "title": "Rewritten headline",
        "summary": "Rewritten summary.",
        "tip": "Check your logbook.",
        "url": "https://www.nhvr.gov.au/news/fatigue",
        "source": "NHVR Latest News",
        "category": "Regulatory Update",
    }
    item.update(overrides)
    return item


def test_strip_code_fences():
    assert strip_code_fences('```json\n[{"a": 1}]\n```') == '[{"a": 1}]'
    assert strip_code_fences('[1, 2]') == '[1, 2]'


@pytest.mark.asyncio
async def test_mock_client_preserves_identity(settings, pipeline_config, articles):
    client = MockLLMClient(settings)
    rewriter = ArticleRewriter.from_config(client, pipeline_config)

    result = await rewriter.rewrite(articles, "pro")

    assert [r.id for r in result] == [a.id for a in articles]
    assert [r.url for r in result] == [a.url for a in articles]
    assert all(r.tip for r in result)
    assert len(client.calls) == 1
    assert "compliance" in client.calls[0][0].content


@pytest.mark.asyncio
async def test_altered_url_is_restored(settings, pipeline_config, articles):
    response = orjson.dumps([
        rewritten_item(url="https://www.nhvr.gov.au/news/fatigue?utm_source=newsletter"),
        rewritten_item(url="https://evil.example.com/tyres", category="Technical Update"),
    ]).decode()
    rewriter = ArticleRewriter.from_config(ScriptedClient(settings, response), pipeline_config)

    result = await rewriter.rewrite(articles, "driver")

    assert [r.url for r in result] == [a.url for a in articles]
    assert [r.id for r in result] == [a.id for a in articles]
    assert result[1].category == "Technical Update"


@pytest.mark.asyncio
async def test_unknown_category_is_coerced(settings, pipeline_config, articles):
    response = "```json\n" + orjson.dumps([
        rewritten_item(category="Breaking News"),
        rewritten_item(url=articles[1].url, category="Safety Alert"),
    ]).decode() + "\n```"
    rewriter = ArticleRewriter.from_config(ScriptedClient(settings, response), pipeline_config)

    result = await rewriter.rewrite(articles, "pro")

    assert [r.category for r in result] == ["Industry News", "Safety Alert"]


@pytest.mark.asyncio
@pytest.mark.parametrize("response", [
    "not json at all",
    '{"title": "object, not array"}',
    orjson.dumps([rewritten_item()]).decode(),
    orjson.dumps([rewritten_item(title=["not", "a", "string"], tip=5), rewritten_item()]).decode(),
    LLMError("rate limited"),
])
async def test_failures_fall_back(settings, pipeline_config, articles, response):
    rewriter = ArticleRewriter.from_config(ScriptedClient(settings, response), pipeline_config)

    result = await rewriter.rewrite(articles, "driver")

    assert len(result) == len(articles)
    assert [r.id for r in result] == [a.id for a in articles]
    assert [r.url for r in result] == [a.url for a in articles]
    assert [r.title for r in result] == [a.title for a in articles]
    assert "Big Rigs Magazine" in result[1].summary
    # Driver Wellness is not a newsletter label
    assert result[1].category == "Industry News"


@pytest.mark.asyncio
async def test_no_client_uses_fallback(pipeline_config, articles):
    result = await ArticleRewriter.from_config(None, pipeline_config).rewrite(articles, "pro")

    assert all("compliance" in r.summary for r in result)


@pytest.mark.asyncio
async def test_empty_input(settings, pipeline_config):
    client = MockLLMClient(settings)
    assert await ArticleRewriter.from_config(client, pipeline_config).rewrite([], "pro") == []
    assert client.calls == []


@pytest.mark.asyncio
async def test_rewrite_articles_without_key_falls_back(settings, pipeline_config, articles):
    settings.mock = False
    settings.openai_api_key = None

    result = await rewrite_articles(articles, "pro", settings, pipeline_config)

    assert [r.url for r in result] == [a.url for a in articles]


def test_create_llm_client(settings):
    assert isinstance(create_llm_client(settings), MockLLMClient)

    settings.mock = False
    settings.openai_api_key = None
    with pytest.raises(LLMError, match="OPENAI_API_KEY"):
        create_llm_client(settings)

    settings.openai_api_key = "sk-test"
    client = create_llm_client(settings)
    assert type(client) is LLMClient
    assert client.model == settings.llm_model


def test_wrongly_typed_fields_raise_llm_error(pipeline_config, articles):
    rewriter = ArticleRewriter.from_config(None, pipeline_config)
    content = orjson.dumps([
        rewritten_item(summary={"text": "nested"}),
        rewritten_item(url=articles[1].url),
    ]).decode()

    with pytest.raises(LLMError, match="invalid fields"):
        rewriter.parse_response(content, articles)
