"""Tests for keyword-based example retrieval."""

import pytest

from semantic_pipeline.services.intent import IntentExample, KeywordExampleRetriever
from semantic_pipeline.services.intent.retrieval import keywords


def _example(question: str) -> IntentExample:
    return IntentExample(question=question, plan={"metrics": ["net_sales"]})


def test_keywords_drop_stopwords_and_case():
    assert keywords("Show me the Net Sales by day") == {"net", "sales", "day"}


@pytest.mark.asyncio
async def test_ranks_by_keyword_overlap():
    retriever = KeywordExampleRetriever(
        [
            _example("net sales yesterday"),
            _example("labor cost by employee"),
            _example("net sales by day last week"),
        ]
    )

    retrieved = await retriever.retrieve("net sales by day this week", "tenant-1", limit=3)

    assert [e.question for e in retrieved] == ["net sales by day last week", "net sales yesterday"]


@pytest.mark.asyncio
async def test_ties_keep_pool_order():
    retriever = KeywordExampleRetriever([_example("guest count at lunch"), _example("guest count at dinner")])

    retrieved = await retriever.retrieve("guest count", "tenant-1", limit=2)

    assert [e.question for e in retrieved] == ["guest count at lunch", "guest count at dinner"]


@pytest.mark.asyncio
async def test_tenant_pool_is_private_and_ranked_first_on_ties():
    retriever = KeywordExampleRetriever(
        [_example("void count by server")],
        tenant_pools={"tenant-1": [_example("void count by manager")]},
    )

    own = await retriever.retrieve("void count", "tenant-1", limit=5)
    other = await retriever.retrieve("void count", "tenant-2", limit=5)

    assert [e.question for e in own] == ["void count by manager", "void count by server"]
    assert [e.question for e in other] == ["void count by server"]


@pytest.mark.asyncio
async def test_limit_and_duplicates():
    retriever = KeywordExampleRetriever(
        [
            _example("net sales last week"),
            _example("Net  Sales last week"),
            _example("net sales last month"),
            _example("net sales last year"),
        ]
    )

    retrieved = await retriever.retrieve("net sales last week", "tenant-1", limit=2)

    assert [e.question for e in retrieved] == ["net sales last week", "net sales last month"]


@pytest.mark.asyncio
async def test_min_overlap_filters_weak_matches():
    retriever = KeywordExampleRetriever([_example("net sales yesterday"), _example("net labor cost")], min_overlap=2)

    retrieved = await retriever.retrieve("net sales last week", "tenant-1")

    assert [e.question for e in retrieved] == ["net sales yesterday"]


@pytest.mark.asyncio
@pytest.mark.parametrize("question, limit", [("how is the", 3), ("net sales", 0)])
async def test_nothing_to_match_returns_empty(question, limit):
    retriever = KeywordExampleRetriever([_example("net sales yesterday")])
    assert await retriever.retrieve(question, "tenant-1", limit=limit) == []
