import asyncio
from datetime import timedelta

import pytest

from agents.retrieval import (
    NO_ITEMS_SENTINEL,
    KnowledgeRetriever,
    compute_hybrid_score,
    format_item,
    format_items,
    sanitize_like_input,
)
from memory import ItemStore
from memory.json_store import ilike
from models.errors import ProviderError
from models.schemas import EmbedResult, Item, utcnow


def _embedder(vector):
    async def embed(text):
        return EmbedResult(embedding=vector)

    return embed


async def _failing_embed(text):
    raise ProviderError("embedding backend down")


def _store(*items):
    store = ItemStore(path="")
    store.insert_many(items)
    return store


def test_vector_hits_include_related_items():
    dress = Item(workspace_id="w1", name="Red Dress", content="Silk, sizes S-L", embedding=[1.0, 0.0])
    belt = Item(workspace_id="w1", name="Gold Belt", content="Pairs with the dress", embedding=[0.0, 1.0])
    dress.related_item_ids = [belt.id]
    other = Item(workspace_id="w2", name="Red Dress", content="Another shop", embedding=[1.0, 0.0])
    retriever = KnowledgeRetriever(_store(dress, belt, other))

    result = asyncio.run(retriever.retrieve("w1", "red dress?", _embedder([1.0, 0.0])))

    assert [item.name for item in result.items] == ["Red Dress", "Gold Belt"]
    assert result.vector_fallback is False


def test_embedding_failure_falls_back_to_keywords():
    dress = Item(workspace_id="w1", name="Red Dress", content="Silk dress in red")
    shoes = Item(workspace_id="w1", name="Sneakers", content="White canvas")
    retriever = KnowledgeRetriever(_store(dress, shoes))

    result = asyncio.run(retriever.retrieve("w1", "Is the dress available?", _failing_embed))

    assert result.vector_fallback is True
    assert [item.name for item in result.items] == ["Red Dress"]


def test_expired_items_are_never_returned():
    past = utcnow() - timedelta(hours=1)
    sale = Item(workspace_id="w1", name="Summer sale", content="20% off dresses", embedding=[1.0, 0.0], expires_at=past)
    stale_related = Item(workspace_id="w1", name="Old promo", content="expired", expires_at=past)
    live = Item(workspace_id="w1", name="Dress", content="Red dress", embedding=[1.0, 0.1])
    live.related_item_ids = [stale_related.id]
    retriever = KnowledgeRetriever(_store(sale, stale_related, live))

    vector = asyncio.run(retriever.retrieve("w1", "sale on dresses", _embedder([1.0, 0.0])))
    keyword = asyncio.run(retriever.retrieve("w1", "sale on dresses", _failing_embed))

    assert [item.name for item in vector.items] == ["Dress"]
    assert "Summer sale" not in [item.name for item in keyword.items]


def test_query_without_keywords_returns_nothing_on_fallback():
    retriever = KnowledgeRetriever(_store(Item(workspace_id="w1", name="Hat", content="Wool")))
    result = asyncio.run(retriever.retrieve("w1", "hi ok", _failing_embed))
    assert result.items == []
    assert format_items(result.items) == NO_ITEMS_SENTINEL


def test_like_metacharacters_match_literally():
    assert sanitize_like_input("50%_off") == "50\\%\\_off"
    pattern = f"%{sanitize_like_input('50%')}%"
    assert ilike("Get 50% today", pattern)
    assert not ilike("Get 500 today", pattern)


def test_product_formatting_shows_stock():
    item = Item(
        workspace_id="w1",
        name="Red Dress",
        content="Silk",
        category="product",
        source_id="post-1",
        meta={"price": "$40", "inStock": False},
    )
    text = format_item(item)
    assert "Price: $40" in text
    assert "Stock: OUT OF STOCK" in text
    assert text.endswith("(Source: post-1)")


def test_hybrid_score_weights():
    assert compute_hybrid_score(1.0, 0.0, 0.0) == pytest.approx(0.6)
    assert compute_hybrid_score(0.5, 1.0, 1.0) == pytest.approx(0.7)
