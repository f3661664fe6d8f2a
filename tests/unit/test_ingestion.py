import asyncio

import pytest

from agents.ingestion import parse_json_array
from models.schemas import Item, Post, RecentPost, Workspace


def test_parse_json_array_tolerates_fences():
    assert parse_json_array('```json\n["a", "b"]\n```') == ["a", "b"]
    with pytest.raises(ValueError):
        parse_json_array('{"a": 1}')


def test_linking_merges_model_and_vector_neighbours(engine, workspace, provider):
    items = engine.repos.items
    belt = items.insert(Item(workspace_id=workspace.id, name="Gold belt", content="Leather", embedding=[1.0, 0.0, 0.0], is_verified=True))
    bag = items.insert(Item(workspace_id=workspace.id, name="Tote bag", content="Canvas", embedding=[0.0, 1.0, 0.0], is_verified=True))
    dress = items.insert(Item(workspace_id=workspace.id, name="Red dress", content="Silk"))
    provider.embeddings = {"red dress": [1.0, 0.05, 0.0]}
    provider.queue(f'["{bag.id}", 42, "{belt.id}"]')

    verified = asyncio.run(engine.ingestion.link_and_verify_kb(workspace.id))

    stored = items.get(dress.id)
    assert verified == 1
    assert stored.is_verified is True
    assert stored.related_item_ids == [bag.id, belt.id]
    assert stored.embedding == [1.0, 0.05, 0.0]
    assert belt.id in provider.chat_calls[0].user_message


def test_linking_survives_unparsable_model_output(engine, workspace, provider):
    neighbour = engine.repos.items.insert(
        Item(workspace_id=workspace.id, name="Scarf", content="Wool", embedding=[1.0, 0.0, 0.0], is_verified=True)
    )
    item = engine.repos.items.insert(Item(workspace_id=workspace.id, name="Hat", content="Wool hat", embedding=[1.0, 0.0, 0.0]))
    provider.embeddings = {"hat": [1.0, 0.0, 0.0]}
    provider.queue("Sorry, I can't do that.")

    asyncio.run(engine.ingestion.link_and_verify_kb(workspace.id))

    stored = engine.repos.items.get(item.id)
    assert stored.is_verified is True
    assert stored.related_item_ids == [neighbour.id]


def test_nothing_to_link_makes_no_calls(engine, workspace, provider):
    assert asyncio.run(engine.ingestion.link_and_verify_kb(workspace.id)) == 0
    assert provider.chat_calls == []


def test_ingest_post_saves_valid_items(engine, workspace, provider):
    post = engine.repos.posts.insert(Post(workspace_id=workspace.id, platform_id="ig-1", content="New in: red dress $40, tote $15"))
    provider.queue(
        '```json\n[{"name": "Red dress", "content": "$40", "category": "Product", "meta": {"price": "$40"}},'
        ' {"name": "", "content": "skip me"},'
        ' {"name": "Tote", "content": "$15", "category": "accessory"}]\n```'
    )

    saved = asyncio.run(engine.ingestion.ingest_post(post.id))

    rows = {item.name: item for item in engine.repos.items.for_workspace(workspace.id)}
    assert saved == 2
    assert rows["Red dress"].category == "product"
    assert rows["Red dress"].meta == {"price": "$40"}
    assert rows["Tote"].category == "general"
    assert all(item.source_id == "ig-1" and not item.is_verified and item.embedding for item in rows.values())


def test_ingest_post_with_bad_output_saves_nothing(engine, workspace, provider):
    post = engine.repos.posts.insert(Post(workspace_id=workspace.id, platform_id="ig-2", content="caption"))
    provider.queue("not json")
    assert asyncio.run(engine.ingestion.ingest_post(post.id)) == 0
    assert asyncio.run(engine.ingestion.ingest_post("missing")) == 0


def test_batch_ingestion_embeds_inline(engine, workspace):
    rows = [{"name": "Shipping", "content": "2-3 days", "category": "policy"}, {"content": "no name"}]
    ids = asyncio.run(engine.ingestion.process_batch_ingestion(workspace.id, "upload-1", rows))

    stored = [engine.repos.items.get(item_id) for item_id in ids]
    assert [item.name for item in stored] == ["Shipping", "Untitled"]
    assert all(item.embedding == [0.0, 0.0, 1.0] for item in stored)


def test_batch_ingestion_enqueues_embedding_jobs(make_engine):
    jobs = []
    engine = make_engine(enqueue=lambda kind, payload: jobs.append((kind, payload)))
    ws = engine.repos.workspaces.insert(Workspace(name="Queued"))
    ids = asyncio.run(engine.ingestion.process_batch_ingestion(ws.id, "upload-2", [{"name": "A", "content": "a"}]))

    assert jobs == [("refresh_item_embedding", {"itemId": ids[0]})]
    assert engine.repos.items.get(ids[0]).embedding is None


def test_historical_sync_upserts_posts(engine, workspace, platform_client, provider):
    platform_client.recent_posts = [RecentPost(id="p1", caption="Summer collection"), RecentPost(id="p2", caption="")]
    provider.queue('[{"name": "Summer collection", "content": "Linen pieces"}]')

    post_ids = asyncio.run(engine.ingestion.sync_historical_posts(workspace.id))
    asyncio.run(engine.ingestion.sync_historical_posts(workspace.id))

    assert len(post_ids) == 2
    assert len(engine.repos.posts.all()) == 2
    assert engine.repos.items.find_by_name(workspace.id, "Summer collection") is not None
