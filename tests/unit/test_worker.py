import asyncio

import pytest

from models.errors import NonRetryableJobError, ProviderError
from models.schemas import Interaction, InteractionStatus, Post
from tasks import ai_worker
from tasks.ai_worker import WORKSPACE_INACTIVE, AIJobDispatcher


def test_unknown_job_kind_is_not_retried(engine):
    with pytest.raises(NonRetryableJobError, match="Unknown AI job type: reindex"):
        asyncio.run(AIJobDispatcher(engine).dispatch("reindex", {}))


def test_missing_payload_field_is_not_retried(engine):
    with pytest.raises(NonRetryableJobError, match="interactionId"):
        asyncio.run(AIJobDispatcher(engine).dispatch("process", {}))


def test_missing_interaction_is_not_retried(engine):
    with pytest.raises(NonRetryableJobError):
        asyncio.run(AIJobDispatcher(engine).dispatch("process", {"interactionId": "nope"}))


def test_process_job_runs_the_pipeline(engine, workspace, provider):
    inbound = engine.repos.interactions.insert(Interaction(workspace_id=workspace.id, author_id="c1", content="price?"))
    provider.queue("It's $40. [CONFIDENCE: 0.95]")

    result = asyncio.run(AIJobDispatcher(engine).dispatch("process", {"interactionId": inbound.id}))

    assert result == {"success": True, "kind": "process", "result": {"status": "PROCESSED", "reply": "It's $40."}}


def test_inactive_workspace_fails_without_retry(engine, workspace, provider):
    engine.repos.workspaces.update(workspace.id, status="deleted")
    inbound = engine.repos.interactions.insert(Interaction(workspace_id=workspace.id, author_id="c1", content="hi"))

    with pytest.raises(NonRetryableJobError):
        asyncio.run(AIJobDispatcher(engine).dispatch("process", {"interactionId": inbound.id}))

    stored = engine.repos.interactions.get(inbound.id)
    assert stored.status == InteractionStatus.FAILED
    assert stored.response == WORKSPACE_INACTIVE
    assert provider.chat_calls == []


def test_transient_errors_propagate_for_queue_retry(engine, workspace, provider):
    post = engine.repos.posts.insert(Post(workspace_id=workspace.id, platform_id="p1", content="caption"))

    async def failing_ingest(post_id):
        raise ProviderError("upstream 503")

    engine.ingestion.ingest_post = failing_ingest
    with pytest.raises(ProviderError):
        asyncio.run(AIJobDispatcher(engine).dispatch("ingest", {"postId": post.id}))


def test_upload_batch_requires_item_list(engine, workspace):
    dispatcher = AIJobDispatcher(engine)
    with pytest.raises(NonRetryableJobError, match="items"):
        asyncio.run(dispatcher.dispatch("upload_batch", {"workspaceId": workspace.id}))
    result = asyncio.run(
        dispatcher.dispatch("upload_batch", {"workspaceId": workspace.id, "items": [{"name": "FAQ", "content": "Yes"}]})
    )
    assert len(result["result"]) == 1


def test_celery_task_reports_non_retryable_failures(engine, monkeypatch):
    monkeypatch.setattr(ai_worker, "get_dispatcher", lambda: AIJobDispatcher(engine))
    outcome = ai_worker.process_job.apply(args=("reindex", {})).get()
    assert outcome == {"success": False, "kind": "reindex", "error": "Unknown AI job type: reindex"}
