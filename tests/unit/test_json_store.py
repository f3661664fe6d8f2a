import asyncio

from memory import Repositories
from models.schemas import AIProviderSettings, Interaction, InteractionStatus, Workspace
from tasks.ai_worker import AIJobDispatcher


def test_worker_sees_interactions_inserted_by_api(tmp_path, make_engine, provider):
    api_repos = Repositories.from_settings(str(tmp_path))
    worker = make_engine(repos=Repositories.from_settings(str(tmp_path)))
    ws = api_repos.workspaces.insert(Workspace(name="Shop"))
    inbound = api_repos.interactions.insert(Interaction(workspace_id=ws.id, author_id="c1", content="open today?"))
    provider.queue("Yes, until 6pm. [CONFIDENCE: 0.9]")

    result = asyncio.run(AIJobDispatcher(worker).dispatch("process", {"interactionId": inbound.id}))

    assert result["result"]["status"] == "PROCESSED"
    stored = api_repos.interactions.get(inbound.id)
    assert stored.status == InteractionStatus.PROCESSED
    assert stored.response == "Yes, until 6pm."


def test_writes_from_two_processes_are_merged(tmp_path):
    api = Repositories.from_settings(str(tmp_path))
    worker = Repositories.from_settings(str(tmp_path))
    api.workspaces.insert(Workspace(name="Shop"))

    worker.workspaces.insert(Workspace(name="WorkerOnly"))
    api.workspaces.insert(Workspace(name="ApiOnly"))

    fresh = Repositories.from_settings(str(tmp_path))
    assert sorted(w.name for w in fresh.workspaces.all()) == ["ApiOnly", "Shop", "WorkerOnly"]
    assert len(worker.workspaces) == 3


def test_updates_apply_to_the_latest_row(tmp_path):
    api = Repositories.from_settings(str(tmp_path))
    worker = Repositories.from_settings(str(tmp_path))
    ws = api.workspaces.insert(Workspace(name="Shop"))
    row = api.interactions.insert(Interaction(workspace_id=ws.id, author_id="c1", content="hi"))

    worker.interactions.set_result(row.id, "Hello!", InteractionStatus.PROCESSED, {"confidence": 0.9})
    api.interactions.update(row.id, customer_id="cust-1")

    stored = Repositories.from_settings(str(tmp_path)).interactions.get(row.id)
    assert stored.response == "Hello!"
    assert stored.status == InteractionStatus.PROCESSED
    assert stored.customer_id == "cust-1"


def test_global_settings_survive_workspace_writes(tmp_path):
    admin = Repositories.from_settings(str(tmp_path))
    api = Repositories.from_settings(str(tmp_path))
    admin.workspaces.set_global_ai_settings(AIProviderSettings(coach_provider="openai"))

    api.workspaces.insert(Workspace(name="Shop"))

    assert Repositories.from_settings(str(tmp_path)).workspaces.global_ai_settings().coach_provider == "openai"


def test_memory_store_never_touches_disk(tmp_path):
    repos = Repositories.in_memory()
    repos.workspaces.insert(Workspace(name="Shop"))
    assert len(repos.workspaces) == 1
    assert list(tmp_path.iterdir()) == []
