import asyncio

import pytest

from agents.coach_agent import EMPTY_REPLY, MAX_TURN_CHARS, extract_leaked_tool_calls
from models.errors import AIAccessDeniedError
from models.schemas import ChatResult, ToolCall, WorkspaceSettings
from tools import KNOWN_TOOLS, ToolContext, execute_tool_call


def test_leaked_xml_calls_are_recovered():
    content = 'Sure!\n<function=list_items>{"limit": 5}</function>\n<function(get_config)>{}</function>'
    calls, cleaned = extract_leaked_tool_calls(content)
    assert [(c.name, c.arguments, c.source) for c in calls] == [
        ("list_items", {"limit": 5}, "text_xml"),
        ("get_config", {}, "text_xml"),
    ]
    assert all(c.id.startswith("text_") for c in calls)
    assert cleaned == "Sure!"


def test_leaked_xml_with_missing_brace_is_repaired():
    calls, _ = extract_leaked_tool_calls('<function=delete_item>{"name": "Old promo"</function>')
    assert calls[0].arguments == {"name": "Old promo"}


def test_leaked_unknown_tool_is_dropped():
    calls, cleaned = extract_leaked_tool_calls("<function=drop_tables>{}</function>")
    assert calls == []
    assert cleaned == ""


def test_leaked_json_call_is_recovered():
    content = 'Checking. {"name": "search_items", "arguments": {"query": "dress"}}'
    calls, cleaned = extract_leaked_tool_calls(content)
    assert calls[0].name == "search_items"
    assert calls[0].arguments == {"query": "dress"}
    assert calls[0].source == "text_json"
    assert cleaned == "Checking."


def test_native_tool_call_runs_and_is_summarized(engine, workspace, provider):
    provider.queue(
        ChatResult(
            tool_calls=[
                ToolCall(name="create_item", arguments={"name": "Return policy", "content": "14 days with receipt", "category": "policy"})
            ]
        ),
        "Got it, I saved your return policy.",
    )

    reply = asyncio.run(engine.coach.process_coach_message(workspace.id, "Our return policy is 14 days with receipt"))

    assert reply == "Got it, I saved your return policy."
    saved = engine.repos.items.find_by_name(workspace.id, "Return policy")
    assert saved is not None and saved.source_id == "coach_learning"
    follow_up = provider.chat_calls[1].user_message
    assert 'Tool "create_item" result: ✅ Saved "Return policy"' in follow_up
    history = engine.repos.coach_conversations.history(workspace.id)
    assert [(m.role, m.content) for m in history] == [
        ("user", "Our return policy is 14 days with receipt"),
        ("coach", "Got it, I saved your return policy."),
    ]


def test_leaked_text_call_is_executed(engine, workspace, provider):
    provider.queue('<function=update_config>{"businessName": "Lina Couture"}</function>', "")

    reply = asyncio.run(engine.coach.process_coach_message(workspace.id, "rename us to Lina Couture"))

    assert engine.repos.workspaces.get(workspace.id).business_name == "Lina Couture"
    # Empty follow-up falls back to the raw tool output.
    assert reply == "✅ Updated: businessName"


def test_invalid_arguments_are_reported_back(engine, workspace, provider):
    provider.queue(ChatResult(tool_calls=[ToolCall(name="create_item", arguments={"name": "Hours"})]), "")

    reply = asyncio.run(engine.coach.process_coach_message(workspace.id, "save our hours"))

    assert reply.startswith("❌ Invalid arguments for create_item: content:")
    assert engine.repos.items.find_by_name(workspace.id, "Hours") is None


def test_empty_model_reply_becomes_done(engine, workspace, provider):
    provider.queue("   ")
    assert asyncio.run(engine.coach.process_coach_message(workspace.id, "thanks")) == EMPTY_REPLY


def test_paused_workspace_rejects_coach(engine, workspace):
    engine.repos.workspaces.update(workspace.id, settings=WorkspaceSettings(ai_active=False))
    with pytest.raises(AIAccessDeniedError):
        asyncio.run(engine.coach.process_coach_message(workspace.id, "hello"))


def test_history_and_message_are_truncated(engine, workspace, provider):
    history = [{"role": "user" if i % 2 else "coach", "content": "x" * 1000} for i in range(60)]
    asyncio.run(engine.coach.process_coach_message(workspace.id, "y" * 5000, history=history))

    sent = provider.chat_calls[0]
    assert len(sent.history) == 50
    assert all(len(m.content) == MAX_TURN_CHARS for m in sent.history)
    assert {m.role for m in sent.history} == {"user", "assistant"}
    assert len(sent.user_message) == 2000


def test_unknown_tool_is_reported(engine, workspace):
    ctx = ToolContext(workspace_id=workspace.id, workspace=workspace, ai=None, repos=engine.repos)
    result = asyncio.run(execute_tool_call(ToolCall(name="launch_rocket"), ctx))
    assert result == "❌ Unknown tool: launch_rocket"
    assert "launch_rocket" not in KNOWN_TOOLS
