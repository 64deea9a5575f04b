"""End-to-end tests for the process-message workflow."""

import asyncio
import dataclasses

import pytest

from polaris.core.router import FALLBACK_ANSWER
from polaris.runtime import build_runtime
from polaris.storage.store import DEFAULT_CONVERSATION_TITLE, STATUS_CANCELLED, STATUS_COMPLETED, STATUS_PROCESSING
from polaris.workflow.process_message import FAILURE_MESSAGE, MESSAGE_CANCEL, MESSAGE_SENT, format_history
from polaris.workflow.steps import RUN_CANCELLED, RUN_COMPLETED, RUN_FAILED, MemoryStepStore

from helpers import (
    INTERNAL_KEY,
    TEST_MODELS,
    ScriptedChatModel,
    model_factory,
    seed_conversation,
    text_turn,
    tool_turn,
)


def make_runtime(settings, store, coding, title=None):
    models = {"test/coding": coding, "test/title": title or ScriptedChatModel(responses=[text_turn("")])}
    return build_runtime(
        settings=settings,
        store=store,
        step_store=MemoryStepStore(),
        model_factory=model_factory(models),
        model_config=TEST_MODELS,
    )


async def run_message(runtime, seeded):
    _, run_ids = await runtime.engine.send(MESSAGE_SENT, {
        "message_id": seeded["message_id"],
        "conversation_id": seeded["conversation_id"],
        "project_id": seeded["project_id"],
        "message": seeded["message"],
    })
    assert len(run_ids) == 1
    return await runtime.engine.wait(run_ids[0])


# ── Convergence ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_three_tool_turns_then_answer(settings, store):
    seeded = await seed_conversation(store)
    coding = ScriptedChatModel(responses=[
        tool_turn("list_files", call_id="c1"),
        tool_turn("create_folder", {"name": "src"}, call_id="c2"),
        tool_turn("list_files", call_id="c3"),
        text_turn("Created the src folder."),
    ])
    runtime = make_runtime(settings, store, coding)

    assert await run_message(runtime, seeded) == RUN_COMPLETED

    assert len(coding.calls) == 4
    message = await store.get_message(INTERNAL_KEY, seeded["message_id"])
    assert message["content"] == "Created the src folder."
    assert message["status"] == STATUS_COMPLETED
    files = await store.get_project_files(INTERNAL_KEY, seeded["project_id"])
    assert [(f["name"], f["type"]) for f in files] == [("src", "folder")]


@pytest.mark.asyncio
async def test_tool_results_are_fed_back_to_the_model(settings, store):
    seeded = await seed_conversation(store)
    coding = ScriptedChatModel(responses=[
        tool_turn("read_files", {"file_ids": ["fil_nope"]}, call_id="c1"),
        text_turn("That file does not exist."),
    ])
    runtime = make_runtime(settings, store, coding)

    await run_message(runtime, seeded)

    second_call = coding.calls[1]
    tool_message = second_call[-1]
    assert tool_message.type == "tool"
    assert tool_message.tool_call_id == "c1"
    assert tool_message.content.startswith("Error: No files found")
    assert {t["function"]["name"] for t in coding.bound_tools} >= {"list_files", "scrape_urls"}


@pytest.mark.asyncio
async def test_iteration_cap_returns_fallback(settings, store):
    seeded = await seed_conversation(store)
    coding = ScriptedChatModel(responses=[tool_turn("list_files")], repeat_last=True)
    runtime = make_runtime(settings, store, coding)

    assert await run_message(runtime, seeded) == RUN_COMPLETED

    assert len(coding.calls) == 20
    message = await store.get_message(INTERNAL_KEY, seeded["message_id"])
    assert message["content"] == FALLBACK_ANSWER


@pytest.mark.asyncio
async def test_blank_closing_turn_persists_fallback_not_narration(settings, store):
    seeded = await seed_conversation(store)
    coding = ScriptedChatModel(responses=[
        tool_turn("list_files", call_id="c1", content="Let me look at the files first."),
        text_turn(""),
    ])
    runtime = make_runtime(settings, store, coding)

    assert await run_message(runtime, seeded) == RUN_COMPLETED

    message = await store.get_message(INTERNAL_KEY, seeded["message_id"])
    assert message["content"] == FALLBACK_ANSWER


@pytest.mark.asyncio
async def test_iteration_cap_is_configurable(settings, store):
    seeded = await seed_conversation(store)
    coding = ScriptedChatModel(responses=[tool_turn("list_files")], repeat_last=True)
    runtime = make_runtime(dataclasses.replace(settings, max_iterations=3), store, coding)

    await run_message(runtime, seeded)
    assert len(coding.calls) == 3


@pytest.mark.asyncio
async def test_unknown_tool_is_reported_to_the_model(settings, store):
    seeded = await seed_conversation(store)
    coding = ScriptedChatModel(responses=[tool_turn("format_disk", call_id="c1"), text_turn("ok")])
    runtime = make_runtime(settings, store, coding)

    await run_message(runtime, seeded)
    assert coding.calls[1][-1].content == "Error: Unknown tool format_disk"


# ── Title ─────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_default_title_is_replaced_with_trimmed_title(settings, store):
    seeded = await seed_conversation(store)
    title = ScriptedChatModel(responses=[text_turn("  Build a todo app  ")])
    runtime = make_runtime(settings, store, ScriptedChatModel(responses=[text_turn("Done")]), title)

    await run_message(runtime, seeded)

    conversation = await store.get_conversation(INTERNAL_KEY, seeded["conversation_id"])
    assert conversation["title"] == "Build a todo app"
    assert len(title.calls) == 1


@pytest.mark.asyncio
async def test_blank_title_response_keeps_default(settings, store):
    seeded = await seed_conversation(store)
    title = ScriptedChatModel(responses=[text_turn("   ")])
    runtime = make_runtime(settings, store, ScriptedChatModel(responses=[text_turn("Done")]), title)

    assert await run_message(runtime, seeded) == RUN_COMPLETED

    conversation = await store.get_conversation(INTERNAL_KEY, seeded["conversation_id"])
    assert conversation["title"] == DEFAULT_CONVERSATION_TITLE


@pytest.mark.asyncio
async def test_existing_title_is_left_alone(settings, store):
    seeded = await seed_conversation(store, title="My project")
    title = ScriptedChatModel(responses=[text_turn("Something else")])
    runtime = make_runtime(settings, store, ScriptedChatModel(responses=[text_turn("Done")]), title)

    await run_message(runtime, seeded)

    assert title.calls == []
    conversation = await store.get_conversation(INTERNAL_KEY, seeded["conversation_id"])
    assert conversation["title"] == "My project"


@pytest.mark.asyncio
async def test_title_failure_does_not_block_the_answer(settings, store):
    seeded = await seed_conversation(store)
    title = ScriptedChatModel(responses=[RuntimeError("quota")], repeat_last=True)
    runtime = make_runtime(settings, store, ScriptedChatModel(responses=[text_turn("Done")]), title)

    assert await run_message(runtime, seeded) == RUN_COMPLETED
    message = await store.get_message(INTERNAL_KEY, seeded["message_id"])
    assert message["content"] == "Done"


# ── Context ───────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_history_goes_into_the_system_prompt(settings, store):
    pid = await store.create_project(INTERNAL_KEY, "Demo", "user_1")
    cid = await store.create_conversation(INTERNAL_KEY, pid, "Todo")
    await store.create_message(INTERNAL_KEY, cid, pid, "user", "Make a todo app")
    await store.create_message(INTERNAL_KEY, cid, pid, "assistant", "Made it.", status=STATUS_COMPLETED)
    await store.create_message(INTERNAL_KEY, cid, pid, "user", "Now add dark mode")
    mid = await store.create_message(INTERNAL_KEY, cid, pid, "assistant", "", status=STATUS_PROCESSING)
    coding = ScriptedChatModel(responses=[text_turn("Done")])
    runtime = make_runtime(settings, store, coding)

    await run_message(runtime, {
        "project_id": pid,
        "conversation_id": cid,
        "message_id": mid,
        "message": "Now add dark mode",
    })

    system_prompt = coding.calls[0][0].content
    assert "## Previous Conversation" in system_prompt
    assert "USER: Make a todo app\n\nASSISTANT: Made it." in system_prompt
    assert "do NOT repeat" in system_prompt
    assert coding.calls[0][1].content == "Now add dark mode"


@pytest.mark.asyncio
async def test_first_message_has_no_history_section(settings, store):
    pid = await store.create_project(INTERNAL_KEY, "Demo", "user_1")
    cid = await store.create_conversation(INTERNAL_KEY, pid, "Todo")
    mid = await store.create_message(INTERNAL_KEY, cid, pid, "assistant", "", status=STATUS_PROCESSING)
    coding = ScriptedChatModel(responses=[text_turn("Done")])
    runtime = make_runtime(settings, store, coding)

    await run_message(runtime, {"project_id": pid, "conversation_id": cid, "message_id": mid, "message": "Hi"})

    assert "## Previous Conversation" not in coding.calls[0][0].content


def test_format_history_drops_placeholder_and_blanks():
    messages = [
        {"id": "m1", "role": "user", "content": "Make a game"},
        {"id": "m2", "role": "assistant", "content": "Made it."},
        {"id": "m3", "role": "user", "content": "   "},
        {"id": "m4", "role": "assistant", "content": "pending answer"},
    ]
    assert format_history(messages, exclude_id="m4") == "USER: Make a game\n\nASSISTANT: Made it."
    assert format_history([], exclude_id="m1") == ""


# ── Failure ───────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_model_failure_writes_apology_once(settings, store):
    seeded = await seed_conversation(store, title="Todo")
    coding = ScriptedChatModel(responses=[RuntimeError("model down")], repeat_last=True)
    runtime = make_runtime(settings, store, coding)

    assert await run_message(runtime, seeded) == RUN_FAILED

    message = await store.get_message(INTERNAL_KEY, seeded["message_id"])
    assert message["content"] == FAILURE_MESSAGE
    assert message["status"] == STATUS_COMPLETED
    # Two attempts of the single call-model step
    assert len(coding.calls) == settings.step_max_attempts


@pytest.mark.asyncio
async def test_missing_conversation_fails_without_retry(settings, store):
    seeded = await seed_conversation(store)
    seeded["conversation_id"] = "cnv_missing"
    coding = ScriptedChatModel(responses=[text_turn("Done")])
    runtime = make_runtime(settings, store, coding)

    assert await run_message(runtime, seeded) == RUN_FAILED

    assert coding.calls == []
    message = await store.get_message(INTERNAL_KEY, seeded["message_id"])
    assert message["content"] == FAILURE_MESSAGE


@pytest.mark.asyncio
async def test_missing_internal_key_fails_before_any_step(settings, store):
    seeded = await seed_conversation(store)
    runtime = make_runtime(dataclasses.replace(settings, internal_key=""), store, ScriptedChatModel())

    assert await run_message(runtime, seeded) == RUN_FAILED

    assert runtime.step_store.steps == {}
    message = await store.get_message(INTERNAL_KEY, seeded["message_id"])
    assert message["status"] == STATUS_PROCESSING


# ── Cancellation ──────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_cancel_before_final_write_leaves_content_untouched(settings, store):
    seeded = await seed_conversation(store, title="Todo")
    entered = asyncio.Event()
    release = asyncio.Event()

    async def hold(index):
        entered.set()
        await release.wait()

    coding = ScriptedChatModel(responses=[text_turn("Too late")], before_reply=hold)
    runtime = make_runtime(settings, store, coding)

    _, (run_id,) = await runtime.engine.send(MESSAGE_SENT, {
        "message_id": seeded["message_id"],
        "conversation_id": seeded["conversation_id"],
        "project_id": seeded["project_id"],
        "message": seeded["message"],
    })
    await asyncio.wait_for(entered.wait(), timeout=2)

    await store.update_message_status(INTERNAL_KEY, seeded["message_id"], STATUS_CANCELLED)
    await runtime.engine.send(MESSAGE_CANCEL, {"message_id": seeded["message_id"]})
    release.set()

    assert await runtime.engine.wait(run_id) == RUN_CANCELLED
    message = await store.get_message(INTERNAL_KEY, seeded["message_id"])
    assert message["content"] == ""
    assert message["status"] == STATUS_CANCELLED
    assert "update-assistant-message" not in runtime.step_store.step_keys(run_id)


@pytest.mark.asyncio
async def test_cancel_event_alone_stops_the_run(settings, store):
    seeded = await seed_conversation(store, title="Todo")
    entered = asyncio.Event()
    release = asyncio.Event()

    async def hold(index):
        entered.set()
        await release.wait()

    coding = ScriptedChatModel(responses=[text_turn("Too late")], before_reply=hold)
    runtime = make_runtime(settings, store, coding)

    _, (run_id,) = await runtime.engine.send(MESSAGE_SENT, {
        "message_id": seeded["message_id"],
        "conversation_id": seeded["conversation_id"],
        "project_id": seeded["project_id"],
        "message": seeded["message"],
    })
    await asyncio.wait_for(entered.wait(), timeout=2)

    # The store still says processing; only the engine knows about the cancel
    await runtime.engine.send(MESSAGE_CANCEL, {"message_id": seeded["message_id"]})
    release.set()

    assert await runtime.engine.wait(run_id) == RUN_CANCELLED
    assert "call-model" in runtime.step_store.step_keys(run_id)
    assert "update-assistant-message" not in runtime.step_store.step_keys(run_id)
    message = await store.get_message(INTERNAL_KEY, seeded["message_id"])
    assert message["content"] == ""
    assert message["status"] == STATUS_PROCESSING


@pytest.mark.asyncio
async def test_cancel_for_another_message_is_ignored(settings, store):
    seeded = await seed_conversation(store, title="Todo")
    coding = ScriptedChatModel(responses=[text_turn("Done")])
    runtime = make_runtime(settings, store, coding)

    await runtime.engine.send(MESSAGE_CANCEL, {"message_id": "msg_other"})
    assert await run_message(runtime, seeded) == RUN_COMPLETED
