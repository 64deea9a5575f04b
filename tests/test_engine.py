"""Tests for the durable workflow engine."""

import asyncio

import pytest

from polaris.workflow.engine import (
    CancelRule,
    NonRetriableError,
    RetryPolicy,
    StepContext,
    StepFailedError,
    WorkflowEngine,
)
from polaris.workflow.steps import RUN_CANCELLED, RUN_COMPLETED, RUN_FAILED, RUN_RUNNING, MemoryStepStore

FAST_RETRY = RetryPolicy(max_attempts=3, min_seconds=0, max_seconds=0)


class Counter:
    def __init__(self, results=None):
        self.calls = 0
        self.results = list(results or [])

    async def __call__(self, *args):
        self.calls += 1
        if self.results:
            item = self.results.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        return f"result-{self.calls}"


# ── Steps ─────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_step_result_is_replayed_on_reentry():
    store = MemoryStepStore()
    fn = Counter()

    first = StepContext("run-1", store, retry=FAST_RETRY)
    assert await first.run("load", fn) == "result-1"

    # Same run id, fresh context: the committed result comes back
    again = StepContext("run-1", store, retry=FAST_RETRY)
    assert await again.run("load", fn) == "result-1"
    assert fn.calls == 1


@pytest.mark.asyncio
async def test_repeated_step_names_get_numbered_keys():
    store = MemoryStepStore()
    step = StepContext("run-1", store, retry=FAST_RETRY)
    fn = Counter()

    await step.run("call-model", fn)
    await step.run("call-model", fn)
    await step.run("call-model", fn)

    assert store.step_keys("run-1") == ["call-model", "call-model:1", "call-model:2"]


@pytest.mark.asyncio
async def test_transient_failure_is_retried():
    step = StepContext("run-1", MemoryStepStore(), retry=FAST_RETRY)
    fn = Counter([ConnectionError("flaky"), "ok"])

    assert await step.run("fetch", fn) == "ok"
    assert fn.calls == 2


@pytest.mark.asyncio
async def test_non_retriable_error_is_not_retried():
    step = StepContext("run-1", MemoryStepStore(), retry=FAST_RETRY)
    fn = Counter([NonRetriableError("bad config")])

    with pytest.raises(NonRetriableError):
        await step.run("check", fn)
    assert fn.calls == 1


@pytest.mark.asyncio
async def test_exhausted_retries_raise_step_failed():
    store = MemoryStepStore()
    step = StepContext("run-1", store, retry=FAST_RETRY)
    fn = Counter([RuntimeError("down")] * 3)

    with pytest.raises(StepFailedError) as exc_info:
        await step.run("save", fn)

    assert exc_info.value.step_key == "save"
    assert str(exc_info.value.cause) == "down"
    assert fn.calls == 3
    assert store.step_keys("run-1") == []


@pytest.mark.asyncio
async def test_sleep_is_memoized():
    store = MemoryStepStore()
    await StepContext("run-1", store).sleep("wait", 0)
    assert store.step_keys("run-1") == ["wait"]


# ── Runs ──────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_send_runs_matching_functions_only():
    engine = WorkflowEngine(retry=FAST_RETRY)
    seen = []

    async def handler(event, step):
        seen.append(event.data["n"])

    engine.create_function("fn", "thing/happened", handler)

    event_id, run_ids = await engine.send("thing/happened", {"n": 1})
    _, other = await engine.send("other/event", {"n": 2})

    assert event_id
    assert len(run_ids) == 1
    assert other == []
    assert await engine.wait(run_ids[0]) == RUN_COMPLETED
    assert seen == [1]


@pytest.mark.asyncio
async def test_failure_handler_runs_once():
    step_store = MemoryStepStore()
    engine = WorkflowEngine(step_store, retry=FAST_RETRY)
    failures = []

    async def handler(event, step):
        await step.run("explode", Counter([RuntimeError("boom")] * 3))

    async def on_failure(ctx):
        failures.append((ctx.event.data["id"], type(ctx.error).__name__))
        await ctx.step.run("record", Counter())

    engine.create_function("fn", "go", handler, on_failure=on_failure)
    _, (run_id,) = await engine.send("go", {"id": "a"})

    assert await engine.wait(run_id) == RUN_FAILED
    assert failures == [("a", "StepFailedError")]
    record = await step_store.get_run(run_id)
    assert record["status"] == RUN_FAILED
    assert "boom" in record["error"]


@pytest.mark.asyncio
async def test_cancel_rule_stops_matching_run_at_next_boundary():
    engine = WorkflowEngine(retry=FAST_RETRY)
    entered = asyncio.Event()
    release = asyncio.Event()
    after = Counter()
    failures = []

    async def slow():
        entered.set()
        await release.wait()
        return "slow-done"

    async def handler(event, step):
        await step.run("slow", slow)
        await step.run("after", after)

    async def on_failure(ctx):
        failures.append(ctx)

    engine.create_function(
        "fn", "message/sent", handler,
        cancel_on=[CancelRule(event="message/cancel", match="message_id")],
        on_failure=on_failure,
    )
    _, (cancelled_run,) = await engine.send("message/sent", {"message_id": "m1"})
    _, (other_run,) = await engine.send("message/sent", {"message_id": "m2"})

    await asyncio.wait_for(entered.wait(), timeout=2)
    await engine.send("message/cancel", {"message_id": "m1"})
    release.set()

    assert await engine.wait(cancelled_run) == RUN_CANCELLED
    assert await engine.wait(other_run) == RUN_COMPLETED
    # Only the uncancelled run reached the second step
    assert after.calls == 1
    assert failures == []


@pytest.mark.asyncio
async def test_cancel_wakes_durable_sleep():
    engine = WorkflowEngine(retry=FAST_RETRY)

    async def handler(event, step):
        await step.sleep("long-wait", 30)

    engine.create_function("fn", "go", handler, cancel_on=[CancelRule("stop", "key")])
    _, (run_id,) = await engine.send("go", {"key": "k"})
    await asyncio.sleep(0)
    await engine.send("stop", {"key": "k"})

    assert await asyncio.wait_for(engine.wait(run_id), timeout=2) == RUN_CANCELLED


@pytest.mark.asyncio
async def test_shutdown_leaves_run_pending_and_resume_replays_steps():
    step_store = MemoryStepStore()
    first = Counter()
    started = asyncio.Event()
    gate = asyncio.Event()
    second_calls = []

    async def blocked():
        second_calls.append(1)
        started.set()
        await gate.wait()
        return "two"

    async def handler(event, step):
        await step.run("first", first)
        return await step.run("second", blocked)

    engine = WorkflowEngine(step_store, retry=FAST_RETRY)
    engine.create_function("fn", "go", handler)
    _, (run_id,) = await engine.send("go", {})
    await asyncio.wait_for(started.wait(), timeout=2)

    await engine.shutdown()
    assert (await step_store.get_run(run_id))["status"] == RUN_RUNNING

    # A new process picks the run up again
    gate.set()
    restarted = WorkflowEngine(step_store, retry=FAST_RETRY)
    restarted.create_function("fn", "go", handler)
    resumed = await restarted.resume_pending()

    assert resumed == [run_id]
    assert await restarted.wait(run_id) == RUN_COMPLETED
    assert first.calls == 1
    assert len(second_calls) == 2


@pytest.mark.asyncio
async def test_join_waits_for_all_runs():
    engine = WorkflowEngine(retry=FAST_RETRY)
    done = []

    async def handler(event, step):
        await asyncio.sleep(0.01)
        done.append(event.data["n"])

    engine.create_function("fn", "go", handler)
    for n in range(3):
        await engine.send("go", {"n": n})

    await engine.join()
    assert sorted(done) == [0, 1, 2]
    assert engine.live_runs == 0
