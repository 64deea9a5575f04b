"""
Durable workflow engine — event-triggered runs built from memoized steps.

A workflow function is an async handler `(event, step) -> result`. The
handler does all side effects through its StepContext:

    conversation = await step.run("get-conversation", store.get_conversation, key, cid)
    await step.sleep("wait-for-db-sync", 1.0)

Each step result is checkpointed in the step store under (run_id, key)
before the handler moves on. Re-entering a run with the same run id,
after a crash, or from `resume_pending()` on startup, replays committed
steps from the store instead of executing them again. Repeated step names
inside a run get deterministic keys: "call-model", "call-model:1", ...

Failure model:
  - A step is retried with exponential back-off (tenacity) unless it raises
    NonRetriableError. Exhausted retries raise StepFailedError.
  - Any exception escaping the handler fails the run and calls the
    function's on_failure handler exactly once.

Cancellation model:
  - CancelRule(event="message/cancel", match="message_id") cancels every live
    run whose trigger event has the same data["message_id"].
  - Cancellation is cooperative: it is checked at step/sleep boundaries. A
    step already executing finishes; the next boundary raises RunCancelled.
    Cancelled runs don't call on_failure.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .steps import RUN_CANCELLED, RUN_COMPLETED, RUN_FAILED, RUN_RUNNING, MemoryStepStore

logger = logging.getLogger(__name__)


# ── Errors ────────────────────────────────────────────────────────

class NonRetriableError(Exception):
    """Fails the step (and the run) immediately, without retries."""


class StepFailedError(Exception):
    """A step kept failing until its retry budget ran out."""

    def __init__(self, step_key: str, cause: BaseException):
        super().__init__(f"Step '{step_key}' failed: {cause}")
        self.step_key = step_key
        self.cause = cause


class RunCancelled(Exception):
    """Raised at a step boundary once the run has been cancelled."""


# ── Types ─────────────────────────────────────────────────────────

@dataclass
class Event:
    name: str
    data: dict
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "data": self.data}

    @classmethod
    def from_dict(cls, raw: dict) -> "Event":
        return cls(name=raw["name"], data=raw.get("data") or {}, id=raw.get("id") or uuid.uuid4().hex)


@dataclass(frozen=True)
class CancelRule:
    """Cancel runs when `event` arrives with the same data[match] as the trigger."""
    event: str
    match: str

    def matches(self, trigger: Event, incoming: Event) -> bool:
        if incoming.name != self.event:
            return False
        value = trigger.data.get(self.match)
        return value is not None and value == incoming.data.get(self.match)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 4
    min_seconds: float = 0.5
    max_seconds: float = 8.0


@dataclass
class FailureContext:
    event: Event
    error: BaseException
    run_id: str
    step: "StepContext"


Handler = Callable[[Event, "StepContext"], Awaitable[Any]]
FailureHandler = Callable[[FailureContext], Awaitable[Any]]


@dataclass
class WorkflowFunction:
    id: str
    trigger: str
    handler: Handler
    cancel_on: tuple[CancelRule, ...] = ()
    on_failure: FailureHandler | None = None


# ── Step context ──────────────────────────────────────────────────

class StepContext:
    """Memoized step execution for one run."""

    def __init__(
        self,
        run_id: str,
        store,
        cancelled: asyncio.Event | None = None,
        retry: RetryPolicy | None = None,
    ):
        self.run_id = run_id
        self._store = store
        self._cancelled = cancelled or asyncio.Event()
        self._retry = retry or RetryPolicy()
        self._seen: dict[str, int] = {}

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def _key(self, name: str) -> str:
        n = self._seen.get(name, 0)
        self._seen[name] = n + 1
        return name if n == 0 else f"{name}:{n}"

    def _raise_if_cancelled(self, key: str):
        if self._cancelled.is_set():
            logger.info("[engine] run=%s cancelled before step %s", self.run_id, key)
            raise RunCancelled(f"Run {self.run_id} cancelled")

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._retry.max_attempts)),
            wait=wait_exponential(multiplier=self._retry.min_seconds, max=self._retry.max_seconds),
            # CancelledError is a BaseException and must never be retried
            retry=retry_if_exception_type(Exception) & retry_if_not_exception_type((NonRetriableError, RunCancelled)),
        )

    async def run(self, name: str, fn: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Run `fn` once per run; later calls with the same key replay its result."""
        key = self._key(name)
        self._raise_if_cancelled(key)

        found, result = await self._store.get_step(self.run_id, key)
        if found:
            logger.debug("[engine] run=%s replayed step %s", self.run_id, key)
            return result

        try:
            async for attempt in self._retrying():
                with attempt:
                    result = await fn(*args, **kwargs)
        except (NonRetriableError, RunCancelled):
            raise
        except Exception as e:
            logger.warning("[engine] run=%s step %s exhausted retries: %s", self.run_id, key, e)
            raise StepFailedError(key, e) from e

        await self._store.put_step(self.run_id, key, result)
        logger.debug("[engine] run=%s committed step %s", self.run_id, key)
        return result

    async def sleep(self, name: str, seconds: float):
        """Durable sleep; wakes early (and raises RunCancelled) on cancellation."""
        key = self._key(name)
        self._raise_if_cancelled(key)

        found, _ = await self._store.get_step(self.run_id, key)
        if found:
            return

        if seconds > 0:
            try:
                await asyncio.wait_for(self._cancelled.wait(), timeout=seconds)
            except asyncio.TimeoutError:
                pass
            self._raise_if_cancelled(key)

        await self._store.put_step(self.run_id, key, None)


# ── Engine ────────────────────────────────────────────────────────

@dataclass
class _LiveRun:
    run_id: str
    function: WorkflowFunction
    event: Event
    cancelled: asyncio.Event = field(default_factory=asyncio.Event)
    task: asyncio.Task | None = None


class WorkflowEngine:
    """Runs workflow functions as asyncio tasks on the current event loop."""

    def __init__(self, step_store=None, retry: RetryPolicy | None = None):
        self.step_store = step_store or MemoryStepStore()
        self._retry = retry or RetryPolicy()
        self._functions: list[WorkflowFunction] = []
        self._live: dict[str, _LiveRun] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._results: dict[str, str] = {}

    def create_function(
        self,
        id: str,
        trigger: str,
        handler: Handler,
        cancel_on: tuple[CancelRule, ...] | list[CancelRule] = (),
        on_failure: FailureHandler | None = None,
    ) -> WorkflowFunction:
        function = WorkflowFunction(
            id=id,
            trigger=trigger,
            handler=handler,
            cancel_on=tuple(cancel_on),
            on_failure=on_failure,
        )
        self._functions.append(function)
        logger.info("[engine] Registered function %s (trigger=%s)", id, trigger)
        return function

    # ── Events ──

    async def send(self, name: str, data: dict) -> tuple[str, list[str]]:
        """Deliver an event. Returns (event_id, run_ids started by it)."""
        event = Event(name=name, data=dict(data))
        self._deliver_cancellations(event)

        run_ids = []
        for function in self._functions:
            if function.trigger == name:
                run_ids.append(await self._start(function, event, uuid.uuid4().hex))
        logger.info("[engine] Event %s (%s) started %d run(s)", name, event.id, len(run_ids))
        return event.id, run_ids

    def _deliver_cancellations(self, event: Event):
        for live in self._live.values():
            if any(rule.matches(live.event, event) for rule in live.function.cancel_on):
                if not live.cancelled.is_set():
                    logger.info("[engine] Cancelling run=%s (%s) on %s", live.run_id, live.function.id, event.name)
                live.cancelled.set()

    def is_live(self, run_id: str) -> bool:
        return run_id in self._live

    @property
    def live_runs(self) -> int:
        return len(self._live)

    # ── Execution ──

    async def _start(self, function: WorkflowFunction, event: Event, run_id: str) -> str:
        live = _LiveRun(run_id=run_id, function=function, event=event)
        self._live[run_id] = live
        try:
            await self.step_store.save_run(run_id, function.id, event.to_dict(), RUN_RUNNING)
        except Exception:
            self._live.pop(run_id, None)
            raise
        live.task = asyncio.create_task(self._execute(live), name=f"{function.id}:{run_id}")
        self._tasks[run_id] = live.task
        live.task.add_done_callback(lambda _: self._tasks.pop(run_id, None))
        return run_id

    async def _execute(self, live: _LiveRun):
        function, event, run_id = live.function, live.event, live.run_id
        step = StepContext(run_id, self.step_store, cancelled=live.cancelled, retry=self._retry)
        status, error = RUN_FAILED, None
        try:
            await function.handler(event, step)
            status = RUN_COMPLETED
            logger.info("[engine] run=%s (%s) completed", run_id, function.id)
        except RunCancelled:
            status = RUN_CANCELLED
            logger.info("[engine] run=%s (%s) cancelled", run_id, function.id)
        except Exception as e:
            error = str(e)
            logger.error("[engine] run=%s (%s) failed: %s", run_id, function.id, e)
            await self._handle_failure(live, e)
        finally:
            self._live.pop(run_id, None)
        self._results[run_id] = status
        await self.step_store.save_run(run_id, function.id, event.to_dict(), status, error)
        return status

    async def _handle_failure(self, live: _LiveRun, error: Exception):
        if live.function.on_failure is None:
            return
        step = StepContext(f"{live.run_id}:failure", self.step_store, retry=self._retry)
        try:
            await live.function.on_failure(FailureContext(live.event, error, live.run_id, step))
        except Exception as e:
            logger.error("[engine] run=%s failure handler raised: %s", live.run_id, e)

    async def wait(self, run_id: str) -> str | None:
        """Wait for a run to settle and return its final status."""
        task = self._tasks.get(run_id)
        if task is not None:
            await asyncio.shield(task)
        return self._results.get(run_id)

    async def join(self):
        """Wait until no run is live."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def resume_pending(self) -> list[str]:
        """Re-enter runs a previous process left in `running` state."""
        resumed = []
        for record in await self.step_store.pending_runs():
            function = next((f for f in self._functions if f.id == record["function_id"]), None)
            if function is None or record["run_id"] in self._live:
                continue
            event = Event.from_dict(record["event"])
            resumed.append(await self._start(function, event, record["run_id"]))
        if resumed:
            logger.info("[engine] Resumed %d pending run(s)", len(resumed))
        return resumed

    async def shutdown(self):
        """Stop live runs without settling them, so they resume on next start."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._live.clear()
        if tasks:
            logger.info("[engine] Stopped %d live run(s)", len(tasks))
