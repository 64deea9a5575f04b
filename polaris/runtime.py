"""
Runtime — the objects one running service shares between requests.

    store        document store (Mongo when MONGODB_URL is set, else memory)
    step_store   where workflow runs and step results are checkpointed
    engine       the workflow engine, with process-message registered
    completion   plain LiteLLM completion used by the editor endpoints

Built once per app by build_runtime(); tests build their own with an
in-memory store and a scripted model.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from .core import llm
from .core.config import Settings, get_settings
from .storage.mongo import MongoDocumentStore
from .storage.store import DocumentStore, MemoryDocumentStore
from .workflow.engine import RetryPolicy, WorkflowEngine
from .workflow.process_message import MessageProcessor
from .workflow.steps import MemoryStepStore, MongoStepStore

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    settings: Settings
    store: DocumentStore
    step_store: Any
    engine: WorkflowEngine
    processor: MessageProcessor
    completion: Callable[..., Awaitable[Any]] = llm.completion
    model_config: llm.ModelConfig | None = field(default=None)

    @property
    def models(self) -> llm.ModelConfig:
        return self.model_config or llm.get_config()

    async def start(self):
        await self.store.ensure_indexes()
        await self.step_store.ensure_indexes()
        resumed = await self.engine.resume_pending()
        logger.info("[runtime] Ready (%s, %d run(s) resumed)", type(self.store).__name__, len(resumed))

    async def stop(self):
        await self.engine.shutdown()
        await self.step_store.close()
        await self.store.close()


def build_runtime(
    settings: Settings | None = None,
    store: DocumentStore | None = None,
    step_store=None,
    model_factory: Callable[..., Any] | None = None,
    completion: Callable[..., Awaitable[Any]] | None = None,
    model_config: llm.ModelConfig | None = None,
    http_transport=None,
) -> Runtime:
    settings = settings or get_settings()

    if store is None:
        if settings.mongodb_url:
            store = MongoDocumentStore(settings.internal_key, settings.mongodb_url, settings.mongodb_database)
        else:
            logger.info("[runtime] MONGODB_URL not set; using in-memory document store")
            store = MemoryDocumentStore(settings.internal_key)

    if step_store is None:
        if settings.mongodb_url:
            step_store = MongoStepStore(settings.mongodb_url, settings.mongodb_database)
        else:
            step_store = MemoryStepStore()

    engine = WorkflowEngine(
        step_store,
        retry=RetryPolicy(
            max_attempts=settings.step_max_attempts,
            min_seconds=settings.step_retry_min_seconds,
            max_seconds=settings.step_retry_max_seconds,
        ),
    )
    processor = MessageProcessor(
        store,
        settings=settings,
        model_factory=model_factory,
        models=model_config,
        http_transport=http_transport,
    )
    processor.register(engine)

    return Runtime(
        settings=settings,
        store=store,
        step_store=step_store,
        engine=engine,
        processor=processor,
        completion=completion or llm.completion,
        model_config=model_config,
    )
