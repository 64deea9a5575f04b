"""
process-message — the durable run that answers one chat message.

Triggered by "message/sent" with {message_id, conversation_id, project_id,
message}. The message_id is the assistant placeholder created (status
"processing") before the event was sent; this run writes its content once.

Steps, in order:
    wait-for-db-sync           durable sleep so the new messages are readable
    get-conversation           missing conversation → NonRetriableError
    get-recent-messages        context window (placeholder and blanks dropped)
    generate-title             only while the title is still the default
    update-conversation-title  only for a non-empty generated title
    call-model / <tool steps>  the agent loop (core.agent)
    update-assistant-message   the single content write

"message/cancel" with the same message_id cancels the run at its next step
boundary. Any other failure runs on_failure, which writes an apology.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel, ValidationError

from ..core import llm
from ..core.agent import run_agent
from ..core.config import Settings, get_settings
from ..core.prompts import CODING_AGENT_SYSTEM_PROMPT, HISTORY_SECTION, TITLE_GENERATOR_SYSTEM_PROMPT
from ..core.router import message_text
from ..storage.store import DEFAULT_CONVERSATION_TITLE, DocumentStore
from ..tools import ToolContext, create_tools
from .engine import (
    CancelRule,
    Event,
    FailureContext,
    NonRetriableError,
    StepContext,
    StepFailedError,
    WorkflowEngine,
    WorkflowFunction,
)

logger = logging.getLogger(__name__)

FUNCTION_ID = "process-message"
MESSAGE_SENT = "message/sent"
MESSAGE_CANCEL = "message/cancel"

FAILURE_MESSAGE = (
    "My apologies, I encountered an error while processing your request. "
    "Let me know if you need anything else!"
)


class MessageEvent(BaseModel):
    message_id: str
    conversation_id: str
    project_id: str
    message: str


def format_history(messages: list[dict], exclude_id: str) -> str:
    """Transcript of prior messages, without the placeholder and blank entries."""
    context = [
        m for m in messages
        if m["id"] != exclude_id and (m.get("content") or "").strip()
    ]
    return "\n\n".join(f"{m['role'].upper()}: {m['content']}" for m in context)


def build_system_prompt(history: str) -> str:
    if not history:
        return CODING_AGENT_SYSTEM_PROMPT
    return CODING_AGENT_SYSTEM_PROMPT + HISTORY_SECTION.format(history=history)


class MessageProcessor:
    """The process-message workflow function, bound to a store and model factory."""

    def __init__(
        self,
        store: DocumentStore,
        settings: Settings | None = None,
        model_factory: Callable[..., Any] | None = None,
        models: llm.ModelConfig | None = None,
        http_transport=None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.model_factory = model_factory or llm.get_chat_model
        self._models = models
        self.http_transport = http_transport

    @property
    def models(self) -> llm.ModelConfig:
        # Read per run so /models/set applies to the next message
        return self._models or llm.get_config()

    def register(self, engine: WorkflowEngine) -> WorkflowFunction:
        return engine.create_function(
            FUNCTION_ID,
            MESSAGE_SENT,
            self.handle,
            cancel_on=[CancelRule(event=MESSAGE_CANCEL, match="message_id")],
            on_failure=self.on_failure,
        )

    # ── Run ──

    async def handle(self, event: Event, step: StepContext) -> str:
        try:
            data = MessageEvent.model_validate(event.data)
        except ValidationError as e:
            raise NonRetriableError(f"Invalid message event: {e}") from e

        internal_key = self.settings.internal_key
        if not internal_key:
            raise NonRetriableError("POLARIS_INTERNAL_KEY is not configured")

        logger.info(
            "[process_message] run=%s message=%s conversation=%s",
            step.run_id, data.message_id, data.conversation_id,
        )

        await step.sleep("wait-for-db-sync", self.settings.db_sync_delay)

        conversation = await step.run(
            "get-conversation", self._load_conversation, internal_key, data.conversation_id,
        )
        if not conversation:
            raise NonRetriableError("Conversation not found")

        recent = await step.run(
            "get-recent-messages", self._load_recent, internal_key, data.conversation_id,
        )
        history = format_history(recent, exclude_id=data.message_id)
        system_prompt = build_system_prompt(history)

        if conversation["title"] == DEFAULT_CONVERSATION_TITLE:
            await self._maybe_update_title(step, internal_key, data)

        tools = create_tools(ToolContext(
            project_id=data.project_id,
            internal_key=internal_key,
            store=self.store,
            step=step,
            settings=self.settings,
            http_transport=self.http_transport,
        ))
        model = self.model_factory(
            self.models.coding_model,
            temperature=llm.CODING_TEMPERATURE,
            max_tokens=llm.CODING_MAX_TOKENS,
        )
        result = await run_agent(
            model,
            tools,
            step,
            system_prompt=system_prompt,
            message=data.message,
            max_iterations=self.settings.max_iterations,
        )

        applied = await step.run(
            "update-assistant-message",
            self.store.update_message_content,
            internal_key,
            data.message_id,
            result.final_answer,
        )
        if not applied:
            logger.warning("[process_message] message=%s was no longer processing; answer dropped", data.message_id)
        logger.info(
            "[process_message] run=%s done after %d turn(s) (%s)",
            step.run_id, len(result.turns), result.reason,
        )
        return result.final_answer

    async def _load_conversation(self, internal_key: str, conversation_id: str) -> dict | None:
        conversation = await self.store.get_conversation(internal_key, conversation_id)
        if conversation is None:
            return None
        return {"id": conversation["id"], "title": conversation["title"], "project_id": conversation["project_id"]}

    async def _load_recent(self, internal_key: str, conversation_id: str) -> list[dict]:
        rows = await self.store.get_recent_messages(internal_key, conversation_id, self.settings.history_limit)
        return [{"id": m["id"], "role": m["role"], "content": m.get("content") or ""} for m in rows]

    # ── Title ──

    async def _generate_title(self, message: str) -> str:
        model = self.model_factory(
            self.models.title_model,
            temperature=llm.TITLE_TEMPERATURE,
            max_tokens=llm.TITLE_MAX_TOKENS,
        )
        response = await model.ainvoke([
            SystemMessage(content=TITLE_GENERATOR_SYSTEM_PROMPT),
            HumanMessage(content=message),
        ])
        return message_text(response).strip()

    async def _maybe_update_title(self, step: StepContext, internal_key: str, data: MessageEvent):
        try:
            title = await step.run("generate-title", self._generate_title, data.message)
        except StepFailedError as e:
            logger.warning("[process_message] title generation failed: %s", e.cause)
            return

        if not title:
            logger.info("[process_message] empty title response; keeping default")
            return

        await step.run(
            "update-conversation-title",
            self.store.update_conversation_title,
            internal_key,
            data.conversation_id,
            title,
        )
        logger.info("[process_message] conversation=%s titled %r", data.conversation_id, title)

    # ── Failure ──

    async def on_failure(self, ctx: FailureContext):
        message_id = ctx.event.data.get("message_id")
        internal_key = self.settings.internal_key
        if not internal_key or not message_id:
            logger.error("[process_message] cannot record failure for message=%s: no internal key", message_id)
            return

        await ctx.step.run(
            "update-message-on-failure",
            self.store.update_message_content,
            internal_key,
            message_id,
            FAILURE_MESSAGE,
        )
        logger.info("[process_message] message=%s marked failed (%s)", message_id, ctx.error)
