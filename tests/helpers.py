"""Test doubles shared across the suite."""

from __future__ import annotations

from typing import Any

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage
from langchain_core.outputs import ChatGeneration, ChatResult
from pydantic import Field

from polaris.core import llm
from polaris.storage.store import DEFAULT_CONVERSATION_TITLE, ROLE_ASSISTANT, ROLE_USER, STATUS_PROCESSING

INTERNAL_KEY = "test-key"

TEST_MODELS = llm.ModelConfig(
    coding_model="test/coding",
    title_model="test/title",
    suggestion_model="test/suggestion",
)


def tool_turn(name: str, args: dict | None = None, call_id: str = "call_1", content: str = "") -> AIMessage:
    return AIMessage(content=content, tool_calls=[{"name": name, "args": args or {}, "id": call_id}])


def text_turn(text: str) -> AIMessage:
    return AIMessage(content=text)


class ScriptedChatModel(BaseChatModel):
    """
    Replays a fixed list of replies, one per call.

    An Exception in the list is raised instead of returned. Past the end
    of the script the last reply repeats when `repeat_last` is set,
    otherwise an empty text reply is returned.
    """

    responses: list[Any] = Field(default_factory=list)
    repeat_last: bool = False
    calls: list[list] = Field(default_factory=list)
    bound_tools: list[Any] = Field(default_factory=list)
    # async (call_index) -> None, awaited before each reply
    before_reply: Any = None

    @property
    def _llm_type(self) -> str:
        return "scripted"

    def _pick(self, messages) -> AIMessage:
        self.calls.append(list(messages))
        index = len(self.calls) - 1
        if index < len(self.responses):
            item = self.responses[index]
        elif self.repeat_last and self.responses:
            item = self.responses[-1]
        else:
            item = AIMessage(content="")
        if isinstance(item, Exception):
            raise item
        return item.model_copy(deep=True)

    def _generate(self, messages, stop=None, run_manager=None, **kwargs) -> ChatResult:
        return ChatResult(generations=[ChatGeneration(message=self._pick(messages))])

    async def _agenerate(self, messages, stop=None, run_manager=None, **kwargs) -> ChatResult:
        if self.before_reply is not None:
            await self.before_reply(len(self.calls))
        return ChatResult(generations=[ChatGeneration(message=self._pick(messages))])

    def bind_tools(self, tools, **kwargs):
        self.bound_tools = list(tools)
        return self


def model_factory(models: dict[str, ScriptedChatModel]):
    """A get_chat_model stand-in that picks a scripted model by name."""
    def factory(model: str | None = None, temperature: float = 0.1, **kwargs):
        return models[model]
    return factory


async def seed_conversation(store, title: str = DEFAULT_CONVERSATION_TITLE, message: str = "Build a todo app"):
    """Project + conversation + the two messages POST /messages would create."""
    project_id = await store.create_project(INTERNAL_KEY, "Demo", "user_1")
    conversation_id = await store.create_conversation(INTERNAL_KEY, project_id, title)
    await store.create_message(INTERNAL_KEY, conversation_id, project_id, ROLE_USER, message)
    message_id = await store.create_message(
        INTERNAL_KEY, conversation_id, project_id, ROLE_ASSISTANT, "", status=STATUS_PROCESSING,
    )
    return {
        "project_id": project_id,
        "conversation_id": conversation_id,
        "message_id": message_id,
        "message": message,
    }
