"""
Coding agent — a LangGraph loop of model turns and tool dispatch.

Graph:

    START ─route─┬→ agent → tools ─route─┬→ agent
                 └→ END                  └→ END

`agent` issues one model turn through the durable step "call-model" (so a
resumed run replays turns instead of paying for them again). `tools` runs
every tool call of that turn in order; each tool does its own side effect
inside its own step. `route` (core.router) decides after each round.

Model turns are checkpointed as plain dicts `{content, tool_calls}` and
rebuilt into AIMessages; LangChain message objects don't go into the
step store.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Annotated, Sequence

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage
from langgraph.graph import END, START, StateGraph
from langgraph.graph.message import add_messages
from typing_extensions import TypedDict

from ..tools.base import Tool
from ..workflow.engine import StepContext
from .router import CODING_AGENT, DEFAULT_MAX_ITERATIONS, FALLBACK_ANSWER, route

logger = logging.getLogger(__name__)


class AgentState(TypedDict):
    messages: Annotated[list[BaseMessage], add_messages]


@dataclass
class AgentResult:
    final_answer: str
    reason: str
    turns: list[AIMessage] = field(default_factory=list)


def model_turns(messages: Sequence[BaseMessage]) -> list[AIMessage]:
    return [m for m in messages if isinstance(m, AIMessage)]


# ── Turn (de)serialisation ────────────────────────────────────────

def turn_to_dict(message: AIMessage) -> dict:
    tool_calls = []
    for i, tc in enumerate(message.tool_calls or []):
        tool_calls.append({
            "id": tc.get("id") or f"call_{i}",
            "name": tc["name"],
            "args": tc.get("args") or {},
        })
    return {"content": message.content, "tool_calls": tool_calls}


def turn_from_dict(raw: dict) -> AIMessage:
    return AIMessage(
        content=raw.get("content") or "",
        tool_calls=[
            {"id": tc["id"], "name": tc["name"], "args": tc.get("args") or {}, "type": "tool_call"}
            for tc in raw.get("tool_calls") or []
        ],
    )


# ── Graph ─────────────────────────────────────────────────────────

def create_agent(
    model: BaseChatModel,
    tools: Sequence[Tool],
    step: StepContext,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
):
    """Build the compiled graph for one run."""
    tools_by_name = {t.name: t for t in tools}
    model_with_tools = model.bind_tools([t.schema() for t in tools]) if tools else model

    async def call_model(state: AgentState) -> dict:
        messages = state["messages"]
        turn = len(model_turns(messages)) + 1

        async def _invoke() -> dict:
            response = await model_with_tools.ainvoke(messages)
            return turn_to_dict(response)

        raw = await step.run("call-model", _invoke)
        response = turn_from_dict(raw)
        logger.info("[agent] run=%s turn %d: %d tool call(s)", step.run_id, turn, len(response.tool_calls))
        return {"messages": [response]}

    async def execute_tools(state: AgentState) -> dict:
        last = state["messages"][-1]
        if not isinstance(last, AIMessage) or not last.tool_calls:
            return {}

        outputs = []
        # One at a time: steps of a run never run concurrently
        for tool_call in last.tool_calls:
            name = tool_call["name"]
            tool = tools_by_name.get(name)
            if tool is None:
                content = f"Error: Unknown tool {name}"
            else:
                content = await tool.invoke(tool_call.get("args"))
            logger.debug("[agent] %s -> %s", name, content[:200])
            outputs.append(ToolMessage(content=content, tool_call_id=tool_call["id"], name=name))
        return {"messages": outputs}

    def next_node(state: AgentState) -> str:
        decision = route(model_turns(state["messages"]), max_iterations)
        if decision.should_continue:
            return "agent"
        logger.info("[agent] run=%s stopping: %s", step.run_id, decision.reason)
        return "end"

    workflow = StateGraph(AgentState)
    workflow.add_node("agent", call_model)
    workflow.add_node("tools", execute_tools)

    workflow.add_conditional_edges(START, next_node, {"agent": "agent", "end": END})
    workflow.add_edge("agent", "tools")
    workflow.add_conditional_edges("tools", next_node, {"agent": "agent", "end": END})

    return workflow.compile()


async def run_agent(
    model: BaseChatModel,
    tools: Sequence[Tool],
    step: StepContext,
    system_prompt: str,
    message: str,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
) -> AgentResult:
    """Run the coding agent on one user message until it answers or hits the cap."""
    graph = create_agent(model, tools, step, max_iterations)
    logger.info("[agent] run=%s starting %s (max %d turns)", step.run_id, CODING_AGENT, max_iterations)

    state = await graph.ainvoke(
        {"messages": [SystemMessage(content=system_prompt), HumanMessage(content=message)]},
        config={"recursion_limit": max_iterations * 2 + 5},
    )

    turns = model_turns(state["messages"])
    decision = route(turns, max_iterations)
    return AgentResult(
        final_answer=decision.final_answer or FALLBACK_ANSWER,
        reason=decision.reason,
        turns=turns,
    )
