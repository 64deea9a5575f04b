"""
Agent router — decides after each model turn whether the run goes on.

Pure functions over the list of model turns (AIMessages) produced so far.
No graph, engine or store is involved, so the termination policy can be
tested on its own:

  no turns yet                 → CONTINUE (issue the first turn)
  last turn has no tool calls  → STOP (the model gave its final answer)
  turn count reached the cap   → STOP (text of the last turn, if any)
  otherwise                    → CONTINUE (feed tool results back in)

Only one agent exists today. `next_agent` is where a dispatch table keyed on
turn content would plug in if specialised agents are added.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Sequence

from langchain_core.messages import AIMessage

CODING_AGENT = "polaris"
DEFAULT_MAX_ITERATIONS = 20
FALLBACK_ANSWER = "I processed your request. Let me know if you need anything else!"


class Action(str, Enum):
    CONTINUE = "continue"
    STOP = "stop"


@dataclass(frozen=True)
class RouteDecision:
    action: Action
    reason: str
    next_agent: str | None = None
    final_answer: str | None = None

    @property
    def should_continue(self) -> bool:
        return self.action is Action.CONTINUE


def message_text(message: AIMessage) -> str:
    """Text of a turn; list-shaped content (text parts) is joined."""
    content = message.content
    if isinstance(content, str):
        return content
    parts = []
    for part in content:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            parts.append(part.get("text", ""))
    return "".join(parts)


def has_tool_calls(message: AIMessage) -> bool:
    return bool(getattr(message, "tool_calls", None))


def final_answer(turns: Sequence[AIMessage]) -> str | None:
    """Text of the last turn, or None when it is blank."""
    if not turns:
        return None
    text = message_text(turns[-1])
    return text if text.strip() else None


def route(
    turns: Sequence[AIMessage],
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
) -> RouteDecision:
    """Decide what happens after the latest turn."""
    if not turns:
        return RouteDecision(Action.CONTINUE, "first-turn", next_agent=CODING_AGENT)

    if not has_tool_calls(turns[-1]):
        return RouteDecision(Action.STOP, "final-answer", final_answer=final_answer(turns))

    if len(turns) >= max_iterations:
        return RouteDecision(Action.STOP, "max-iterations", final_answer=final_answer(turns))

    return RouteDecision(Action.CONTINUE, "tool-calls", next_agent=CODING_AGENT)
