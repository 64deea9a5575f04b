"""
Tool plumbing shared by every agent tool.

A tool is four phases, in order:
  1. validate — raw model arguments → pydantic params model
  2. resolve  — look up referenced ids in the document store
  3. act      — at most one mutation/read batch, inside a named durable step
  4. report   — a plain string back to the model (JSON for data, "Error: ..." otherwise)

Tools never raise for bad input or bad ids: the model reads the error
string and corrects itself. Only cancellation propagates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import httpx
from pydantic import BaseModel, ValidationError

from ..core.config import Settings, get_settings
from ..storage.store import DocumentStore
from ..workflow.engine import StepContext, StepFailedError

logger = logging.getLogger(__name__)

LIST_FILES_HINT = "Use list_files to get valid IDs."


@dataclass
class ToolContext:
    """What every tool of one run is closed over."""
    project_id: str
    internal_key: str
    store: DocumentStore
    step: StepContext
    settings: Settings = field(default_factory=get_settings)
    # Injected in tests to keep scrape_urls off the network
    http_transport: httpx.AsyncBaseTransport | None = None


def validation_message(exc: ValidationError) -> str:
    """First validation issue as a short sentence."""
    err = exc.errors()[0]
    ctx_error = (err.get("ctx") or {}).get("error")
    if ctx_error is not None:
        return str(ctx_error)
    loc = ".".join(str(p) for p in err.get("loc", ()))
    return f"{loc}: {err['msg']}" if loc else err["msg"]


def _inline_refs(node: Any, defs: dict) -> Any:
    # Some providers reject $ref in tool schemas
    if isinstance(node, dict):
        ref = node.get("$ref")
        if isinstance(ref, str) and ref.startswith("#/$defs/"):
            return _inline_refs(defs[ref.split("/")[-1]], defs)
        return {k: _inline_refs(v, defs) for k, v in node.items() if k != "$defs"}
    if isinstance(node, list):
        return [_inline_refs(v, defs) for v in node]
    return node


@dataclass
class Tool:
    name: str
    description: str
    params: type[BaseModel]
    handler: Callable[[Any], Awaitable[str]]
    # Used in "Error <action>: ..." when the store keeps failing
    action: str = "running tool"

    def schema(self) -> dict:
        """OpenAI-style function schema (what bind_tools expects)."""
        raw = self.params.model_json_schema()
        parameters = _inline_refs(raw, raw.get("$defs", {}))
        parameters.pop("title", None)
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": parameters,
            },
        }

    async def invoke(self, args: dict | None) -> str:
        try:
            params = self.params.model_validate(args or {})
        except ValidationError as e:
            return f"Error: {validation_message(e)}"

        try:
            return await self.handler(params)
        except StepFailedError as e:
            logger.warning("[tools] %s failed after retries: %s", self.name, e.cause)
            return f"Error {self.action}: {e.cause}"
