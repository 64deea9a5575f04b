"""
Editor endpoints — inline suggestions and quick edit.

Both are single LiteLLM completions with the suggestion model; no agent,
no tools, no workflow run.
"""

from __future__ import annotations

import logging
import re

from fastapi import APIRouter, Depends, HTTPException

from ..core.llm import completion_text
from ..core.prompts import (
    QUICK_EDIT_SYSTEM_PROMPT,
    QUICK_EDIT_USER_TEMPLATE,
    SUGGESTION_SYSTEM_PROMPT,
    SUGGESTION_USER_TEMPLATE,
)
from ..models import QuickEditRequest, QuickEditResponse, SuggestionRequest, SuggestionResponse
from ..runtime import Runtime
from .deps import get_runtime

logger = logging.getLogger(__name__)

router = APIRouter(tags=["editor"])

SUGGESTION_MAX_TOKENS = 256
QUICK_EDIT_MAX_TOKENS = 4096

_FENCE_RE = re.compile(r"^```[\w+-]*\n(.*?)\n?```\s*$", re.DOTALL)


def strip_code_fences(text: str) -> str:
    """Unwrap a reply the model put in a markdown code block anyway."""
    match = _FENCE_RE.match(text.strip())
    return match.group(1) if match else text


@router.post("/suggestion", response_model=SuggestionResponse)
async def suggestion(req: SuggestionRequest, runtime: Runtime = Depends(get_runtime)):
    messages = [
        {"role": "system", "content": SUGGESTION_SYSTEM_PROMPT},
        {"role": "user", "content": SUGGESTION_USER_TEMPLATE.format(**req.model_dump())},
    ]
    try:
        response = await runtime.completion(
            messages,
            model=runtime.models.suggestion_model,
            max_tokens=SUGGESTION_MAX_TOKENS,
            temperature=0.2,
        )
    except Exception as e:
        logger.warning("[suggestion] completion failed for %s: %s", req.file_name, e)
        raise HTTPException(status_code=502, detail="Failed to generate suggestion")

    return SuggestionResponse(suggestion=strip_code_fences(completion_text(response)))


@router.post("/quick-edit", response_model=QuickEditResponse)
async def quick_edit(req: QuickEditRequest, runtime: Runtime = Depends(get_runtime)):
    messages = [
        {"role": "system", "content": QUICK_EDIT_SYSTEM_PROMPT},
        {"role": "user", "content": QUICK_EDIT_USER_TEMPLATE.format(**req.model_dump())},
    ]
    try:
        response = await runtime.completion(
            messages,
            model=runtime.models.suggestion_model,
            max_tokens=QUICK_EDIT_MAX_TOKENS,
            temperature=0.1,
        )
    except Exception as e:
        logger.warning("[quick_edit] completion failed: %s", e)
        raise HTTPException(status_code=502, detail="Failed to generate edit")

    edited = strip_code_fences(completion_text(response))
    if not edited.strip():
        raise HTTPException(status_code=502, detail="Model returned an empty edit")
    return QuickEditResponse(edited_code=edited)
