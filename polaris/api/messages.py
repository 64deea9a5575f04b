"""
Message endpoints — start and cancel an agent run.

  POST /messages         — store the user message + assistant placeholder, send message/sent
  POST /messages/cancel  — mark a processing answer cancelled, send message/cancel
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from ..models import CancelMessageRequest, CancelMessageResponse, SendMessageRequest, SendMessageResponse
from ..runtime import Runtime
from ..storage.store import ROLE_ASSISTANT, ROLE_USER, STATUS_CANCELLED, STATUS_PROCESSING
from ..workflow.process_message import FAILURE_MESSAGE, MESSAGE_CANCEL, MESSAGE_SENT
from .deps import get_runtime, require_internal_key

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/messages", tags=["messages"])


@router.post("", response_model=SendMessageResponse)
async def send_message(req: SendMessageRequest, runtime: Runtime = Depends(get_runtime)):
    internal_key = require_internal_key(runtime)
    store = runtime.store

    conversation = await store.get_conversation(internal_key, req.conversation_id)
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")

    if await store.get_processing_message(internal_key, req.conversation_id):
        raise HTTPException(status_code=409, detail="A message is already being processed")

    project_id = conversation["project_id"]

    # Both writes land before the event is sent
    await store.create_message(internal_key, req.conversation_id, project_id, ROLE_USER, req.message)
    message_id = await store.create_message(
        internal_key,
        req.conversation_id,
        project_id,
        ROLE_ASSISTANT,
        "",
        status=STATUS_PROCESSING,
    )

    try:
        event_id, _ = await runtime.engine.send(MESSAGE_SENT, {
            "message_id": message_id,
            "conversation_id": req.conversation_id,
            "project_id": project_id,
            "message": req.message,
        })
    except Exception as e:
        # A placeholder never stays processing
        logger.error("[messages] could not start run for message=%s: %s", message_id, e)
        await store.update_message_content(internal_key, message_id, FAILURE_MESSAGE)
        raise HTTPException(status_code=500, detail="Failed to start processing the message")
    logger.info("[messages] conversation=%s message=%s event=%s", req.conversation_id, message_id, event_id)

    return SendMessageResponse(success=True, event_id=event_id, message_id=message_id)


@router.post("/cancel", response_model=CancelMessageResponse)
async def cancel_message(req: CancelMessageRequest, runtime: Runtime = Depends(get_runtime)):
    internal_key = require_internal_key(runtime)
    store = runtime.store

    message = await store.get_message(internal_key, req.message_id)
    if not message or message["role"] != ROLE_ASSISTANT:
        raise HTTPException(status_code=404, detail="Message not found")
    if message["status"] != STATUS_PROCESSING:
        raise HTTPException(status_code=409, detail="Message is not being processed")

    if not await store.update_message_status(internal_key, req.message_id, STATUS_CANCELLED):
        raise HTTPException(status_code=409, detail="Message is not being processed")

    await runtime.engine.send(MESSAGE_CANCEL, {"message_id": req.message_id})
    logger.info("[messages] cancelled message=%s", req.message_id)

    return CancelMessageResponse(success=True, message_id=req.message_id)
