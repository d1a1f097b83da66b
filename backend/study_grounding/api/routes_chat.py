"""Chat turn finalization and citation read routes."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from study_grounding.api.dependencies import get_chat_service, get_document_store, get_message_store, get_user_id
from study_grounding.chat.service import ChatGroundingService
from study_grounding.core.errors import MessageExistsError
from study_grounding.db.stores import DocumentStore, MessageStore
from study_grounding.models.dto import FinalizeTurnRequest, FinalizeTurnResponse
from study_grounding.retrieval.types import ToolCallRecord

router = APIRouter()


@router.post(
    "/chat/{chat_id}/messages/finalize",
    response_model=FinalizeTurnResponse,
    summary="Validate an answer's citations and store the message",
)
async def finalize_message(
    chat_id: str,
    request: FinalizeTurnRequest,
    user_id: str = Depends(get_user_id),
    documents: DocumentStore = Depends(get_document_store),
    service: ChatGroundingService = Depends(get_chat_service),
) -> FinalizeTurnResponse:
    study = await documents.get_study(request.study_id)
    if study is None or study.user_id != user_id:
        raise HTTPException(status_code=404, detail="Study not found")
    # Client-reported tool calls carry no results, so their searches are re-run.
    tool_calls = [ToolCallRecord(call.tool_name, call.input, call.output) for call in request.tool_calls]
    try:
        message = await service.finalize_turn(
            message_id=request.message_id,
            chat_id=chat_id,
            study_id=request.study_id,
            answer=request.content,
            tool_calls=tool_calls,
            synthesis_citations=request.synthesis_citations,
        )
    except MessageExistsError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return FinalizeTurnResponse(message_id=message.id, citations=message.citations or {})


@router.get("/citations/{message_id}", summary="Citation map persisted with a message")
async def get_citations(
    message_id: str,
    user_id: str = Depends(get_user_id),
    messages: MessageStore = Depends(get_message_store),
) -> dict[str, Any]:
    if not message_id.strip():
        raise HTTPException(status_code=400, detail="Message ID is required")
    message = await messages.get_owned_message(message_id.strip(), user_id)
    if message is None:
        raise HTTPException(status_code=404, detail="Message not found")
    return message.citations or {}
