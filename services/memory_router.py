"""
Memory API endpoints.

Thin HTTP layer over the memory integration service, which the app stores
on ``app.state.memory`` at startup.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from models.conversation import Message, ProcessingResult
from services.memory_integration import MemoryIntegration
from utils.errors import (
    MemoryServiceError,
    NotFoundError,
    StorageError,
    ValidationError,
    VectorStoreError,
)

logger = logging.getLogger(__name__)

memory_router = APIRouter(prefix="/memory", tags=["memory"])


class StartSessionRequest(BaseModel):
    user_id: str = Field(..., min_length=1)


class AddMessageRequest(BaseModel):
    message: Message


class MessagePairRequest(BaseModel):
    user: Message
    assistant: Message


class ChatRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)


def get_memory(request: Request) -> MemoryIntegration:
    memory = getattr(request.app.state, "memory", None)
    if memory is None:
        raise HTTPException(status_code=503, detail="Memory service not initialized")
    return memory


def to_http_error(error: MemoryServiceError) -> HTTPException:
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, ValidationError):
        return HTTPException(status_code=422, detail=str(error))
    if isinstance(error, (StorageError, VectorStoreError)):
        return HTTPException(status_code=503, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))


def message_to_dict(message: Message) -> Dict[str, Any]:
    data = message.model_dump(mode="json")
    data["role"] = message.role
    return data


def result_to_dict(result: ProcessingResult) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "success": result.success,
        "message_ids": result.message_ids,
        "summary_pending": result.summary_pending,
        "error": None,
    }
    if result.error is not None:
        data["error"] = {
            "operation": result.error.operation.value,
            "type": result.error.type.value,
            "message": str(result.error.error),
        }
    return data


@memory_router.post("/sessions")
async def start_session(
    body: StartSessionRequest, memory: MemoryIntegration = Depends(get_memory)
) -> Dict[str, Any]:
    """Resume the user's active conversation or start a new one"""
    try:
        session = await memory.start_session(body.user_id)
        return session.model_dump(mode="json")
    except MemoryServiceError as e:
        logger.error(f"Error starting session for user {body.user_id}: {e}")
        raise to_http_error(e)


@memory_router.post("/{conversation_id}/messages")
async def add_message(
    conversation_id: str, body: AddMessageRequest, memory: MemoryIntegration = Depends(get_memory)
) -> Dict[str, Any]:
    try:
        stored = await memory.processor.add_message(conversation_id, body.message)
        return message_to_dict(stored)
    except MemoryServiceError as e:
        logger.error(f"Error adding message to {conversation_id}: {e}")
        raise to_http_error(e)


@memory_router.post("/{conversation_id}/pairs")
async def add_message_pair(
    conversation_id: str, body: MessagePairRequest, memory: MemoryIntegration = Depends(get_memory)
) -> Dict[str, Any]:
    """Store a user message and its reply; failures come back in the body"""
    result = await memory.processor.process_message_pair(conversation_id, body.user, body.assistant)
    if not result.success and result.error is not None:
        if result.error.type.value == "CONVERSATION_NOT_FOUND":
            status_code = 404
        elif isinstance(result.error.error, ValidationError):
            status_code = 422
        else:
            status_code = 503
        raise HTTPException(status_code=status_code, detail=result_to_dict(result))
    return result_to_dict(result)


@memory_router.get("/{conversation_id}/messages")
async def get_messages(
    conversation_id: str, limit: int = 20, memory: MemoryIntegration = Depends(get_memory)
) -> Dict[str, Any]:
    """Most recent messages, oldest first"""
    try:
        await memory.conversations.get_metadata(conversation_id)
        messages = await memory.conversations.get_last_messages(conversation_id, limit)
        return {
            "conversation_id": conversation_id,
            "messages": [message_to_dict(m) for m in reversed(messages)],
            "total_count": len(messages),
        }
    except MemoryServiceError as e:
        raise to_http_error(e)


@memory_router.get("/{conversation_id}/summaries")
async def get_summaries(
    conversation_id: str, memory: MemoryIntegration = Depends(get_memory)
) -> Dict[str, Any]:
    try:
        await memory.conversations.get_metadata(conversation_id)
        summaries = await memory.summaries.get_summaries(conversation_id)
        return {
            "conversation_id": conversation_id,
            "summaries": [s.model_dump(mode="json") for s in summaries],
        }
    except MemoryServiceError as e:
        raise to_http_error(e)


@memory_router.get("/{conversation_id}/context")
async def get_context(
    conversation_id: str, memory: MemoryIntegration = Depends(get_memory)
) -> Dict[str, Any]:
    try:
        context = await memory.get_conversation_context(conversation_id)
        return context.model_dump(mode="json")
    except MemoryServiceError as e:
        raise to_http_error(e)


@memory_router.post("/{conversation_id}/chat")
async def chat(
    conversation_id: str, body: ChatRequest, memory: MemoryIntegration = Depends(get_memory)
) -> Dict[str, Any]:
    try:
        reply = await memory.chat(conversation_id, body.user_id, body.message)
        return {"conversation_id": conversation_id, "reply": reply}
    except MemoryServiceError as e:
        logger.error(f"Error in chat for conversation {conversation_id}: {e}")
        raise to_http_error(e)


@memory_router.post("/{conversation_id}/complete")
async def complete_session(
    conversation_id: str, memory: MemoryIntegration = Depends(get_memory)
) -> Dict[str, Any]:
    try:
        await memory.conversations.get_metadata(conversation_id)
        await memory.end_session(conversation_id)
        return {"conversation_id": conversation_id, "status": "completed"}
    except MemoryServiceError as e:
        raise to_http_error(e)


@memory_router.get("/search")
async def search_memories(
    user_id: str,
    query: str,
    limit: int = 5,
    memory: MemoryIntegration = Depends(get_memory),
) -> Dict[str, Any]:
    """Search summaries of the user's conversations"""
    try:
        results = await memory.recall(user_id, query, limit)
        return {
            "user_id": user_id,
            "query": query,
            "memories": [
                {
                    "id": r.id,
                    "content": r.metadata.get("content"),
                    "session_id": r.metadata.get("session_id"),
                    "level": r.metadata.get("level"),
                    "relevance_score": r.score,
                }
                for r in results
            ],
            "total_count": len(results),
        }
    except MemoryServiceError as e:
        logger.error(f"Error searching memories for user {user_id}: {e}")
        raise to_http_error(e)


@memory_router.get("/health")
async def health_check(request: Request) -> Dict[str, Any]:
    memory: Optional[MemoryIntegration] = getattr(request.app.state, "memory", None)
    if memory is None:
        return {"status": "unhealthy", "error": "Memory service not initialized"}
    try:
        return await memory.health_check()
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return {"status": "unhealthy", "error": str(e)}
