"""
Tool-calling conversational agent.

Every turn (user, assistant text, assistant tool call, tool result) goes
through the message processor so counters and summaries stay consistent.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from models.conversation import (
    AssistantTextMessage,
    AssistantToolCallMessage,
    Message,
    ToolCall,
    ToolResultMessage,
    UserMessage,
)
from prompts.rag_prompts import AGENT_SYSTEM_PROMPT, QUERY_KNOWLEDGE_BASE_TOOL
from utils.errors import MemoryServiceError

logger = logging.getLogger(__name__)

MAX_TOOL_ROUNDS = 5
FALLBACK_REPLY = "Sorry, I could not finish looking that up. Could you rephrase the question?"


def to_chat_message(message: Message) -> Dict[str, Any]:
    """Convert a stored message to the chat completions wire shape"""
    if isinstance(message, UserMessage):
        return {"role": "user", "content": message.content}
    if isinstance(message, AssistantToolCallMessage):
        return {
            "role": "assistant",
            "content": message.content or None,
            "tool_calls": [
                {"id": call.id, "type": "function", "function": {"name": call.name, "arguments": call.arguments}}
                for call in message.tool_calls
            ],
        }
    if isinstance(message, ToolResultMessage):
        return {"role": "tool", "tool_call_id": message.tool_call_id, "content": message.content}
    return {"role": "assistant", "content": message.content}


def build_history(messages: List[Message]) -> List[Dict[str, Any]]:
    """Chronological chat history, dropping tool results cut off from their call"""
    history = []
    open_calls = set()
    for message in messages:
        if isinstance(message, ToolResultMessage) and message.tool_call_id not in open_calls:
            continue
        if isinstance(message, AssistantToolCallMessage):
            open_calls.update(call.id for call in message.tool_calls)
        history.append(to_chat_message(message))
    return history


class Agent:
    """Runs the chat loop for one user message at a time"""

    def __init__(
        self,
        processor,
        conversations,
        query_engine,
        llm_service,
        history_size: int = 10,
        max_tool_rounds: int = MAX_TOOL_ROUNDS,
    ):
        self.processor = processor
        self.conversations = conversations
        self.query_engine = query_engine
        self.llm_service = llm_service
        self.history_size = history_size
        self.max_tool_rounds = max_tool_rounds

    async def query_knowledge_base(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        query = str(arguments.get("query", "")).strip()
        if not query:
            return {"error": "query is required", "results": [], "total_results": 0}

        results = await self.query_engine.find_relevant_chunks(query, arguments.get("themes") or None)
        return {
            "results": [
                {
                    "id": result.id,
                    "content": result.metadata.get("content", ""),
                    "relevance": result.score,
                    "source_reference": result.metadata.get("source_reference"),
                    "themes": result.metadata.get("themes", []),
                }
                for result in results
            ],
            "total_results": len(results),
        }

    async def _run_tool(self, call: ToolCall) -> str:
        try:
            arguments = json.loads(call.arguments or "{}")
        except json.JSONDecodeError as e:
            return json.dumps({"error": f"Invalid tool arguments: {e}"})

        if call.name != "query_knowledge_base":
            return json.dumps({"error": f"Unknown tool: {call.name}"})

        try:
            return json.dumps(await self.query_knowledge_base(arguments))
        except MemoryServiceError as e:
            logger.error(f"Knowledge base query failed: {e}")
            return json.dumps({"error": "Failed to query knowledge base"})

    async def run_agent(
        self, conversation_id: str, user_message: str, system_prompt: Optional[str] = None
    ) -> str:
        """
        Answer a user message, calling tools as the model requests.

        Returns:
            str: the assistant's final reply
        """
        await self.processor.add_message(conversation_id, UserMessage(content=user_message))

        for _ in range(self.max_tool_rounds):
            recent = await self.conversations.get_last_messages(conversation_id, self.history_size)
            messages = [{"role": "system", "content": system_prompt or AGENT_SYSTEM_PROMPT}]
            messages.extend(build_history(list(reversed(recent))))

            response = await self.llm_service.chat(messages, tools=[QUERY_KNOWLEDGE_BASE_TOOL])

            if not response.tool_calls:
                reply = response.content or ""
                await self.processor.add_message(conversation_id, AssistantTextMessage(content=reply))
                return reply

            tool_calls = [
                ToolCall(id=call.id, name=call.function.name, arguments=call.function.arguments or "{}")
                for call in response.tool_calls
            ]
            await self.processor.add_message(
                conversation_id,
                AssistantToolCallMessage(content=response.content or "", tool_calls=tool_calls),
            )

            for call in tool_calls:
                logger.info(f"Executing tool {call.name}")
                output = await self._run_tool(call)
                await self.processor.add_message(
                    conversation_id, ToolResultMessage(content=output, tool_call_id=call.id)
                )

        logger.warning(f"Agent hit {self.max_tool_rounds} tool rounds for conversation {conversation_id}")
        await self.processor.add_message(conversation_id, AssistantTextMessage(content=FALLBACK_REPLY))
        return FALLBACK_REPLY
