"""
Prompts used to build hierarchical conversation summaries.
"""

from typing import Sequence

from models.conversation import AssistantToolCallMessage, Message, ToolResultMessage

RECENT_SUMMARY_PROMPT = """
Summarize the following stretch of a conversation between a user and an assistant
that answers questions from a knowledge base.

Focus on: what the user asked about, the answers and sources given, decisions or
preferences the user expressed, and open questions.

Themes discussed: {themes}

Conversation:
{transcript}

Write 3-5 concise sentences in the third person. Do not invent details.
"""

GLOBAL_SUMMARY_PROMPT = """
Combine the following summaries of one conversation into a single overview of the
whole conversation so far. Earlier summaries come first.

Summaries:
{summaries}

Keep the recurring interests of the user and the key conclusions. Drop repetition.
Write at most one short paragraph.
"""


def format_transcript(messages: Sequence[Message]) -> str:
    """Render messages as ``Speaker (HH:MM): text`` lines"""
    lines = []
    for message in messages:
        timestamp = message.timestamp.strftime("%H:%M")
        if isinstance(message, AssistantToolCallMessage):
            calls = ", ".join(f"{call.name}({call.arguments})" for call in message.tool_calls)
            lines.append(f"Assistant ({timestamp}): [calls {calls}] {message.content}".rstrip())
        elif isinstance(message, ToolResultMessage):
            lines.append(f"Tool result ({timestamp}): {message.content}")
        else:
            speaker = "User" if message.role == "user" else "Assistant"
            lines.append(f"{speaker} ({timestamp}): {message.content}")
    return "\n".join(lines)


def build_recent_summary_prompt(messages: Sequence[Message], themes: Sequence[str]) -> str:
    return RECENT_SUMMARY_PROMPT.format(
        themes=", ".join(themes) if themes else "none identified",
        transcript=format_transcript(messages),
    )


def build_global_summary_prompt(contents: Sequence[str]) -> str:
    summaries = "\n\n".join(f"{i + 1}. {content}" for i, content in enumerate(contents))
    return GLOBAL_SUMMARY_PROMPT.format(summaries=summaries)
