#!/usr/bin/env python3
"""
Naval memory CLI - ingest the reading list, then chat with memory.

Commands inside the chat loop:
    exit    leave the loop (the session stays active)
    prefs   show the active memory preferences
    logout  complete the session and leave
"""
import argparse
import asyncio
import logging
import sys
from typing import Callable

from dotenv import load_dotenv

from services.memory_integration import MemoryIntegration
from utils.config import Settings
from utils.errors import MemoryServiceError
from utils.logging_config import setup_logging

logger = logging.getLogger("cli")


def format_prefs(memory: MemoryIntegration) -> str:
    config = memory.memory_config
    themes = memory.theme_classifier.config.themes
    return "\n".join([
        "Memory preferences:",
        f"  immediate context:   {config.immediate_context_size} messages",
        f"  summary every:       {config.summary_chunk_size} messages",
        f"  global roll-up:      every {config.global_rollup_size} summaries",
        f"  topic tracking:      {'on' if config.topic_tracking else 'off'}",
        f"  topic threshold:     {config.topic_change_threshold}",
        f"  session timeout:     {config.session_timeout_ms // 60000} minutes",
        f"  themes:              {', '.join(themes)}",
    ])


async def setup(memory: MemoryIntegration, data_dir: str, write: Callable[[str], None] = print):
    """Ingest the data directory into the knowledge index"""
    write(f"Ingesting documents from {data_dir}...")
    try:
        stats = await memory.ingestion.ingest_directory(data_dir)
    except FileNotFoundError as e:
        write(f"Skipping setup: {e}")
        return
    except MemoryServiceError as e:
        write(f"Setup failed: {e}")
        return
    write(f"Ingested {stats.successful_items}/{stats.total_items} chunks ({stats.failed_items} failed)")


async def interactive_loop(
    memory: MemoryIntegration,
    conversation_id: str,
    user_id: str,
    read_line: Callable[[str], str] = input,
    write: Callable[[str], None] = print,
):
    """Read queries until exit/logout; classified errors skip one turn"""
    loop = asyncio.get_event_loop()

    while True:
        try:
            line = await loop.run_in_executor(None, read_line, "\nYou: ")
        except EOFError:
            break

        command = line.strip()
        if not command:
            continue
        if command.lower() == "exit":
            break
        if command.lower() == "prefs":
            write(format_prefs(memory))
            continue
        if command.lower() == "logout":
            await memory.end_session(conversation_id)
            write("Session completed. Goodbye!")
            break

        try:
            reply = await memory.chat(conversation_id, user_id, command)
        except MemoryServiceError as e:
            logger.error(f"Chat turn failed: {e}")
            write(f"Error: {e}")
            continue
        write(f"\nNaval: {reply}")


async def run(args) -> int:
    settings = Settings()
    memory = MemoryIntegration(settings)
    await memory.initialize()
    try:
        if not args.skip_setup:
            await setup(memory, settings.DATA_DIR)

        session = await memory.start_session(settings.CLI_USER_ID)
        print(f"Conversation {session.id} ready. Type 'exit' to quit.")
        await interactive_loop(memory, session.id, settings.CLI_USER_ID)
    finally:
        await memory.close()
    return 0


def main():
    load_dotenv()

    parser = argparse.ArgumentParser(
        prog="naval-memory",
        description="Chat with the reading-list knowledge base, with conversation memory.",
    )
    parser.add_argument(
        "--skip-setup",
        action="store_true",
        help="Skip ingesting the data directory before chatting",
    )
    args = parser.parse_args()

    setup_logging(Settings().LOG_LEVEL)
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
