"""
Centralized logging configuration for the application.
"""

import logging
import sys


def setup_logging(level: str = "INFO") -> None:
    """
    Configure the root logger once for the process.

    Args:
        level: Log level name, e.g. "INFO" or "DEBUG"
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    # Qdrant and OpenAI clients log every request at INFO through httpx
    logging.getLogger("httpx").setLevel(logging.WARNING)
