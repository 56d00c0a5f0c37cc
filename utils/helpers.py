"""
Utility helper functions for the application.

This module contains the timestamp conversions used at the store boundary
and small text helpers shared by the language-model services.
"""

import hashlib
from datetime import datetime, timezone
from typing import Any, Optional


def utc_now() -> datetime:
    """Current time as an aware UTC datetime"""
    return datetime.now(timezone.utc)


def to_store_timestamp(value: Optional[datetime] = None) -> int:
    """
    Convert a datetime to the store's native representation (epoch milliseconds).

    Naive datetimes are treated as UTC.
    """
    if value is None:
        value = utc_now()
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def from_store_timestamp(value: Any) -> datetime:
    """
    Convert a stored epoch-milliseconds value back to an aware UTC datetime.

    Raises:
        ValueError: if the value is not a numeric timestamp
    """
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"Expected epoch milliseconds, got {type(value).__name__}")
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def clean_json_response(response: str) -> str:
    """Strip markdown code fences the model sometimes wraps around JSON"""
    response = response.strip()

    if response.startswith("```json"):
        response = response[7:]
    elif response.startswith("```"):
        response = response[3:]

    if response.endswith("```"):
        response = response[:-3]

    return response.strip()


def content_hash(text: str) -> str:
    """Stable cache key for a piece of text"""
    return hashlib.md5(text.encode("utf-8")).hexdigest()
