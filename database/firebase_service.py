"""
Firebase Realtime Database service for conversation memory.

This module provides path-addressed primitives (get, set, update, push,
atomic increment) over the Realtime Database. Conversations are laid out as
conversations/{conversation_id}/{metadata,messages,topics,summaries}.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional

import firebase_admin
from firebase_admin import credentials, db, exceptions

from utils.errors import StorageError, ValidationError
from utils.helpers import to_store_timestamp

CONVERSATIONS_PATH = "conversations"
MESSAGES_PATH = "messages"
TOPICS_PATH = "topics"
SUMMARIES_PATH = "summaries"
METADATA_PATH = "metadata"
USERS_PATH = "users"

APP_NAME = "conversation-memory"


class FirebaseService:
    """Service for managing Firebase Realtime Database operations"""

    def __init__(self, credentials_json: Optional[str] = None, database_url: str = ""):
        """
        Initialize the Firebase service.

        Args:
            credentials_json: Service account JSON; application default credentials when empty
            database_url: Realtime Database URL, e.g. https://<project>.firebaseio.com
        """
        self.credentials_json = credentials_json
        self.database_url = database_url
        self.app = None
        self.logger = logging.getLogger(__name__)

    async def initialize(self):
        """Initialize the Firebase app and verify the database is reachable"""
        try:
            try:
                self.app = firebase_admin.get_app(APP_NAME)
            except ValueError:
                if self.credentials_json:
                    cred = credentials.Certificate(json.loads(self.credentials_json))
                else:
                    cred = credentials.ApplicationDefault()
                self.app = firebase_admin.initialize_app(
                    cred, {"databaseURL": self.database_url}, name=APP_NAME
                )

            # Test Firebase connection
            await self.set_data("_health_check/test", {"timestamp": to_store_timestamp()})
            await self.delete_data("_health_check/test")
            self.logger.info("Firebase initialized and tested successfully")
        except StorageError:
            self.logger.critical("Firebase is not available - conversation memory will fail")
            raise
        except Exception as e:
            self.logger.error(f"Firebase initialization failed: {e}")
            raise StorageError(f"Firebase initialization failed: {e}") from e

    def _ref(self, path: str) -> db.Reference:
        if self.app is None:
            raise StorageError("Firebase service not initialized")
        try:
            return db.reference(path, app=self.app)
        except ValueError as e:
            # Keys may not contain ".", "$", "#", "[" or "]"
            raise ValidationError(f"Invalid Firebase path {path}: {e}") from e

    async def _run(self, description: str, func, *args):
        loop = asyncio.get_event_loop()
        try:
            return await loop.run_in_executor(None, func, *args)
        except exceptions.FirebaseError as e:
            self.logger.error(f"Firebase {description} failed: {e}")
            raise StorageError(f"Firebase {description} failed: {e}") from e

    async def get_data(self, path: str, shallow: bool = False) -> Any:
        """Read the value at path; None when nothing is stored there"""
        ref = self._ref(path)
        return await self._run(f"read of {path}", lambda: ref.get(shallow=shallow))

    async def set_data(self, path: str, data: Any) -> None:
        ref = self._ref(path)
        await self._run(f"write of {path}", ref.set, data)

    async def update_data(self, path: str, data: Dict[str, Any]) -> None:
        """Merge the given children into the value at path"""
        ref = self._ref(path)
        await self._run(f"update of {path}", ref.update, data)

    async def push_data(self, path: str, data: Any) -> str:
        """Append a child with a generated, chronologically ordered key"""
        ref = self._ref(path)
        new_ref = await self._run(f"push to {path}", ref.push, data)
        return new_ref.key

    async def delete_data(self, path: str) -> None:
        ref = self._ref(path)
        await self._run(f"delete of {path}", ref.delete)

    async def increment(self, path: str, delta: int = 1) -> int:
        """
        Atomically add delta to the integer at path.

        Runs as a Realtime Database transaction, so concurrent callers never
        lose an increment.

        Returns:
            int: the value after the increment
        """
        ref = self._ref(path)

        def _apply(current):
            return (current or 0) + delta

        return await self._run(f"increment of {path}", ref.transaction, _apply)

    def get_conversation_path(self, conversation_id: str, sub_path: Optional[str] = None) -> str:
        base_path = f"{CONVERSATIONS_PATH}/{conversation_id}"
        return f"{base_path}/{sub_path}" if sub_path else base_path
