"""
Shared fixtures: an in-memory stand-in for the Firebase store and a
deterministic language model.
"""

import copy
import hashlib
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

from database.firebase_service import CONVERSATIONS_PATH
from services.conversation_service import ConversationService
from services.summary_queue import SummaryQueue
from services.summary_service import SummaryService
from utils.config import MemoryConfig
from utils.errors import StorageError


class FakeFirebaseStore:
    """Path-addressed dict tree with the FirebaseService async API"""

    def __init__(self):
        self.data: Dict[str, Any] = {}
        self.failures: Dict[str, int] = {}
        self.calls: List[str] = []
        self._push_counter = 0

    def fail_next(self, method: str, times: int = 1):
        self.failures[method] = times

    def _maybe_fail(self, method: str):
        self.calls.append(method)
        if self.failures.get(method, 0) > 0:
            self.failures[method] -= 1
            raise StorageError(f"Simulated {method} failure")

    @staticmethod
    def _parts(path: str) -> List[str]:
        return [p for p in path.split("/") if p]

    def _get(self, path: str) -> Any:
        node = self.data
        for part in self._parts(path):
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        return node

    def _set(self, path: str, value: Any):
        parts = self._parts(path)
        node = self.data
        for part in parts[:-1]:
            node = node.setdefault(part, {})
        if value is None:
            node.pop(parts[-1], None)
        else:
            node[parts[-1]] = copy.deepcopy(value)

    async def initialize(self):
        pass

    async def get_data(self, path: str, shallow: bool = False) -> Any:
        self._maybe_fail("get_data")
        value = copy.deepcopy(self._get(path))
        if shallow and isinstance(value, dict):
            return {key: True for key in value}
        return value

    async def set_data(self, path: str, data: Any) -> None:
        self._maybe_fail("set_data")
        self._set(path, data)

    async def update_data(self, path: str, data: Dict[str, Any]) -> None:
        self._maybe_fail("update_data")
        for key, value in data.items():
            self._set(f"{path}/{key}", value)

    async def push_data(self, path: str, data: Any) -> str:
        self._maybe_fail("push_data")
        self._push_counter += 1
        key = f"-K{self._push_counter:08d}"
        self._set(f"{path}/{key}", data)
        return key

    async def delete_data(self, path: str) -> None:
        self._maybe_fail("delete_data")
        self._set(path, None)

    async def increment(self, path: str, delta: int = 1) -> int:
        self._maybe_fail("increment")
        value = (self._get(path) or 0) + delta
        self._set(path, value)
        return value

    def get_conversation_path(self, conversation_id: str, sub_path: Optional[str] = None) -> str:
        base_path = f"{CONVERSATIONS_PATH}/{conversation_id}"
        return f"{base_path}/{sub_path}" if sub_path else base_path


class FakeLLM:
    """Deterministic generation and hash-based embeddings"""

    def __init__(self, dimension: int = 8):
        self.dimension = dimension
        self.text_response = "A short summary."
        self.prompts: List[str] = []
        self.chat_responses: List[Any] = []
        self.chat_calls: List[Dict[str, Any]] = []

    def embed(self, text: str) -> List[float]:
        digest = hashlib.md5(text.encode("utf-8")).digest()
        return [digest[i % len(digest)] / 255 + 0.01 for i in range(self.dimension)]

    async def generate_text(self, prompt: str, model: Optional[str] = None) -> str:
        self.prompts.append(prompt)
        return self.text_response

    async def generate_embeddings(self, texts: List[str]) -> List[List[float]]:
        return [self.embed(text) for text in texts]

    async def chat(self, messages, tools=None, json_mode=False, model=None):
        self.chat_calls.append({"messages": messages, "tools": tools, "json_mode": json_mode})
        return self.chat_responses.pop(0)


def chat_reply(content: Optional[str] = None, tool_calls=None):
    return SimpleNamespace(content=content, tool_calls=tool_calls)


def tool_call(call_id: str, name: str, arguments: str):
    return SimpleNamespace(id=call_id, function=SimpleNamespace(name=name, arguments=arguments))


@pytest.fixture
def store():
    return FakeFirebaseStore()


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def memory_config():
    return MemoryConfig(retry_delay_ms=0, topic_tracking=False)


@pytest.fixture
def conversation_service(store):
    return ConversationService(store)


@pytest.fixture
def summary_service(store, llm):
    return SummaryService(store, llm)


@pytest_asyncio.fixture
async def summary_queue():
    queue = SummaryQueue(maxsize=100, workers=1)
    queue.start()
    yield queue
    await queue.stop()
