"""
Application configuration management.

Environment driven settings live in ``Settings``; the typed sub-configs
built from it are what the services receive at construction time.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings

DEFAULT_THEMES = [
    "mindfulness",
    "entrepreneurship",
    "philosophy",
    "wealth-building",
    "leadership",
    "productivity",
    "personal-growth",
    "decision-making",
    "relationships",
    "health-wellness",
    "happiness",
]

KNOWLEDGE_INDEX = "KNOWLEDGE"
CONVERSATIONS_INDEX = "CONVERSATIONS"


class MemoryConfig(BaseModel):
    """Conversation memory tunables"""

    immediate_context_size: int = Field(5, ge=1)
    topic_change_threshold: float = Field(0.7, ge=0.0, le=1.0)
    summary_chunk_size: int = Field(10, ge=1)
    max_retries: int = Field(3, ge=0)
    retry_delay_ms: int = Field(1000, ge=0)
    session_timeout_ms: int = 24 * 60 * 60 * 1000
    global_rollup_size: int = Field(3, ge=1)
    summary_queue_size: int = Field(100, ge=1)
    summary_workers: int = Field(1, ge=1)
    topic_tracking: bool = True


class VectorConfig(BaseModel):
    """Retry, batching and query defaults for vector operations"""

    max_attempts: int = Field(3, ge=1)
    backoff_ms: int = Field(1000, ge=0)
    max_batch_size: int = Field(100, ge=1)
    chunk_size: int = Field(20, ge=1)
    max_concurrent_batches: int = Field(3, ge=1)
    default_top_k: int = Field(5, ge=1)
    default_threshold: float = 0.7


class VectorIndexConfig(BaseModel):
    """A named vector index and the collection backing it"""

    name: str
    collection_name: str
    dimensions: int = Field(..., gt=0)


class ThemeConfig(BaseModel):
    """Controlled theme vocabulary and classification cut-offs"""

    themes: List[str] = Field(default_factory=lambda: list(DEFAULT_THEMES))
    min_confidence: float = 0.6
    batch_size: int = Field(5, ge=1)
    cache_path: Optional[str] = None
    cache_ttl_days: int = 30


class Settings(BaseSettings):
    """Application settings"""

    # Basic settings
    APP_NAME: str = "Naval Memory API"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Language model
    OPENAI_API_KEY: str = ""
    LLM_API_KEY: str = ""
    LLM_BASE_URL: Optional[str] = None
    CHAT_MODEL: str = "gpt-4o-mini"
    GENERATION_MODEL: str = "gpt-4o-mini"
    THEME_MODEL: str = "gpt-4o-mini"
    EMBEDDING_MODEL: str = "text-embedding-3-small"
    EMBEDDING_DIMENSION: int = 1024

    # Firebase Realtime Database
    FIREBASE_CREDENTIALS: Optional[str] = None
    FIREBASE_DATABASE_URL: str = ""

    # Qdrant
    QDRANT_URL: str = "http://localhost:6333"
    QDRANT_API_KEY: Optional[str] = None
    QDRANT_CONNECTION_TIMEOUT: int = 30
    KNOWLEDGE_COLLECTION: str = "knowledge"
    CONVERSATIONS_COLLECTION: str = "conversations"

    # Ingestion and CLI
    DATA_DIR: str = "./data"
    CLI_USER_ID: str = "local-user"
    THEME_VOCABULARY: str = ",".join(DEFAULT_THEMES)
    THEME_CACHE_PATH: Optional[str] = "./cache/theme_classifications.json"

    # Memory tunables
    IMMEDIATE_CONTEXT_SIZE: int = 5
    TOPIC_CHANGE_THRESHOLD: float = 0.7
    SUMMARY_CHUNK_SIZE: int = 10
    MAX_RETRIES: int = 3
    RETRY_DELAY_MS: int = 1000
    SESSION_TIMEOUT_MS: int = 24 * 60 * 60 * 1000
    GLOBAL_ROLLUP_SIZE: int = 3
    SUMMARY_QUEUE_SIZE: int = 100
    SUMMARY_WORKERS: int = 1
    TOPIC_TRACKING: bool = True

    # Vector tunables
    VECTOR_MAX_ATTEMPTS: int = 3
    VECTOR_BACKOFF_MS: int = 1000
    VECTOR_MAX_BATCH_SIZE: int = 100
    VECTOR_CHUNK_SIZE: int = 20
    VECTOR_MAX_CONCURRENT_BATCHES: int = 3
    VECTOR_TOP_K: int = 5
    VECTOR_SCORE_THRESHOLD: float = 0.7

    @field_validator("DEBUG", "TOPIC_TRACKING", mode="before")
    def parse_bool(cls, v):
        if isinstance(v, str):
            return v.lower() in ("true", "1", "yes", "on")
        return v

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"

    def memory_config(self) -> MemoryConfig:
        return MemoryConfig(
            immediate_context_size=self.IMMEDIATE_CONTEXT_SIZE,
            topic_change_threshold=self.TOPIC_CHANGE_THRESHOLD,
            summary_chunk_size=self.SUMMARY_CHUNK_SIZE,
            max_retries=self.MAX_RETRIES,
            retry_delay_ms=self.RETRY_DELAY_MS,
            session_timeout_ms=self.SESSION_TIMEOUT_MS,
            global_rollup_size=self.GLOBAL_ROLLUP_SIZE,
            summary_queue_size=self.SUMMARY_QUEUE_SIZE,
            summary_workers=self.SUMMARY_WORKERS,
            topic_tracking=self.TOPIC_TRACKING,
        )

    def vector_config(self) -> VectorConfig:
        return VectorConfig(
            max_attempts=self.VECTOR_MAX_ATTEMPTS,
            backoff_ms=self.VECTOR_BACKOFF_MS,
            max_batch_size=self.VECTOR_MAX_BATCH_SIZE,
            chunk_size=self.VECTOR_CHUNK_SIZE,
            max_concurrent_batches=self.VECTOR_MAX_CONCURRENT_BATCHES,
            default_top_k=self.VECTOR_TOP_K,
            default_threshold=self.VECTOR_SCORE_THRESHOLD,
        )

    def vector_indices(self) -> Dict[str, VectorIndexConfig]:
        return {
            KNOWLEDGE_INDEX: VectorIndexConfig(
                name=KNOWLEDGE_INDEX,
                collection_name=self.KNOWLEDGE_COLLECTION,
                dimensions=self.EMBEDDING_DIMENSION,
            ),
            CONVERSATIONS_INDEX: VectorIndexConfig(
                name=CONVERSATIONS_INDEX,
                collection_name=self.CONVERSATIONS_COLLECTION,
                dimensions=self.EMBEDDING_DIMENSION,
            ),
        }

    def theme_config(self) -> ThemeConfig:
        themes = [t.strip() for t in self.THEME_VOCABULARY.split(",") if t.strip()]
        return ThemeConfig(themes=themes or list(DEFAULT_THEMES), cache_path=self.THEME_CACHE_PATH)
