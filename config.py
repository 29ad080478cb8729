# config.py
"""Configuration settings for the story-sync subsystem.
Uses Pydantic BaseSettings for automatic environment variable loading.
"""

from __future__ import annotations

import structlog
from dotenv import load_dotenv
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()

logger = structlog.get_logger()


class SyncSettings(BaseSettings):
    """Full configuration for the reader sync subsystem."""

    # Sync Queue
    SYNC_DEBOUNCE_SECONDS: float = 1.5
    SYNC_MAX_RETRY: int = 3
    SYNC_RETRY_BASE_SECONDS: float = 1.0
    SYNC_QUEUE_STORAGE_KEY: str = "autosyncQueue.v1"

    # Reading history
    HISTORY_PUSH_DEBOUNCE_SECONDS: float = 5.0
    HISTORY_STORAGE_KEY: str = "reading_history"

    # Local persistent cache
    LOCAL_STORE_DIR: str = "reader_data"

    # Neo4j Connection Settings (remote durable store)
    NEO4J_URI: str = "bolt://localhost:7687"
    NEO4J_USER: str = "neo4j"
    NEO4J_PASSWORD: str = "reader_password"
    NEO4J_DATABASE: str | None = "neo4j"
    REMOTE_DOCUMENT_LABEL: str = "SyncDocument"

    # Analysis Service (OpenAI-compatible chat endpoint)
    ANALYSIS_API_BASE: str = "http://127.0.0.1:8080/v1"
    ANALYSIS_API_KEY: str = "nope"
    ANALYSIS_MODEL: str = "gemini-2.5-flash"
    ANALYSIS_TEMPERATURE: float = 0.3
    ANALYSIS_MAX_CHAPTER_TOKENS: int = 12000
    HTTPX_TIMEOUT: float = 120.0
    TIKTOKEN_DEFAULT_ENCODING: str = "cl100k_base"

    # Merge Engine: ordered key-like fields used to match records in lists
    MERGE_KEY_FIELDS: list[str] = ["ten", "name", "id"]

    # Logging & UI
    LOG_LEVEL_STR: str = Field("INFO", alias="READER_LOG_LEVEL")
    LOG_FORMAT: str = (
        "%(asctime)s - %(levelname)s - [%(name)s:%(funcName)s:%(lineno)d] - %(message)s"
    )
    LOG_DATE_FORMAT: str = "%Y-%m-%d %H:%M:%S"
    LOG_FILE: str | None = "story_sync.log"
    ENABLE_RICH_CONSOLE: bool = True

    @model_validator(mode="after")
    def validate_sync_timings(self) -> SyncSettings:
        if self.SYNC_DEBOUNCE_SECONDS <= 0:
            raise ValueError("SYNC_DEBOUNCE_SECONDS must be positive")
        if self.SYNC_RETRY_BASE_SECONDS <= 0:
            raise ValueError("SYNC_RETRY_BASE_SECONDS must be positive")
        if self.SYNC_MAX_RETRY < 0:
            raise ValueError("SYNC_MAX_RETRY must not be negative")
        if self.NEO4J_PASSWORD == "reader_password":
            logger.warning(
                "NEO4J_PASSWORD is still the placeholder value; set it in .env for a real remote store."
            )
        return self

    model_config = SettingsConfigDict(
        env_prefix="", env_file=".env", populate_by_name=True
    )


settings = SyncSettings()

