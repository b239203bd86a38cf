from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_USER_AGENT = "docs-indexer/0.1 (+https://github.com/docs-indexer/docs-indexer)"
DEFAULT_EXCLUDE_PATTERNS = ("/blog", "/archive", "/search", "/tags/", "/authors")


class FileRotationSettings(BaseModel):
    """
    Date-based rotation settings (daily).

    This maps cleanly to Python's standard library TimedRotatingFileHandler behavior.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    backup_count: int = 7


class FileLoggingSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    path: str = ""
    rotation: FileRotationSettings = FileRotationSettings()


class LoggingSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    level: str = "INFO"
    file: FileLoggingSettings = FileLoggingSettings()


class StoreSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    path: str = "data/cache/index-cache.db"
    body_dir: str = "data/cache/bodies"
    busy_timeout_seconds: float = Field(default=30.0, gt=0)


class FetchSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    timeout_seconds: float = Field(default=15.0, gt=0)
    probe_timeout_seconds: float = Field(default=10.0, gt=0)
    user_agent: str = DEFAULT_USER_AGENT
    max_redirects: int = Field(default=3, ge=0)
    max_body_bytes: int = Field(default=5_000_000, gt=0)


class EmbeddingSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    # Any OpenAI-compatible embeddings endpoint (OpenAI, Ollama, LM Studio, ...)
    base_url: Optional[str] = None
    api_key: str = ""
    model: str = "text-embedding-3-small"
    request_timeout_seconds: float = Field(default=60.0, gt=0)

    max_attempts: int = Field(default=3, ge=1)
    initial_backoff_seconds: float = Field(default=0.5, ge=0)


class IndexingSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    batch_size: int = Field(default=3, ge=1)
    batch_delay_seconds: float = Field(default=0.5, ge=0)
    lease_ttl_seconds: float = Field(default=1800.0, gt=0)
    chunk_max_chars: int = Field(default=2000, ge=100)
    vector_index_dir: str = "data/vectors"


class SourceSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str
    name: str = ""
    base_url: str
    sitemap_path: str = "/sitemap.xml"
    fallback_paths: Sequence[str] = ()
    exclude_patterns: Sequence[str] = DEFAULT_EXCLUDE_PATTERNS
    max_urls: Optional[int] = Field(default=None, gt=0)

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def display_name(self) -> str:
        return self.name or self.id


class AppConfig(BaseModel):
    """Effective runtime configuration after applying all precedence rules."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    logging: LoggingSettings = LoggingSettings()
    store: StoreSettings = StoreSettings()
    fetch: FetchSettings = FetchSettings()
    embedding: EmbeddingSettings = EmbeddingSettings()
    indexing: IndexingSettings = IndexingSettings()
    sources: Sequence[SourceSettings] = ()

    @field_validator("sources")
    @classmethod
    def _unique_source_ids(cls, value: Sequence[SourceSettings]) -> Sequence[SourceSettings]:
        seen: set[str] = set()
        for source in value:
            if source.id in seen:
                raise ValueError(f"Duplicate source id: {source.id}")
            seen.add(source.id)
        return value

    def get_source(self, source_id: str) -> SourceSettings:
        for source in self.sources:
            if source.id == source_id:
                return source
        known = ", ".join(source.id for source in self.sources) or "<none>"
        raise KeyError(f"Unknown source id: {source_id} (configured: {known})")


@dataclass(frozen=True, slots=True)
class ConfigLoadRequest:
    """
    Optional inputs for a configuration loader.

    Implementations may use these to control where configuration is read from.
    """

    yaml_path: str = "data/config/config.yaml"
    env_prefix: str = "DOCS_INDEXER__"
    dotenv_path: Optional[str] = "data/.env"
