"""Configuration schema and loader."""

from docs_indexer.config.loader import YamlConfigLoader
from docs_indexer.config.models import (
    AppConfig,
    ConfigLoadRequest,
    EmbeddingSettings,
    FetchSettings,
    IndexingSettings,
    LoggingSettings,
    SourceSettings,
    StoreSettings,
)

__all__ = [
    "AppConfig",
    "ConfigLoadRequest",
    "EmbeddingSettings",
    "FetchSettings",
    "IndexingSettings",
    "LoggingSettings",
    "SourceSettings",
    "StoreSettings",
    "YamlConfigLoader",
]
