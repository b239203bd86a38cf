from __future__ import annotations

import logging
from typing import Sequence

from langchain_core.embeddings import Embeddings
from langchain_openai import OpenAIEmbeddings

from docs_indexer.config.models import EmbeddingSettings
from docs_indexer.errors import EmbeddingFailure

logger = logging.getLogger(__name__)


def build_embeddings(settings: EmbeddingSettings) -> Embeddings:
    """Create an embeddings model for any OpenAI-compatible endpoint."""
    return OpenAIEmbeddings(
        model=settings.model,
        api_key=settings.api_key or None,
        base_url=settings.base_url,
        request_timeout=settings.request_timeout_seconds,
        # Retried by the indexing loop
        max_retries=0,
        # Self-hosted endpoints do not accept pre-tokenized input
        check_embedding_ctx_length=settings.base_url is None,
    )


class LangChainEmbeddingClient:
    def __init__(self, embeddings: Embeddings) -> None:
        self._embeddings = embeddings

    async def embed(self, chunks: Sequence[str]) -> list[list[float]]:
        if not chunks:
            return []
        try:
            vectors = await self._embeddings.aembed_documents(list(chunks))
        except Exception as e:
            logger.warning("Embedding request failed. chunks=%d error=%s", len(chunks), e)
            raise EmbeddingFailure(f"Embedding request failed: {e}") from e
        if len(vectors) != len(chunks):
            raise EmbeddingFailure(f"Embedding service returned {len(vectors)} vectors for {len(chunks)} chunks")
        return [list(vector) for vector in vectors]
