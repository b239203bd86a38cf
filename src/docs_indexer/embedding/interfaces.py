from __future__ import annotations

from typing import Any, Mapping, Protocol, Sequence


class EmbeddingClient(Protocol):
    async def embed(self, chunks: Sequence[str]) -> list[list[float]]:
        """Return exactly one vector per chunk. Raises EmbeddingFailure."""
        ...


class VectorSink(Protocol):
    async def store(
        self,
        resource_id: str,
        chunks: Sequence[str],
        vectors: Sequence[Sequence[float]],
        metadata: Mapping[str, Any],
    ) -> None:
        """Replace every stored chunk of resource_id with the given chunks."""
        ...
