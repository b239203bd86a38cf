from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence

from docs_indexer.cache.io import atomic_write_json
from docs_indexer.cache.utils import format_rfc3339, hash_key, utc_now

logger = logging.getLogger(__name__)


def chunk_id(resource_id: str, index: int) -> str:
    return f"{resource_id}#chunk{index}"


class LocalVectorIndex:
    """
    File-backed vector sink: one JSON document per resource.

    Writing a resource replaces all of its previous chunks, so re-indexing a
    shorter page never leaves stale chunks behind.
    """

    def __init__(self, root_dir: str | Path) -> None:
        self._root_dir = Path(root_dir)

    def path_for(self, resource_id: str) -> Path:
        return self._root_dir / f"{hash_key(resource_id)}.json"

    async def store(
        self,
        resource_id: str,
        chunks: Sequence[str],
        vectors: Sequence[Sequence[float]],
        metadata: Mapping[str, Any],
    ) -> None:
        if len(chunks) != len(vectors):
            raise ValueError(f"Chunk and vector counts differ. chunks={len(chunks)} vectors={len(vectors)}")
        payload = {
            "resource_id": resource_id,
            "metadata": dict(metadata),
            "stored_at": format_rfc3339(utc_now()),
            "chunks": [
                {
                    "id": chunk_id(resource_id, index),
                    "index": index,
                    "text": text,
                    "vector": list(vector),
                }
                for index, (text, vector) in enumerate(zip(chunks, vectors))
            ],
        }
        atomic_write_json(self.path_for(resource_id), payload)
        logger.debug("Stored vectors. resource_id=%s chunks=%d", resource_id, len(chunks))

    def load(self, resource_id: str) -> Optional[dict]:
        path = self.path_for(resource_id)
        if not path.exists():
            return None
        return json.loads(path.read_text(encoding="utf-8"))
