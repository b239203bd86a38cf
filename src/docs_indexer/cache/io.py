from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

from docs_indexer.cache.utils import hash_key

logger = logging.getLogger(__name__)


def atomic_write_json(path: Path, payload: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
    tmp_path.replace(path)


def atomic_write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(text, encoding="utf-8")
    tmp_path.replace(path)


class BodyStore:
    """Keeps the last fetched body of each resource so it can be reused without a refetch."""

    def __init__(self, root_dir: str | Path) -> None:
        self._root_dir = Path(root_dir)

    def path_for(self, resource_id: str) -> Path:
        return self._root_dir / f"{hash_key(resource_id)}.html"

    def write(self, resource_id: str, body: str) -> str:
        path = self.path_for(resource_id)
        atomic_write_text(path, body)
        return str(path)

    def read(self, body_ref: Optional[str]) -> Optional[str]:
        if not body_ref:
            return None
        path = Path(body_ref)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.warning("Cached body is missing. body_ref=%s", body_ref)
            return None
        except OSError as e:
            logger.warning("Failed to read cached body. body_ref=%s error=%s", body_ref, e)
            return None
