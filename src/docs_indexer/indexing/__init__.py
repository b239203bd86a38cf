from docs_indexer.indexing.chunker import split_into_chunks
from docs_indexer.indexing.models import ChangeSummary, ResourceError, RunReport
from docs_indexer.indexing.orchestrator import IndexingOrchestrator, lease_name_for
from docs_indexer.indexing.retry import retry_async

__all__ = [
    "ChangeSummary",
    "IndexingOrchestrator",
    "ResourceError",
    "RunReport",
    "lease_name_for",
    "retry_async",
    "split_into_chunks",
]
