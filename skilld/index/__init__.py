"""Vector search over cached package documentation."""

from .indexer import DocChunk, DocsIndexer, IndexDoc, IndexProgress, SearchHit

__all__ = [
    "DocsIndexer",
    "IndexDoc",
    "IndexProgress",
    "DocChunk",
    "SearchHit",
]
