"""Search index for cached package documentation.

Chunks documents, embeds them through a local Ollama server and stores the
vectors in one ChromaDB database per package version
(``<root>/search/<name>@<version>.db``). ChromaDB calls are blocking, so
they run in a worker thread.
"""

import asyncio
import hashlib
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

import httpx

from skilld.core import debug as log
from skilld.core.errors import NotFound, TransientFetchError

COLLECTION_NAME = "skilld_docs"

PathLike = Union[str, Path]


@dataclass
class IndexDoc:
    """A document handed to the search index."""

    id: str
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DocChunk:
    chunk_id: str
    content: str
    metadata: Dict[str, Any]


@dataclass
class IndexProgress:
    phase: str  # "embedding" | "storing"
    current: int
    total: int


@dataclass
class SearchHit:
    content: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def source(self) -> str:
        return str(self.metadata.get("source", ""))


ProgressCallback = Callable[[IndexProgress], None]


def _clean_metadata(metadata: Dict[str, Any]) -> Dict[str, Any]:
    # ChromaDB only accepts scalar, non-null metadata values
    return {k: v for k, v in metadata.items() if isinstance(v, (str, int, float, bool))}


class DocsIndexer:
    """Builds and queries per-package vector indexes."""

    def __init__(
        self,
        embedding_model: str = "nomic-embed-text",
        chunk_size: int = 1000,
        chunk_overlap: int = 200,
        ollama_base_url: str = "http://localhost:11434",
        timeout: int = 120,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.embedding_model = embedding_model
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.ollama_url = ollama_base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.ollama_url,
            timeout=httpx.Timeout(self.timeout),
            transport=self._transport,
        )

    def chunk_text(self, doc: IndexDoc) -> List[DocChunk]:
        """Split a document into overlapping word-based chunks."""
        words = doc.content.split()
        if not words:
            return []

        # Approximate words per chunk
        words_per_chunk = max(self.chunk_size // 5, 1)  # ~5 chars per word
        overlap_words = min(self.chunk_overlap // 5, words_per_chunk - 1)

        chunks = []
        start = 0
        chunk_num = 0
        while start < len(words):
            end = min(start + words_per_chunk, len(words))
            text = " ".join(words[start:end])
            chunk_id = hashlib.md5(f"{doc.id}_{chunk_num}".encode()).hexdigest()
            chunks.append(DocChunk(
                chunk_id=chunk_id,
                content=text,
                metadata={**_clean_metadata(doc.metadata), "doc_id": doc.id, "chunk_num": chunk_num},
            ))
            chunk_num += 1
            start = end - overlap_words if end < len(words) else end

        return chunks

    async def get_embedding(self, client: httpx.AsyncClient, text: str) -> List[float]:
        """Embedding for ``text`` from Ollama."""
        try:
            response = await client.post(
                "/api/embeddings",
                json={"model": self.embedding_model, "prompt": text},
            )
        except httpx.HTTPError as e:
            raise TransientFetchError(f"Embedding request failed: {e}") from e
        if response.status_code != 200:
            raise TransientFetchError(f"Embedding failed: {response.status_code}")
        return response.json().get("embedding", [])

    @staticmethod
    def _collection(db_path: Path):
        import chromadb

        client = chromadb.PersistentClient(path=str(db_path))
        return client.get_or_create_collection(
            name=COLLECTION_NAME,
            metadata={"hnsw:space": "cosine"},
        )

    def _store(self, db_path: Path, chunks: List[DocChunk], embeddings: List[List[float]]) -> None:
        collection = self._collection(db_path)
        collection.add(
            ids=[c.chunk_id for c in chunks],
            embeddings=embeddings,
            documents=[c.content for c in chunks],
            metadatas=[c.metadata for c in chunks],
        )

    def _query(self, db_path: Path, embedding: List[float], limit: int) -> Dict[str, Any]:
        collection = self._collection(db_path)
        return collection.query(query_embeddings=[embedding], n_results=limit)

    async def create_index(
        self,
        docs: List[IndexDoc],
        db_path: PathLike,
        on_progress: Optional[ProgressCallback] = None,
    ) -> int:
        """Embed and store ``docs`` in a new database at ``db_path``.

        A failed build removes the partial database so the next sync retries.

        Returns:
            Number of chunks stored
        """
        db_path = Path(db_path)
        chunks = [chunk for doc in docs for chunk in self.chunk_text(doc)]
        if not chunks:
            return 0

        embeddings = []
        async with self._http() as client:
            for i, chunk in enumerate(chunks, 1):
                embeddings.append(await self.get_embedding(client, chunk.content))
                if on_progress:
                    on_progress(IndexProgress("embedding", i, len(chunks)))

        db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            await asyncio.to_thread(self._store, db_path, chunks, embeddings)
        except Exception:
            shutil.rmtree(db_path, ignore_errors=True)
            raise
        if on_progress:
            on_progress(IndexProgress("storing", len(chunks), len(chunks)))

        log.info(f"INDEX: {len(chunks)} chunks from {len(docs)} docs -> {db_path}")
        return len(chunks)

    async def search(self, query: str, db_path: PathLike, limit: int = 5) -> List[SearchHit]:
        """Nearest chunks to ``query`` in one package database.

        Raises:
            NotFound: when the package has no search index
        """
        db_path = Path(db_path)
        if not db_path.exists():
            raise NotFound(f"No search index at {db_path}")

        async with self._http() as client:
            embedding = await self.get_embedding(client, query)

        results = await asyncio.to_thread(self._query, db_path, embedding, limit)
        documents = (results.get("documents") or [[]])[0]
        metadatas = (results.get("metadatas") or [[]])[0]
        distances = (results.get("distances") or [[]])[0]

        hits = []
        for i, content in enumerate(documents):
            distance = distances[i] if i < len(distances) else 1.0
            hits.append(SearchHit(
                content=content,
                score=1.0 - distance,
                metadata=dict(metadatas[i] or {}) if i < len(metadatas) else {},
            ))
        return hits
