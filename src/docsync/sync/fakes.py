"""Fake collaborator implementations for testing the sync pipeline.

All fakes are deterministic and keep their state in memory. Each one records
its calls and can be scripted to raise on upcoming calls with
:meth:`FailureScript.fail_next`, which is how tests drive the retry and
dead-letter paths.
"""

from __future__ import annotations

import hashlib
import re
from collections import defaultdict
from collections.abc import Sequence

from docsync.sync.protocols import (
    ChunkMeta,
    Doc,
    DocumentChunk,
    Point,
    make_point_id,
)
from docsync.sync.strategy import content_hash


class FailureScript:
    """Queue of exceptions to raise from named methods."""

    def __init__(self) -> None:
        self._failures: dict[str, list[BaseException]] = defaultdict(list)
        self.calls: dict[str, int] = defaultdict(int)

    def fail_next(self, method: str, *errors: BaseException) -> None:
        """Raise ``errors`` (one per call) from the next calls to ``method``."""
        self._failures[method].extend(errors)

    def _enter(self, method: str) -> None:
        self.calls[method] += 1
        queue = self._failures.get(method)
        if queue:
            raise queue.pop(0)


class InMemoryMetadataRepo(FailureScript):
    """Document and chunk metadata held in dictionaries."""

    def __init__(self) -> None:
        super().__init__()
        self.docs: dict[str, Doc] = {}
        self.chunk_metas: dict[str, list[ChunkMeta]] = {}
        self.chunk_texts: dict[str, str] = {}
        self.synced: set[str] = set()

    def add_doc(
        self,
        doc_id: str,
        content: str | None,
        *,
        collection_id: str = "default",
        name: str | None = None,
    ) -> Doc:
        doc = Doc(id=doc_id, collection_id=collection_id, name=name or doc_id, content=content)
        self.docs[doc_id] = doc
        return doc

    def remove_doc(self, doc_id: str) -> None:
        self.docs.pop(doc_id, None)
        for meta in self.chunk_metas.pop(doc_id, []):
            self.chunk_texts.pop(meta.point_id, None)
        self.synced.discard(doc_id)

    async def get_doc(self, doc_id: str) -> Doc | None:
        self._enter("get_doc")
        return self.docs.get(doc_id)

    async def add_chunks(self, doc_id: str, chunks: Sequence[DocumentChunk]) -> None:
        self._enter("add_chunks")
        doc = self.docs[doc_id]
        for meta in self.chunk_metas.pop(doc_id, []):
            self.chunk_texts.pop(meta.point_id, None)

        metas = []
        for chunk in chunks:
            point_id = make_point_id(doc_id, chunk.chunk_index)
            metas.append(
                ChunkMeta(
                    point_id=point_id,
                    doc_id=doc_id,
                    collection_id=doc.collection_id,
                    chunk_index=chunk.chunk_index,
                    content_hash=content_hash(chunk.content),
                    title_chain=chunk.title_chain,
                )
            )
            self.chunk_texts[point_id] = chunk.content
        self.chunk_metas[doc_id] = metas

    async def get_chunk_metas_by_doc_id(self, doc_id: str) -> list[ChunkMeta]:
        self._enter("get_chunk_metas_by_doc_id")
        return list(self.chunk_metas.get(doc_id, []))

    async def get_chunk_texts(self, point_ids: Sequence[str]) -> dict[str, str]:
        self._enter("get_chunk_texts")
        return {pid: self.chunk_texts[pid] for pid in point_ids if pid in self.chunk_texts}

    async def mark_doc_as_synced(self, doc_id: str) -> None:
        self._enter("mark_doc_as_synced")
        self.synced.add(doc_id)


class InMemoryVectorRepo(FailureScript):
    """Vector store keyed by collection and point id."""

    def __init__(self) -> None:
        super().__init__()
        self.collections: dict[str, dict[str, Point]] = defaultdict(dict)

    async def upsert_collection(self, collection_id: str, points: Sequence[Point]) -> None:
        self._enter("upsert_collection")
        collection = self.collections[collection_id]
        for point in points:
            collection[point.id] = point

    def count(self, collection_id: str) -> int:
        return len(self.collections.get(collection_id, {}))


class FakeEmbeddingProvider(FailureScript):
    """Deterministic embeddings derived from a hash of each text."""

    def __init__(self, dimension: int = 8, *, drop_vectors: int = 0) -> None:
        """Initialize the provider.

        Args:
            dimension: Length of every generated vector
            drop_vectors: Return this many fewer vectors than texts
        """
        super().__init__()
        self.dimension = dimension
        self.drop_vectors = drop_vectors
        self.requests: list[list[str]] = []

    def embed(self, text: str) -> list[float]:
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return [digest[i % len(digest)] / 255.0 for i in range(self.dimension)]

    async def generate(self, texts: Sequence[str]) -> list[list[float]]:
        self._enter("generate")
        self.requests.append(list(texts))
        vectors = [self.embed(text) for text in texts]
        return vectors[: max(0, len(vectors) - self.drop_vectors)]


_HEADING = re.compile(r"^(#{1,6})\s+(.*)$")


class ParagraphSplitter(FailureScript):
    """Splits text on blank lines and tracks Markdown headings as title chains."""

    async def split(self, text: str, *, name: str | None = None) -> list[DocumentChunk]:
        self._enter("split")
        chunks: list[DocumentChunk] = []
        titles: list[str] = [name] if name else []
        base_depth = len(titles)

        for block in re.split(r"\n\s*\n", text):
            block = block.strip()
            if not block:
                continue
            heading = _HEADING.match(block.splitlines()[0])
            if heading:
                depth = base_depth + len(heading.group(1)) - 1
                titles = titles[:depth] + [heading.group(2).strip()]
            chunks.append(
                DocumentChunk(
                    content=block,
                    chunk_index=len(chunks),
                    title_chain=list(titles) or None,
                )
            )
        return chunks
