"""Collaborator interfaces consumed by the document sync pipeline.

The pipeline never talks to a concrete metadata database, embedding API or
vector store. It depends only on the narrow async protocols below; adapters
and in-memory fakes implement them.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class Doc:
    """A document as stored in the metadata store."""

    id: str
    collection_id: str
    name: str
    content: str | None


@dataclass(frozen=True)
class DocumentChunk:
    """A slice of document text produced by a splitter."""

    content: str
    chunk_index: int
    title_chain: list[str] | None = None


@dataclass(frozen=True)
class ChunkMeta:
    """Metadata row recorded for a stored chunk."""

    point_id: str
    doc_id: str
    collection_id: str
    chunk_index: int
    content_hash: str
    title_chain: list[str] | None = None


@dataclass(frozen=True)
class Point:
    """A vector-store record for one chunk."""

    id: str
    vector: list[float]
    payload: dict[str, Any] = field(default_factory=dict)


def make_point_id(doc_id: str, chunk_index: int) -> str:
    """Point ids are ``docId#chunkIndex`` so that upserts are idempotent."""
    return f"{doc_id}#{chunk_index}"


@runtime_checkable
class Splitter(Protocol):
    """Deterministic text splitter."""

    async def split(self, text: str, *, name: str | None = None) -> list[DocumentChunk]:
        """Split ``text`` into ordered chunks."""
        ...


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Generates one vector per input text."""

    async def generate(self, texts: Sequence[str]) -> list[list[float]]:
        ...


@runtime_checkable
class VectorRepo(Protocol):
    """Vector store with idempotent upsert keyed by point id."""

    async def upsert_collection(self, collection_id: str, points: Sequence[Point]) -> None:
        ...


@runtime_checkable
class MetadataRepo(Protocol):
    """Document and chunk metadata store."""

    async def get_doc(self, doc_id: str) -> Doc | None:
        ...

    async def add_chunks(self, doc_id: str, chunks: Sequence[DocumentChunk]) -> None:
        """Replace the stored chunks of ``doc_id``."""
        ...

    async def get_chunk_metas_by_doc_id(self, doc_id: str) -> list[ChunkMeta]:
        ...

    async def get_chunk_texts(self, point_ids: Sequence[str]) -> dict[str, str]:
        """Return chunk text keyed by point id."""
        ...

    async def mark_doc_as_synced(self, doc_id: str) -> None:
        ...
