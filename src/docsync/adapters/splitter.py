"""Splitter backed by LangChain text splitters.

Markdown headings are split off first so that every chunk knows the heading
path it belongs to; sections are then cut into size-bounded chunks. Both
LangChain splitters are deterministic, so re-splitting the same text on a
retry yields the same chunks and point ids.
"""

from __future__ import annotations

import asyncio

from langchain_core.documents import Document
from langchain_text_splitters import MarkdownHeaderTextSplitter, RecursiveCharacterTextSplitter

from docsync.config.components import ChunkingConfig
from docsync.sync.protocols import DocumentChunk

DEFAULT_SEPARATORS = ["\n\n", "\n", ". ", " ", ""]


class LangChainTextSplitter:
    """:class:`~docsync.sync.protocols.Splitter` using LangChain's splitters."""

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self.config = config or ChunkingConfig()
        self._header_keys = [f"h{level}" for level in range(1, self.config.heading_levels + 1)]
        self._header_splitter = MarkdownHeaderTextSplitter(
            headers_to_split_on=[
                ("#" * level, key) for level, key in enumerate(self._header_keys, start=1)
            ],
            strip_headers=False,
        )
        self._chunker = RecursiveCharacterTextSplitter(
            chunk_size=self.config.chunk_size,
            chunk_overlap=self.config.chunk_overlap,
            separators=DEFAULT_SEPARATORS,
        )

    def _split_sync(self, text: str, name: str | None) -> list[DocumentChunk]:
        sections: list[Document] = self._header_splitter.split_text(text)
        pieces = self._chunker.split_documents(sections)

        chunks: list[DocumentChunk] = []
        for piece in pieces:
            content = piece.page_content.strip()
            if not content:
                continue
            titles = [name] if name else []
            titles.extend(piece.metadata[key] for key in self._header_keys if key in piece.metadata)
            chunks.append(
                DocumentChunk(
                    content=content,
                    chunk_index=len(chunks),
                    title_chain=titles or None,
                )
            )
        return chunks

    async def split(self, text: str, *, name: str | None = None) -> list[DocumentChunk]:
        return await asyncio.to_thread(self._split_sync, text, name)
