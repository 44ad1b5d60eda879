"""Embedding provider over any LangChain ``Embeddings`` model."""

from __future__ import annotations

from collections.abc import Sequence

from langchain_core.embeddings import Embeddings

from docsync.config.components import EmbeddingConfig
from docsync.utils.logging_utils import get_logger

logger = get_logger()


class LangChainEmbeddingProvider:
    """:class:`~docsync.sync.protocols.EmbeddingProvider` wrapping a LangChain model.

    Texts are sent in batches of ``EmbeddingConfig.batch_size``. Provider
    errors propagate unchanged so the pipeline's classifier sees the original
    exception (status codes, rate-limit types).
    """

    def __init__(self, embeddings: Embeddings, config: EmbeddingConfig | None = None) -> None:
        self.embeddings = embeddings
        self.config = config or EmbeddingConfig()

    async def generate(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []

        vectors: list[list[float]] = []
        batch_size = self.config.batch_size
        for start in range(0, len(texts), batch_size):
            batch = list(texts[start : start + batch_size])
            vectors.extend(await self.embeddings.aembed_documents(batch))

        logger.debug(
            f"Generated {len(vectors)} embeddings for {len(texts)} texts",
            subsystem="Embeddings",
        )
        return vectors
