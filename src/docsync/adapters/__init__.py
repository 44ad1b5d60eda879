"""Adapters that implement the pipeline's collaborator protocols with real libraries."""

from docsync.adapters.embeddings import LangChainEmbeddingProvider
from docsync.adapters.splitter import LangChainTextSplitter

__all__ = ["LangChainEmbeddingProvider", "LangChainTextSplitter"]
