"""Exception taxonomy shared by ingestion, retrieval and the agent.

Boundary adapters (PDF loader, embedder, vector store) translate
third-party exceptions into these types so that the pipeline can decide
what is recoverable without knowing which library raised.
"""

from __future__ import annotations


class BerkshireRagError(Exception):
    """Base class for every error raised by this package."""


class ExtractionError(BerkshireRagError):
    """A source document could not be read or parsed."""

    def __init__(self, source: str, message: str) -> None:
        super().__init__(f"{source}: {message}")
        self.source = source


class EmbeddingError(BerkshireRagError):
    """The embedding service failed or returned an unusable response."""


class StorageError(BerkshireRagError):
    """A vector-store read or write failed."""


class ConfigurationError(BerkshireRagError):
    """Required configuration is missing or inconsistent.  Not recoverable."""


class SourceDirectoryError(BerkshireRagError):
    """The ingestion source directory is missing or holds no documents."""


class LLMError(BerkshireRagError):
    """The chat model could not be reached or refused the request."""
