"""The letter-search tool exposed to the agent.

The tool is built around an explicit :class:`LetterRetriever` (no global
lookup), so tests inject a retriever over a fake store and production
code injects one over Chroma.

Failures are raised as ``ToolException`` rather than returned as an empty
result: the agent has to tell the user that the search itself failed.
"""

from __future__ import annotations

import logging
from typing import Any

from langchain_core.documents import Document
from langchain_core.tools import StructuredTool, ToolException
from pydantic import BaseModel, Field

from berkshire_rag.errors import BerkshireRagError
from berkshire_rag.retrieval.retriever import LetterRetriever

logger = logging.getLogger(__name__)

SEARCH_TOOL_NAME = "search_letters"

SEARCH_TOOL_DESCRIPTION = (
    "Search through Berkshire Hathaway shareholder letters to find relevant "
    "information about Warren Buffett's investment philosophy, business "
    "strategies, and company performance. Returns passages with the letter "
    "file name, year and a similarity score."
)

MAX_TOP_K = 20


class SearchLettersInput(BaseModel):
    query: str = Field(description="The search query to find relevant information in the letters")
    top_k: int = Field(default=5, ge=1, le=MAX_TOP_K, description="Number of top results to return")


def build_search_tool(retriever: LetterRetriever) -> StructuredTool:
    """Wrap *retriever* as the ``search_letters`` LangChain tool.

    The tool returns ``{"results": [...], "total_found": n}`` where each
    result has ``text``, ``year``, ``source``, ``similarity`` and
    ``chunk_id``.
    """

    def search_letters(query: str, top_k: int = 5) -> dict[str, Any]:
        logger.info("Searching letters for %r (top_k=%d)", query, top_k)
        try:
            response = retriever.search(query, top_k=top_k)
        except (BerkshireRagError, ValueError) as exc:
            logger.error("search_letters failed for %r: %s", query, exc)
            raise ToolException(f"{SEARCH_TOOL_NAME} failed: {exc}") from exc
        return response.model_dump()

    return StructuredTool.from_function(
        func=search_letters,
        name=SEARCH_TOOL_NAME,
        description=SEARCH_TOOL_DESCRIPTION,
        args_schema=SearchLettersInput,
    )


def results_to_documents(payload: dict[str, Any]) -> list[Document]:
    """Convert the tool's output into LangChain Documents for the prompts."""
    docs: list[Document] = []
    for r in payload.get("results", []):
        docs.append(
            Document(
                page_content=r.get("text", ""),
                metadata={
                    "source": r.get("source", "unknown"),
                    "year": r.get("year", "unknown"),
                    "similarity": r.get("similarity"),
                    "chunk_id": r.get("chunk_id"),
                },
            )
        )
    return docs
