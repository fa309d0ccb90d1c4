"""FastAPI application exposing letter search and the agent as a REST API."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from berkshire_rag.errors import BerkshireRagError
from berkshire_rag.retrieval.models import SearchResponse

if TYPE_CHECKING:
    from berkshire_rag.agent.graph import LetterAgent
    from berkshire_rag.config import Settings
    from berkshire_rag.retrieval.retriever import LetterRetriever

logger = logging.getLogger(__name__)


# ── Request / Response schemas ────────────────────────────────────────
class SearchRequest(BaseModel):
    """Direct retrieval request."""

    query: str
    top_k: int = Field(default=5, ge=1, le=20)


class ChatRequest(BaseModel):
    """Incoming message from the user."""

    message: str = Field(min_length=1)
    session_id: str = "default"


class ChatResponse(BaseModel):
    """Answer returned by the agent."""

    answer: str
    session_id: str
    sources: list[str] = []
    tool_errors: list[str] = []


class _Services:
    """Lazily-built collaborators, so importing the app never connects anywhere."""

    def __init__(
        self,
        settings: Settings | None,
        retriever: LetterRetriever | None,
        agent: LetterAgent | None,
    ) -> None:
        self._settings = settings
        self._retriever = retriever
        self._agent = agent

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            from berkshire_rag.config import get_settings

            self._settings = get_settings()
        return self._settings

    def retriever(self) -> LetterRetriever:
        if self._retriever is None:
            from berkshire_rag.agent.graph import build_retriever

            self._retriever = build_retriever(self.settings)
        return self._retriever

    def agent(self) -> LetterAgent:
        if self._agent is None:
            from berkshire_rag.agent.graph import build_agent

            self._agent = build_agent(self.settings, retriever=self.retriever())
        return self._agent


def create_app(
    *,
    settings: Settings | None = None,
    retriever: LetterRetriever | None = None,
    agent: LetterAgent | None = None,
) -> FastAPI:
    """Build the API.  Collaborators may be injected; otherwise they are
    created from *settings* on first use."""
    services = _Services(settings, retriever, agent)
    app = FastAPI(
        title="Berkshire Letters RAG API",
        version="0.1.0",
        description="Search and chat over Berkshire Hathaway shareholder letters.",
    )

    # ── Routes ────────────────────────────────────────────────────────
    @app.get("/health")
    def health() -> dict[str, str]:
        """Liveness probe."""
        return {"status": "ok"}

    @app.post("/search", response_model=SearchResponse)
    def search(request: SearchRequest) -> SearchResponse:
        """Run the retrieval tool directly."""
        try:
            return services.retriever().search(request.query, top_k=request.top_k)
        except BerkshireRagError as exc:
            logger.error("Search failed: %s", exc)
            raise HTTPException(status_code=503, detail=f"Search failed: {exc}") from exc

    @app.post("/chat", response_model=ChatResponse)
    def chat(request: ChatRequest) -> ChatResponse:
        """Ask the agent, continuing the conversation in ``session_id``."""
        try:
            reply = services.agent().ask(request.message, session_id=request.session_id)
        except BerkshireRagError as exc:
            logger.error("Chat failed: %s", exc)
            raise HTTPException(status_code=503, detail=f"Agent unavailable: {exc}") from exc
        return ChatResponse(
            answer=reply.answer,
            session_id=reply.session_id,
            sources=reply.sources,
            tool_errors=reply.tool_errors,
        )

    return app
