"""LangGraph graph definition — the letters agent workflow.

1. **Analyse** the user's message (intent, zero or more planned searches).
2. **Execute** the planned ``search_letters`` calls.
3. **Grade** whether the passages are sufficient; retry a failed search
   or refine the query (up to ``max_iterations`` rounds).
4. **Synthesise** a grounded answer citing letter and year.

Conversation memory is a LangGraph checkpointer keyed by
``thread_id`` = session id, so follow-up questions see earlier turns.
With ``MEMORY_DB_PATH`` set the checkpoints live in SQLite and survive
restarts of the CLI and the API server.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import TYPE_CHECKING, Any

from langchain_core.messages import BaseMessage, HumanMessage
from langgraph.checkpoint.memory import MemorySaver
from langgraph.graph import END, StateGraph

from berkshire_rag.agent.nodes import (
    analyze_query,
    execute_tools,
    grade_results,
    route_after_analysis,
    should_continue,
    synthesize,
)
from berkshire_rag.agent.state import AgentState, SourceCitation

if TYPE_CHECKING:
    from langchain_core.language_models import BaseChatModel
    from langchain_core.tools import BaseTool

    from berkshire_rag.config import Settings
    from berkshire_rag.retrieval.retriever import LetterRetriever

logger = logging.getLogger(__name__)


def build_graph(
    llm: BaseChatModel,
    search_tool: BaseTool,
    *,
    checkpointer: Any = None,
    history_window: int = 6,
) -> Any:
    """Construct and return the compiled LangGraph agent.

    Graph topology::

        ┌─────────┐
        │  START   │
        └────┬─────┘
             ▼
      ┌──────────────┐  no search planned
      │ analyze_query ├─────────────────────┐
      └──────┬───────┘                      │
             ▼                              │
      ┌──────────────┐                      │
      │ execute_tools │◄──────────────────┐ │
      └──────┬───────┘                    │ │
             ▼                            │ │
      ┌──────────────┐   needs_more_info  │ │
      │ grade_results ├───────────────────┘ │
      └──────┬───────┘                      │
             │ sufficient                   │
             ▼                              │
      ┌──────────────┐                      │
      │  synthesize   │◄────────────────────┘
      └──────┬───────┘
             ▼
          [ END ]

    Parameters
    ----------
    llm:
        Chat model used by the analyse, grade and synthesise nodes.
    search_tool:
        The ``search_letters`` tool (see :func:`~berkshire_rag.agent.tools.build_search_tool`).
    checkpointer:
        LangGraph checkpointer providing per-session memory; ``None``
        compiles a stateless graph.
    history_window:
        Number of earlier messages shown to the LLM.
    """
    workflow = StateGraph(AgentState)

    # -- Nodes ---------------------------------------------------------------
    workflow.add_node("analyze_query", partial(analyze_query, llm=llm, history_window=history_window))
    workflow.add_node("execute_tools", partial(execute_tools, search_tool=search_tool))
    workflow.add_node("grade_results", partial(grade_results, llm=llm))
    workflow.add_node("synthesize", partial(synthesize, llm=llm, history_window=history_window))

    # -- Edges ---------------------------------------------------------------
    workflow.set_entry_point("analyze_query")
    workflow.add_conditional_edges(
        "analyze_query",
        route_after_analysis,
        {
            "execute_tools": "execute_tools",
            "synthesize": "synthesize",
        },
    )
    workflow.add_edge("execute_tools", "grade_results")
    workflow.add_conditional_edges(
        "grade_results",
        should_continue,
        {
            "execute_tools": "execute_tools",
            "synthesize": "synthesize",
        },
    )
    workflow.add_edge("synthesize", END)

    return workflow.compile(checkpointer=checkpointer)


def create_initial_state(query: str, *, max_iterations: int = 2) -> dict[str, Any]:
    """Build the per-turn input for ``graph.invoke()``.

    ``messages`` is merged into the session history by its reducer; all
    other per-turn fields are reset.
    """
    return {
        "query": query,
        "messages": [HumanMessage(content=query)],
        "query_analysis": {},
        "retrieval_plan": [],
        "documents": [],
        "reasoning_trace": [],
        "tool_calls_made": [],
        "tool_errors": [],
        "citations": [],
        "answer": "",
        "iteration": 0,
        "max_iterations": max_iterations,
        "needs_more_info": False,
    }


@dataclass
class AgentAnswer:
    """What one conversational turn returns to the caller."""

    answer: str
    session_id: str
    citations: list[SourceCitation] = field(default_factory=list)
    tool_errors: list[str] = field(default_factory=list)

    @property
    def sources(self) -> list[str]:
        """Distinct ``"file (year)"`` labels of the cited passages."""
        return list(dict.fromkeys(f"{c.source} ({c.year})" for c in self.citations))


class LetterAgent:
    """Conversational agent over the shareholder letters.

    Usage::

        agent = LetterAgent(llm, build_search_tool(retriever))
        reply = agent.ask("What is Buffett's view on buybacks?", session_id="alice")
        follow_up = agent.ask("Did that change after 2011?", session_id="alice")
    """

    def __init__(
        self,
        llm: BaseChatModel,
        search_tool: BaseTool,
        *,
        checkpointer: Any = None,
        max_iterations: int = 2,
        history_window: int = 6,
    ) -> None:
        self.max_iterations = max_iterations
        self.graph = build_graph(
            llm,
            search_tool,
            checkpointer=checkpointer if checkpointer is not None else MemorySaver(),
            history_window=history_window,
        )

    def ask(self, question: str, session_id: str = "default") -> AgentAnswer:
        """Answer *question* in the conversation identified by *session_id*."""
        config = {"configurable": {"thread_id": session_id}}
        result = self.graph.invoke(
            create_initial_state(question, max_iterations=self.max_iterations),
            config=config,
        )
        logger.info(
            "Session %s: answered with %d citation(s), %d tool error(s)",
            session_id, len(result.get("citations", [])), len(result.get("tool_errors", [])),
        )
        return AgentAnswer(
            answer=result.get("answer", ""),
            session_id=session_id,
            citations=list(result.get("citations", [])),
            tool_errors=list(result.get("tool_errors", [])),
        )

    def history(self, session_id: str = "default") -> list[BaseMessage]:
        """Messages exchanged so far in *session_id*."""
        snapshot = self.graph.get_state({"configurable": {"thread_id": session_id}})
        return list(snapshot.values.get("messages", []))


def build_agent(settings: Settings, retriever: LetterRetriever | None = None) -> LetterAgent:
    """Wire the agent from *settings* (LLM, embedder, Chroma store)."""
    from berkshire_rag.agent.llm import get_llm
    from berkshire_rag.agent.tools import build_search_tool

    if retriever is None:
        retriever = build_retriever(settings)
    return LetterAgent(
        get_llm(settings),
        build_search_tool(retriever),
        checkpointer=build_checkpointer(settings),
        max_iterations=settings.max_iterations,
        history_window=settings.history_window,
    )


def build_checkpointer(settings: Settings) -> Any:
    """Session memory store: SQLite when ``memory_db_path`` is set, else in-process."""
    if not settings.memory_db_path:
        return MemorySaver()

    from langgraph.checkpoint.sqlite import SqliteSaver

    path = Path(settings.memory_db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    # API requests run on worker threads; SqliteSaver serialises access itself
    conn = sqlite3.connect(str(path), check_same_thread=False)
    logger.info("Conversation memory stored in %s", path)
    return SqliteSaver(conn)


def build_retriever(settings: Settings) -> LetterRetriever:
    """Create the query-time retriever with the pinned embedding model."""
    from berkshire_rag.ingestion.embedder import build_embedder
    from berkshire_rag.retrieval.chroma_store import build_vector_store
    from berkshire_rag.retrieval.retriever import LetterRetriever

    return LetterRetriever(
        build_embedder(settings),
        build_vector_store(settings),
        default_top_k=settings.default_top_k,
    )
