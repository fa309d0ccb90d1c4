"""
Agent — conversational LangGraph agent over the shareholder letters.

The agent analyses each message, calls the ``search_letters`` tool zero
or more times, and answers only from the passages it retrieved, citing
letter and year.

Public API
----------
- :class:`LetterAgent` — ask questions within a session.
- :func:`build_graph` — compile the workflow from an LLM and a search tool.
- :func:`build_search_tool` — wrap a :class:`~berkshire_rag.retrieval.LetterRetriever`.
- :class:`AgentState` — the TypedDict flowing through every node.
"""

from berkshire_rag.agent.graph import AgentAnswer, LetterAgent, build_graph, create_initial_state
from berkshire_rag.agent.state import AgentState, ReasoningStep, SourceCitation, ToolCall
from berkshire_rag.agent.tools import build_search_tool

__all__ = [
    "AgentAnswer",
    "AgentState",
    "LetterAgent",
    "ReasoningStep",
    "SourceCitation",
    "ToolCall",
    "build_graph",
    "build_search_tool",
    "create_initial_state",
]
