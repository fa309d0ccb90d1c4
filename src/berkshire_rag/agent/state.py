"""Agent state definition — shared across all graph nodes.

The state is checkpointed per conversation (``thread_id`` = session id).
Only ``messages`` accumulates over the session; every other field is
reset by :func:`~berkshire_rag.agent.graph.create_initial_state` at the
start of each question.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Annotated, Any, TypedDict

from langchain_core.documents import Document
from langchain_core.messages import BaseMessage
from langgraph.graph.message import add_messages


# ---------------------------------------------------------------------------
# Records kept in the state
# ---------------------------------------------------------------------------


@dataclass
class ReasoningStep:
    """What one node concluded during a turn.

    Attributes
    ----------
    node:
        Name of the node, e.g. ``"grade_results"``.
    thought:
        Intent, verdict or answer mode the node settled on.
    action:
        The next move it chose (search, retry, answer).
    observation:
        Result of that move, when there is one.
    """

    node: str
    thought: str
    action: str = ""
    observation: str = ""


@dataclass
class ToolCall:
    """Record of a single tool invocation."""

    tool_name: str
    tool_input: dict[str, Any] = field(default_factory=dict)
    result_summary: str = ""
    documents_returned: int = 0
    error: str = ""


@dataclass
class SourceCitation:
    """A passage the final answer may quote.

    Attributes
    ----------
    citation_id:
        Short reference id, e.g. ``"[1]"``.
    source:
        Letter file name.
    year:
        Letter year.
    similarity:
        Similarity score from the retriever.
    excerpt:
        Start of the passage.
    """

    citation_id: str
    source: str
    year: str
    similarity: float | None = None
    excerpt: str = ""


# ---------------------------------------------------------------------------
# Agent state
# ---------------------------------------------------------------------------


class AgentState(TypedDict):
    """Typed state that flows through the LangGraph agent.

    Attributes
    ----------
    messages:
        Conversation history (user questions and final answers), managed
        by LangGraph's ``add_messages`` reducer and kept per session.
    query:
        The user's current question.
    query_analysis:
        Parsed output of the ``analyze_query`` node.
    retrieval_plan:
        ``{"tool", "query", "top_k", "reason"}`` dicts still to execute.
    documents:
        Passages gathered this turn, deduplicated by chunk id.
    reasoning_trace:
        Ordered :class:`ReasoningStep` log for this turn.
    tool_calls_made:
        Chronological log of the tool invocations made this turn.
    tool_errors:
        Errors raised by the search tool this turn.
    citations:
        Citations attached to the final answer.
    answer:
        The final answer for this turn.
    iteration:
        Retrieval rounds executed this turn.
    max_iterations:
        Cap on retrieval rounds per turn.
    needs_more_info:
        Set by ``grade_results`` when another retrieval round is warranted.
    """

    messages: Annotated[list[BaseMessage], add_messages]
    query: str
    query_analysis: dict[str, Any]
    retrieval_plan: list[dict[str, Any]]
    documents: list[Document]
    reasoning_trace: list[ReasoningStep]
    tool_calls_made: list[ToolCall]
    tool_errors: list[str]
    citations: list[SourceCitation]
    answer: str
    iteration: int
    max_iterations: int
    needs_more_info: bool
