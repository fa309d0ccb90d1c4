"""Prompt templates for the letters agent.

Every node that calls the LLM uses a dedicated prompt from this module.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

if TYPE_CHECKING:
    from langchain_core.documents import Document
    from langchain_core.messages import BaseMessage

# ── 0. Persona ────────────────────────────────────────────────────────

ANALYST_PERSONA = """\
You are a knowledgeable financial analyst specialising in Warren Buffett's
investment philosophy and Berkshire Hathaway's business strategy. Your
knowledge comes from Berkshire Hathaway's annual shareholder letters.
"""

# ── 1. Query analysis ─────────────────────────────────────────────────

QUERY_ANALYSIS_SYSTEM = ANALYST_PERSONA + """
Your job is to decide how to research the user's latest message. Produce a
JSON object with exactly these keys:

  "intent"           – one of: "factual", "conceptual", "comparative",
                        "year_specific", "follow_up", "conversational"
  "needs_retrieval"  – true if the shareholder letters must be searched,
                        false only for greetings, thanks or questions about
                        the conversation itself
  "search_queries"   – list of 1-3 concise search queries for the
                        letters (empty when needs_retrieval is false);
                        resolve pronouns in follow-ups using the history
  "top_k"            – passages to fetch per query (1-20, default 5)
  "reasoning"        – one sentence explaining your analysis

Respond with **only** valid JSON — no markdown fences, no commentary.
"""


def build_query_analysis_prompt(query: str, history: list[BaseMessage] | None = None) -> list[BaseMessage]:
    """Build the prompt for the ``analyze_query`` node."""
    parts = []
    if history:
        parts.append(f"Conversation so far:\n{format_history(history)}\n")
    parts.append(f"User message: {query}")
    return [
        SystemMessage(content=QUERY_ANALYSIS_SYSTEM),
        HumanMessage(content="\n".join(parts)),
    ]


# ── 2. Document grading ───────────────────────────────────────────────

GRADING_SYSTEM = """\
You are a relevance judge for a system answering questions from Berkshire
Hathaway shareholder letters.

Given a user question and a set of retrieved passages, evaluate whether
the passages contain **enough information** to produce a good answer.

Respond with a JSON object:

  "verdict"  – "sufficient" or "insufficient"
  "missing"  – a brief description of what information is still needed
               (empty string when verdict is "sufficient")
  "refined_query" – if insufficient, a better search query;
                     otherwise empty string

Respond with **only** valid JSON.
"""


def build_grading_prompt(query: str, documents: list[Document]) -> list[BaseMessage]:
    """Build the prompt for the ``grade_results`` node."""
    context = _format_documents_for_prompt(documents)
    return [
        SystemMessage(content=GRADING_SYSTEM),
        HumanMessage(
            content=(
                f"Question: {query}\n\n"
                f"Retrieved passages:\n{context}\n\n"
                "Are these passages sufficient to answer the question?"
            )
        ),
    ]


# ── 3. Synthesis with citations ───────────────────────────────────────

SYNTHESIS_SYSTEM = ANALYST_PERSONA + """
Answer the user's question using **only** the numbered passages provided.

Rules:
1. Ground every statement in the passages. Quote directly when relevant
   and cite each quoted passage as [n] (source file, year).
2. Give year-specific context when discussing how views or strategies
   evolved; cite the exact letter and year for numbers and acquisitions.
3. If the passages do not answer the question, say so plainly — do NOT
   fabricate information or fall back on outside knowledge.
4. Explain financial concepts in accessible terms.
5. End with a **Sources** section listing each reference used.

Example format:

Buffett prefers to buy wonderful businesses at fair prices [1].

**Sources**
[1] 1989.pdf (1989)
"""


def build_synthesis_prompt(
    query: str,
    documents: list[Document],
    reasoning_trace: str = "",
    history: list[BaseMessage] | None = None,
) -> list[BaseMessage]:
    """Build the prompt for the ``synthesize`` node.

    Parameters
    ----------
    query:
        The user's question.
    documents:
        Passages gathered this turn.
    reasoning_trace:
        Human-readable summary of this turn's research steps.
    history:
        Earlier messages of the conversation, for follow-up questions.
    """
    parts = []
    if history:
        parts.append(f"Conversation so far:\n{format_history(history)}\n")
    parts.append(f"Question: {query}\n")
    if reasoning_trace:
        parts.append(f"Research process:\n{reasoning_trace}\n")
    parts.append(f"Passages:\n{_format_documents_numbered(documents)}\n")
    parts.append("Provide a grounded answer with citations. End with a **Sources** section.")
    return [
        SystemMessage(content=SYNTHESIS_SYSTEM),
        HumanMessage(content="\n".join(parts)),
    ]


# ── 4. Conversational turn (no retrieval) ─────────────────────────────

CONVERSATION_SYSTEM = ANALYST_PERSONA + """
The user's latest message does not need a search of the letters (for
example a greeting or a question about the conversation so far). Reply
briefly using only the conversation history. Do not state facts about
Berkshire Hathaway that are not already in the history.
"""


def build_conversation_prompt(query: str, history: list[BaseMessage] | None = None) -> list[BaseMessage]:
    messages: list[BaseMessage] = [SystemMessage(content=CONVERSATION_SYSTEM)]
    messages.extend(history or [])
    messages.append(HumanMessage(content=query))
    return messages


# ── 5. Fixed replies ──────────────────────────────────────────────────

NO_RESULTS_ANSWER = (
    "I searched the Berkshire Hathaway shareholder letters but found no "
    "passages relevant to your question, so I can't answer it from the letters."
)

SEARCH_FAILED_ANSWER = (
    "I couldn't search the Berkshire Hathaway shareholder letters just now, "
    "so I can't answer from them. The search failed with: {errors}"
)


# ── Helpers ────────────────────────────────────────────────────────────


def format_history(history: list[BaseMessage]) -> str:
    lines: list[str] = []
    for message in history:
        if isinstance(message, HumanMessage):
            role = "User"
        elif isinstance(message, AIMessage):
            role = "Assistant"
        else:
            role = message.type
        lines.append(f"{role}: {message.content}")
    return "\n".join(lines)


def _format_documents_for_prompt(documents: list[Document]) -> str:
    """Plain listing of passages with source metadata."""
    parts: list[str] = []
    for i, doc in enumerate(documents, 1):
        source = doc.metadata.get("source", "unknown")
        year = doc.metadata.get("year", "unknown")
        parts.append(f"[Doc {i}] (source={source}, year={year})\n{doc.page_content}")
    return "\n\n---\n\n".join(parts)


def _format_documents_numbered(documents: list[Document]) -> str:
    """Numbered listing suitable for citation references [1], [2], …"""
    parts: list[str] = []
    for i, doc in enumerate(documents, 1):
        source = doc.metadata.get("source", "unknown")
        year = doc.metadata.get("year", "unknown")
        score = doc.metadata.get("similarity")
        score_str = f", similarity={score:.3f}" if score is not None else ""
        parts.append(f"[{i}] {source} ({year}){score_str}\n{doc.page_content}")
    return "\n\n".join(parts)
