"""Graph nodes — each function is one step of the letters agent.

Node contract
-------------
* Accepts the full :class:`AgentState` dict plus its collaborators as
  keyword arguments (``llm``, ``search_tool``), bound in
  :func:`~berkshire_rag.agent.graph.build_graph` with ``functools.partial``.
* Returns a *partial* dict with **only the keys that changed**.
* No hidden global state, so every node is independently testable.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from langchain_core.documents import Document
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage
from langchain_core.tools import BaseTool, ToolException

from berkshire_rag.agent.prompts import (
    NO_RESULTS_ANSWER,
    SEARCH_FAILED_ANSWER,
    build_conversation_prompt,
    build_grading_prompt,
    build_query_analysis_prompt,
    build_synthesis_prompt,
)
from berkshire_rag.agent.state import (
    AgentState,
    ReasoningStep,
    SourceCitation,
    ToolCall,
)
from berkshire_rag.agent.tools import MAX_TOP_K, SEARCH_TOOL_NAME, results_to_documents
from berkshire_rag.errors import LLMError

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 5


# ── 1. ANALYZE QUERY ──────────────────────────────────────────────────


def analyze_query(state: AgentState, *, llm: BaseChatModel, history_window: int = 6) -> dict[str, Any]:
    """Interpret the user's message and plan zero or more searches.

    Produces:
    * ``query_analysis`` — the parsed JSON dict
    * ``retrieval_plan`` — list of ``{"tool", "query", "top_k", "reason"}``
      (empty when the message needs no retrieval)
    * ``reasoning_trace`` extended with one :class:`ReasoningStep`
    """
    query = state["query"]
    history = _history(state, history_window)
    reply = _complete(llm, build_query_analysis_prompt(query, history))
    analysis = _safe_parse_json(reply, fallback_query=query)

    needs_retrieval = bool(analysis.get("needs_retrieval", True))
    queries = [q for q in analysis.get("search_queries") or [] if isinstance(q, str) and q.strip()]
    if needs_retrieval and not queries:
        queries = [query]
    if not needs_retrieval:
        queries = []

    top_k = _clamp_top_k(analysis.get("top_k", DEFAULT_TOP_K))
    plan = [
        {"tool": SEARCH_TOOL_NAME, "query": q, "top_k": top_k, "reason": analysis.get("reasoning", "")}
        for q in queries
    ]

    step = ReasoningStep(
        node="analyze_query",
        thought=f"Intent: {analysis.get('intent', 'unknown')}. {analysis.get('reasoning', '')}".strip(),
        action=f"Plan {len(plan)} search(es): {[p['query'] for p in plan]}" if plan else "Answer without searching",
    )

    return {
        "query_analysis": analysis,
        "retrieval_plan": plan,
        "reasoning_trace": _trace(state, step),
    }


# ── 2. EXECUTE TOOLS ──────────────────────────────────────────────────


def execute_tools(state: AgentState, *, search_tool: BaseTool) -> dict[str, Any]:
    """Run every search in the retrieval plan.

    Passages are deduplicated by chunk id so repeated chunks don't
    pollute the context window.  A failing search is recorded in
    ``tool_errors`` rather than treated as "nothing found".
    """
    plan = state.get("retrieval_plan", [])
    existing_docs: list[Document] = list(state.get("documents", []))
    seen: set[str] = {_doc_key(d) for d in existing_docs}
    errors: list[str] = []

    new_docs: list[Document] = []
    tool_log: list[ToolCall] = []
    observations: list[str] = []

    for step in plan:
        tool_name = step.get("tool", SEARCH_TOOL_NAME)
        kwargs = {"query": step.get("query", state["query"]), "top_k": _clamp_top_k(step.get("top_k"))}

        if tool_name != search_tool.name:
            logger.warning("Unknown tool %r in plan — skipping", tool_name)
            observations.append(f"⚠ tool {tool_name!r} not found")
            continue

        try:
            payload = search_tool.invoke(kwargs)
        except ToolException as exc:
            logger.error("Tool %s failed: %s", tool_name, exc)
            errors.append(str(exc))
            observations.append(f"⚠ {tool_name} error: {exc}")
            tool_log.append(
                ToolCall(tool_name=tool_name, tool_input=kwargs, result_summary="ERROR", error=str(exc))
            )
            continue

        result_docs = results_to_documents(payload)
        for doc in result_docs:
            key = _doc_key(doc)
            if key not in seen:
                seen.add(key)
                new_docs.append(doc)

        tool_log.append(
            ToolCall(
                tool_name=tool_name,
                tool_input=kwargs,
                result_summary=f"{payload.get('total_found', len(result_docs))} passage(s)",
                documents_returned=len(result_docs),
            )
        )
        observations.append(f"{tool_name}({kwargs['query']!r}) → {len(result_docs)} passages")

    step = ReasoningStep(
        node="execute_tools",
        thought=f"Executing {len(plan)} planned search(es).",
        action="Run tools",
        observation="; ".join(observations),
    )

    return {
        "documents": existing_docs + new_docs,
        "tool_calls_made": list(state.get("tool_calls_made", [])) + tool_log,
        "tool_errors": list(state.get("tool_errors", [])) + errors,
        "reasoning_trace": _trace(state, step),
        "iteration": state.get("iteration", 0) + 1,
    }


# ── 3. GRADE RESULTS ──────────────────────────────────────────────────


def grade_results(state: AgentState, *, llm: BaseChatModel) -> dict[str, Any]:
    """Decide whether the gathered passages are enough to answer.

    * Search failed and nothing gathered → retry the same plan while the
      iteration cap allows.
    * Search succeeded with zero matches → stop; there is nothing to grade.
    * Otherwise the LLM judges, and may ask for one refined search.
    """
    documents = state.get("documents", [])
    iteration = state.get("iteration", 0)
    max_iter = state.get("max_iterations", 2)
    can_retry = iteration < max_iter

    if not documents:
        if state.get("tool_errors") and can_retry:
            return {
                "needs_more_info": True,
                "reasoning_trace": _trace(
                    state,
                    ReasoningStep(
                        node="grade_results",
                        thought="Search failed; no passages gathered.",
                        action="Retry the search",
                    ),
                ),
            }
        return {
            "needs_more_info": False,
            "retrieval_plan": [],
            "reasoning_trace": _trace(
                state,
                ReasoningStep(
                    node="grade_results",
                    thought="No passages available.",
                    action="Proceed to synthesis",
                ),
            ),
        }

    reply = _complete(llm, build_grading_prompt(state["query"], documents))
    grading = _safe_parse_json(reply, fallback_query=state["query"], default_verdict="sufficient")

    verdict = grading.get("verdict", "sufficient")
    needs_more = verdict != "sufficient" and can_retry

    new_plan: list[dict[str, Any]] = []
    if needs_more:
        refined = grading.get("refined_query") or state["query"]
        new_plan = [
            {"tool": SEARCH_TOOL_NAME, "query": refined, "top_k": DEFAULT_TOP_K, "reason": grading.get("missing", "")}
        ]

    step = ReasoningStep(
        node="grade_results",
        thought=f"Verdict: {verdict}. Missing: {grading.get('missing') or 'nothing'}.",
        action="Refine and retry" if needs_more else "Proceed to synthesis",
    )

    return {
        "needs_more_info": needs_more,
        "retrieval_plan": new_plan,
        "reasoning_trace": _trace(state, step),
    }


# ── 4. SYNTHESIZE ─────────────────────────────────────────────────────


def synthesize(state: AgentState, *, llm: BaseChatModel, history_window: int = 6) -> dict[str, Any]:
    """Produce the final answer for this turn.

    Grounded answers come from the LLM; the two "cannot answer" cases
    (search failed, search found nothing) use fixed wording so that a
    failure is never presented as an absence of information.
    """
    documents = state.get("documents", [])
    tool_errors = state.get("tool_errors", [])
    searched = state.get("iteration", 0) > 0
    history = _history(state, history_window)

    if documents:
        trace_text = _format_reasoning_trace(state.get("reasoning_trace", []))
        prompt = build_synthesis_prompt(state["query"], documents, reasoning_trace=trace_text, history=history)
        answer = _complete(llm, prompt)
        mode = "grounded"
    elif tool_errors:
        answer = SEARCH_FAILED_ANSWER.format(errors="; ".join(dict.fromkeys(tool_errors)))
        mode = "search_failed"
    elif searched:
        answer = NO_RESULTS_ANSWER
        mode = "no_results"
    else:
        answer = _complete(llm, build_conversation_prompt(state["query"], history))
        mode = "conversational"

    citations = [
        SourceCitation(
            citation_id=f"[{i}]",
            source=doc.metadata.get("source", "unknown"),
            year=doc.metadata.get("year", "unknown"),
            similarity=doc.metadata.get("similarity"),
            excerpt=doc.page_content[:200],
        )
        for i, doc in enumerate(documents, 1)
    ]

    step = ReasoningStep(
        node="synthesize",
        thought=f"Answer mode: {mode}.",
        action="Produce final answer",
        observation=f"Answer length: {len(answer)} chars, {len(citations)} citation(s).",
    )

    return {
        "answer": answer,
        "citations": citations,
        "messages": [AIMessage(content=answer)],
        "reasoning_trace": _trace(state, step),
    }


# ── 5. ROUTING (conditional edges) ────────────────────────────────────


def route_after_analysis(state: AgentState) -> str:
    """``"execute_tools"`` when searches are planned, else ``"synthesize"``."""
    if state.get("retrieval_plan"):
        return "execute_tools"
    return "synthesize"


def should_continue(state: AgentState) -> str:
    """Conditional edge after ``grade_results``."""
    if state.get("needs_more_info", False):
        return "execute_tools"
    return "synthesize"


# ── Internal helpers ───────────────────────────────────────────────────


def _history(state: AgentState, window: int) -> list[BaseMessage]:
    """Earlier conversation messages, excluding the current question."""
    messages = list(state.get("messages", []))
    if messages and messages[-1].content == state.get("query"):
        messages = messages[:-1]
    return messages[-window:] if window > 0 else []


def _complete(llm: BaseChatModel, prompt: list[BaseMessage]) -> str:
    """Call the chat model, reporting any client failure as an ``LLMError``."""
    try:
        return llm.invoke(prompt).content
    except Exception as exc:
        raise LLMError(f"Chat model call failed: {exc}") from exc


def _doc_key(doc: Document) -> str:
    return doc.metadata.get("chunk_id") or str(hash(doc.page_content))


def _clamp_top_k(value: Any) -> int:
    try:
        k = int(value)
    except (TypeError, ValueError):
        return DEFAULT_TOP_K
    return max(1, min(k, MAX_TOP_K))


def _trace(state: AgentState, step: ReasoningStep) -> list[ReasoningStep]:
    return list(state.get("reasoning_trace", [])) + [step]


def _safe_parse_json(
    text: str,
    *,
    fallback_query: str = "",
    default_verdict: str = "sufficient",
) -> dict[str, Any]:
    """Best-effort JSON parsing with graceful fallback.

    LLMs occasionally return JSON wrapped in markdown fences or with
    trailing commentary.  This helper strips common wrappers before
    parsing.
    """
    cleaned = text.strip()
    if cleaned.startswith("```"):
        first_newline = cleaned.index("\n") if "\n" in cleaned else 3
        cleaned = cleaned[first_newline + 1 :]
        if cleaned.endswith("```"):
            cleaned = cleaned[:-3]
        cleaned = cleaned.strip()
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        parsed = None
    if isinstance(parsed, dict):
        return parsed

    logger.warning("Could not parse LLM JSON, using fallback: %.200s", text)
    return {
        "intent": "unknown",
        "needs_retrieval": True,
        "search_queries": [fallback_query],
        "top_k": DEFAULT_TOP_K,
        "reasoning": "Failed to parse LLM response — defaulting to a letter search.",
        "verdict": default_verdict,
        "missing": "",
        "refined_query": fallback_query,
    }


def _format_reasoning_trace(trace: list[ReasoningStep]) -> str:
    """Render the reasoning trace as human-readable text."""
    if not trace:
        return ""
    lines: list[str] = []
    for i, step in enumerate(trace, 1):
        lines.append(f"Step {i} [{step.node}]: {step.thought}")
        if step.action:
            lines.append(f"  → Action: {step.action}")
        if step.observation:
            lines.append(f"  → Observation: {step.observation}")
    return "\n".join(lines)
