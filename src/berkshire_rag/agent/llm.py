"""LLM initialisation — single place to swap providers.

Supports two modes:

1. **OpenAI cloud** (default) — set ``OPENAI_API_KEY``.
2. **OpenAI-compatible endpoint** — set ``LLM_BASE_URL`` to e.g. a local
   vLLM or Ollama ``/v1`` endpoint; ``ChatOpenAI`` works unchanged.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from langchain_openai import ChatOpenAI

if TYPE_CHECKING:
    from berkshire_rag.config import Settings

logger = logging.getLogger(__name__)


def get_llm(settings: Settings, temperature: float | None = None) -> ChatOpenAI:
    """Return the configured chat model.

    Raises
    ------
    ConfigurationError
        If neither an API key nor a base URL is configured.
    """
    settings.require_openai_credentials()
    kwargs: dict = {
        "model": settings.llm_model_name,
        "temperature": settings.llm_temperature if temperature is None else temperature,
        "timeout": settings.request_timeout,
    }

    if settings.llm_base_url:
        logger.info("Using OpenAI-compatible endpoint: %s", settings.llm_base_url)
        kwargs["base_url"] = settings.llm_base_url
        # local servers don't need a real key; LangChain requires a non-empty value
        kwargs["api_key"] = settings.openai_api_key or "EMPTY"
    else:
        kwargs["api_key"] = settings.openai_api_key

    return ChatOpenAI(**kwargs)
