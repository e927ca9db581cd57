"""
LLM Provider factory.
"""

from __future__ import annotations

from typing import Optional

from feelingwise.config import settings
from feelingwise.llm import LLMProvider


def get_provider(provider_name: Optional[str] = None) -> Optional[LLMProvider]:
    """
    Return the configured LLM provider.

    "none" disables the external service; the neutralization client then
    always uses its local fallback.
    """
    name = (provider_name or settings.LLM_PROVIDER).strip().lower()
    if name == "ollama":
        from feelingwise.llm.ollama import OllamaProvider
        return OllamaProvider(
            base_url=settings.OLLAMA_URL,
            model=settings.OLLAMA_MODEL,
            request_timeout=settings.LLM_TIMEOUT_SECONDS,
        )
    elif name == "gemini":
        from feelingwise.llm.gemini import GeminiProvider
        return GeminiProvider(
            api_key=settings.GEMINI_API_KEY, model=settings.GEMINI_MODEL,
        )
    elif name in ("none", "off", ""):
        return None
    else:
        raise ValueError(f"Unknown LLM provider: {provider_name}")
