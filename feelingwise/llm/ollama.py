"""
Ollama Provider — local Ollama server implementation.

Talks to the Ollama HTTP API over httpx:
  - POST /api/generate with stream=false for completions
  - GET  /api/tags for health and installed-model discovery

Transport errors (connection refused, reset, read timeout) are retried
a few times with a short pause, since a freshly started Ollama server
takes a moment to accept connections. A non-success status is not
retried. Both end up as ServiceUnavailable for the caller.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import httpx

from feelingwise.errors import ServiceUnavailable
from feelingwise.llm import LLMProvider

logger = logging.getLogger("feelingwise.llm.ollama")

DEFAULT_BASE_URL = "http://127.0.0.1:11434"
DEFAULT_MODEL = "phi3:mini"

_MAX_ATTEMPTS = 3
_RETRY_PAUSE_SECONDS = 0.5
_HEALTH_TIMEOUT_SECONDS = 2.0


class OllamaProvider(LLMProvider):
    """Local Ollama LLM provider."""

    name = "ollama"

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        model: str = DEFAULT_MODEL,
        client: Optional[httpx.AsyncClient] = None,
        request_timeout: float = 30.0,
        retry_pause: float = _RETRY_PAUSE_SECONDS,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self._timeout = request_timeout
        self._retry_pause = retry_pause
        self._owns_client = client is None
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def generate(
        self,
        prompt: str,
        system_instruction: Optional[str] = None,
        temperature: float = 0.7,
        json_mode: bool = False,
    ) -> str:
        payload: dict = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "options": {"temperature": temperature},
        }
        if system_instruction:
            payload["system"] = system_instruction
        if json_mode:
            payload["format"] = "json"

        client = self._get_client()
        url = f"{self.base_url}/api/generate"
        last_error: Optional[Exception] = None

        for attempt in range(_MAX_ATTEMPTS):
            try:
                response = await client.post(url, json=payload)
            except httpx.TransportError as e:
                last_error = e
                logger.warning(
                    "Ollama request failed (attempt %d/%d): %s",
                    attempt + 1, _MAX_ATTEMPTS, e,
                    extra={"error_type": type(e).__name__, "model": self.model},
                )
                if attempt < _MAX_ATTEMPTS - 1:
                    await asyncio.sleep(self._retry_pause)
                continue

            if response.status_code != 200:
                raise ServiceUnavailable(
                    f"Ollama responded with {response.status_code}"
                )

            try:
                data = response.json()
            except ValueError as e:
                raise ServiceUnavailable(f"Ollama returned a non-JSON body: {e}") from e

            text = data.get("response") if isinstance(data, dict) else None
            if not isinstance(text, str):
                raise ServiceUnavailable("Ollama response has no 'response' field")
            return text

        raise ServiceUnavailable(
            f"Ollama unreachable after {_MAX_ATTEMPTS} attempts: {last_error}"
        ) from last_error

    async def list_models(self) -> list[str]:
        """Names of the models installed on the server."""
        response = await self._get_client().get(
            f"{self.base_url}/api/tags", timeout=_HEALTH_TIMEOUT_SECONDS,
        )
        response.raise_for_status()
        return [m.get("name", "") for m in response.json().get("models", [])]

    async def is_healthy(self) -> bool:
        try:
            response = await self._get_client().get(
                f"{self.base_url}/api/tags", timeout=_HEALTH_TIMEOUT_SECONDS,
            )
        except httpx.HTTPError as e:
            logger.debug("Ollama health check failed: %s", e)
            return False
        return response.status_code == 200

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
