"""
Gemini Provider — Google Gemini API implementation.

Uses the google.genai SDK. Client is lazily initialized:
the bridge starts without an API key and only fails on an actual call,
which the neutralization client turns into the local fallback.

Features:
- Model fallback: primary model → gemini-2.5-flash on failure
- Circuit breaker: after consecutive failures, fast-fail for 60s
- Exponential backoff retry on transient errors
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from typing import Optional

from google import genai
from google.genai import types

from feelingwise.errors import ServiceUnavailable
from feelingwise.llm import LLMProvider

logger = logging.getLogger("feelingwise.llm.gemini")

FALLBACK_MODEL = "gemini-2.5-flash"

_CB_FAILURE_THRESHOLD = 3   # Open after this many consecutive failures
_CB_RECOVERY_TIMEOUT = 60   # Seconds before a trial call (half-open)

_TRANSIENT_MARKERS = (
    "429", "503", "500", "rate", "quota", "timeout",
    "connection", "unavailable", "overloaded",
)


class CircuitBreaker:
    """closed → open → half-open → closed.

    While open, generate() raises CircuitOpenError immediately so the
    neutralization client drops to its local fallback instead of
    waiting out the request timeout on every fragment.
    """

    def __init__(
        self,
        failure_threshold: int = _CB_FAILURE_THRESHOLD,
        recovery_timeout: float = _CB_RECOVERY_TIMEOUT,
        clock=time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._failures = 0
        self._last_failure_time: float = 0
        self._state = "closed"  # closed | open | half-open

    @property
    def state(self) -> str:
        if self._state == "open":
            if self._clock() - self._last_failure_time >= self.recovery_timeout:
                self._state = "half-open"
        return self._state

    @property
    def failures(self) -> int:
        return self._failures

    def record_success(self) -> None:
        self._failures = 0
        self._state = "closed"

    def record_failure(self) -> None:
        self._failures += 1
        self._last_failure_time = self._clock()
        if self._failures >= self.failure_threshold:
            self._state = "open"
            logger.warning(
                "Circuit breaker OPEN after %d consecutive LLM failures. "
                "Local fallback for %ds.",
                self._failures, self.recovery_timeout,
            )

    @property
    def is_open(self) -> bool:
        return self.state == "open"


class CircuitOpenError(ServiceUnavailable):
    """Raised when the circuit breaker is open."""


def _is_transient(error: Exception) -> bool:
    text = str(error).lower()
    return any(marker in text for marker in _TRANSIENT_MARKERS)


class GeminiProvider(LLMProvider):
    """Google Gemini LLM provider with fallback model and circuit breaker."""

    name = "gemini"

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None):
        self._api_key = api_key or os.getenv("GEMINI_API_KEY", "")
        self._model = model or os.getenv("GEMINI_MODEL", FALLBACK_MODEL)
        self._client: Optional[genai.Client] = None
        self.circuit_breaker = CircuitBreaker()

    @property
    def model(self) -> str:
        return self._model

    def _get_client(self) -> genai.Client:
        if self._client is None:
            if not self._api_key:
                raise ServiceUnavailable(
                    "GEMINI_API_KEY not set. Get one from "
                    "https://aistudio.google.com/apikey"
                )
            self._client = genai.Client(api_key=self._api_key)
        return self._client

    async def _call_model(
        self,
        model: str,
        prompt: str,
        config: types.GenerateContentConfig,
        max_retries: int = 3,
    ) -> str:
        """Call one model, backing off on transient errors."""
        client = self._get_client()
        for attempt in range(max_retries):
            try:
                response = await client.aio.models.generate_content(
                    model=model,
                    contents=prompt,
                    config=config,
                )
                return response.text or ""
            except Exception as e:
                if _is_transient(e) and attempt < max_retries - 1:
                    await asyncio.sleep(2 ** attempt)
                    continue
                raise
        raise ServiceUnavailable(f"{model} gave no response")

    async def generate(
        self,
        prompt: str,
        system_instruction: Optional[str] = None,
        temperature: float = 0.7,
        json_mode: bool = False,
    ) -> str:
        if self.circuit_breaker.is_open:
            raise CircuitOpenError(
                "LLM circuit breaker is open after repeated failures."
            )

        config = types.GenerateContentConfig(
            temperature=temperature,
            system_instruction=system_instruction,
        )
        if json_mode:
            config.response_mime_type = "application/json"

        try:
            result = await self._call_model(self._model, prompt, config, max_retries=2)
            self.circuit_breaker.record_success()
            return result
        except Exception as primary_err:
            if self._model == FALLBACK_MODEL:
                self.circuit_breaker.record_failure()
                raise ServiceUnavailable(str(primary_err)) from primary_err

            logger.warning(
                "Primary model %s failed (%s), falling back to %s",
                self._model, primary_err, FALLBACK_MODEL,
                extra={"model": self._model},
            )
            try:
                result = await self._call_model(
                    FALLBACK_MODEL, prompt, config, max_retries=1,
                )
            except Exception as fallback_err:
                logger.error(
                    "Fallback model %s also failed: %s", FALLBACK_MODEL, fallback_err,
                    extra={"model": FALLBACK_MODEL},
                )
                self.circuit_breaker.record_failure()
                raise ServiceUnavailable(str(fallback_err)) from fallback_err
            self.circuit_breaker.record_success()
            return result

    async def is_healthy(self) -> bool:
        return bool(self._api_key) and not self.circuit_breaker.is_open
