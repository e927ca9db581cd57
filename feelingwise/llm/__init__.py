"""
LLM Provider — Abstract Interface

All language-model calls go through this interface. Swap providers
by changing FEELINGWISE_LLM_PROVIDER in env.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Optional


def extract_json_object(text: str) -> dict:
    """
    Return the first balanced-brace JSON object embedded in ``text``.

    Small local models wrap their JSON in prose or markdown fences, so
    the response is scanned for ``{...}`` candidates. Braces inside string
    literals (and escaped quotes) are respected. Each candidate is tried in
    order; the first one that parses to a dict wins.

    Raises ValueError when no candidate parses.
    """
    if not isinstance(text, str):
        raise ValueError("LLM response is not text")

    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        end = -1
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    end = i
                    break

        if end == -1:
            # Unclosed brace; a later candidate may still be complete
            start = text.find("{", start + 1)
            continue

        try:
            parsed = json.loads(text[start:end + 1])
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, dict):
            return parsed

        start = text.find("{", start + 1)

    raise ValueError(f"LLM returned no JSON object. Raw response: {text[:300]}")


class LLMProvider(ABC):
    """Abstract base for LLM providers."""

    name: str = "abstract"

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        system_instruction: Optional[str] = None,
        temperature: float = 0.7,
        json_mode: bool = False,
    ) -> str:
        """Generate a text response from the LLM."""
        ...

    async def generate_json(
        self,
        prompt: str,
        system_instruction: Optional[str] = None,
        temperature: float = 0.3,
    ) -> dict:
        """Generate and parse a JSON response."""
        text = await self.generate(
            prompt=prompt,
            system_instruction=system_instruction,
            temperature=temperature,
            json_mode=True,
        )
        return extract_json_object(text)

    async def is_healthy(self) -> bool:
        """Whether the backing service is reachable. Providers override."""
        return True

    async def aclose(self) -> None:
        """Release network resources."""
        return None
