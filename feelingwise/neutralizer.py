"""
Neutralization Client

Asks the language-model service for a calm rewrite of a fragment plus
the techniques it used, and falls back to a deterministic local rewrite
whenever the service can't deliver.

Flow:
  1. Send system instruction + fragment (temperature 0.3) under a timeout
  2. Pull the first JSON object out of the free-form response
  3. Validate "neutralized", coerce and normalise "techniques"
  4. Recompute severity locally; the service's own number is only logged
  5. On any failure: local fallback (case-fold shouting, collapse
     stacked punctuation, strip alarm glyphs). The fallback never raises.

Diff spans between original and rewrite are computed with
diff-match-patch, no LLM involved.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Optional

import diff_match_patch as dmp_module

from feelingwise.detector import COMMON_ACRONYMS
from feelingwise.llm import LLMProvider, extract_json_object
from feelingwise.scorer import (
    ALARM_GLYPH_RE,
    REPEATED_PUNCTUATION_RE,
    parse_severity,
    score,
)
from feelingwise.techniques import Technique, TechniqueMatch, canonical_name

logger = logging.getLogger(__name__)

# Singleton diff engine
_dmp = dmp_module.diff_match_patch()

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_TEMPERATURE = 0.3


# ============================================================
# PROMPTS
# ============================================================

SYSTEM_INSTRUCTION = """You are a content neutralization assistant. Rewrite text to remove emotional manipulation while preserving the original meaning, viewpoint, and VOICE.

RULES:
1. Convert ALL CAPS to normal case
2. Reduce multiple !!! or ??? to single punctuation
3. Remove alarm emojis (\U0001F6A8\U0001F525⚠️) but keep semantic emojis
4. Replace fear/urgency language with neutral alternatives
5. Preserve all factual claims, names, dates, numbers
6. PRESERVE THE ORIGINAL VOICE - if they wrote in first person, keep first person
7. NEVER add third-person framing like "The author argues..." or "This person believes..."
8. NEVER judge whether claims are true or false
9. Keep the same viewpoint direction (if they're against something, stay against it)
10. The output should sound like THE SAME PERSON, just calmer

Technique names to use: Fear Appeal, Anger/Outrage, Shame/Guilt, False Urgency,
False Certainty, Scapegoating, Bandwagon Pressure, FOMO, Toxic Positivity,
Misleading Format.

Respond with JSON only:
{
  "neutralized": "the neutralized text",
  "techniques": ["list of manipulation techniques detected"],
  "severity": 0-10
}"""

USER_PROMPT = "Neutralize this text:\n\n{text}"


# ============================================================
# DATA STRUCTURES
# ============================================================

@dataclass
class Neutralization:
    """Outcome of one neutralization attempt."""
    neutralized: str
    techniques: list[TechniqueMatch] = field(default_factory=list)
    severity: int = 0
    source: str = "service"                 # "service" | "fallback"
    reported_severity: Optional[int] = None  # what the service claimed

    @property
    def technique_names(self) -> list[str]:
        return [t.name for t in self.techniques]


# ============================================================
# RESPONSE PARSING
# ============================================================

def _coerce_techniques(raw: Any) -> list[TechniqueMatch]:
    """
    Turn whatever the service put under "techniques" into a clean list.

    Accepts a list, a bare string, or a single object; objects are read
    via "name" (or "technique"/"type"). "none"-style entries are dropped,
    names are normalised and de-duplicated.
    """
    if raw is None:
        return []
    if isinstance(raw, (str, dict)):
        raw = [raw]
    if not isinstance(raw, (list, tuple)):
        return []

    matches: dict[str, TechniqueMatch] = {}
    for item in raw:
        evidence = None
        if isinstance(item, dict):
            name = item.get("name") or item.get("technique") or item.get("type")
            evidence = item.get("evidence") or item.get("example")
            if evidence is not None and not isinstance(evidence, str):
                evidence = str(evidence)
        else:
            name = item
        canonical = canonical_name(name)
        if canonical and canonical not in matches:
            matches[canonical] = TechniqueMatch(name=canonical, evidence=evidence)
    return list(matches.values())


def parse_response(text: str) -> tuple[str, list[TechniqueMatch], Any]:
    """
    Validate a raw service response.

    Returns (neutralized, techniques, reported_severity).
    Raises ValueError when the response is unusable.
    """
    data = extract_json_object(text)
    neutralized = data.get("neutralized")
    if not isinstance(neutralized, str) or not neutralized.strip():
        raise ValueError("response has no usable 'neutralized' text")
    return neutralized.strip(), _coerce_techniques(data.get("techniques")), data.get("severity")


# ============================================================
# LOCAL FALLBACK
# ============================================================

CAPS_RUN_RE = re.compile(r"\b[A-Z]{2,}(?:[ \t-]+[A-Z]{2,})*\b")
_VARIATION_SELECTOR = "\ufe0f"


def _fold_caps_run(match: re.Match) -> str:
    run = match.group(0)
    words = re.split(r"([ \t-]+)", run)
    shouting = [w for w in words[::2] if len(w) >= 3 and w not in COMMON_ACRONYMS]
    if not shouting:
        return run

    folded = []
    first = True
    for i, part in enumerate(words):
        if i % 2 or part in COMMON_ACRONYMS:
            folded.append(part)
        elif first:
            folded.append(part[0] + part[1:].lower())
        else:
            folded.append(part.lower())
        if i % 2 == 0:
            first = False
    return "".join(folded)


def _fold_punctuation(match: re.Match) -> str:
    return "?" if "?" in match.group(0) else "."


def fallback_rewrite(text: str) -> tuple[str, bool]:
    """
    Deterministic calm rewrite. Returns (text, had_format_signals).

    "WAKE UP!!! They want to DESTROY everything!!!"
      -> "Wake up. They want to Destroy everything."
    """
    rewritten = CAPS_RUN_RE.sub(_fold_caps_run, text)
    had_signals = (
        rewritten != text
        or REPEATED_PUNCTUATION_RE.search(text) is not None
        or ALARM_GLYPH_RE.search(text) is not None
    )
    rewritten = REPEATED_PUNCTUATION_RE.sub(_fold_punctuation, rewritten)
    rewritten = ALARM_GLYPH_RE.sub("", rewritten).replace(_VARIATION_SELECTOR, "")
    rewritten = re.sub(r"[ \t]{2,}", " ", rewritten)
    rewritten = re.sub(r"[ \t]+([.,?!])", r"\1", rewritten)
    rewritten = re.sub(r"[ \t]*\n[ \t]*", "\n", rewritten).strip()
    return rewritten, had_signals


def local_fallback(text: str) -> Neutralization:
    """Fallback neutralization. Never raises."""
    try:
        rewritten, changed = fallback_rewrite(text)
    except Exception as e:
        logger.warning("Fallback rewrite failed, returning original: %s", e)
        rewritten, changed = text, False

    techniques = [TechniqueMatch(name=Technique.MISLEADING_FORMAT.value,
                                 evidence="formatting")] if changed else []
    try:
        severity = score(text, techniques).severity
    except Exception:
        severity = 0
    return Neutralization(
        neutralized=rewritten or text,
        techniques=techniques,
        severity=severity,
        source="fallback",
    )


# ============================================================
# DIFF SPANS
# ============================================================

def compute_diff_spans(original: str, neutralized: str) -> list[dict]:
    """
    Compute deterministic text diffs between original and neutralized.

    Uses diff-match-patch (Google's text diff library) — no LLM involved.
    Returns spans with type (equal/delete/insert), text, and positions.
    """
    diffs = _dmp.diff_main(original, neutralized)
    _dmp.diff_cleanupSemantic(diffs)

    spans = []
    orig_pos = 0
    new_pos = 0

    for op, text in diffs:
        if op == 0:  # EQUAL
            spans.append({
                "type": "equal",
                "text": text,
                "orig_start": orig_pos,
                "orig_end": orig_pos + len(text),
                "new_start": new_pos,
                "new_end": new_pos + len(text),
            })
            orig_pos += len(text)
            new_pos += len(text)
        elif op == -1:  # DELETE
            spans.append({
                "type": "delete",
                "text": text,
                "orig_start": orig_pos,
                "orig_end": orig_pos + len(text),
            })
            orig_pos += len(text)
        elif op == 1:  # INSERT
            spans.append({
                "type": "insert",
                "text": text,
                "new_start": new_pos,
                "new_end": new_pos + len(text),
            })
            new_pos += len(text)

    return spans


# ============================================================
# CLIENT
# ============================================================

class NeutralizationClient:
    """Wraps an LLMProvider with timeout, validation and local fallback."""

    def __init__(
        self,
        llm: Optional[LLMProvider],
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        temperature: float = DEFAULT_TEMPERATURE,
    ):
        self.llm = llm
        self.timeout = timeout
        self.temperature = temperature
        self._service_calls = 0
        self._fallbacks = 0

    @property
    def stats(self) -> dict:
        return {
            "provider": getattr(self.llm, "name", None) if self.llm else "none",
            "service_calls": self._service_calls,
            "fallbacks": self._fallbacks,
        }

    async def neutralize(self, text: str) -> Neutralization:
        """Neutralize one fragment. Never raises except on cancellation."""
        if self.llm is None:
            self._fallbacks += 1
            return local_fallback(text)

        start = time.monotonic()
        self._service_calls += 1
        try:
            raw = await asyncio.wait_for(
                self.llm.generate(
                    prompt=USER_PROMPT.format(text=text),
                    system_instruction=SYSTEM_INSTRUCTION,
                    temperature=self.temperature,
                    json_mode=True,
                ),
                timeout=self.timeout,
            )
            neutralized, techniques, reported = parse_response(raw)
        except Exception as e:
            self._fallbacks += 1
            logger.warning(
                "Neutralization service failed, using local fallback: %s",
                str(e) or type(e).__name__,
                extra={
                    "error_type": type(e).__name__,
                    "duration_ms": round((time.monotonic() - start) * 1000, 1),
                },
            )
            return local_fallback(text)

        result = score(text, techniques)
        reported_severity = parse_severity(reported, fallback=-1)
        if reported_severity >= 0 and reported_severity != result.severity:
            logger.debug(
                "Service severity %d discarded, local severity %d",
                reported_severity, result.severity,
                extra={"severity": result.severity},
            )

        return Neutralization(
            neutralized=neutralized,
            techniques=techniques,
            severity=result.severity,
            source="service",
            reported_severity=reported_severity if reported_severity >= 0 else None,
        )
