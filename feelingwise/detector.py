"""
Technique Detector — Local Manipulation Detection

Deterministic, zero-API-cost detection of rhetorical-manipulation
techniques in a single fragment. Three layers:

  1. Surface layer:     cheap counters (ALL-CAPS tokens, stacked
                        punctuation, alarm glyphs, urgency and fear
                        vocabulary). All zero → fast reject, return [].
  2. Pattern layer:     regex families for phrasing the counters can't
                        see (absolutes, identity attacks, false
                        authority, shame, scapegoating, bandwagon...).
  3. Attribution layer: surface signals folded onto technique names.
                        CAPS, stacked punctuation and alarm glyphs all
                        collapse onto MisleadingFormat.

The detector never raises. Anything unexpected yields [].
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from feelingwise.techniques import Technique, TechniqueMatch

logger = logging.getLogger(__name__)

EVIDENCE_MAX_CHARS = 120


# ============================================================
# SURFACE LAYER
# ============================================================

# Uppercase words that are names, not shouting
COMMON_ACRONYMS = frozenset({
    "USA", "UK", "EU", "UN", "FBI", "CIA", "NSA", "CEO", "CFO", "CTO",
    "NASA", "NATO", "COVID", "CDC", "WHO", "FDA", "GDP", "API", "URL",
    "HTML", "CSS", "PDF", "FAQ", "DIY", "ASAP", "LOL", "OMG", "TV", "AI",
    "IRS", "DOJ", "NHS", "BBC", "CNN", "NBA", "NFL", "NYC", "LGBT", "LGBTQ",
    "USB", "GPS", "ATM", "RSVP", "ETA", "TBD", "IPO", "ETF",
})

CAPS_TOKEN_RE = re.compile(r"\b[A-Z]{3,}\b")
REPEATED_PUNCTUATION_RE = re.compile(r"[!?]{2,}")
ALARM_GLYPH_RE = re.compile("[\\U0001F6A8\\U0001F525\\u26A0\\u2757\\u203C]")
URGENCY_LEXICON_RE = re.compile(
    r"\b(?:urgent(?:ly)?|now|immediately|breaking|exposed|alert|emergency|"
    r"hurry|deadline|last\s+chance|act\s+now|wake\s+up)\b",
    re.IGNORECASE,
)
FEAR_LEXICON_RE = re.compile(
    r"\b(?:destroy(?:s|ed|ing)?|disaster(?:s|ous)?|catastroph(?:e|es|ic)|"
    r"crisis|crises|threat(?:s|en|ens|ening)?|danger(?:s|ous)?|warning|"
    r"terrifying|deadly|collapse(?:s|d)?)\b",
    re.IGNORECASE,
)


@dataclass
class SurfaceSignals:
    """Raw counters from the surface layer."""
    caps_tokens: int = 0
    repeated_punctuation: int = 0
    alarm_glyphs: int = 0
    urgency_terms: int = 0
    fear_terms: int = 0
    evidence: dict[str, str] = field(default_factory=dict)

    @property
    def has_any(self) -> bool:
        return bool(
            self.caps_tokens or self.repeated_punctuation or self.alarm_glyphs
            or self.urgency_terms or self.fear_terms
        )

    @property
    def formatting(self) -> int:
        return self.caps_tokens + self.repeated_punctuation + self.alarm_glyphs

    def to_dict(self) -> dict:
        return {
            "caps_tokens": self.caps_tokens,
            "repeated_punctuation": self.repeated_punctuation,
            "alarm_glyphs": self.alarm_glyphs,
            "urgency_terms": self.urgency_terms,
            "fear_terms": self.fear_terms,
        }


def surface_signals(text: str) -> SurfaceSignals:
    """Count the cheap surface signals in ``text``."""
    signals = SurfaceSignals()
    if not text or not isinstance(text, str):
        return signals

    caps = [t for t in CAPS_TOKEN_RE.findall(text) if t not in COMMON_ACRONYMS]
    punctuation = REPEATED_PUNCTUATION_RE.findall(text)
    glyphs = ALARM_GLYPH_RE.findall(text)
    urgency = URGENCY_LEXICON_RE.findall(text)
    fear = FEAR_LEXICON_RE.findall(text)

    signals.caps_tokens = len(caps)
    signals.repeated_punctuation = len(punctuation)
    signals.alarm_glyphs = len(glyphs)
    signals.urgency_terms = len(urgency)
    signals.fear_terms = len(fear)

    formatting = caps[:3] + punctuation[:2] + glyphs[:2]
    if formatting:
        signals.evidence["format"] = " ".join(formatting)
    if urgency:
        signals.evidence["urgency"] = ", ".join(dict.fromkeys(u.lower() for u in urgency))
    if fear:
        signals.evidence["fear"] = ", ".join(dict.fromkeys(f.lower() for f in fear))
    return signals


# ============================================================
# PATTERN LAYER
# ============================================================

@dataclass
class LexicalPattern:
    """A phrasing family that indicates one technique."""
    id: str
    technique: Technique
    description: str
    indicators: list[str]
    _compiled: list[re.Pattern] = field(default_factory=list, init=False, repr=False)

    def __post_init__(self):
        self._compiled = [re.compile(p, re.IGNORECASE) for p in self.indicators]

    def search(self, text: str) -> Optional[str]:
        """First matched substring, or None."""
        for regex in self._compiled:
            match = regex.search(text)
            if match:
                return match.group(0)
        return None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "technique": self.technique.value,
            "label": self.technique.label,
            "description": self.description,
        }


PATTERNS: list[LexicalPattern] = [
    LexicalPattern(
        id="ABSOLUTIST_PHRASING",
        technique=Technique.FALSE_CERTAINTY,
        description="Absolute claims that leave no room for doubt or exception.",
        indicators=[
            r"\b(?:everyone|everybody|no\s*one|nobody)\s+(?:knows|agrees|can\s+deny|denies)\b",
            r"\b(?:undeniabl[ey]|indisputabl[ey]|unquestionabl[ey]|without\s+(?:a|any)\s+doubt)\b",
            r"\b(?:100\s*%|one\s+hundred\s+percent)\s+(?:proven|true|certain|fact)\b",
            r"\b(?:the\s+)?(?:truth|fact)\s+is\s+(?:simple|clear|obvious)\b",
        ],
    ),
    LexicalPattern(
        id="FALSE_AUTHORITY",
        technique=Technique.FALSE_CERTAINTY,
        description="Unnamed experts or studies cited as settled proof.",
        indicators=[
            r"\b(?:experts|scientists|doctors|studies|research)\s+(?:say|says|agree|prove|proves|have\s+proven|confirm)\b",
            r"\b(?:science|research)\s+(?:is\s+settled|has\s+spoken)\b",
            r"\bit\s+is\s+(?:a\s+)?(?:proven|known)\s+fact\b",
        ],
    ),
    LexicalPattern(
        id="IDENTITY_ATTACK",
        technique=Technique.SHAME_GUILT,
        description="Membership in a group made conditional on agreeing.",
        indicators=[
            r"\breal\s+\w+(?:\s+\w+)?\s+(?:would\s+never|wouldn'?t|don'?t|never)\b",
            r"\bno\s+(?:true|real)\s+\w+\s+would\b",
            r"\bif\s+you\s+(?:really|truly)\s+(?:cared|loved|were)\b",
        ],
    ),
    LexicalPattern(
        id="SHAME_GUILT",
        technique=Technique.SHAME_GUILT,
        description="Shame or guilt used as a lever for compliance.",
        indicators=[
            r"\b(?:shame\s+on\s+you|you\s+should\s+be\s+ashamed|how\s+dare\s+you)\b",
            r"\b(?:only\s+(?:an?\s+)?(?:idiot|fool|moron)s?|you'?re\s+(?:part\s+of\s+the\s+problem|complicit))\b",
            r"\b(?:blood\s+on\s+your\s+hands|you\s+(?:let|are\s+letting)\s+\w+\s+down)\b",
        ],
    ),
    LexicalPattern(
        id="IMPERATIVE_TRIGGER",
        technique=Technique.FALSE_URGENCY,
        description="Commands that demand a reaction before evaluation.",
        indicators=[
            r"\b(?:share|repost|retweet|spread)\s+(?:this|the\s+word)\s+(?:now|before|immediately|everywhere)\b",
            r"\bbefore\s+(?:it'?s\s+too\s+late|they\s+(?:delete|remove|ban|take\s+down))\b",
            r"\b(?:don'?t\s+wait|time\s+is\s+running\s+out|only\s+\d+\s+(?:hours?|days?|minutes?)\s+left)\b",
        ],
    ),
    LexicalPattern(
        id="FOMO",
        technique=Technique.FOMO,
        description="Scarcity or exclusion framed as a loss to avoid.",
        indicators=[
            r"\b(?:don'?t\s+miss\s+out|you'?ll\s+regret|limited\s+(?:time|spots|offer)|while\s+(?:supplies|it)\s+lasts?)\b",
            r"\b(?:only\s+(?:a\s+)?few\s+(?:left|remaining|spots)|before\s+everyone\s+else|exclusive\s+access)\b",
        ],
    ),
    LexicalPattern(
        id="BANDWAGON",
        technique=Technique.BANDWAGON_PRESSURE,
        description="Implied consensus pressuring the reader to conform.",
        indicators=[
            r"\b(?:everyone\s+is\s+(?:doing|switching|talking|joining)|millions\s+(?:of\s+people\s+)?(?:are|have)\s+already)\b",
            r"\b(?:join\s+the\s+(?:movement|millions)|don'?t\s+be\s+the\s+(?:last|only)\s+one)\b",
            r"\b(?:all\s+(?:smart|sensible|real)\s+\w+\s+(?:are|know))\b",
        ],
    ),
    LexicalPattern(
        id="ANGER_OUTRAGE",
        technique=Technique.ANGER_OUTRAGE,
        description="Language built to provoke indignation.",
        indicators=[
            r"\b(?:outrageous|disgusting|disgraceful|sickening|infuriating|unforgivable)\b",
            r"\b(?:this\s+should\s+make\s+(?:you|everyone)\s+(?:furious|angry|mad)|absolutely\s+(?:insane|unacceptable))\b",
        ],
    ),
    LexicalPattern(
        id="SCAPEGOATING",
        technique=Technique.SCAPEGOATING,
        description="A complex problem pinned on a group or outsider.",
        indicators=[
            r"\bthey\s+(?:want|are\s+trying|plan)\s+to\s+(?:destroy|take|ruin|replace|control|silence)\b",
            r"\b(?:because\s+of|blame)\s+(?:the\s+)?(?:elites?|immigrants|globalists|liberals|conservatives|boomers|millennials|media)\b",
            r"\b(?:it'?s\s+all\s+(?:their|the\s+\w+'?s?)\s+fault|(?:they|them)\s+(?:are|is)\s+(?:the\s+)?(?:enemy|problem))\b",
        ],
    ),
    LexicalPattern(
        id="TOXIC_POSITIVITY",
        technique=Technique.TOXIC_POSITIVITY,
        description="Legitimate concern dismissed with forced optimism.",
        indicators=[
            r"\b(?:good\s+vibes\s+only|just\s+(?:think|stay)\s+positive|everything\s+happens\s+for\s+a\s+reason)\b",
            r"\b(?:stop\s+(?:being\s+)?negative|choose\s+happiness|it\s+could\s+be\s+worse)\b",
        ],
    ),
    LexicalPattern(
        id="FEAR_THREAT",
        technique=Technique.FEAR_APPEAL,
        description="Threat of harm presented to bypass deliberation.",
        indicators=[
            r"\b(?:you(?:r\s+(?:family|children|kids))?|we)\s+(?:will|could|are\s+going\s+to)\s+(?:die|lose\s+everything|be\s+next)\b",
            r"\b(?:nobody\s+is\s+safe|no\s+one\s+is\s+safe|the\s+end\s+of\s+\w+\s+as\s+we\s+know\s+it)\b",
            r"\b(?:ticking\s+time\s+bomb|point\s+of\s+no\s+return)\b",
        ],
    ),
]


# ============================================================
# DETECTOR
# ============================================================

def _truncate(evidence: str) -> str:
    evidence = evidence.strip()
    if len(evidence) <= EVIDENCE_MAX_CHARS:
        return evidence
    return evidence[:EVIDENCE_MAX_CHARS - 3] + "..."


class TechniqueDetector:
    """Deterministic technique detection over a fixed pattern set."""

    def __init__(self, patterns: Optional[list[LexicalPattern]] = None):
        self._patterns = PATTERNS if patterns is None else patterns

    def detect(self, text: str) -> list[TechniqueMatch]:
        """Return the distinct techniques present in ``text``."""
        try:
            return self._detect(text)
        except Exception as e:
            logger.warning("Detection failed, treating fragment as clean: %s", e,
                           extra={"error_type": type(e).__name__})
            return []

    def _detect(self, text: str) -> list[TechniqueMatch]:
        if not isinstance(text, str) or not text.strip():
            return []

        signals = surface_signals(text)
        if not signals.has_any:
            return []

        found: dict[str, TechniqueMatch] = {}

        def _add(technique: Technique, evidence: Optional[str]) -> None:
            if technique.value not in found:
                found[technique.value] = TechniqueMatch(
                    name=technique.value,
                    evidence=_truncate(evidence) if evidence else None,
                )

        # Attribution of surface signals
        if signals.formatting:
            _add(Technique.MISLEADING_FORMAT, signals.evidence.get("format"))
        if signals.urgency_terms:
            _add(Technique.FALSE_URGENCY, signals.evidence.get("urgency"))
        if signals.fear_terms:
            _add(Technique.FEAR_APPEAL, signals.evidence.get("fear"))

        for pattern in self._patterns:
            matched = pattern.search(text)
            if matched:
                _add(pattern.technique, matched)

        return list(found.values())

    def get_patterns(self) -> list[dict]:
        """Pattern families, for display."""
        return [p.to_dict() for p in self._patterns]


# Singleton, the pattern set is immutable
technique_detector = TechniqueDetector()


def detect(text: str) -> list[TechniqueMatch]:
    return technique_detector.detect(text)


def get_patterns() -> list[dict]:
    return technique_detector.get_patterns()
