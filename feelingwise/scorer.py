"""
Severity Scorer

Computes a 0-10 severity from a technique set plus raw-text signals.
Separated from detector.py for single-responsibility.

Severity = Intensity + Centrality + Vulnerability, per technique:
  - Intensity (1-4):     how aggressive the text is (CAPS, !!, alarm glyphs,
                         catastrophising vocabulary). Maximum across families.
  - Centrality (1-3):    how much of the message rests on manipulation
                         (number of distinct techniques).
  - Vulnerability (1-3): which need or fear the technique targets.

The raw total (3-10) maps through SEVERITY_MAP. The overall severity is the
worst technique's severity; an empty technique set always scores 0.

This is the only severity formula. Scores reported by a language model are
never trusted; they are recomputed here from the reported technique names.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from feelingwise.techniques import Technique, normalize_technique, technique_name


# ============================================================
# CONSTANTS
# ============================================================

VULNERABILITY: dict[Technique, int] = {
    # Primal fears
    Technique.FEAR_APPEAL: 3,
    Technique.SHAME_GUILT: 3,
    Technique.SCAPEGOATING: 3,
    # Identity / belonging
    Technique.ANGER_OUTRAGE: 2,
    Technique.FALSE_URGENCY: 2,
    Technique.BANDWAGON_PRESSURE: 2,
    Technique.FOMO: 2,
    # General concern
    Technique.FALSE_CERTAINTY: 1,
    Technique.TOXIC_POSITIVITY: 1,
    Technique.MISLEADING_FORMAT: 1,
}

# Raw total -> severity. The jump at 9 -> 8 and 10 -> 10 is intentional.
SEVERITY_MAP: dict[int, int] = {
    3: 1,
    4: 2,
    5: 3,
    6: 4,
    7: 5,
    8: 6,
    9: 8,
    10: 10,
}

# (minimum count, intensity level), checked highest first
CAPS_THRESHOLDS = ((5, 4), (3, 3), (1, 2))
SIGNAL_THRESHOLDS = ((3, 4), (2, 3), (1, 2))

CAPS_TOKEN_RE = re.compile(r"\b[A-Z]{3,}\b")
REPEATED_PUNCTUATION_RE = re.compile(r"[!?]{2,}")
ALARM_GLYPH_RE = re.compile("[\\U0001F6A8\\U0001F525\\u26A0\\u2757\\u203C]")
EXTREME_LEXICON_RE = re.compile(
    r"\b(?:destroy\w*|danger\w*|emergenc(?:y|ies)|cris[ie]s|catastroph\w*|"
    r"mortal\w*|death\w*|deadly|di(?:e|es|ed|ing)|kill\w*|urgent\w*|"
    r"immediate\w*|disaster\w*|threat\w*|terror\w*|horrif\w*|"
    r"wake\s+up|everything|forever|never\s+again)\b",
    re.IGNORECASE,
)


# ============================================================
# DATA STRUCTURES
# ============================================================

@dataclass
class ScoreResult:
    """Result of scoring one fragment."""
    severity: int                 # 0-10
    intensity: int                # 1-4
    centrality: int               # 0 when no techniques, else 1-3
    vulnerability: int            # of the worst technique, 0 when none
    per_technique: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "severity": self.severity,
            "intensity": self.intensity,
            "centrality": self.centrality,
            "vulnerability": self.vulnerability,
            "per_technique": dict(self.per_technique),
        }


# ============================================================
# COMPONENTS
# ============================================================

def _level(count: int, thresholds: tuple) -> int:
    for minimum, level in thresholds:
        if count >= minimum:
            return level
    return 1


def assess_intensity(text: Optional[str]) -> int:
    """How aggressive is the text? 1-4, the maximum across signal families."""
    if not text or not isinstance(text, str):
        return 1

    return max(
        _level(len(CAPS_TOKEN_RE.findall(text)), CAPS_THRESHOLDS),
        _level(len(REPEATED_PUNCTUATION_RE.findall(text)), SIGNAL_THRESHOLDS),
        _level(len(ALARM_GLYPH_RE.findall(text)), SIGNAL_THRESHOLDS),
        _level(len(EXTREME_LEXICON_RE.findall(text)), SIGNAL_THRESHOLDS),
    )


def assess_centrality(technique_count: int) -> int:
    """How much of the message relies on manipulation? 1-3."""
    if technique_count >= 4:
        return 3
    if technique_count >= 2:
        return 2
    return 1


def assess_vulnerability(name: Any) -> int:
    """Which vulnerability does the technique target? 1-3, unknown names score 1."""
    technique = normalize_technique(name)
    if technique is None:
        return 1
    return VULNERABILITY.get(technique, 1)


def map_to_severity(total: int) -> int:
    """Map a raw total (3-10) to the final 1-10 severity."""
    if total in SEVERITY_MAP:
        return SEVERITY_MAP[total]
    return min(max(int(round(total)), 1), 10)


def parse_severity(value: Any, fallback: int = 0) -> int:
    """Clamp an externally supplied severity to 0-10. Used for logging only."""
    if value is None or isinstance(value, bool):
        return fallback
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return fallback
    if math.isnan(parsed) or math.isinf(parsed):
        return fallback
    return max(0, min(10, int(math.floor(parsed + 0.5))))


# ============================================================
# SCORING
# ============================================================

def score(text: Optional[str], techniques: Optional[Iterable[Any]]) -> ScoreResult:
    """
    Score a fragment given its techniques.

    Techniques may be TechniqueMatch, Technique, plain names or
    {"name": ...} mappings. Names are normalised and counted distinct.
    """
    intensity = assess_intensity(text)

    names: list[str] = []
    if techniques is not None and not isinstance(techniques, (str, dict)):
        for item in techniques:
            name = technique_name(item)
            if name and name not in names:
                names.append(name)

    if not names:
        return ScoreResult(severity=0, intensity=intensity, centrality=0, vulnerability=0)

    centrality = assess_centrality(len(names))
    per_technique: dict[str, int] = {}
    worst_vulnerability = 0
    worst = 0
    for name in names:
        vulnerability = assess_vulnerability(name)
        severity = map_to_severity(intensity + centrality + vulnerability)
        per_technique[name] = severity
        if severity > worst:
            worst = severity
            worst_vulnerability = vulnerability

    return ScoreResult(
        severity=max(0, min(10, worst)),
        intensity=intensity,
        centrality=centrality,
        vulnerability=worst_vulnerability,
        per_technique=per_technique,
    )
