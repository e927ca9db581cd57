"""
Technique Taxonomy

The fixed enumeration of rhetorical-manipulation techniques, the match type
produced by the detector, and the alias table that folds the free-form names
a language model reports ("Shame/Guilt Attack", "Bandwagon", "Format Issue")
onto the canonical enumeration.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union


class Technique(str, Enum):
    """Canonical technique names."""

    FEAR_APPEAL = "FearAppeal"
    ANGER_OUTRAGE = "AngerOutrage"
    SHAME_GUILT = "ShameGuilt"
    FALSE_URGENCY = "FalseUrgency"
    FALSE_CERTAINTY = "FalseCertainty"
    SCAPEGOATING = "Scapegoating"
    BANDWAGON_PRESSURE = "BandwagonPressure"
    FOMO = "FOMO"
    TOXIC_POSITIVITY = "ToxicPositivity"
    MISLEADING_FORMAT = "MisleadingFormat"

    @property
    def label(self) -> str:
        return TECHNIQUE_LABELS[self]


TECHNIQUE_LABELS: dict[Technique, str] = {
    Technique.FEAR_APPEAL: "Fear Appeal",
    Technique.ANGER_OUTRAGE: "Anger/Outrage",
    Technique.SHAME_GUILT: "Shame/Guilt",
    Technique.FALSE_URGENCY: "False Urgency",
    Technique.FALSE_CERTAINTY: "False Certainty",
    Technique.SCAPEGOATING: "Scapegoating",
    Technique.BANDWAGON_PRESSURE: "Bandwagon Pressure",
    Technique.FOMO: "FOMO",
    Technique.TOXIC_POSITIVITY: "Toxic Positivity",
    Technique.MISLEADING_FORMAT: "Misleading Format",
}

TECHNIQUE_DESCRIPTIONS: dict[Technique, str] = {
    Technique.FEAR_APPEAL: "Induces anxiety to prompt a reaction before careful consideration.",
    Technique.ANGER_OUTRAGE: "Provokes indignation so the reader shares before thinking.",
    Technique.SHAME_GUILT: "Leverages fear of social rejection or personal inadequacy.",
    Technique.FALSE_URGENCY: "Artificial time pressure that forces a decision before evaluation.",
    Technique.FALSE_CERTAINTY: "Presents contested or unverified claims as settled fact.",
    Technique.SCAPEGOATING: "Blames a group or outsider for a complex problem.",
    Technique.BANDWAGON_PRESSURE: "Implies everyone already agrees, pressuring conformity.",
    Technique.FOMO: "Fear of missing out: scarcity or exclusion used as a lever.",
    Technique.TOXIC_POSITIVITY: "Dismisses legitimate concern with forced optimism.",
    Technique.MISLEADING_FORMAT: "Shouting formatting: ALL CAPS, stacked punctuation, alarm emoji.",
}


def _alias_key(name: str) -> str:
    return re.sub(r"[^a-z]", "", name.lower())


# Alias key (lowercase letters only) -> canonical technique
_ALIASES: dict[str, Technique] = {
    # Fear
    "fearappeal": Technique.FEAR_APPEAL,
    "fearappeals": Technique.FEAR_APPEAL,
    "fear": Technique.FEAR_APPEAL,
    "fearmongering": Technique.FEAR_APPEAL,
    "catastrophizing": Technique.FEAR_APPEAL,
    "scaretrick": Technique.FEAR_APPEAL,
    # Anger
    "angeroutrage": Technique.ANGER_OUTRAGE,
    "anger": Technique.ANGER_OUTRAGE,
    "outrage": Technique.ANGER_OUTRAGE,
    "outragebait": Technique.ANGER_OUTRAGE,
    "ragebait": Technique.ANGER_OUTRAGE,
    # Shame
    "shameguilt": Technique.SHAME_GUILT,
    "shameguiltattack": Technique.SHAME_GUILT,
    "shame": Technique.SHAME_GUILT,
    "guilt": Technique.SHAME_GUILT,
    "guilttrip": Technique.SHAME_GUILT,
    "shametrick": Technique.SHAME_GUILT,
    "identityattack": Technique.SHAME_GUILT,
    # Urgency
    "falseurgency": Technique.FALSE_URGENCY,
    "urgency": Technique.FALSE_URGENCY,
    "urgencytrick": Technique.FALSE_URGENCY,
    "artificialurgency": Technique.FALSE_URGENCY,
    "manufacturedurgency": Technique.FALSE_URGENCY,
    # Certainty
    "falsecertainty": Technique.FALSE_CERTAINTY,
    "certainty": Technique.FALSE_CERTAINTY,
    "absolutelanguage": Technique.FALSE_CERTAINTY,
    "absolutism": Technique.FALSE_CERTAINTY,
    "falseauthority": Technique.FALSE_CERTAINTY,
    "appealtoauthority": Technique.FALSE_CERTAINTY,
    # Scapegoating
    "scapegoating": Technique.SCAPEGOATING,
    "scapegoat": Technique.SCAPEGOATING,
    "blameshifting": Technique.SCAPEGOATING,
    "usversusthem": Technique.SCAPEGOATING,
    "usvsthem": Technique.SCAPEGOATING,
    # Bandwagon
    "bandwagonpressure": Technique.BANDWAGON_PRESSURE,
    "bandwagon": Technique.BANDWAGON_PRESSURE,
    "bandwagontrick": Technique.BANDWAGON_PRESSURE,
    "socialproof": Technique.BANDWAGON_PRESSURE,
    "appealtopopularity": Technique.BANDWAGON_PRESSURE,
    # FOMO
    "fomo": Technique.FOMO,
    "fearofmissingout": Technique.FOMO,
    "scarcity": Technique.FOMO,
    # Toxic positivity
    "toxicpositivity": Technique.TOXIC_POSITIVITY,
    # Formatting
    "misleadingformat": Technique.MISLEADING_FORMAT,
    "misleadingformatting": Technique.MISLEADING_FORMAT,
    "formatissue": Technique.MISLEADING_FORMAT,
    "allcaps": Technique.MISLEADING_FORMAT,
    "allcapsformatting": Technique.MISLEADING_FORMAT,
    "excessivepunctuation": Technique.MISLEADING_FORMAT,
    "shoutytrick": Technique.MISLEADING_FORMAT,
}

# Entries a model emits when it found nothing
_EMPTY_NAMES = {"", "none", "na", "null", "nothing", "notechniques"}


def normalize_technique(name: Any) -> Optional[Technique]:
    """Map a free-form technique name onto the enumeration, or None if unknown."""
    if isinstance(name, Technique):
        return name
    if not isinstance(name, str):
        return None
    return _ALIASES.get(_alias_key(name))


def canonical_name(name: Any) -> Optional[str]:
    """
    Canonical string for a reported technique name.

    Known names fold onto the enumeration value ("Shame/Guilt Attack" ->
    "ShameGuilt"); unknown names are kept verbatim (stripped). Empty and
    "none"-style entries return None.
    """
    if isinstance(name, Technique):
        return name.value
    if not isinstance(name, str):
        return None
    stripped = name.strip()
    if _alias_key(stripped) in _EMPTY_NAMES:
        return None
    technique = normalize_technique(stripped)
    return technique.value if technique else stripped


@dataclass(frozen=True)
class TechniqueMatch:
    """One detected technique. Equality and hashing use the name only."""
    name: str
    evidence: Optional[str] = field(default=None, compare=False)

    @property
    def technique(self) -> Optional[Technique]:
        return normalize_technique(self.name)

    def to_dict(self) -> dict:
        return {"name": self.name, "evidence": self.evidence}

    @classmethod
    def from_dict(cls, data: dict) -> "TechniqueMatch":
        return cls(name=data["name"], evidence=data.get("evidence"))


TechniqueLike = Union[TechniqueMatch, Technique, str, dict]


def technique_name(item: Any) -> Optional[str]:
    """Extract a canonical name from any accepted technique shape."""
    if isinstance(item, TechniqueMatch):
        return canonical_name(item.name)
    if isinstance(item, dict):
        return canonical_name(item.get("name"))
    return canonical_name(item)
