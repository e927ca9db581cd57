"""
Detector Tests — Local Technique Detection

Tests the three detector layers:
  1. Surface counters and the fast reject
  2. Pattern families
  3. Attribution of surface signals onto technique names
"""

from __future__ import annotations

from unittest.mock import MagicMock

from feelingwise.detector import (
    EVIDENCE_MAX_CHARS,
    PATTERNS,
    TechniqueDetector,
    detect,
    get_patterns,
    surface_signals,
)
from feelingwise.techniques import Technique


def _names(text: str) -> set[str]:
    return {m.name for m in detect(text)}


# ============================================================
# SURFACE LAYER
# ============================================================

class TestSurfaceSignals:

    def test_counts_each_family(self):
        signals = surface_signals("WAKE UP!!! \U0001F6A8 urgent crisis")
        assert signals.caps_tokens == 1
        assert signals.repeated_punctuation == 1
        assert signals.alarm_glyphs == 1
        assert signals.urgency_terms == 2      # "WAKE UP", "urgent"
        assert signals.fear_terms == 1
        assert signals.has_any

    def test_acronyms_are_not_shouting(self):
        signals = surface_signals("The FBI and NASA released a report today.")
        assert signals.caps_tokens == 0
        assert not signals.has_any

    def test_invalid_input(self):
        assert not surface_signals(None).has_any
        assert surface_signals("").to_dict() == {
            "caps_tokens": 0,
            "repeated_punctuation": 0,
            "alarm_glyphs": 0,
            "urgency_terms": 0,
            "fear_terms": 0,
        }


# ============================================================
# DETECT
# ============================================================

class TestDetect:

    def test_scenario_a_clean(self):
        assert detect("This could be concerning") == []

    def test_scenario_b(self):
        names = _names("WAKE UP!!! They want to DESTROY everything!!!")
        assert names == {"MisleadingFormat", "FalseUrgency", "FearAppeal", "Scapegoating"}

    def test_fast_reject_skips_patterns(self):
        """No surface signal at all means no pattern matching either."""
        assert detect("Real men would never cry about this.") == []

    def test_pattern_runs_once_surface_fires(self):
        names = _names("Real men would never cry about this!!")
        assert names == {"MisleadingFormat", "ShameGuilt"}

    def test_format_signals_collapse(self):
        matches = detect("STOP THIS NOW!!! \U0001F6A8\U0001F525")
        formats = [m for m in matches if m.name == Technique.MISLEADING_FORMAT.value]
        assert len(formats) == 1

    def test_urgency_only(self):
        assert _names("Breaking news from the city council meeting") == {"FalseUrgency"}

    def test_fear_only(self):
        assert _names("There is a real threat to the harbor") == {"FearAppeal"}

    def test_bandwagon(self):
        names = _names("Everyone is switching now, don't be the last one")
        assert "BandwagonPressure" in names
        assert "FalseUrgency" in names

    def test_no_duplicates(self):
        matches = detect("URGENT!!! Act now, act now, this is URGENT and a CRISIS!!")
        names = [m.name for m in matches]
        assert len(names) == len(set(names))

    def test_evidence_is_bounded(self):
        text = "DANGER " * 200 + "!!"
        for match in detect(text):
            assert match.evidence is None or len(match.evidence) <= EVIDENCE_MAX_CHARS

    def test_invalid_input_yields_empty(self):
        assert detect(None) == []
        assert detect(12345) == []
        assert detect("          ") == []

    def test_never_raises(self):
        broken = MagicMock()
        broken.search.side_effect = RuntimeError("bad pattern")
        detector = TechniqueDetector(patterns=[broken])
        assert detector.detect("SHOUTING TEXT HERE!!") == []


# ============================================================
# PATTERN LISTING
# ============================================================

class TestPatterns:

    def test_ids_unique(self):
        ids = [p.id for p in PATTERNS]
        assert len(ids) == len(set(ids))

    def test_listing_shape(self):
        listing = get_patterns()
        assert len(listing) == len(PATTERNS)
        for entry in listing:
            assert Technique(entry["technique"]).label == entry["label"]
            assert entry["description"]
