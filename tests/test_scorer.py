"""
Scorer Tests — Severity Formula

Tests the scorer module:
  1. Intensity thresholds per signal family
  2. Centrality and vulnerability tables
  3. Non-linear severity map
  4. Full score() flow, including the worked scenarios
  5. Technique name normalisation feeding the scorer
"""

from __future__ import annotations

import math

import pytest

from feelingwise.scorer import (
    SEVERITY_MAP,
    assess_centrality,
    assess_intensity,
    assess_vulnerability,
    map_to_severity,
    parse_severity,
    score,
)
from feelingwise.techniques import (
    Technique,
    TechniqueMatch,
    canonical_name,
    normalize_technique,
)

SCENARIO_B = "WAKE UP!!! They want to DESTROY everything!!!"


# ============================================================
# INTENSITY
# ============================================================

class TestIntensity:
    """Maximum level across CAPS, punctuation, glyph and lexicon families."""

    def test_calm_text_is_one(self):
        assert assess_intensity("This could be concerning") == 1

    def test_empty_and_invalid_are_one(self):
        assert assess_intensity("") == 1
        assert assess_intensity(None) == 1
        assert assess_intensity(42) == 1

    def test_single_caps_token(self):
        assert assess_intensity("Just ONE thing to say") == 2

    def test_three_caps_tokens(self):
        assert assess_intensity("ONE TWO THREE") == 3

    def test_five_caps_tokens(self):
        assert assess_intensity("THIS IS VERY BAD NEWS FOLKS") == 4

    def test_two_letter_caps_ignored(self):
        assert assess_intensity("We are OK and so is the UK") == 1

    def test_repeated_punctuation(self):
        assert assess_intensity("Really?! Seriously??") == 3

    def test_alarm_glyphs(self):
        assert assess_intensity("\U0001F6A8 alert \U0001F6A8") == 3

    def test_extreme_lexicon(self):
        assert assess_intensity("a crisis and a disaster") == 3

    def test_alarm_phrases_count_as_lexicon(self):
        # wake up, destroy, everything
        assert assess_intensity("wake up, they will destroy everything") == 4

    def test_takes_maximum_not_sum(self):
        # one CAPS token (2) and one punctuation run (2) stay at 2
        assert assess_intensity("That is WRONG!!") == 2

    def test_scenario_b_intensity(self):
        assert assess_intensity(SCENARIO_B) == 4


# ============================================================
# CENTRALITY / VULNERABILITY
# ============================================================

class TestCentrality:

    @pytest.mark.parametrize("count,expected", [
        (1, 1), (2, 2), (3, 2), (4, 3), (7, 3),
    ])
    def test_table(self, count, expected):
        assert assess_centrality(count) == expected


class TestVulnerability:

    def test_primal_fears(self):
        assert assess_vulnerability("FearAppeal") == 3
        assert assess_vulnerability(Technique.SHAME_GUILT) == 3
        assert assess_vulnerability("Scapegoating") == 3

    def test_belonging(self):
        assert assess_vulnerability("Anger/Outrage") == 2
        assert assess_vulnerability("False Urgency") == 2
        assert assess_vulnerability("Bandwagon") == 2
        assert assess_vulnerability("FOMO") == 2

    def test_general(self):
        assert assess_vulnerability("FalseCertainty") == 1
        assert assess_vulnerability("Toxic Positivity") == 1
        assert assess_vulnerability("Format Issue") == 1

    def test_unknown_name_scores_one(self):
        assert assess_vulnerability("Gaslighting") == 1
        assert assess_vulnerability(None) == 1


# ============================================================
# SEVERITY MAP
# ============================================================

class TestSeverityMap:

    def test_full_table(self):
        assert [map_to_severity(t) for t in range(3, 11)] == [1, 2, 3, 4, 5, 6, 8, 10]

    def test_jump_at_top(self):
        assert SEVERITY_MAP[9] == 8
        assert SEVERITY_MAP[10] == 10


class TestParseSeverity:
    """External severities are clamped and only ever logged."""

    def test_numeric_strings(self):
        assert parse_severity("7") == 7

    def test_rounds_half_up(self):
        assert parse_severity(7.5) == 8
        assert parse_severity(7.4) == 7

    def test_clamps(self):
        assert parse_severity(-3) == 0
        assert parse_severity(42) == 10

    def test_unusable_values_use_fallback(self):
        assert parse_severity(None, fallback=5) == 5
        assert parse_severity(True, fallback=5) == 5
        assert parse_severity("high", fallback=5) == 5
        assert parse_severity(math.nan, fallback=5) == 5


# ============================================================
# SCORE
# ============================================================

class TestScore:
    """Full severity computation."""

    def test_scenario_a_clean(self):
        result = score("This could be concerning", [])
        assert result.intensity == 1
        assert result.centrality == 0
        assert result.vulnerability == 0
        assert result.severity == 0

    def test_scenario_b(self):
        result = score(SCENARIO_B, ["Fear Appeal", "False Urgency"])
        assert result.intensity == 4
        assert result.centrality == 2
        assert result.vulnerability == 3
        assert result.severity == 8
        assert result.per_technique == {"FearAppeal": 8, "FalseUrgency": 6}

    def test_maximum_severity(self):
        result = score(SCENARIO_B, ["FearAppeal", "FalseUrgency", "Scapegoating", "MisleadingFormat"])
        assert result.centrality == 3
        assert result.severity == 10

    def test_empty_iff_zero(self):
        assert score(SCENARIO_B, None).severity == 0
        assert score(SCENARIO_B, ["none", "  "]).severity == 0
        assert score("calm words only", ["Gaslighting"]).severity == 1

    def test_duplicates_counted_once(self):
        result = score("calm words only", ["Fear Appeal", "fear appeal", "FearAppeal"])
        assert result.centrality == 1
        assert list(result.per_technique) == ["FearAppeal"]

    def test_accepts_mixed_shapes(self):
        result = score("calm words only", [
            TechniqueMatch(name="FearAppeal", evidence="x"),
            {"name": "Bandwagon"},
            Technique.FOMO,
        ])
        assert set(result.per_technique) == {"FearAppeal", "BandwagonPressure", "FOMO"}
        assert result.centrality == 2

    def test_monotonic_in_technique_count(self):
        names = ["FearAppeal", "ShameGuilt", "Scapegoating", "Custom A", "Custom B"]
        severities = [score("calm words only", names[:n]).severity for n in range(1, 6)]
        assert severities == sorted(severities)
        assert severities[0] < severities[-1]

    def test_to_dict(self):
        data = score(SCENARIO_B, ["Fear Appeal"]).to_dict()
        assert data["severity"] == 6
        assert data["per_technique"] == {"FearAppeal": 6}


# ============================================================
# NORMALISATION
# ============================================================

class TestTechniqueNames:

    def test_alias_spellings(self):
        assert normalize_technique("Shame/Guilt Attack") is Technique.SHAME_GUILT
        assert normalize_technique("ALL CAPS Formatting") is Technique.MISLEADING_FORMAT
        assert normalize_technique("Absolute Language") is Technique.FALSE_CERTAINTY
        assert normalize_technique("fear-of-missing-out") is Technique.FOMO

    def test_unknown_kept_verbatim(self):
        assert normalize_technique("Gaslighting") is None
        assert canonical_name("  Gaslighting ") == "Gaslighting"

    def test_empty_entries(self):
        assert canonical_name("None") is None
        assert canonical_name("N/A") is None
        assert canonical_name(7) is None

    def test_match_equality_ignores_evidence(self):
        assert TechniqueMatch("FOMO", "a") == TechniqueMatch("FOMO", "b")
        assert len({TechniqueMatch("FOMO", "a"), TechniqueMatch("FOMO")}) == 1

    def test_labels(self):
        assert Technique.FEAR_APPEAL.label == "Fear Appeal"
        assert Technique("BandwagonPressure") is Technique.BANDWAGON_PRESSURE
