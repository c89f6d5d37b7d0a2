"""
Tests for player name normalisation and matching.
Run with: pytest tests/test_names.py -v
"""

import pytest

from backend.services.names import match_player, normalize_player_name


class TestNormalize:

    def test_accents_stripped(self):
        assert normalize_player_name("Tim Stützle") == "tim stutzle"

    def test_suffix_and_punctuation(self):
        assert normalize_player_name("Martin St. Louis Jr.") == "martin st louis"

    def test_hyphen_kept(self):
        assert normalize_player_name("Pierre-Luc Dubois") == "pierre-luc dubois"

    def test_apostrophe_dropped(self):
        assert normalize_player_name("Ryan O'Reilly") == "ryan oreilly"

    def test_whitespace_collapsed(self):
        assert normalize_player_name("  Auston   Matthews ") == "auston matthews"

    @pytest.mark.parametrize("blank", [None, "", "   "])
    def test_blank(self, blank):
        assert normalize_player_name(blank) == ""


class TestMatch:

    def test_exact_after_normalisation(self):
        roster = ["Tim Stutzle", "Brady Tkachuk"]
        assert match_player("Tim Stützle", roster) == "Tim Stutzle"

    def test_fuzzy_spelling_variant(self):
        roster = ["Jonathan Marchessault", "Mark Stone"]
        assert match_player("Jonathon Marchessault", roster) == "Jonathan Marchessault"

    def test_no_match_below_cutoff(self):
        assert match_player("Connor McDavid", ["Connor Brown", "Zach Hyman"]) is None

    def test_empty_name(self):
        assert match_player("", ["Anyone"]) is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
