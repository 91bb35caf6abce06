"""Unit tests for the similarity matcher.

Tests cover:
- Tier order (exact, substring, token overlap)
- Best-candidate selection, tie-break and thresholds
"""

import pytest

from stock_intake.matching.similarity import Match, best_match, match_confidence


class TestMatchConfidence:
    """Scoring of a query against one candidate."""

    @pytest.mark.parametrize("text", ["Coca Cola", "agua mineral 2l", "X", ""])
    def test_identical_strings_score_one(self, text: str) -> None:
        assert match_confidence(text, text) == 1.0

    def test_exact_match_is_case_insensitive(self) -> None:
        assert match_confidence("COCA COLA", "coca cola") == 1.0

    def test_substring_scores_length_ratio(self) -> None:
        # "coca" inside "coca cola": 4 / 9 * 0.8
        assert match_confidence("coca", "Coca Cola") == pytest.approx(4 / 9 * 0.8)

    def test_substring_works_in_both_directions(self) -> None:
        assert match_confidence("Coca Cola 500ml", "coca") == pytest.approx(4 / 15 * 0.8)

    def test_substring_tier_wins_over_token_tier(self) -> None:
        # Token overlap would give 1/2 * 0.6 = 0.3; substring gives 6/11 * 0.8
        assert match_confidence("sprite", "sprite zero") == pytest.approx(6 / 11 * 0.8)

    def test_token_overlap(self) -> None:
        # coca, cola, 500 and ml all sit inside a token of "coca cola 500ml"
        assert match_confidence("COCA COLA 500 ML", "Coca Cola 500ml") == pytest.approx(0.6)

    def test_partial_token_overlap(self) -> None:
        # Only "agua" matches: 1 / max(2, 3) * 0.6
        assert match_confidence("agua tonica", "agua mineral villavicencio") == pytest.approx(
            1 / 3 * 0.6
        )

    def test_unrelated_strings_score_zero(self) -> None:
        assert match_confidence("pelotas de padel", "coca cola") == 0.0

    def test_blank_query_against_name(self) -> None:
        assert match_confidence("   ", "Coca Cola") == 0.0

    def test_surrounding_whitespace_is_ignored(self) -> None:
        assert match_confidence("  Coca Cola ", "coca cola") == 1.0

    def test_result_is_bounded(self) -> None:
        for a, b in [("a", "ab"), ("ab cd", "abcd"), ("x y z", "x")]:
            assert 0.0 <= match_confidence(a, b) <= 1.0


class TestBestMatch:
    """Selection among catalog candidates."""

    def test_returns_highest_confidence(self) -> None:
        candidates = ["Gatorade", "Coca Cola", "Coca Cola 500ml"]

        match = best_match("coca cola 500ml", candidates, lambda name: (name,), 0.3)

        assert match.candidate == "Coca Cola 500ml"
        assert match.confidence == 1.0

    def test_ties_keep_first_candidate(self) -> None:
        candidates = ["Agua Sin Gas", "Agua Con Gas"]

        match = best_match("agua", candidates, lambda name: (name,), 0.1)

        assert match.candidate == "Agua Sin Gas"

    def test_below_threshold_is_no_match(self) -> None:
        match = best_match("agua", ["Agua Mineral Villavicencio 2 litros"], lambda n: (n,), 0.3)

        assert match == Match()
        assert match.matched is False
        assert match.confidence == 0.0

    def test_empty_candidates(self) -> None:
        assert best_match("agua", [], lambda n: (n,), 0.3) == Match()

    def test_best_of_several_names_counts(self) -> None:
        candidates = [("Distribuidora Norte", None), ("DN", "Distribuidora Sur SRL")]

        match = best_match("Distribuidora Sur SRL", candidates, lambda c: c, 0.5)

        assert match.candidate == ("DN", "Distribuidora Sur SRL")
        assert match.confidence == 1.0
