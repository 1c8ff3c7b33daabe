"""Tests for the phrase similarity metric."""

import pytest

from jira_mcp_server.similarity import (
    DEFAULT_THRESHOLD,
    char_similarity,
    is_close,
    normalize,
    osa_distance,
    phrase_similarity,
    strip_accents,
    token_similarity,
)


class TestNormalization:
    """Accent stripping, case folding and tokenization."""

    def test_strip_accents(self):
        assert strip_accents("Café Zürich") == "Cafe Zurich"

    def test_normalize_tokens_and_compact(self):
        tokens, compact = normalize("AI-Tech, Platform!")
        assert tokens == ["ai", "tech", "platform"]
        assert compact == "aitechplatform"

    def test_normalize_cyrillic(self):
        tokens, compact = normalize("Москва Офис")
        assert tokens == ["москва", "офис"]
        assert compact == "москваофис"

    def test_normalize_empty(self):
        assert normalize("  ,. ") == ([], "")


class TestOsaDistance:
    """Optimal String Alignment distance."""

    @pytest.mark.parametrize("a, b, expected", [
        ("", "", 0),
        ("", "abc", 3),
        ("abc", "abc", 0),
        ("abc", "abd", 1),
        ("tehc", "tech", 1),
        ("kitten", "sitting", 3),
    ])
    def test_distances(self, a, b, expected):
        assert osa_distance(a, b) == expected

    def test_transposed_pair_is_not_edited_again(self):
        # full Damerau-Levenshtein would give 2
        assert osa_distance("ca", "abc") == 3

    def test_symmetric(self):
        assert osa_distance("aitex", "aitech") == osa_distance("aitech", "aitex")


class TestCharAndTokenSimilarity:
    """Component scores."""

    def test_char_similarity_bounds(self):
        assert char_similarity("", "") == 1.0
        assert char_similarity("abc", "") == 0.0
        assert char_similarity("abc", "xyz") == 0.0

    def test_char_similarity_value(self):
        assert char_similarity("aitex", "aitech") == pytest.approx(2 / 3)

    def test_token_similarity_identical(self):
        assert token_similarity(["ai", "tech"], ["ai", "tech"]) == 1.0

    def test_token_similarity_penalizes_order(self):
        in_order = token_similarity(["ai", "tech"], ["ai", "tech"])
        swapped = token_similarity(["ai", "tech"], ["tech", "ai"])
        assert swapped < in_order
        assert swapped == pytest.approx(0.5)

    def test_token_similarity_penalizes_missing_tokens(self):
        assert token_similarity(["ai"], ["ai", "tech"]) == pytest.approx(0.5)

    def test_token_similarity_empty(self):
        assert token_similarity([], []) == 1.0
        assert token_similarity(["ai"], []) == 0.0


class TestPhraseSimilarity:
    """Combined metric behaviour and regression values."""

    @pytest.mark.parametrize("a, b, expected", [
        ("aitex", "AITECH", 2 / 3),
        ("aitex", "AI TECH", 0.6),
        ("aitex", "AI", 0.4),
        ("aitex", "AITEXMETALO", 5 / 11),
        ("ai tech", "AITECH", 0.9),
        ("tehc", "tech", 0.75),
        ("aitech", "ai tec", 0.75),
        ("задача", "подзадача", 2 / 3),
    ])
    def test_regression_values(self, a, b, expected):
        assert phrase_similarity(a, b) == pytest.approx(expected, abs=1e-4)

    def test_identity(self):
        assert phrase_similarity("Billing Service", "Billing Service") == 1.0

    def test_case_and_accents_ignored(self):
        assert phrase_similarity("café", "CAFE") == 1.0

    def test_symmetric(self):
        for a, b in [("aitex", "AI TECH"), ("tehc", "tech"), ("задача", "подзадача")]:
            assert phrase_similarity(a, b) == pytest.approx(phrase_similarity(b, a))

    def test_bounded(self):
        for a, b in [("", ""), ("", "x"), ("abc", "xyz"), ("ai tech", "tech ai")]:
            assert 0.0 <= phrase_similarity(a, b) <= 1.0

    def test_merged_words_beat_split_words(self):
        assert phrase_similarity("aitex", "AITECH") > phrase_similarity("aitex", "AI TECH")

    def test_word_order_matters(self):
        assert phrase_similarity("aitex", "AI TECH") > phrase_similarity("aitex", "TECH AI")

    def test_longer_target_scores_lower(self):
        assert phrase_similarity("aitex", "AITECH") > phrase_similarity("aitex", "AITEXMETALO")


class TestIsClose:
    """Threshold check."""

    def test_default_threshold(self):
        assert DEFAULT_THRESHOLD == 0.72

    def test_typo_is_close(self):
        assert is_close("tehc", "tech")
        assert is_close("ai tech", "AITECH")

    def test_unrelated_not_close(self):
        assert not is_close("aitex", "AI")
        assert not is_close("billing", "crm")

    def test_custom_threshold(self):
        assert is_close("aitex", "AITECH", threshold=0.6)
        assert not is_close("aitex", "AITECH")
