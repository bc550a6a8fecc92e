"""Tests for the result presenter."""

from __future__ import annotations

import numpy as np
import pytest

from fruitlens.display import (
    DEFAULT_EMOJI,
    EmojiRule,
    FlowPhase,
    capitalize_words,
    confidence_percent,
    contains,
    emoji_for,
    present,
)
from fruitlens.ml.image_classifier import ClassificationResult


class TestConfidencePercent:
    @pytest.mark.parametrize(
        ("score", "expected"),
        [
            (0.8734, 87),
            (0.999, 99),
            (1.0, 100),
            (0.0, 0),
            (0.009, 0),
            (0.29, 29),
            (0.57, 57),
            (0.58, 58),
            (float(np.float32(0.57)), 57),
        ],
    )
    def test_truncates(self, score: float, expected: int) -> None:
        assert confidence_percent(score) == expected


class TestCapitalizeWords:
    def test_each_word(self) -> None:
        assert capitalize_words("green apple") == "Green Apple"

    def test_lowercases_rest(self) -> None:
        assert capitalize_words("BANANA split") == "Banana Split"

    def test_keeps_separators(self) -> None:
        assert capitalize_words("granny-smith  apple") == "Granny-Smith  Apple"


class TestEmojiFor:
    def test_apple(self) -> None:
        assert emoji_for("Red Apple") == "\N{RED APPLE}"

    def test_banana_case_insensitive(self) -> None:
        assert emoji_for("BANANA") == "\N{BANANA}"

    def test_earlier_rule_wins(self) -> None:
        assert emoji_for("Green Apple Pineapple") == "\N{RED APPLE}"

    def test_pineapple_shadowed_by_apple(self) -> None:
        # "pineapple" contains "apple", which is checked first.
        assert emoji_for("Pineapple") == "\N{RED APPLE}"

    def test_fallback(self) -> None:
        assert emoji_for("Mango") == DEFAULT_EMOJI

    def test_custom_rule_table(self) -> None:
        rules = (EmojiRule(contains("pineapple"), "P"), EmojiRule(contains("apple"), "A"))
        assert emoji_for("pineapple", rules) == "P"
        assert emoji_for("apple", rules) == "A"


class TestPresent:
    def test_top_result_mapped(self) -> None:
        state = present(
            [
                ClassificationResult(label="banana", confidence=0.8734),
                ClassificationResult(label="apple", confidence=0.1),
            ]
        )
        assert state.label == "\N{BANANA} Banana"
        assert state.confidence == 87
        assert state.phase is FlowPhase.DONE
        assert state.is_processing is False

    def test_model_score_keeps_its_whole_percent(self) -> None:
        state = present([ClassificationResult(label="apple", confidence=float(np.float32(0.57)))])
        assert state.confidence == 57

    def test_first_entry_used_without_resorting(self) -> None:
        state = present(
            [
                ClassificationResult(label="mango", confidence=0.4),
                ClassificationResult(label="apple", confidence=0.4),
            ]
        )
        assert state.label == f"{DEFAULT_EMOJI} Mango"

    def test_empty_results(self) -> None:
        state = present([])
        assert state.label == "No results found"
        assert state.confidence is None
        assert state.phase is FlowPhase.DONE
