"""Display state and the mapping from ranked results to what the screen shows."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from fruitlens.ml.image_classifier import ClassificationResult

NO_IMAGE_LABEL = "No image selected"
PROCESSING_LABEL = "Processing..."
NO_RESULTS_LABEL = "No results found"
INVALID_IMAGE_LABEL = "Failed to process image"
CLASSIFICATION_FAILED_PREFIX = "Classification failed: "

DEFAULT_EMOJI = "\N{GRAPES}"


class FlowPhase(StrEnum):
    IDLE = "idle"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class DisplayState:
    """Presentation-ready state for one classification outcome.

    ``confidence`` is set only in phase DONE with at least one result.
    """

    label: str
    confidence: int | None = None
    is_processing: bool = False
    phase: FlowPhase = FlowPhase.IDLE
    sequence: int = 0


IDLE_STATE = DisplayState(label=NO_IMAGE_LABEL)


@dataclass(frozen=True)
class EmojiRule:
    """One first-match-wins entry of the emoji table."""

    matches: Callable[[str], bool]
    emoji: str


def contains(fragment: str) -> Callable[[str], bool]:
    """Case-insensitive substring predicate."""
    needle = fragment.lower()
    return lambda name: needle in name.lower()


# Order matters: "pineapple" also contains "apple", and the apple rule comes first.
EMOJI_RULES: tuple[EmojiRule, ...] = (
    EmojiRule(contains("apple"), "\N{RED APPLE}"),
    EmojiRule(contains("banana"), "\N{BANANA}"),
    EmojiRule(contains("pineapple"), "\N{PINEAPPLE}"),
)


def emoji_for(name: str, rules: Sequence[EmojiRule] = EMOJI_RULES, default: str = DEFAULT_EMOJI) -> str:
    for rule in rules:
        if rule.matches(name):
            return rule.emoji
    return default


_WORD = re.compile(r"[^\W_]+", re.UNICODE)


def capitalize_words(text: str) -> str:
    """Upper-case the first letter of every word and lower-case the rest."""
    return _WORD.sub(lambda m: m.group(0)[:1].upper() + m.group(0)[1:].lower(), text)


def confidence_percent(score: float) -> int:
    """Convert a score in [0, 1] to a whole percentage, truncating.

    The product is taken in float32, the precision the model scores come in,
    so decimal scores such as 0.29 or 0.57 land on 29 and 57 rather than one
    below.
    """
    return int(np.float32(score) * np.float32(100))


def present(results: Sequence[ClassificationResult]) -> DisplayState:
    """Map ranked results to the DONE display state.

    The first entry is taken as the top result without re-sorting.
    """
    if not results:
        return DisplayState(label=NO_RESULTS_LABEL, phase=FlowPhase.DONE)

    top = results[0]
    name = capitalize_words(top.label)
    return DisplayState(
        label=f"{emoji_for(name)} {name}",
        confidence=confidence_percent(top.confidence),
        phase=FlowPhase.DONE,
    )
