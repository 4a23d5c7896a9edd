"""
Sentiment scoring collaborator.

Derives the plaintext emotion category and a confidence integer from raw
text. Scoring is not part of the protocol core: any object with a
`score(text) -> SentimentScore` method can be plugged in. The default
scorer is a placeholder that draws both values at random; it is not a
classifier.
"""

import random
from dataclasses import dataclass
from typing import Optional, Protocol


@dataclass(frozen=True)
class SentimentScore:
    category: int
    confidence: int


class SentimentScorer(Protocol):
    def score(self, text: str) -> SentimentScore:
        ...


class RandomSentimentScorer:
    """Category uniform in [min, max], confidence uniform in [0, confidence_max)."""

    def __init__(
        self,
        category_min: int = 0,
        category_max: int = 4,
        confidence_max: int = 100,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._min = category_min
        self._max = category_max
        self._confidence_max = confidence_max
        self._rng = rng or random.SystemRandom()

    def score(self, text: str) -> SentimentScore:
        return SentimentScore(
            category=self._rng.randint(self._min, self._max),
            confidence=self._rng.randrange(self._confidence_max),
        )


class FixedScorer:
    """Always returns the same score."""

    def __init__(self, category: int, confidence: int = 50) -> None:
        self._score = SentimentScore(category=category, confidence=confidence)

    def score(self, text: str) -> SentimentScore:
        return self._score
