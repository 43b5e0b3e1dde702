"""Mood trend heuristics."""

from __future__ import annotations

from typing import Iterable, List, Sequence

from schemas import MoodSample

TREND_WINDOW = 5
TREND_THRESHOLD = 0.5


def classify(values: Sequence[float]) -> str:
    """Momentum over the last five samples: ``improving``, ``declining`` or ``stable``.

    Sums successive deltas of the window, which reduces to last minus first.
    """
    if len(values) < 2:
        return "stable"

    recent = list(values)[-TREND_WINDOW:]
    trend = sum(current - previous for previous, current in zip(recent, recent[1:]))

    if trend > TREND_THRESHOLD:
        return "improving"
    if trend < -TREND_THRESHOLD:
        return "declining"
    return "stable"


def average(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return round(sum(values) / len(values), 2)


def chronological_values(samples: Iterable[MoodSample]) -> List[float]:
    """Mood values ordered oldest to newest."""
    return [sample.value for sample in sorted(samples, key=lambda s: s.timestamp)]
