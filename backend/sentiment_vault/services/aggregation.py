"""
AggregationView: pure projections over a record snapshot.

    snapshot(records)      → Stats {total, verified_count,
                                    avg_public_score, positive_ratio}
    distribution(records)  → {category: count} over the emotion domain

No side effects and no I/O: callers pass `RecordStore.list_all()` and
recompute whenever the store changes.
"""

from typing import Dict, Iterable, List

from sentiment_vault.schemas.record import (
    DistributionEntry,
    Record,
    Stats,
    emotion_label,
)

POSITIVE_THRESHOLD = 3  # public_score >= 3 (joy, excitement) counts as positive


def snapshot(records: Iterable[Record]) -> Stats:
    """
    Summary statistics over `records`.

    avg_public_score = mean(public_score), 0 when empty.
    positive_ratio   = 100 * count(public_score >= 3) / total, 0 when empty.
    """
    rows: List[Record] = list(records)
    total = len(rows)
    if total == 0:
        return Stats()

    verified = sum(1 for r in rows if r.is_verified)
    positive = sum(1 for r in rows if r.public_score >= POSITIVE_THRESHOLD)

    return Stats(
        total=total,
        verified_count=verified,
        avg_public_score=sum(r.public_score for r in rows) / total,
        positive_ratio=positive / total * 100,
    )


def distribution(
    records: Iterable[Record],
    category_min: int = 0,
    category_max: int = 4,
) -> Dict[int, int]:
    """Count of records per emotion category; out-of-domain scores are ignored."""
    counts = {c: 0 for c in range(category_min, category_max + 1)}
    for r in records:
        if r.public_score in counts:
            counts[r.public_score] += 1
    return counts


def distribution_entries(counts: Dict[int, int]) -> List[DistributionEntry]:
    return [
        DistributionEntry(category=c, emotion=emotion_label(c), count=n)
        for c, n in sorted(counts.items())
    ]
