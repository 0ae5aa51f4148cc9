#!/usr/bin/env python3
"""
Compatibility Factors - the individual sub-scores of CompatibilityScorer.

Each factor returns a value in [0, 1], or None when the factor cannot be
evaluated for this candidate/group (its weight is then left out of the
final normalization).
"""

import math
from typing import Iterable, List, Optional, Sequence, Set

from core.matcher.models import UserProfile

# Weekly-equivalent shopping trips
FREQUENCY_PER_WEEK = {
    'daily': 7.0,
    'weekly': 1.0,
    'bi-weekly': 0.5,
    'monthly': 0.25,
}


def nearby_distances(distances: Iterable[float], max_distance_km: float) -> List[float]:
    """Distances within the community radius (inclusive)."""
    return [d for d in distances if d is not None and not math.isnan(d) and d <= max_distance_km]


def proximity_score(distances: Sequence[float], max_distance_km: float) -> float:
    """
    Linear proximity score over members within radius.

    0 km -> 1.0, max_distance_km -> 0.0. Returns 0.0 when nobody is within
    radius, which callers treat as a disqualification.
    """
    nearby = nearby_distances(distances, max_distance_km)
    if not nearby:
        return 0.0
    avg_distance = sum(nearby) / len(nearby)
    return max(0.0, 1.0 - avg_distance / max_distance_km)


def life_stage_score(candidate: UserProfile, members: Sequence[UserProfile]) -> Optional[float]:
    """Fraction of members sharing the candidate's life stage."""
    if not candidate.life_stage or not members:
        return None
    same = sum(1 for m in members if m.life_stage == candidate.life_stage)
    return same / len(members)


def jaccard(a: Set[str], b: Set[str]) -> float:
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


def spending_pattern_score(candidate: UserProfile, members: Sequence[UserProfile]) -> Optional[float]:
    """Mean Jaccard similarity of spending categories over members with patterns."""
    candidate_categories = candidate.spending_categories
    if not candidate_categories:
        return None

    similarities = [
        jaccard(candidate_categories, m.spending_categories)
        for m in members
        if m.spending_patterns
    ]
    if not similarities:
        return None
    return sum(similarities) / len(similarities)


def frequency_similarity(freq_a: str, freq_b: str) -> Optional[float]:
    a = FREQUENCY_PER_WEEK.get(freq_a)
    b = FREQUENCY_PER_WEEK.get(freq_b)
    if a is None or b is None:
        return None
    return 1.0 - abs(a - b) / max(a, b)


def frequency_score(candidate: UserProfile, members: Sequence[UserProfile]) -> Optional[float]:
    """Mean shopping-frequency alignment over members with a known frequency."""
    if candidate.shopping_frequency not in FREQUENCY_PER_WEEK:
        return None

    similarities = []
    for member in members:
        if not member.shopping_frequency:
            continue
        sim = frequency_similarity(candidate.shopping_frequency, member.shopping_frequency)
        if sim is not None:
            similarities.append(sim)

    if not similarities:
        return None
    return sum(similarities) / len(similarities)
