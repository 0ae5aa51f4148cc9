#!/usr/bin/env python3
"""
Compatibility Scorer - weighted multi-factor score between a user and a group.

Factors (default weights):
- Proximity (0.40): mean distance to members within radius, linear to 0 at the radius
- Life stage (0.25): share of members with the candidate's life stage
- Spending pattern (0.25): mean Jaccard similarity of spending categories
- Frequency (0.10): shopping frequency alignment

Proximity is a hard gate: with no member within max_distance_km the score
is exactly 0 regardless of the other factors. Factors that cannot be
evaluated are excluded from both numerator and denominator.
"""

from typing import List, Optional, Sequence
import logging

from core.config_loader import ScoreWeights
from core.geo.distance import DistanceCalculator
from core.matcher.models import UserProfile
from core.scorer import factors
from core.scorer.models import ScoreBreakdown

logger = logging.getLogger(__name__)


class CompatibilityScorer:
    """
    Scores a candidate user against a circle's members.
    """

    def __init__(
        self,
        distance_calc: DistanceCalculator,
        weights: Optional[ScoreWeights] = None,
        max_distance_km: float = 5.0
    ):
        """
        Args:
            distance_calc: Postal code distance calculator
            weights: Factor weights (defaults to 0.40/0.25/0.25/0.10)
            max_distance_km: Community radius used by the proximity gate
        """
        self.distance_calc = distance_calc
        self.weights = weights or ScoreWeights()
        self.max_distance_km = max_distance_km

    def score(self, candidate: UserProfile, members: Sequence[UserProfile]) -> float:
        """Compatibility in [0, 1]."""
        return self.score_breakdown(candidate, members).score

    def member_distances(self, candidate: UserProfile, members: Sequence[UserProfile]) -> List[float]:
        """Distance from the candidate to each member; inf for members without a postal code."""
        distances = []
        for member in members:
            if member.postal_code:
                distances.append(self.distance_calc.distance(candidate.postal_code, member.postal_code))
            else:
                distances.append(float('inf'))
        return distances

    def score_breakdown(self, candidate: UserProfile, members: Sequence[UserProfile]) -> ScoreBreakdown:
        """Compute every factor and the weighted, normalized total."""
        if not candidate.postal_code or not members:
            return ScoreBreakdown(score=0.0, gated=True)

        distances = self.member_distances(candidate, members)
        nearby = factors.nearby_distances(distances, self.max_distance_km)
        if not nearby:
            # No community member within radius: disqualified
            return ScoreBreakdown(score=0.0, gated=True)

        breakdown = ScoreBreakdown(
            proximity=factors.proximity_score(nearby, self.max_distance_km),
            life_stage=factors.life_stage_score(candidate, members),
            spending_pattern=factors.spending_pattern_score(candidate, members),
            frequency=factors.frequency_score(candidate, members),
            nearby_members=len(nearby),
            mean_nearby_distance_km=sum(nearby) / len(nearby),
        )

        weighted = {
            'proximity': (breakdown.proximity, self.weights.proximity),
            'life_stage': (breakdown.life_stage, self.weights.life_stage),
            'spending_pattern': (breakdown.spending_pattern, self.weights.spending_pattern),
            'frequency': (breakdown.frequency, self.weights.frequency),
        }

        total = 0.0
        weight_sum = 0.0
        for name, (value, weight) in weighted.items():
            if value is None or weight <= 0:
                continue
            total += value * weight
            weight_sum += weight
            breakdown.applied_weights[name] = weight

        if weight_sum <= 0:
            breakdown.score = 0.0
        else:
            breakdown.score = max(0.0, min(1.0, total / weight_sum))

        logger.debug(
            f"Score for user {candidate.id}: {breakdown.score:.3f} "
            f"(proximity={breakdown.proximity}, life_stage={breakdown.life_stage}, "
            f"spending={breakdown.spending_pattern}, frequency={breakdown.frequency})"
        )
        return breakdown
