#!/usr/bin/env python3
"""
Geographic cohesion check - flags circles whose members drifted apart.

Only detection is implemented; flagged circles are split candidates for a
separate geographic re-clustering process.
"""

import logging
from itertools import combinations
from typing import List

from core.config_loader import MatchingConfig
from core.exceptions import RepositoryWriteError
from core.geo.distance import DistanceCalculator
from core.interfaces import CircleRepository
from core.matcher.models import CircleSnapshot, MatchingRunStats

logger = logging.getLogger(__name__)


def mean_pairwise_distance(distance_calc: DistanceCalculator, postal_codes: List[str]) -> float:
    """Mean distance over all member pairs; 0 for fewer than two members."""
    if len(postal_codes) < 2:
        return 0.0
    distances = [distance_calc.distance(a, b) for a, b in combinations(postal_codes, 2)]
    return sum(distances) / len(distances)


class CohesionChecker:
    """Stage 4 of a matching run."""

    def __init__(self, repo: CircleRepository, distance_calc: DistanceCalculator, config: MatchingConfig):
        self.repo = repo
        self.distance_calc = distance_calc
        self.config = config

    @property
    def split_threshold_km(self) -> float:
        return self.config.max_distance_km * self.config.cohesion_factor

    def check(self, circles: List[CircleSnapshot], stats: MatchingRunStats) -> List[CircleSnapshot]:
        """Flag split candidates and return them."""
        flagged = []
        for circle in circles:
            postal_codes = [m.postal_code for m in circle.members if m.postal_code]
            avg_distance = mean_pairwise_distance(self.distance_calc, postal_codes)
            needs_split = avg_distance > self.split_threshold_km

            if needs_split:
                logger.info(
                    f"Circle {circle.name} has poor geographic cohesion "
                    f"({avg_distance:.1f}km avg). Flagged as split candidate."
                )
                flagged.append(circle)
                stats.split_candidates += 1

            try:
                self.repo.flag_circle_cohesion(circle.id, needs_split, round(avg_distance, 3))
            except RepositoryWriteError as e:
                logger.error(f"Failed to record cohesion for circle {circle.id}: {e}")
                stats.write_errors.append(f"flag_circle_cohesion({circle.id}): {e}")

        return flagged
