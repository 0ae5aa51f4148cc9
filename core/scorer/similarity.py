#!/usr/bin/env python3
"""
User Similarity - simplified pairwise similarity for new-circle formation.
"""

from core.matcher.models import UserProfile

LIFE_STAGE_POINTS = 0.4
FREQUENCY_POINTS = 0.3
SPENDING_POINTS = 0.3


class UserSimilarityCalculator:
    """Pairwise similarity between two users, in [0, 1]."""

    @staticmethod
    def calculate(user_a: UserProfile, user_b: UserProfile) -> float:
        """
        Life-stage match 0.4 + frequency match 0.3 + spending overlap ratio 0.3.

        Spending overlap ratio is |A & B| / max(|A|, |B|).
        """
        score = 0.0

        if user_a.life_stage and user_a.life_stage == user_b.life_stage:
            score += LIFE_STAGE_POINTS

        if user_a.shopping_frequency and user_a.shopping_frequency == user_b.shopping_frequency:
            score += FREQUENCY_POINTS

        categories_a = user_a.spending_categories
        categories_b = user_b.spending_categories
        if categories_a and categories_b:
            overlap = len(categories_a & categories_b)
            score += (overlap / max(len(categories_a), len(categories_b))) * SPENDING_POINTS

        return score
