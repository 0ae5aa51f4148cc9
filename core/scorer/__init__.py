#!/usr/bin/env python3
"""
Scoring Module - compatibility between a user and a circle.

Public API:
- CompatibilityScorer: weighted multi-factor scorer with a proximity gate
- ScoreBreakdown: per-factor result
- UserSimilarityCalculator: pairwise similarity used when forming new circles

Modules:
- models.py: Data structures (ScoreBreakdown)
- factors.py: Individual sub-scores (proximity, life stage, spending, frequency)
- similarity.py: Pairwise user similarity
- service.py: CompatibilityScorer
"""

from core.scorer.models import ScoreBreakdown
from core.scorer.service import CompatibilityScorer
from core.scorer.similarity import UserSimilarityCalculator

__all__ = ['CompatibilityScorer', 'ScoreBreakdown', 'UserSimilarityCalculator']
