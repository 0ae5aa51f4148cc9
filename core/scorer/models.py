#!/usr/bin/env python3
"""
Scoring Models - Data structures for compatibility scores.
"""

from typing import Dict, Optional
from dataclasses import dataclass, field


@dataclass
class ScoreBreakdown:
    """Compatibility of a candidate with a group, factor by factor.

    A factor set to None was unavailable and carried no weight.
    """
    score: float = 0.0
    gated: bool = False  # proximity gate tripped; score forced to 0

    proximity: Optional[float] = None
    life_stage: Optional[float] = None
    spending_pattern: Optional[float] = None
    frequency: Optional[float] = None

    nearby_members: int = 0
    mean_nearby_distance_km: Optional[float] = None
    applied_weights: Dict[str, float] = field(default_factory=dict)
