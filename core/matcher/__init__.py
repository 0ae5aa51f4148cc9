"""Matcher Module - placement, formation, rebalancing and cohesion of circles.

Only the data structures are exported here; they are imported by the
scorer, naming and repository layers. Import the orchestrator from
core.matcher.orchestrator.
"""
from core.matcher.models import (
    CircleMatch, CircleSnapshot, MatchingRunStats, ProgressEvent,
    SpendingPatternData, UserProfile
)

__all__ = [
    'CircleMatch', 'CircleSnapshot', 'MatchingRunStats', 'ProgressEvent',
    'SpendingPatternData', 'UserProfile'
]
