#!/usr/bin/env python3
"""
Matcher Models - Data structures for matching.

These are plain objects returned by the repository, safe to use after the
database session that produced them is closed.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

SPENDING_CATEGORIES = (
    'budget-conscious',
    'organic-focused',
    'bulk-buyer',
    'premium',
    'convenience',
    'family-oriented',
    'health-focused',
)

SHOPPING_FREQUENCIES = ('daily', 'weekly', 'bi-weekly', 'monthly')


@dataclass
class SpendingPatternData:
    """A user's spending signature for one category."""
    category: str
    frequency: float = 0.0
    average_amount: float = 0.0
    last_updated: Optional[datetime] = None


@dataclass
class UserProfile:
    """User with everything the scorer needs."""
    id: Any
    postal_code: Optional[str] = None
    life_stage: Optional[str] = None
    life_stage_confidence: Optional[float] = None
    shopping_frequency: Optional[str] = None
    created_at: Optional[datetime] = None
    full_name: Optional[str] = None
    spending_patterns: List[SpendingPatternData] = field(default_factory=list)

    @property
    def spending_categories(self) -> set:
        return {p.category for p in self.spending_patterns}

    @property
    def display_name(self) -> str:
        return self.full_name or str(self.id)


@dataclass
class CircleSnapshot:
    """A circle with its active members at the time it was read."""
    id: Any
    name: str
    description: Optional[str] = None
    location_radius_km: float = 5.0
    created_at: Optional[datetime] = None
    members: List[UserProfile] = field(default_factory=list)

    @property
    def member_count(self) -> int:
        return len(self.members)

    @property
    def member_ids(self) -> set:
        return {m.id for m in self.members}


@dataclass
class CircleMatch:
    """Best circle found for a user."""
    circle: CircleSnapshot
    score: float


@dataclass
class ProgressEvent:
    """Structured progress event emitted by the orchestrator."""
    stage: str
    status: str  # started | completed
    counts: Dict[str, int] = field(default_factory=dict)
    elapsed_seconds: float = 0.0


@dataclass
class MatchingRunStats:
    """Counters accumulated over one orchestrator run."""
    unmatched_users: int = 0
    circles_checked: int = 0
    circles_rebalanced: int = 0
    transitions_started: int = 0
    users_placed: int = 0
    circles_created: int = 0
    users_in_new_circles: int = 0
    users_left_unmatched: int = 0
    split_candidates: int = 0
    membership_writes: int = 0
    write_errors: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            'unmatched_users': self.unmatched_users,
            'circles_checked': self.circles_checked,
            'circles_rebalanced': self.circles_rebalanced,
            'transitions_started': self.transitions_started,
            'users_placed': self.users_placed,
            'circles_created': self.circles_created,
            'users_in_new_circles': self.users_in_new_circles,
            'users_left_unmatched': self.users_left_unmatched,
            'split_candidates': self.split_candidates,
            'membership_writes': self.membership_writes,
            'write_errors': len(self.write_errors),
        }
