"""
Circle Repository Interface - the persistence contract of the matching engine.

The engine depends only on this interface. Implementations must raise
RepositoryReadError for failed reads and RepositoryWriteError for failed
writes, and must make every write its own transaction.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from core.geo.models import CachedLocation, Coordinates
from core.matcher.models import CircleSnapshot, SpendingPatternData, UserProfile

# Scheduled task that ends the old membership of a transition window
DEACTIVATE_MEMBERSHIP = "deactivate_membership"


class CircleRepository(ABC):
    """
    Read/write access to users, circles, memberships, spending profiles,
    the location cache and scheduled tasks.
    """

    # --- reads -------------------------------------------------------------

    @abstractmethod
    def list_active_memberships(self) -> List[Tuple[Any, Any]]:
        """Return (user_id, circle_id) for every active membership."""
        pass

    @abstractmethod
    def list_users(
        self,
        has_postal_code: bool = True,
        has_life_stage: bool = True,
        exclude_user_ids: Optional[Iterable[Any]] = None
    ) -> List[UserProfile]:
        """
        Return users ordered by life-stage confidence desc, then created_at asc.

        Spending patterns are not populated; see list_spending_patterns.
        """
        pass

    @abstractmethod
    def list_spending_patterns(self, user_id: Any) -> List[SpendingPatternData]:
        """Return a user's spending patterns, strongest first."""
        pass

    @abstractmethod
    def list_circles_with_active_members(self) -> List[CircleSnapshot]:
        """Return circles that have at least one active member, with those members."""
        pass

    @abstractmethod
    def get_cached_location(self, postal_code: str) -> Optional[CachedLocation]:
        """Look up a normalized postal code in the location cache."""
        pass

    @abstractmethod
    def list_uncached_postal_codes(self) -> List[str]:
        """Distinct normalized user postal codes with no location cache entry."""
        pass

    # --- writes ------------------------------------------------------------

    @abstractmethod
    def create_circle(self, name: str, description: Optional[str], radius_km: float) -> Any:
        """Create a circle and return its id."""
        pass

    @abstractmethod
    def add_membership(self, user_id: Any, circle_id: Any) -> None:
        """Add (or reactivate) an active membership."""
        pass

    @abstractmethod
    def deactivate_membership(self, user_id: Any, circle_id: Any) -> bool:
        """Deactivate a membership; returns False if no active membership existed."""
        pass

    @abstractmethod
    def upsert_cached_location(
        self,
        postal_code: str,
        coordinates: Coordinates,
        city: Optional[str] = None,
        region: Optional[str] = None,
        country: Optional[str] = None
    ) -> None:
        """Insert or update a location cache entry keyed by normalized postal code."""
        pass

    @abstractmethod
    def flag_circle_cohesion(
        self,
        circle_id: Any,
        needs_split: bool,
        mean_distance_km: Optional[float]
    ) -> None:
        """Record the outcome of the geographic cohesion check."""
        pass

    # --- scheduled tasks ---------------------------------------------------

    @abstractmethod
    def schedule_task(self, task_type: str, payload: Dict[str, Any], due_at: datetime) -> Any:
        """Persist a deferred action and return its id."""
        pass

    @abstractmethod
    def has_pending_transition(self, user_id: Any) -> bool:
        """True if the user has a pending membership deactivation task."""
        pass

    @abstractmethod
    def list_due_tasks(self, now: datetime, limit: int = 100) -> List[Dict[str, Any]]:
        """Pending tasks with due_at <= now, oldest first."""
        pass

    @abstractmethod
    def mark_task_done(self, task_id: Any) -> None:
        pass

    @abstractmethod
    def mark_task_failed(self, task_id: Any, error: str, max_attempts: int) -> None:
        """Record a failed attempt; the task becomes 'failed' after max_attempts."""
        pass
