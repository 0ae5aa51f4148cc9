import logging
from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple

from sqlalchemy import select

from database.models import Circle, CircleMembership, User
from database.repositories.base import BaseRepository

logger = logging.getLogger(__name__)


class CircleMembershipRepository(BaseRepository):
    def list_active_memberships(self) -> List[Tuple[Any, Any]]:
        stmt = select(CircleMembership.user_id, CircleMembership.circle_id).where(
            CircleMembership.is_active.is_(True)
        )
        return [tuple(row) for row in self.db.execute(stmt).all()]

    def list_active_member_rows(self) -> List[Tuple[Circle, User]]:
        """(circle, user) for every active membership, oldest circle and membership first."""
        stmt = (
            select(Circle, User)
            .join(CircleMembership, CircleMembership.circle_id == Circle.id)
            .join(User, User.id == CircleMembership.user_id)
            .where(CircleMembership.is_active.is_(True))
            .order_by(Circle.created_at.asc(), Circle.id.asc(), CircleMembership.joined_at.asc())
        )
        return [tuple(row) for row in self.db.execute(stmt).all()]

    def create_circle(self, name: str, description: Optional[str], radius_km: float) -> Circle:
        circle = Circle(
            name=name,
            description=description,
            location_radius_km=radius_km,
            needs_split=False,
        )
        return self._persist(circle)

    def get_membership(self, user_id: Any, circle_id: Any) -> Optional[CircleMembership]:
        stmt = select(CircleMembership).where(
            CircleMembership.user_id == user_id,
            CircleMembership.circle_id == circle_id
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def add_membership(self, user_id: Any, circle_id: Any) -> CircleMembership:
        membership = self.get_membership(user_id, circle_id)
        now = datetime.now(timezone.utc)
        if membership is None:
            membership = CircleMembership(user_id=user_id, circle_id=circle_id, is_active=True, joined_at=now)
            self.db.add(membership)
        elif not membership.is_active:
            # Rejoining a former circle reactivates the existing row
            membership.is_active = True
            membership.joined_at = now
            membership.left_at = None
        self.db.flush()
        return membership

    def deactivate_membership(self, user_id: Any, circle_id: Any) -> bool:
        membership = self.get_membership(user_id, circle_id)
        if membership is None or not membership.is_active:
            return False
        membership.is_active = False
        membership.left_at = datetime.now(timezone.utc)
        return True

    def flag_cohesion(self, circle_id: Any, needs_split: bool, mean_distance_km: Optional[float]) -> bool:
        circle = self.db.get(Circle, circle_id)
        if circle is None:
            return False
        circle.needs_split = needs_split
        circle.mean_member_distance_km = mean_distance_km
        circle.cohesion_checked_at = datetime.now(timezone.utc)
        return True
