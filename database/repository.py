import contextlib
import logging
import uuid
from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from core.exceptions import RepositoryReadError, RepositoryWriteError
from core.geo.models import CachedLocation, Coordinates
from core.geo.resolver import normalize_postal_code
from core.interfaces import DEACTIVATE_MEMBERSHIP, CircleRepository
from core.matcher.models import CircleSnapshot, SpendingPatternData, UserProfile
from database.models import Circle, SpendingPattern, User
from database.uow import circle_uow

logger = logging.getLogger(__name__)


def as_uuid(value: Any) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


def to_spending_pattern(pattern: SpendingPattern) -> SpendingPatternData:
    return SpendingPatternData(
        category=pattern.category,
        frequency=pattern.frequency_score or 0.0,
        average_amount=pattern.average_amount or 0.0,
        last_updated=pattern.last_updated,
    )


def to_user_profile(user: User, patterns: Optional[List[SpendingPatternData]] = None) -> UserProfile:
    return UserProfile(
        id=user.id,
        postal_code=user.postal_code,
        life_stage=user.life_stage,
        life_stage_confidence=user.life_stage_confidence,
        shopping_frequency=user.shopping_frequency,
        created_at=user.created_at,
        full_name=user.full_name,
        spending_patterns=list(patterns or []),
    )


class SqlCircleRepository(CircleRepository):
    """
    CircleRepository backed by SQLAlchemy.

    Every call runs in its own unit of work, so each write is committed
    (or rolled back) on its own and a failure never affects other records.
    Only plain dataclasses leave this class.
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None, default_life_stage_confidence: float = 0.5):
        self.session_factory = session_factory
        self.default_life_stage_confidence = default_life_stage_confidence

    @contextlib.contextmanager
    def _reading(self, operation: str):
        try:
            with circle_uow(self.session_factory) as uow:
                yield uow
        except SQLAlchemyError as e:
            logger.error(f"Database read failed in {operation}: {e}")
            raise RepositoryReadError(f"{operation} failed: {e}") from e

    @contextlib.contextmanager
    def _writing(self, operation: str):
        try:
            with circle_uow(self.session_factory) as uow:
                yield uow
        except SQLAlchemyError as e:
            logger.error(f"Database write failed in {operation}: {e}")
            raise RepositoryWriteError(f"{operation} failed: {e}") from e

    # --- reads -------------------------------------------------------------

    def list_active_memberships(self) -> List[Tuple[Any, Any]]:
        with self._reading("list_active_memberships") as uow:
            return uow.circles.list_active_memberships()

    def list_users(
        self,
        has_postal_code: bool = True,
        has_life_stage: bool = True,
        exclude_user_ids: Optional[Iterable[Any]] = None
    ) -> List[UserProfile]:
        excluded = [as_uuid(u) for u in (exclude_user_ids or [])]
        with self._reading("list_users") as uow:
            users = uow.users.list_users(
                has_postal_code=has_postal_code,
                has_life_stage=has_life_stage,
                exclude_user_ids=excluded,
                default_confidence=self.default_life_stage_confidence,
            )
            return [to_user_profile(u) for u in users]

    def list_spending_patterns(self, user_id: Any) -> List[SpendingPatternData]:
        with self._reading("list_spending_patterns") as uow:
            patterns = uow.users.list_spending_patterns([as_uuid(user_id)])
            return [to_spending_pattern(p) for p in patterns]

    def list_circles_with_active_members(self) -> List[CircleSnapshot]:
        with self._reading("list_circles_with_active_members") as uow:
            rows = uow.circles.list_active_member_rows()

            patterns_by_user: Dict[Any, List[SpendingPatternData]] = defaultdict(list)
            for pattern in uow.users.list_spending_patterns({user.id for _, user in rows}):
                patterns_by_user[pattern.user_id].append(to_spending_pattern(pattern))

            snapshots: Dict[Any, CircleSnapshot] = {}
            for circle, user in rows:
                snapshot = snapshots.get(circle.id)
                if snapshot is None:
                    snapshot = self._to_snapshot(circle)
                    snapshots[circle.id] = snapshot
                snapshot.members.append(to_user_profile(user, patterns_by_user.get(user.id)))
            return list(snapshots.values())

    def get_cached_location(self, postal_code: str) -> Optional[CachedLocation]:
        code = normalize_postal_code(postal_code)
        with self._reading("get_cached_location") as uow:
            entry = uow.locations.get(code)
            if entry is None:
                return None
            return CachedLocation(
                postal_code=entry.postal_code,
                coordinates=Coordinates(lat=entry.latitude, lng=entry.longitude),
                city=entry.city,
                region=entry.region,
                country=entry.country,
                geocoded_at=entry.geocoded_at,
            )

    def list_uncached_postal_codes(self) -> List[str]:
        with self._reading("list_uncached_postal_codes") as uow:
            raw_codes = uow.users.list_uncached_postal_codes()

        codes = []
        for raw in raw_codes:
            code = normalize_postal_code(raw)
            if code and code not in codes:
                codes.append(code)
        return codes

    # --- writes ------------------------------------------------------------

    def create_circle(self, name: str, description: Optional[str], radius_km: float) -> Any:
        with self._writing("create_circle") as uow:
            circle = uow.circles.create_circle(name, description, radius_km)
            return circle.id

    def add_membership(self, user_id: Any, circle_id: Any) -> None:
        with self._writing("add_membership") as uow:
            uow.circles.add_membership(as_uuid(user_id), as_uuid(circle_id))

    def deactivate_membership(self, user_id: Any, circle_id: Any) -> bool:
        with self._writing("deactivate_membership") as uow:
            return uow.circles.deactivate_membership(as_uuid(user_id), as_uuid(circle_id))

    def upsert_cached_location(
        self,
        postal_code: str,
        coordinates: Coordinates,
        city: Optional[str] = None,
        region: Optional[str] = None,
        country: Optional[str] = None
    ) -> None:
        code = normalize_postal_code(postal_code)
        with self._writing("upsert_cached_location") as uow:
            uow.locations.upsert(code, coordinates.lat, coordinates.lng, city=city, region=region, country=country)

    def flag_circle_cohesion(self, circle_id: Any, needs_split: bool, mean_distance_km: Optional[float]) -> None:
        with self._writing("flag_circle_cohesion") as uow:
            if not uow.circles.flag_cohesion(as_uuid(circle_id), needs_split, mean_distance_km):
                raise RepositoryWriteError(f"flag_circle_cohesion failed: circle {circle_id} not found")

    # --- scheduled tasks ---------------------------------------------------

    def schedule_task(self, task_type: str, payload: Dict[str, Any], due_at: datetime) -> Any:
        user_id = payload.get('user_id')
        with self._writing("schedule_task") as uow:
            task = uow.tasks.create(
                task_type,
                payload,
                due_at,
                user_id=as_uuid(user_id) if user_id is not None else None,
            )
            return task.id

    def has_pending_transition(self, user_id: Any) -> bool:
        with self._reading("has_pending_transition") as uow:
            return uow.tasks.has_pending(DEACTIVATE_MEMBERSHIP, as_uuid(user_id))

    def list_due_tasks(self, now: datetime, limit: int = 100) -> List[Dict[str, Any]]:
        with self._reading("list_due_tasks") as uow:
            return [
                {
                    'id': task.id,
                    'task_type': task.task_type,
                    'payload': dict(task.payload or {}),
                    'due_at': task.due_at,
                    'attempts': task.attempts,
                }
                for task in uow.tasks.list_due(now, limit=limit)
            ]

    def mark_task_done(self, task_id: Any) -> None:
        with self._writing("mark_task_done") as uow:
            uow.tasks.mark_done(as_uuid(task_id))

    def mark_task_failed(self, task_id: Any, error: str, max_attempts: int) -> None:
        with self._writing("mark_task_failed") as uow:
            uow.tasks.mark_failed(as_uuid(task_id), error, max_attempts)

    @staticmethod
    def _to_snapshot(circle: Circle) -> CircleSnapshot:
        return CircleSnapshot(
            id=circle.id,
            name=circle.name,
            description=circle.description,
            location_radius_km=circle.location_radius_km,
            created_at=circle.created_at,
        )
